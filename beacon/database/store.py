"""
Notification history store.
"""

import json
import logging
import math
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from .connection import Database, from_db_timestamp, to_db_timestamp
from .models import (
    NotificationGroup,
    NotificationRecord,
    QuickAction,
    priority_weight,
)

logger = logging.getLogger(__name__)

_PRIORITY_BY_WEIGHT = {1: "low", 2: "medium", 3: "high", 4: "critical"}


class StoreError(Exception):
    """Raised when the notification store cannot complete an operation."""

    pass


@dataclass
class HistoryFilter:
    """Optional filters for history queries."""

    type: Optional[str] = None
    priority: Optional[str] = None
    asset_symbol: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    unread_only: bool = False
    include_archived: bool = False
    include_snoozed: bool = False


@dataclass
class HistoryPage:
    """One page of notification history."""

    records: list[NotificationRecord] = field(default_factory=list)
    total: int = 0
    page: int = 1
    total_pages: int = 0


class NotificationStore:
    """Persistence and query surface for notification records.

    Every mutation is idempotent: re-applying it leaves the same state and
    reports zero affected rows.
    """

    def __init__(self, db: Database):
        self.db = db

    def create(self, record: NotificationRecord) -> NotificationRecord:
        """
        Persist a new record.

        Args:
            record: Record to insert; sent_at defaults to now

        Returns:
            The persisted record

        Raises:
            StoreError: If the write fails
        """
        if record.sent_at is None:
            record.sent_at = datetime.now()
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    INSERT INTO notifications (
                        id, user_id, title, message, type, priority, priority_weight,
                        asset_symbol, data, group_id, read, archived, sent_at,
                        read_at, snoozed_until, quick_actions
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.user_id,
                        record.title,
                        record.message,
                        record.type,
                        record.priority,
                        priority_weight(record.priority),
                        record.asset_symbol,
                        json.dumps(record.data, default=str),
                        record.group_id,
                        int(record.read),
                        int(record.archived),
                        to_db_timestamp(record.sent_at),
                        to_db_timestamp(record.read_at),
                        to_db_timestamp(record.snoozed_until),
                        json.dumps([a.to_dict() for a in record.quick_actions]),
                    ),
                )
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise StoreError(f"Failed to persist notification {record.id}: {e}") from e
        return record

    def get(self, record_id: str, user_id: Optional[str] = None) -> Optional[NotificationRecord]:
        """Get a record by ID, optionally scoped to its owner."""
        query = "SELECT * FROM notifications WHERE id = ?"
        params: list = [record_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self.db.transaction() as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def find_history(
        self,
        user_id: str,
        filters: Optional[HistoryFilter] = None,
        page: int = 1,
        limit: int = 50,
        now: Optional[datetime] = None,
    ) -> HistoryPage:
        """
        Page through a user's history, newest first.

        Args:
            user_id: Owner of the records
            filters: Optional type/priority/asset/date/state filters
            page: 1-based page number
            limit: Page size
            now: Reference time for snooze visibility

        Returns:
            HistoryPage with the records and paging totals
        """
        filters = filters or HistoryFilter()
        page = max(page, 1)
        limit = max(limit, 1)
        now = now or datetime.now()

        where = ["user_id = ?"]
        params: list = [user_id]
        if filters.type:
            where.append("type = ?")
            params.append(filters.type)
        if filters.priority:
            where.append("priority = ?")
            params.append(filters.priority)
        if filters.asset_symbol:
            where.append("asset_symbol = ?")
            params.append(filters.asset_symbol.upper())
        if filters.date_from:
            where.append("sent_at >= ?")
            params.append(to_db_timestamp(filters.date_from))
        if filters.date_to:
            where.append("sent_at <= ?")
            params.append(to_db_timestamp(filters.date_to))
        if filters.unread_only:
            where.append("read = 0")
        if not filters.include_archived:
            where.append("archived = 0")
        if not filters.include_snoozed:
            where.append("(snoozed_until IS NULL OR snoozed_until <= ?)")
            params.append(to_db_timestamp(now))
        clause = " AND ".join(where)

        with self.db.transaction() as cursor:
            cursor.execute(f"SELECT COUNT(*) FROM notifications WHERE {clause}", params)
            total = cursor.fetchone()[0]
            cursor.execute(
                f"""
                SELECT * FROM notifications
                WHERE {clause}
                ORDER BY sent_at DESC, id
                LIMIT ? OFFSET ?
                """,
                params + [limit, (page - 1) * limit],
            )
            rows = cursor.fetchall()

        return HistoryPage(
            records=[self._row_to_record(row) for row in rows],
            total=total,
            page=page,
            total_pages=math.ceil(total / limit),
        )

    def find_recent(
        self, user_id: str, notification_type: str, since: datetime
    ) -> list[NotificationRecord]:
        """Records of one type sent to a user at or after ``since``, newest first."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT * FROM notifications
                WHERE user_id = ? AND type = ? AND sent_at >= ?
                ORDER BY sent_at DESC, id
                """,
                (user_id, notification_type, to_db_timestamp(since)),
            )
            rows = cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    def find_since(self, user_id: str, since: datetime) -> list[NotificationRecord]:
        """Non-archived records sent at or after ``since``, oldest first."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT * FROM notifications
                WHERE user_id = ? AND sent_at >= ? AND archived = 0
                ORDER BY sent_at, id
                """,
                (user_id, to_db_timestamp(since)),
            )
            rows = cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    def mark_read(
        self, user_id: str, record_ids: Iterable[str], now: Optional[datetime] = None
    ) -> int:
        """
        Mark records as read.

        Already-read records keep their original read_at.

        Returns:
            Number of records that changed state
        """
        ids = list(record_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self.db.transaction() as cursor:
            cursor.execute(
                f"""
                UPDATE notifications
                SET read = 1, read_at = ?
                WHERE user_id = ? AND read = 0 AND id IN ({placeholders})
                """,
                [to_db_timestamp(now or datetime.now()), user_id] + ids,
            )
            return cursor.rowcount

    def mark_all_read(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Mark every unread record of a user as read; returns the number changed."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE notifications
                SET read = 1, read_at = ?
                WHERE user_id = ? AND read = 0
                """,
                (to_db_timestamp(now or datetime.now()), user_id),
            )
            return cursor.rowcount

    def archive(self, user_id: str, record_ids: Iterable[str]) -> int:
        """Archive records; returns the number that changed state."""
        ids = list(record_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self.db.transaction() as cursor:
            cursor.execute(
                f"""
                UPDATE notifications
                SET archived = 1
                WHERE user_id = ? AND archived = 0 AND id IN ({placeholders})
                """,
                [user_id] + ids,
            )
            return cursor.rowcount

    def snooze(self, user_id: str, record_id: str, until: datetime) -> bool:
        """Hide a record until ``until``; returns False if the record is unknown."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE notifications
                SET snoozed_until = ?
                WHERE user_id = ? AND id = ?
                """,
                (to_db_timestamp(until), user_id, record_id),
            )
            return cursor.rowcount > 0

    def unread_count(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Count visible unread records."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT COUNT(*) FROM notifications
                WHERE user_id = ? AND read = 0 AND archived = 0
                  AND (snoozed_until IS NULL OR snoozed_until <= ?)
                """,
                (user_id, to_db_timestamp(now or datetime.now())),
            )
            return cursor.fetchone()[0]

    def find_groups(self, user_id: str, include_archived: bool = False) -> list[NotificationGroup]:
        """
        Aggregate a user's records by group.

        The most recent record of each group is its representative; groups
        are returned most recently active first.
        """
        inner_clause = "" if include_archived else "AND archived = 0"
        outer_clause = "" if include_archived else "AND n.archived = 0"
        with self.db.transaction() as cursor:
            cursor.execute(
                f"""
                SELECT n.*, g.member_count, g.unread_members, g.top_weight,
                       g.first_sent, g.last_sent
                FROM notifications n
                JOIN (
                    SELECT COALESCE(group_id, id) AS group_key,
                           COUNT(*) AS member_count,
                           SUM(CASE WHEN read = 0 THEN 1 ELSE 0 END) AS unread_members,
                           MAX(priority_weight) AS top_weight,
                           MIN(sent_at) AS first_sent,
                           MAX(sent_at) AS last_sent
                    FROM notifications
                    WHERE user_id = ? {inner_clause}
                    GROUP BY group_key
                ) g
                  ON COALESCE(n.group_id, n.id) = g.group_key AND n.sent_at = g.last_sent
                WHERE n.user_id = ? {outer_clause}
                ORDER BY g.last_sent DESC, n.id
                """,
                (user_id, user_id),
            )
            rows = cursor.fetchall()

        groups: list[NotificationGroup] = []
        seen: set[str] = set()
        for row in rows:
            record = self._row_to_record(row)
            group_key = record.group_id or record.id
            # Records sharing the latest timestamp produce one row each
            if group_key in seen:
                continue
            seen.add(group_key)
            groups.append(
                NotificationGroup(
                    group_id=group_key,
                    type=record.type,
                    count=row["member_count"],
                    unread_count=row["unread_members"],
                    highest_priority=_PRIORITY_BY_WEIGHT.get(row["top_weight"], "low"),
                    latest_record=record,
                    first_sent_at=from_db_timestamp(row["first_sent"]),
                    last_sent_at=from_db_timestamp(row["last_sent"]),
                )
            )
        return groups

    def _row_to_record(self, row) -> NotificationRecord:
        """Convert database row to NotificationRecord."""
        actions = json.loads(row["quick_actions"]) if row["quick_actions"] else []
        return NotificationRecord(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            message=row["message"],
            type=row["type"],
            priority=row["priority"],
            asset_symbol=row["asset_symbol"],
            data=json.loads(row["data"]),
            group_id=row["group_id"],
            read=bool(row["read"]),
            archived=bool(row["archived"]),
            sent_at=from_db_timestamp(row["sent_at"]),
            read_at=from_db_timestamp(row["read_at"]),
            snoozed_until=from_db_timestamp(row["snoozed_until"]),
            quick_actions=[
                QuickAction(
                    id=a["id"], label=a["label"], action=a["action"], data=a.get("data")
                )
                for a in actions
            ],
        )
