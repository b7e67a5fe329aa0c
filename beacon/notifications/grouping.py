"""
Notification grouping.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from beacon.database.models import NotificationRecord
from beacon.database.store import NotificationStore

logger = logging.getLogger(__name__)


def new_group_id() -> str:
    return f"grp_{uuid.uuid4().hex}"


def title_prefix(title: str, tokens: int) -> tuple[str, ...]:
    """First ``tokens`` lower-cased whitespace tokens of a title."""
    return tuple(title.lower().split()[:tokens])


class NotificationGroupingEngine:
    """Assigns records to an existing or new group.

    A candidate joins the group of the newest record for the same user and
    type, sent within the lookback window, whose title starts with the
    same tokens. Otherwise a new group id is minted.
    """

    def __init__(
        self,
        store: Optional[NotificationStore] = None,
        lookback: timedelta = timedelta(minutes=60),
        prefix_tokens: int = 2,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = new_group_id,
    ):
        """
        Args:
            store: Source of recent records when none are passed in
            lookback: How far back a record can still absorb new members
            prefix_tokens: Number of title tokens that must match
            clock: Time source
            id_factory: Generator for new group ids
        """
        self.store = store
        self.lookback = lookback
        self.prefix_tokens = prefix_tokens
        self.clock = clock
        self.id_factory = id_factory

    def assign_group(
        self,
        candidate: NotificationRecord,
        existing: Optional[Iterable[NotificationRecord]] = None,
        grouping_enabled: bool = True,
    ) -> str:
        """
        Pick the group id for a candidate record.

        With grouping disabled every record gets a fresh id, so callers
        always receive a group id regardless of the user's preference.

        Args:
            candidate: Unsaved record
            existing: Recent records for the user; loaded from the store if None
            grouping_enabled: User's grouping preference

        Returns:
            Group id to stamp on the record
        """
        if not grouping_enabled:
            return self.id_factory()

        cutoff = self.clock() - self.lookback
        if existing is None:
            existing = self._load_recent(candidate, cutoff)

        prefix = title_prefix(candidate.title, self.prefix_tokens)
        match = self._find_match(candidate, existing, cutoff, prefix)
        if match is not None:
            group_id = match.group_id or match.id
            logger.debug(f"Record for user {candidate.user_id} joins group {group_id}")
            return group_id

        return self.id_factory()

    def _load_recent(self, candidate: NotificationRecord, cutoff: datetime) -> list[NotificationRecord]:
        if self.store is None:
            return []
        return self.store.find_recent(candidate.user_id, candidate.type, cutoff)

    def _find_match(
        self,
        candidate: NotificationRecord,
        existing: Iterable[NotificationRecord],
        cutoff: datetime,
        prefix: tuple[str, ...],
    ) -> Optional[NotificationRecord]:
        """Newest record sharing user, type and title prefix inside the window."""
        best: Optional[NotificationRecord] = None
        for record in existing:
            if record.user_id != candidate.user_id or record.type != candidate.type:
                continue
            if record.sent_at is None or record.sent_at < cutoff:
                continue
            if title_prefix(record.title, self.prefix_tokens) != prefix:
                continue
            if best is None or record.sent_at > best.sent_at:
                best = record
        return best
