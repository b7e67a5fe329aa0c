"""
Repository classes for CRUD operations.
"""

import json
from datetime import datetime
from typing import Optional

from .connection import Database, from_db_timestamp, to_db_timestamp
from .models import (
    AlertSetting,
    DeviceToken,
    NotificationSettings,
    QuietHours,
    User,
    DEFAULT_MAX_PER_HOUR,
)


class UserRepository:
    """CRUD operations for users and their followed assets."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, user: User) -> User:
        """Create a new user."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO users (id, email, name)
                VALUES (?, ?, ?)
                """,
                (user.id, user.email, user.name),
            )
        return self.get_by_id(user.id)

    def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def update(self, user: User) -> None:
        """Update user details."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE users SET email = ?, name = ? WHERE id = ?",
                (user.email, user.name, user.id),
            )

    def delete(self, user_id: str) -> None:
        """Delete user."""
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM users WHERE id = ?", (user_id,))

    def list_all(self) -> list[User]:
        """List all users."""
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM users ORDER BY id")
            rows = cursor.fetchall()
        return [self._row_to_user(row) for row in rows]

    def follow_asset(self, user_id: str, asset_symbol: str) -> None:
        """Subscribe a user to signals for an asset (no-op if already following)."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT OR IGNORE INTO user_assets (user_id, asset_symbol)
                VALUES (?, ?)
                """,
                (user_id, asset_symbol.upper()),
            )

    def unfollow_asset(self, user_id: str, asset_symbol: str) -> None:
        """Unsubscribe a user from an asset."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "DELETE FROM user_assets WHERE user_id = ? AND asset_symbol = ?",
                (user_id, asset_symbol.upper()),
            )

    def get_followed_assets(self, user_id: str) -> list[str]:
        """List the assets a user follows."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT asset_symbol FROM user_assets WHERE user_id = ? ORDER BY asset_symbol",
                (user_id,),
            )
            rows = cursor.fetchall()
        return [row["asset_symbol"] for row in rows]

    def list_subscribers(self, asset_symbol: str) -> list[User]:
        """List users following an asset."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT u.* FROM users u
                JOIN user_assets a ON u.id = a.user_id
                WHERE a.asset_symbol = ?
                ORDER BY u.id
                """,
                (asset_symbol.upper(),),
            )
            rows = cursor.fetchall()
        return [self._row_to_user(row) for row in rows]

    def _row_to_user(self, row) -> User:
        """Convert database row to User."""
        return User(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            created_at=row["created_at"],
        )


class AlertSettingRepository:
    """CRUD operations for alert rules."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, setting: AlertSetting) -> AlertSetting:
        """Create a new rule."""
        setting.validate()
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO alert_settings (
                    user_id, asset_symbol, sentiment_threshold, price_change_threshold,
                    enable_sentiment_alerts, enable_price_alerts, enable_narrative_alerts,
                    enable_volume_alerts, enable_news_alerts, alert_frequency,
                    email_notifications, push_notifications
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._to_params(setting),
            )
            setting.id = cursor.lastrowid
        return setting

    def get_by_id(self, setting_id: int) -> Optional[AlertSetting]:
        """Get rule by ID."""
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM alert_settings WHERE id = ?", (setting_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_setting(row)

    def get_user_settings(self, user_id: str) -> list[AlertSetting]:
        """Get all rules for a user."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM alert_settings WHERE user_id = ? ORDER BY id",
                (user_id,),
            )
            rows = cursor.fetchall()
        return [self._row_to_setting(row) for row in rows]

    def get_for_asset(self, user_id: str, asset_symbol: str) -> list[AlertSetting]:
        """Get a user's rules bound to one asset."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT * FROM alert_settings
                WHERE user_id = ? AND asset_symbol = ?
                ORDER BY id
                """,
                (user_id, asset_symbol.upper()),
            )
            rows = cursor.fetchall()
        return [self._row_to_setting(row) for row in rows]

    def get_global(self, user_id: str) -> list[AlertSetting]:
        """Get a user's global rules."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT * FROM alert_settings
                WHERE user_id = ? AND asset_symbol IS NULL
                ORDER BY id
                """,
                (user_id,),
            )
            rows = cursor.fetchall()
        return [self._row_to_setting(row) for row in rows]

    def list_users_with_frequency(self, frequency: str) -> list[str]:
        """User IDs having at least one rule with the given alert frequency."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT DISTINCT user_id FROM alert_settings
                WHERE alert_frequency = ?
                ORDER BY user_id
                """,
                (frequency,),
            )
            rows = cursor.fetchall()
        return [row["user_id"] for row in rows]

    def update(self, setting: AlertSetting) -> None:
        """Update a rule."""
        setting.validate()
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE alert_settings
                SET user_id = ?, asset_symbol = ?, sentiment_threshold = ?,
                    price_change_threshold = ?, enable_sentiment_alerts = ?,
                    enable_price_alerts = ?, enable_narrative_alerts = ?,
                    enable_volume_alerts = ?, enable_news_alerts = ?,
                    alert_frequency = ?, email_notifications = ?, push_notifications = ?
                WHERE id = ?
                """,
                self._to_params(setting) + (setting.id,),
            )

    def delete(self, setting_id: int) -> None:
        """Delete a rule."""
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM alert_settings WHERE id = ?", (setting_id,))

    def _to_params(self, setting: AlertSetting) -> tuple:
        return (
            setting.user_id,
            setting.asset_symbol.upper() if setting.asset_symbol else None,
            setting.sentiment_threshold,
            setting.price_change_threshold,
            int(setting.enable_sentiment_alerts),
            int(setting.enable_price_alerts),
            int(setting.enable_narrative_alerts),
            int(setting.enable_volume_alerts),
            int(setting.enable_news_alerts),
            setting.alert_frequency,
            int(setting.email_notifications),
            int(setting.push_notifications),
        )

    def _row_to_setting(self, row) -> AlertSetting:
        """Convert database row to AlertSetting."""
        return AlertSetting(
            id=row["id"],
            user_id=row["user_id"],
            asset_symbol=row["asset_symbol"],
            sentiment_threshold=row["sentiment_threshold"],
            price_change_threshold=row["price_change_threshold"],
            enable_sentiment_alerts=bool(row["enable_sentiment_alerts"]),
            enable_price_alerts=bool(row["enable_price_alerts"]),
            enable_narrative_alerts=bool(row["enable_narrative_alerts"]),
            enable_volume_alerts=bool(row["enable_volume_alerts"]),
            enable_news_alerts=bool(row["enable_news_alerts"]),
            alert_frequency=row["alert_frequency"],
            email_notifications=bool(row["email_notifications"]),
            push_notifications=bool(row["push_notifications"]),
        )


class NotificationSettingsRepository:
    """Per-user channel settings, created with defaults on first read."""

    def __init__(self, db: Database):
        self.db = db

    def get_or_create(self, user_id: str) -> NotificationSettings:
        """Get a user's settings, inserting defaults if none exist."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM notification_settings WHERE user_id = ?", (user_id,)
            )
            row = cursor.fetchone()
            if row is None:
                settings = NotificationSettings(user_id=user_id, updated_at=datetime.now())
                cursor.execute(
                    self._UPSERT_SQL,
                    self._to_params(settings),
                )
                return settings
        return self._row_to_settings(row)

    def save(self, settings: NotificationSettings) -> NotificationSettings:
        """Insert or replace a user's settings."""
        settings.validate()
        settings.updated_at = datetime.now()
        with self.db.transaction() as cursor:
            cursor.execute(self._UPSERT_SQL, self._to_params(settings))
        return settings

    _UPSERT_SQL = """
        INSERT INTO notification_settings (
            user_id, push_enabled, email_enabled, sound_enabled, grouping_enabled,
            priority_threshold, quiet_hours_enabled, quiet_hours_start, quiet_hours_end,
            max_per_hour, updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            push_enabled = excluded.push_enabled,
            email_enabled = excluded.email_enabled,
            sound_enabled = excluded.sound_enabled,
            grouping_enabled = excluded.grouping_enabled,
            priority_threshold = excluded.priority_threshold,
            quiet_hours_enabled = excluded.quiet_hours_enabled,
            quiet_hours_start = excluded.quiet_hours_start,
            quiet_hours_end = excluded.quiet_hours_end,
            max_per_hour = excluded.max_per_hour,
            updated_at = excluded.updated_at
    """

    def _to_params(self, settings: NotificationSettings) -> tuple:
        return (
            settings.user_id,
            int(settings.push_enabled),
            int(settings.email_enabled),
            int(settings.sound_enabled),
            int(settings.grouping_enabled),
            settings.priority_threshold,
            int(settings.quiet_hours.enabled),
            settings.quiet_hours.start,
            settings.quiet_hours.end,
            json.dumps(settings.max_per_hour),
            to_db_timestamp(settings.updated_at),
        )

    def _row_to_settings(self, row) -> NotificationSettings:
        """Convert database row to NotificationSettings."""
        max_per_hour = dict(DEFAULT_MAX_PER_HOUR)
        max_per_hour.update(json.loads(row["max_per_hour"]))
        return NotificationSettings(
            user_id=row["user_id"],
            push_enabled=bool(row["push_enabled"]),
            email_enabled=bool(row["email_enabled"]),
            sound_enabled=bool(row["sound_enabled"]),
            grouping_enabled=bool(row["grouping_enabled"]),
            priority_threshold=row["priority_threshold"],
            quiet_hours=QuietHours(
                enabled=bool(row["quiet_hours_enabled"]),
                start=row["quiet_hours_start"],
                end=row["quiet_hours_end"],
            ),
            max_per_hour=max_per_hour,
            updated_at=from_db_timestamp(row["updated_at"]),
        )


class DeviceTokenRepository:
    """Push gateway device registrations."""

    def __init__(self, db: Database):
        self.db = db

    def register(self, token: DeviceToken) -> DeviceToken:
        """Register a token; re-registering moves it to the given user."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO device_tokens (user_id, token, platform)
                VALUES (?, ?, ?)
                ON CONFLICT(token) DO UPDATE SET
                    user_id = excluded.user_id,
                    platform = excluded.platform
                """,
                (token.user_id, token.token, token.platform),
            )
            cursor.execute("SELECT id FROM device_tokens WHERE token = ?", (token.token,))
            token.id = cursor.fetchone()["id"]
        return token

    def get_user_tokens(self, user_id: str) -> list[DeviceToken]:
        """List a user's registered devices."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM device_tokens WHERE user_id = ? ORDER BY id",
                (user_id,),
            )
            rows = cursor.fetchall()
        return [
            DeviceToken(
                id=row["id"],
                user_id=row["user_id"],
                token=row["token"],
                platform=row["platform"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def remove(self, token: str) -> None:
        """Forget a token."""
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM device_tokens WHERE token = ?", (token,))
