"""
SQLite database connection and schema management.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime so that lexical order matches time order."""
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp written by to_db_timestamp."""
    if not value:
        return None
    return datetime.fromisoformat(value)


class Database:
    """SQLite database connection manager.

    One connection is shared by every pipeline worker; all access goes
    through ``transaction()`` which serializes it with a re-entrant lock.
    """

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
        """
        self.db_path = db_path
        self.lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            # Ensure parent directory exists
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        # Enable foreign keys
        self._connection.execute("PRAGMA foreign_keys = ON")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run a unit of work under the connection lock.

        Commits on success and rolls back if the block raises.
        """
        with self.lock:
            connection = self.connection
            cursor = connection.cursor()
            try:
                yield cursor
                connection.commit()
            except Exception:
                connection.rollback()
                raise
            finally:
                cursor.close()

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        with self.transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT,
                    name TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # Assets a user follows; drives signal fan-out
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS user_assets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    asset_symbol TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                    UNIQUE (user_id, asset_symbol)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS alert_settings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    asset_symbol TEXT,
                    sentiment_threshold INTEGER NOT NULL DEFAULT 20,
                    price_change_threshold REAL NOT NULL DEFAULT 5.0,
                    enable_sentiment_alerts INTEGER NOT NULL DEFAULT 1,
                    enable_price_alerts INTEGER NOT NULL DEFAULT 1,
                    enable_narrative_alerts INTEGER NOT NULL DEFAULT 1,
                    enable_volume_alerts INTEGER NOT NULL DEFAULT 1,
                    enable_news_alerts INTEGER NOT NULL DEFAULT 1,
                    alert_frequency TEXT NOT NULL DEFAULT 'immediate',
                    email_notifications INTEGER NOT NULL DEFAULT 0,
                    push_notifications INTEGER NOT NULL DEFAULT 1,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS notification_settings (
                    user_id TEXT PRIMARY KEY,
                    push_enabled INTEGER NOT NULL DEFAULT 1,
                    email_enabled INTEGER NOT NULL DEFAULT 0,
                    sound_enabled INTEGER NOT NULL DEFAULT 1,
                    grouping_enabled INTEGER NOT NULL DEFAULT 1,
                    priority_threshold TEXT NOT NULL DEFAULT 'low',
                    quiet_hours_enabled INTEGER NOT NULL DEFAULT 0,
                    quiet_hours_start TEXT NOT NULL DEFAULT '22:00',
                    quiet_hours_end TEXT NOT NULL DEFAULT '08:00',
                    max_per_hour TEXT NOT NULL,
                    updated_at TIMESTAMP,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    type TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    priority_weight INTEGER NOT NULL,
                    asset_symbol TEXT,
                    data TEXT NOT NULL,
                    group_id TEXT,
                    read INTEGER NOT NULL DEFAULT 0,
                    archived INTEGER NOT NULL DEFAULT 0,
                    sent_at TIMESTAMP NOT NULL,
                    read_at TIMESTAMP,
                    snoozed_until TIMESTAMP,
                    quick_actions TEXT,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS device_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    token TEXT NOT NULL UNIQUE,
                    platform TEXT NOT NULL DEFAULT 'web',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                )
            """)

            # Create indexes for common queries
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_assets_symbol ON user_assets(asset_symbol)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_alert_settings_user
                ON alert_settings(user_id, asset_symbol)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_notifications_user_sent
                ON notifications(user_id, sent_at)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_notifications_group
                ON notifications(user_id, group_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_notifications_state
                ON notifications(user_id, read, archived)
            """)

    def close(self) -> None:
        """Close the database connection."""
        with self.lock:
            if self._connection:
                self._connection.close()
                self._connection = None
