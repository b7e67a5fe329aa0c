"""
Per-user hourly delivery quotas.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class WindowState:
    """Counter for one (user, alert type) key."""

    count: int
    window_reset_at: datetime


class RateLimitWindow:
    """Fixed one-hour windows keyed by (user_id, alert_type).

    A window opens on the first attempt for a key and lasts one hour.
    State is in-memory only; a restart resets every quota.
    """

    def __init__(
        self,
        window: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.window = window
        self.clock = clock
        self._lock = threading.Lock()
        self._windows: dict[tuple[str, str], WindowState] = {}

    def try_consume(self, user_id: str, alert_type: str, max_per_hour: int) -> bool:
        """
        Take one unit of quota if any is left.

        Args:
            user_id: User the notification is for
            alert_type: Notification type being limited
            max_per_hour: Cap for this key; zero or less rejects everything

        Returns:
            True if the attempt is allowed
        """
        key = (user_id, alert_type)
        now = self.clock()

        with self._lock:
            state = self._windows.get(key)
            if state is None or now >= state.window_reset_at:
                state = WindowState(count=0, window_reset_at=now + self.window)
                self._windows[key] = state

            if state.count >= max_per_hour:
                logger.info(
                    f"Rate limit reached for user {user_id}, type {alert_type} "
                    f"({state.count}/{max_per_hour}, resets {state.window_reset_at:%H:%M:%S})"
                )
                return False

            state.count += 1
            return True

    def refund(self, user_id: str, alert_type: str) -> None:
        """Give back one unit taken in the current window, e.g. after a failed write."""
        now = self.clock()
        with self._lock:
            state = self._windows.get((user_id, alert_type))
            if state is not None and now < state.window_reset_at and state.count > 0:
                state.count -= 1

    def remaining(self, user_id: str, alert_type: str, max_per_hour: int) -> int:
        """Quota left in the current window without consuming any."""
        now = self.clock()
        with self._lock:
            state = self._windows.get((user_id, alert_type))
            if state is None or now >= state.window_reset_at:
                return max(max_per_hour, 0)
            return max(max_per_hour - state.count, 0)

    def get_state(self, user_id: str, alert_type: str) -> Optional[WindowState]:
        """Snapshot of a key's window, or None if it has none."""
        with self._lock:
            state = self._windows.get((user_id, alert_type))
            if state is None:
                return None
            return WindowState(count=state.count, window_reset_at=state.window_reset_at)

    def purge_expired(self) -> int:
        """Drop windows that have rolled over; returns how many were removed."""
        now = self.clock()
        with self._lock:
            expired = [k for k, s in self._windows.items() if now >= s.window_reset_at]
            for key in expired:
                del self._windows[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired rate limit windows")
        return len(expired)
