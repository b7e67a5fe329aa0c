"""
Live session notifier and connection registry.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from beacon.config import LiveDeliveryConfig
from beacon.data.signal import Signal
from beacon.database.models import NotificationRecord, NotificationSettings, Priority
from .base import DeliveryChannel, NotificationResult, Recipient

logger = logging.getLogger(__name__)

# Transport hook: emit(event_name, payload)
EmitFn = Callable[[str, dict[str, Any]], None]


@dataclass
class LiveSession:
    """One connected real-time client."""

    connection_id: str
    user_id: str
    emit: EmitFn
    assets: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=datetime.now)


class SessionRegistry:
    """Connected sessions keyed by connection id, indexed by user id.

    Sessions are created on connect and removed on disconnect. All methods
    are safe to call from multiple threads.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._sessions: dict[str, LiveSession] = {}
        self._by_user: dict[str, set[str]] = {}

    def connect(self, connection_id: str, user_id: str, emit: EmitFn) -> LiveSession:
        """Register a connection; reconnecting with the same id replaces it."""
        with self._lock:
            if connection_id in self._sessions:
                self._remove(connection_id)
            session = LiveSession(connection_id=connection_id, user_id=user_id, emit=emit)
            self._sessions[connection_id] = session
            self._by_user.setdefault(user_id, set()).add(connection_id)
        logger.info(f"Live session {connection_id} connected for user {user_id}")
        return session

    def disconnect(self, connection_id: str) -> bool:
        """Remove a connection; returns False if it was unknown."""
        with self._lock:
            removed = self._remove(connection_id)
        if removed:
            logger.info(f"Live session {connection_id} disconnected")
        return removed

    def _remove(self, connection_id: str) -> bool:
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return False
        ids = self._by_user.get(session.user_id)
        if ids is not None:
            ids.discard(connection_id)
            if not ids:
                del self._by_user[session.user_id]
        return True

    def subscribe_assets(self, connection_id: str, symbols: Iterable[str]) -> set[str]:
        """Add assets to a connection's signal feed; returns the new subscription set."""
        with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                raise KeyError(f"Unknown connection: {connection_id}")
            session.assets.update(s.upper() for s in symbols)
            return set(session.assets)

    def unsubscribe_assets(
        self, connection_id: str, symbols: Optional[Iterable[str]] = None
    ) -> set[str]:
        """Drop assets (all of them if ``symbols`` is None) from a connection."""
        with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                raise KeyError(f"Unknown connection: {connection_id}")
            if symbols is None:
                session.assets.clear()
            else:
                session.assets.difference_update(s.upper() for s in symbols)
            return set(session.assets)

    def sessions_for_user(self, user_id: str) -> list[LiveSession]:
        with self._lock:
            return [self._sessions[cid] for cid in self._by_user.get(user_id, ())]

    def has_session(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._by_user.get(user_id))

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def emit_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> int:
        """
        Emit an event to every session of a user.

        Returns:
            Number of sessions that accepted the event
        """
        return self._emit_all(self.sessions_for_user(user_id), event, payload)

    def broadcast_signal(self, signal: Signal) -> int:
        """Emit ``newSignal`` to every connection subscribed to the signal's asset."""
        with self._lock:
            targets = [s for s in self._sessions.values() if signal.asset_symbol in s.assets]
        return self._emit_all(targets, "newSignal", signal.to_dict())

    def _emit_all(self, sessions: list[LiveSession], event: str, payload: dict[str, Any]) -> int:
        # Emit outside the lock so a slow transport cannot block registry updates
        delivered = 0
        for session in sessions:
            try:
                session.emit(event, payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Emit of {event} to session {session.connection_id} failed: {e}")
        return delivered


class LiveSessionNotifier(DeliveryChannel):
    """Sends records to a user's connected live sessions."""

    name = "live_session"

    def __init__(self, registry: SessionRegistry, config: Optional[LiveDeliveryConfig] = None):
        """
        Initialize live session notifier.

        Args:
            registry: Connected session registry
            config: Browser notification settings
        """
        self.registry = registry
        self.config = config or LiveDeliveryConfig()

    def send(
        self,
        record: NotificationRecord,
        recipient: Recipient,
        settings: NotificationSettings,
    ) -> NotificationResult:
        """Emit the record to every live session of the recipient."""
        if not self.registry.has_session(recipient.user_id):
            return NotificationResult.skip(self.name, "no active session")

        payload = record.to_dict()
        payload["soundEnabled"] = settings.sound_enabled
        delivered = self.registry.emit_to_user(recipient.user_id, "notification", payload)
        if delivered == 0:
            return NotificationResult(success=False, channel=self.name, error="all sessions failed")

        if record.priority == Priority.CRITICAL.value and self.config.browser_notifications:
            self.registry.emit_to_user(
                recipient.user_id,
                "browser_notification",
                {
                    "title": record.title,
                    "body": record.message,
                    "icon": self.config.icon,
                    "tag": record.id,
                    "requireInteraction": True,
                },
            )

        return NotificationResult(success=True, channel=self.name)
