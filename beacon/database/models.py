"""
Data models for Beacon.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SettingsValidationError(ValueError):
    """Raised when a user settings update is invalid."""

    pass


class Priority(str, Enum):
    """Notification priority, ordered low to critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        return _PRIORITY_WEIGHTS[self.value]

    @classmethod
    def parse(cls, value: str) -> "Priority":
        try:
            return cls(str(value).lower())
        except ValueError as e:
            raise SettingsValidationError(f"Unknown priority: {value}") from e


_PRIORITY_WEIGHTS = {"low": 1, "medium": 2, "high": 3, "critical": 4}


def priority_weight(priority: str) -> int:
    """Numeric weight for a priority string (unknown values weigh as low)."""
    return _PRIORITY_WEIGHTS.get(str(priority).lower(), 1)


# Notification types, also the rate-limit keys
PRICE_ALERT = "price_alert"
SIGNAL_ALERT = "signal"
VOLUME_ALERT = "volume_alert"
NEWS_ALERT = "news"
SYSTEM_ALERT = "system"

NOTIFICATION_TYPES = (PRICE_ALERT, SIGNAL_ALERT, VOLUME_ALERT, NEWS_ALERT, SYSTEM_ALERT)

DEFAULT_MAX_PER_HOUR = {
    PRICE_ALERT: 10,
    SIGNAL_ALERT: 10,
    VOLUME_ALERT: 10,
    NEWS_ALERT: 5,
    SYSTEM_ALERT: 3,
}
FALLBACK_MAX_PER_HOUR = 10

ALERT_FREQUENCIES = ("immediate", "hourly", "daily", "weekly")

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass
class User:
    """User receiving notifications."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class AlertSetting:
    """User's alert rule, either for one asset or global (asset_symbol None)."""

    user_id: str
    asset_symbol: Optional[str] = None
    sentiment_threshold: int = 20
    price_change_threshold: float = 5.0
    enable_sentiment_alerts: bool = True
    enable_price_alerts: bool = True
    enable_narrative_alerts: bool = True
    enable_volume_alerts: bool = True
    enable_news_alerts: bool = True
    alert_frequency: str = "immediate"  # "immediate", "hourly", "daily", "weekly"
    email_notifications: bool = False
    push_notifications: bool = True
    id: Optional[int] = None
    is_builtin: bool = False  # True only for the hardcoded fallback rule

    @property
    def is_global(self) -> bool:
        return self.asset_symbol is None

    def validate(self) -> None:
        """
        Check thresholds and frequency.

        Raises:
            SettingsValidationError: If a value is out of range
        """
        if not 0 <= self.sentiment_threshold <= 100:
            raise SettingsValidationError(
                f"sentiment_threshold must be within 0-100, got {self.sentiment_threshold}"
            )
        if not 0.1 <= self.price_change_threshold <= 50.0:
            raise SettingsValidationError(
                f"price_change_threshold must be within 0.1-50, got {self.price_change_threshold}"
            )
        if self.alert_frequency not in ALERT_FREQUENCIES:
            raise SettingsValidationError(f"Unknown alert frequency: {self.alert_frequency}")


@dataclass
class QuietHours:
    """Daily window (HH:MM, local time) during which non-critical delivery is held back."""

    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"

    def validate(self) -> None:
        for value in (self.start, self.end):
            if not _HHMM.match(value or ""):
                raise SettingsValidationError(f"Quiet hours must be HH:MM, got {value!r}")


@dataclass
class NotificationSettings:
    """Per-user channel configuration."""

    user_id: str
    push_enabled: bool = True
    email_enabled: bool = False
    sound_enabled: bool = True
    grouping_enabled: bool = True
    priority_threshold: str = "low"
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    max_per_hour: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_MAX_PER_HOUR))
    updated_at: Optional[datetime] = None

    def limit_for(self, notification_type: str) -> int:
        """Hourly cap for one notification type."""
        return self.max_per_hour.get(notification_type, FALLBACK_MAX_PER_HOUR)

    def validate(self) -> None:
        Priority.parse(self.priority_threshold)
        self.quiet_hours.validate()
        for key, value in self.max_per_hour.items():
            if not isinstance(value, int) or isinstance(value, bool):
                raise SettingsValidationError(f"max_per_hour[{key}] must be an integer")


@dataclass
class QuickAction:
    """Action button attached to a notification."""

    id: str
    label: str
    action: str  # "view_asset", "set_alert", "snooze", "dismiss"
    data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"id": self.id, "label": self.label, "action": self.action}
        if self.data:
            result["data"] = self.data
        return result


@dataclass
class NotificationRecord:
    """Persisted, user-visible unit of delivery."""

    id: str
    user_id: str
    title: str
    message: str
    type: str
    priority: str = "medium"
    asset_symbol: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    group_id: Optional[str] = None
    read: bool = False
    archived: bool = False
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    quick_actions: list[QuickAction] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation used by the live channel and the read API."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "priority": self.priority,
            "assetSymbol": self.asset_symbol,
            "data": self.data,
            "groupId": self.group_id,
            "read": self.read,
            "archived": self.archived,
            "sentAt": self.sent_at.isoformat() if self.sent_at else None,
            "readAt": self.read_at.isoformat() if self.read_at else None,
            "snoozedUntil": self.snoozed_until.isoformat() if self.snoozed_until else None,
            "quickActions": [a.to_dict() for a in self.quick_actions],
        }


@dataclass
class NotificationGroup:
    """Aggregate view over records sharing a group id."""

    group_id: str
    type: str
    count: int
    unread_count: int
    highest_priority: str
    latest_record: NotificationRecord
    first_sent_at: datetime
    last_sent_at: datetime


@dataclass
class DeviceToken:
    """Push gateway registration for one device."""

    user_id: str
    token: str
    platform: str = "web"  # "web", "android", "ios"
    id: Optional[int] = None
    created_at: Optional[datetime] = None
