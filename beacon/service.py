"""
User-facing notification and settings API.
"""

import logging
from dataclasses import fields, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from beacon.database.models import (
    AlertSetting,
    DeviceToken,
    NotificationGroup,
    NotificationRecord,
    NotificationSettings,
    QuietHours,
    SettingsValidationError,
)
from beacon.database.repository import (
    AlertSettingRepository,
    DeviceTokenRepository,
    NotificationSettingsRepository,
)
from beacon.database.store import HistoryFilter, HistoryPage, NotificationStore
from beacon.notifications.factory import DEFAULT_SNOOZE_MINUTES

logger = logging.getLogger(__name__)


class NotificationNotFoundError(LookupError):
    """Raised when a notification does not exist or belongs to another user."""

    pass


class AlertSettingNotFoundError(LookupError):
    """Raised when an alert rule does not exist or belongs to another user."""

    pass


_SETTINGS_FIELDS = {
    "push_enabled",
    "email_enabled",
    "sound_enabled",
    "grouping_enabled",
    "priority_threshold",
    "quiet_hours",
    "max_per_hour",
}

_QUIET_HOURS_FIELDS = {f.name for f in fields(QuietHours)}

_RULE_FIELDS = {f.name for f in fields(AlertSetting)} - {"id", "user_id", "is_builtin"}


class NotificationService:
    """Read API, quick actions and settings management for one deployment."""

    def __init__(
        self,
        store: NotificationStore,
        settings_repo: NotificationSettingsRepository,
        alert_settings: AlertSettingRepository,
        tokens: DeviceTokenRepository,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.settings_repo = settings_repo
        self.alert_settings = alert_settings
        self.tokens = tokens
        self.clock = clock

    # History

    def list_notifications(
        self,
        user_id: str,
        filters: Optional[HistoryFilter] = None,
        page: int = 1,
        limit: int = 20,
    ) -> HistoryPage:
        """Paginated history, newest first; snoozed and archived records are hidden by default."""
        return self.store.find_history(user_id, filters, page=page, limit=limit, now=self.clock())

    def unread_count(self, user_id: str) -> int:
        return self.store.unread_count(user_id, now=self.clock())

    def grouped(self, user_id: str, include_archived: bool = False) -> list[NotificationGroup]:
        return self.store.find_groups(user_id, include_archived=include_archived)

    def get_notification(self, user_id: str, notification_id: str) -> NotificationRecord:
        record = self.store.get(notification_id, user_id=user_id)
        if record is None:
            raise NotificationNotFoundError(f"Notification not found: {notification_id}")
        return record

    def mark_read(self, user_id: str, notification_ids: Iterable[str]) -> int:
        return self.store.mark_read(user_id, notification_ids, now=self.clock())

    def mark_all_read(self, user_id: str) -> int:
        return self.store.mark_all_read(user_id, now=self.clock())

    def archive(self, user_id: str, notification_ids: Iterable[str]) -> int:
        return self.store.archive(user_id, notification_ids)

    def execute_action(
        self,
        user_id: str,
        notification_id: str,
        action: str,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Execute a quick action on a notification.

        Args:
            user_id: Owner of the notification
            notification_id: Target record
            action: Quick action id or action name
            params: Optional overrides (e.g. ``minutes`` for snooze)

        Returns:
            Action result for the client

        Raises:
            NotificationNotFoundError: If the record is unknown or not the user's
            ValueError: If the action is not supported
        """
        record = self.get_notification(user_id, notification_id)
        params = params or {}

        quick_action = next(
            (a for a in record.quick_actions if action in (a.id, a.action)), None
        )
        name = quick_action.action if quick_action else action
        action_data = dict(quick_action.data or {}) if quick_action else {}
        action_data.update(params)

        if name == "view_asset":
            self.store.mark_read(user_id, [record.id], now=self.clock())
            symbol = action_data.get("symbol") or record.asset_symbol
            return {"action": name, "navigate": f"/assets/{symbol}", "symbol": symbol}

        elif name == "set_alert":
            symbol = action_data.get("symbol") or record.asset_symbol
            return {"action": name, "navigate": f"/settings/alerts?asset={symbol}", "symbol": symbol}

        elif name == "snooze":
            minutes = int(action_data.get("minutes", DEFAULT_SNOOZE_MINUTES))
            if minutes <= 0:
                raise ValueError(f"Snooze minutes must be positive, got {minutes}")
            until = self.clock() + timedelta(minutes=minutes)
            self.store.snooze(user_id, record.id, until)
            logger.debug(f"Notification {record.id} snoozed until {until}")
            return {"action": name, "snoozedUntil": until.isoformat()}

        elif name == "dismiss":
            self.store.archive(user_id, [record.id])
            return {"action": name, "archived": True}

        raise ValueError(f"Unsupported quick action: {action}")

    # Notification settings

    def get_settings(self, user_id: str) -> NotificationSettings:
        return self.settings_repo.get_or_create(user_id)

    def update_settings(self, user_id: str, changes: dict[str, Any]) -> NotificationSettings:
        """
        Apply a partial settings update.

        ``quiet_hours`` and ``max_per_hour`` are merged into the existing
        values rather than replaced.

        Raises:
            SettingsValidationError: On unknown keys or invalid values
        """
        unknown = set(changes) - _SETTINGS_FIELDS
        if unknown:
            raise SettingsValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        settings = self.settings_repo.get_or_create(user_id)
        updates = dict(changes)

        if "quiet_hours" in updates:
            quiet = updates.pop("quiet_hours") or {}
            if isinstance(quiet, QuietHours):
                settings.quiet_hours = quiet
            else:
                unknown = set(quiet) - _QUIET_HOURS_FIELDS
                if unknown:
                    raise SettingsValidationError(
                        f"Unknown quiet hours settings: {', '.join(sorted(unknown))}"
                    )
                settings.quiet_hours = replace(settings.quiet_hours, **quiet)

        if "max_per_hour" in updates:
            merged = dict(settings.max_per_hour)
            merged.update(updates.pop("max_per_hour") or {})
            settings.max_per_hour = merged

        if "priority_threshold" in updates:
            updates["priority_threshold"] = str(updates["priority_threshold"]).lower()

        for key, value in updates.items():
            setattr(settings, key, value)

        return self.settings_repo.save(settings)

    # Alert rules

    def list_alert_settings(self, user_id: str) -> list[AlertSetting]:
        return self.alert_settings.get_user_settings(user_id)

    def create_alert_setting(self, user_id: str, **values: Any) -> AlertSetting:
        """Create a per-asset (``asset_symbol``) or global rule."""
        self._check_rule_fields(values)
        if values.get("asset_symbol"):
            values["asset_symbol"] = values["asset_symbol"].upper()
        return self.alert_settings.create(AlertSetting(user_id=user_id, **values))

    def update_alert_setting(self, user_id: str, setting_id: int, **changes: Any) -> AlertSetting:
        self._check_rule_fields(changes)
        setting = self._get_own_rule(user_id, setting_id)
        for key, value in changes.items():
            if key == "asset_symbol" and value:
                value = value.upper()
            setattr(setting, key, value)
        self.alert_settings.update(setting)
        return setting

    def delete_alert_setting(self, user_id: str, setting_id: int) -> None:
        self._get_own_rule(user_id, setting_id)
        self.alert_settings.delete(setting_id)

    def _get_own_rule(self, user_id: str, setting_id: int) -> AlertSetting:
        setting = self.alert_settings.get_by_id(setting_id)
        if setting is None or setting.user_id != user_id:
            raise AlertSettingNotFoundError(f"Alert setting not found: {setting_id}")
        return setting

    def _check_rule_fields(self, values: dict[str, Any]) -> None:
        unknown = set(values) - _RULE_FIELDS
        if unknown:
            raise SettingsValidationError(f"Unknown alert setting fields: {', '.join(sorted(unknown))}")

    # Device tokens

    def register_device_token(self, user_id: str, token: str, platform: str = "web") -> DeviceToken:
        if not token:
            raise SettingsValidationError("Device token cannot be empty")
        return self.tokens.register(DeviceToken(user_id=user_id, token=token, platform=platform))

    def unregister_device_token(self, user_id: str, token: str) -> bool:
        """Forget one of the user's tokens; returns False if it was not theirs."""
        owned = {t.token for t in self.tokens.get_user_tokens(user_id)}
        if token not in owned:
            return False
        self.tokens.remove(token)
        return True
