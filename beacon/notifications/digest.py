"""
Periodic digest emails for non-immediate alert rules.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from beacon.database.models import Priority, priority_weight
from beacon.database.repository import (
    AlertSettingRepository,
    NotificationSettingsRepository,
    UserRepository,
)
from beacon.database.store import NotificationStore
from beacon.notifiers.base import NotificationResult, Recipient
from beacon.notifiers.email import EmailNotifier
from beacon.throttle.quiet_hours import QuietHoursEvaluator

logger = logging.getLogger(__name__)

DIGEST_PERIODS = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}


class DigestService:
    """Emails each user the records their hourly/daily/weekly rules produced."""

    def __init__(
        self,
        users: UserRepository,
        alert_settings: AlertSettingRepository,
        settings_repo: NotificationSettingsRepository,
        store: NotificationStore,
        email: EmailNotifier,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.users = users
        self.alert_settings = alert_settings
        self.settings_repo = settings_repo
        self.store = store
        self.email = email
        self.clock = clock

    def send_digests(self, period: str) -> dict[str, NotificationResult]:
        """
        Send one digest per user with rules of the given frequency.

        Only records produced by rules of that frequency are included.
        Users with email disabled are skipped. Records below the user's
        priority threshold are left out, and during quiet hours only
        critical records are sent.

        Args:
            period: "hourly", "daily" or "weekly"

        Returns:
            Mapping of user id to the result of their digest
        """
        if period not in DIGEST_PERIODS:
            raise ValueError(f"Unknown digest period: {period}")

        if not self.email.is_configured():
            logger.debug(f"Email not configured, skipping {period} digests")
            return {}

        now = self.clock()
        since = now - DIGEST_PERIODS[period]
        results: dict[str, NotificationResult] = {}

        for user_id in self.alert_settings.list_users_with_frequency(period):
            user = self.users.get_by_id(user_id)
            if user is None or not user.email:
                continue
            settings = self.settings_repo.get_or_create(user_id)
            if not settings.email_enabled:
                continue

            threshold = Priority.parse(settings.priority_threshold).weight
            records = [
                record
                for record in self.store.find_since(user_id, since)
                if record.data.get("alertFrequency") == period
                and priority_weight(record.priority) >= threshold
                and QuietHoursEvaluator.allows(now, settings, record.priority)
            ]
            if not records:
                continue

            recipient = Recipient(user_id=user.id, email=user.email, name=user.name)
            result = self.email.send_digest(records, recipient, period)
            if not result.success:
                logger.warning(f"{period.title()} digest for user {user_id} failed: {result.error}")
            results[user_id] = result

        sent = sum(1 for r in results.values() if r.success)
        logger.info(f"Sent {sent} {period} digests")
        return results
