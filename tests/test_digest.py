"""
Digest tests.
Tests for periodic digest selection and sending.
"""

from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest

from beacon.config import EmailDeliveryConfig
from beacon.database.models import AlertSetting, NotificationRecord, QuietHours, User
from beacon.database.repository import AlertSettingRepository, NotificationSettingsRepository
from beacon.notifications.digest import DigestService
from beacon.notifiers.base import NotificationResult
from beacon.notifiers.email import EmailNotifier


@pytest.fixture
def alert_settings(db):
    return AlertSettingRepository(db)


@pytest.fixture
def settings_repo(db):
    return NotificationSettingsRepository(db)


@pytest.fixture
def email():
    notifier = Mock(spec=EmailNotifier)
    notifier.is_configured.return_value = True
    notifier.send_digest.return_value = NotificationResult(success=True, channel="email")
    return notifier


@pytest.fixture
def digests(user_repo, alert_settings, settings_repo, store, email, clock):
    return DigestService(user_repo, alert_settings, settings_repo, store, email, clock=clock)


def daily_user(user_repo, alert_settings, settings_repo, user_id="alice", email="alice@example.com"):
    user_repo.create(User(id=user_id, email=email))
    alert_settings.create(AlertSetting(user_id=user_id, alert_frequency="daily", email_notifications=True))
    settings = settings_repo.get_or_create(user_id)
    settings.email_enabled = True
    settings_repo.save(settings)


def add_record(store, record_id, frequency, sent_at, user_id="alice", priority="medium"):
    store.create(
        NotificationRecord(
            id=record_id,
            user_id=user_id,
            title="BTC sentiment shift (Strong)",
            message="",
            type="signal",
            priority=priority,
            data={"alertFrequency": frequency},
            sent_at=sent_at,
        )
    )


class TestDigestService:
    """Test digest selection."""

    def test_sends_records_of_matching_frequency(
        self, digests, email, store, user_repo, alert_settings, settings_repo, clock
    ):
        """Should include only records produced by daily rules within the day."""
        daily_user(user_repo, alert_settings, settings_repo)
        add_record(store, "d1", "daily", clock() - timedelta(hours=3))
        add_record(store, "d2", "daily", clock() - timedelta(hours=30))
        add_record(store, "i1", "immediate", clock() - timedelta(hours=1))

        results = digests.send_digests("daily")

        assert results["alice"].success is True
        records, recipient, period = email.send_digest.call_args[0]
        assert [r.id for r in records] == ["d1"]
        assert recipient.email == "alice@example.com"
        assert period == "daily"

    def test_skips_users_without_records(self, digests, email, user_repo, alert_settings, settings_repo):
        """Should not email users with nothing to report."""
        daily_user(user_repo, alert_settings, settings_repo)

        assert digests.send_digests("daily") == {}
        email.send_digest.assert_not_called()

    def test_skips_email_disabled(self, digests, email, store, user_repo, alert_settings, settings_repo, clock):
        """Should respect the user's email toggle."""
        daily_user(user_repo, alert_settings, settings_repo)
        settings = settings_repo.get_or_create("alice")
        settings.email_enabled = False
        settings_repo.save(settings)
        add_record(store, "d1", "daily", clock())

        assert digests.send_digests("daily") == {}

    def test_skips_users_without_address(self, digests, store, user_repo, alert_settings, settings_repo, clock):
        """Should skip users with no email address."""
        daily_user(user_repo, alert_settings, settings_repo, email=None)
        add_record(store, "d1", "daily", clock())

        assert digests.send_digests("daily") == {}

    def test_unconfigured_email(self, digests, email):
        """Should do nothing when email is not configured."""
        email.is_configured.return_value = False
        assert digests.send_digests("weekly") == {}

    def test_unknown_period(self, digests):
        """Should reject unknown periods."""
        with pytest.raises(ValueError):
            digests.send_digests("monthly")

    def test_failure_logged(self, digests, email, store, user_repo, alert_settings, settings_repo, clock, caplog):
        """Should log failed digests and keep the result."""
        daily_user(user_repo, alert_settings, settings_repo)
        add_record(store, "d1", "daily", clock())
        email.send_digest.return_value = NotificationResult(success=False, channel="email", error="SMTP error")

        with caplog.at_level("WARNING", logger="beacon.notifications.digest"):
            results = digests.send_digests("daily")

        assert results["alice"].success is False
        assert "Daily digest for user alice failed" in caplog.text

    def test_quiet_hours_hold_digest(self, digests, email, store, user_repo, alert_settings, settings_repo, clock):
        """Should not email a digest of non-critical records during quiet hours."""
        daily_user(user_repo, alert_settings, settings_repo)
        settings = settings_repo.get_or_create("alice")
        settings.quiet_hours = QuietHours(enabled=True, start="22:00", end="08:00")
        settings_repo.save(settings)
        clock.now = datetime(2024, 3, 1, 23, 0)
        add_record(store, "d1", "daily", datetime(2024, 3, 1, 22, 30))

        assert digests.send_digests("daily") == {}
        email.send_digest.assert_not_called()

    def test_quiet_hours_keep_critical(self, digests, email, store, user_repo, alert_settings, settings_repo, clock):
        """Should still send critical records during quiet hours."""
        daily_user(user_repo, alert_settings, settings_repo)
        settings = settings_repo.get_or_create("alice")
        settings.quiet_hours = QuietHours(enabled=True, start="22:00", end="08:00")
        settings_repo.save(settings)
        clock.now = datetime(2024, 3, 1, 23, 0)
        add_record(store, "d1", "daily", datetime(2024, 3, 1, 22, 30))
        add_record(store, "d2", "daily", datetime(2024, 3, 1, 22, 45), priority="critical")

        digests.send_digests("daily")

        records = email.send_digest.call_args[0][0]
        assert [r.id for r in records] == ["d2"]

    def test_priority_threshold(self, digests, email, store, user_repo, alert_settings, settings_repo, clock):
        """Should leave out records below the user's priority threshold."""
        daily_user(user_repo, alert_settings, settings_repo)
        settings = settings_repo.get_or_create("alice")
        settings.priority_threshold = "high"
        settings_repo.save(settings)
        add_record(store, "d1", "daily", clock() - timedelta(hours=2))
        add_record(store, "d2", "daily", clock() - timedelta(hours=1), priority="high")

        digests.send_digests("daily")

        records = email.send_digest.call_args[0][0]
        assert [r.id for r in records] == ["d2"]

    def test_threshold_drops_every_record(self, digests, email, store, user_repo, alert_settings, settings_repo, clock):
        """Should skip the user when nothing clears the threshold."""
        daily_user(user_repo, alert_settings, settings_repo)
        settings = settings_repo.get_or_create("alice")
        settings.priority_threshold = "critical"
        settings_repo.save(settings)
        add_record(store, "d1", "daily", clock())

        assert digests.send_digests("daily") == {}


class TestDigestEmail:
    """Test the digest with the real email notifier."""

    def test_subject(self, user_repo, alert_settings, settings_repo, store, clock):
        """Should send one SMTP message with the digest subject."""
        daily_user(user_repo, alert_settings, settings_repo)
        add_record(store, "d1", "daily", clock() - timedelta(hours=1))
        add_record(store, "d2", "daily", clock())
        notifier = EmailNotifier(EmailDeliveryConfig(smtp_host="smtp.test", from_address="beacon@test"))
        digests = DigestService(user_repo, alert_settings, settings_repo, store, notifier, clock=clock)

        with patch("smtplib.SMTP") as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value
            results = digests.send_digests("daily")

        assert results["alice"].success is True
        message = server.send_message.call_args[0][0]
        assert message["Subject"] == "Your daily alerts digest - 2 notifications"
        assert message["To"] == "alice@example.com"
