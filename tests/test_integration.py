"""
Integration tests.
End-to-end tests for the complete notification flow through the wired app.
"""

from datetime import datetime
from unittest.mock import MagicMock, Mock, patch

import pytest

from beacon.config import build_config
from beacon.database.models import DeviceToken, User
from beacon.main import BeaconApp
from conftest import FakeClock


class TestFullNotificationFlow:
    """Test a signal travelling through every real channel."""

    @pytest.fixture
    def app(self, db):
        config = build_config(
            {
                "delivery": {
                    "push": {"gateway_url": "https://push.test/send", "api_key": "key"},
                    "email": {"smtp_host": "smtp.test", "from_address": "beacon@test"},
                },
            }
        )
        app = BeaconApp(config=config, db=db, clock=FakeClock(datetime(2024, 3, 1, 12, 0)))
        yield app
        app.router.close()

    @pytest.fixture
    def setup_data(self, app):
        """Alice follows BTC, has a device, a live session and email on."""
        app.user_repo.create(User(id="alice", email="alice@example.com", name="Alice"))
        app.user_repo.follow_asset("alice", "BTC")
        app.token_repo.register(DeviceToken(user_id="alice", token="device-1", platform="ios"))
        app.service.create_alert_setting(
            "alice", asset_symbol="BTC", price_change_threshold=5.0, email_notifications=True
        )
        app.service.update_settings("alice", {"email_enabled": True})

        emit = Mock()
        app.sessions.connect("conn-1", "alice", emit)
        return emit

    def test_signal_to_all_channels(self, app, setup_data):
        """Should persist the record and deliver live, push and email."""
        emit = setup_data

        with patch("requests.post") as mock_post, patch("smtplib.SMTP") as mock_smtp:
            mock_post.return_value.ok = True
            mock_post.return_value.json.return_value = {}
            server = MagicMock()
            mock_smtp.return_value.__enter__.return_value = server

            report = app.on_signal(
                {
                    "assetSymbol": "BTC",
                    "kind": "price",
                    "strength": 72,
                    "sources": [{"priceChange": 6.2, "currentPrice": 65000, "previousPrice": 61200}],
                }
            )

        assert len(report.records) == 1
        record = report.records[0]
        outcome = report.deliveries[record.id]
        assert outcome.live_session and outcome.push and outcome.email

        event, payload = emit.call_args[0]
        assert event == "notification"
        assert payload["title"] == "BTC price increase alert"

        push_payload = mock_post.call_args[1]["json"]
        assert push_payload["tokens"] == ["device-1"]
        assert push_payload["notification"]["title"] == "BTC price increase alert"

        message = server.send_message.call_args[0][0]
        assert message["Subject"] == "[Alert] BTC price increase alert"

        assert app.service.unread_count("alice") == 1

    def test_push_outage_keeps_other_channels(self, app, setup_data):
        """Should deliver live and email while the push gateway is down."""
        with patch("requests.post", return_value=MagicMock(ok=False, status_code=503, text="down")), \
                patch("smtplib.SMTP"):
            report = app.on_signal(
                {"assetSymbol": "BTC", "kind": "price", "strength": 60, "sources": [{"priceChange": -7.5}]}
            )

        outcome = report.deliveries[report.records[0].id]
        assert outcome.push is False
        assert outcome.results["push"].error.startswith("HTTP 503")
        assert outcome.live_session is True
        assert outcome.email is True

    def test_scanner_feeds_pipeline(self, app, setup_data):
        """Should process signals returned by anomaly probes."""
        app.scanner.register("test", lambda: [{"assetSymbol": "BTC", "kind": "volume", "strength": 82}])

        with patch("requests.post") as mock_post, patch("smtplib.SMTP"):
            mock_post.return_value.ok = True
            mock_post.return_value.json.return_value = {}
            forwarded = app.scanner.scan()

        assert forwarded == 1
        page = app.service.list_notifications("alice")
        assert page.records[0].title == "BTC volume spike (Strong)"
        assert page.records[0].priority == "high"
