"""
Scanner and scheduler tests.
Tests for anomaly probes and recurring job registration.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from beacon.config import ScheduleConfig
from beacon.data.scanner import AnomalyScanner, HttpFeedProbe
from beacon.notifications.digest import DigestService
from beacon.scheduler import create_scheduler
from beacon.throttle.rate_limit import RateLimitWindow


class TestHttpFeedProbe:
    """Test feed polling."""

    def test_list_payload(self):
        """Should return a bare list as is."""
        with patch("requests.get") as mock_get:
            mock_get.return_value.json.return_value = [{"assetSymbol": "BTC"}]
            signals = HttpFeedProbe("https://feed.test/anomalies", timeout=3)()

        assert signals == [{"assetSymbol": "BTC"}]
        mock_get.assert_called_once_with("https://feed.test/anomalies", timeout=3)

    def test_wrapped_payload(self):
        """Should unwrap a signals envelope."""
        with patch("requests.get") as mock_get:
            mock_get.return_value.json.return_value = {"signals": [{"assetSymbol": "ETH"}]}
            signals = HttpFeedProbe("https://feed.test/anomalies")()

        assert signals == [{"assetSymbol": "ETH"}]

    def test_http_error_raises(self):
        """Should surface HTTP errors to the scanner."""
        with patch("requests.get") as mock_get:
            mock_get.return_value.raise_for_status.side_effect = requests.exceptions.HTTPError("503")
            with pytest.raises(requests.exceptions.HTTPError):
                HttpFeedProbe("https://feed.test/anomalies")()


class TestAnomalyScanner:
    """Test probe execution."""

    def test_forwards_signals(self):
        """Should hand every probe signal to the callback."""
        on_signal = Mock()
        scanner = AnomalyScanner(on_signal)
        scanner.register("volume", lambda: [{"assetSymbol": "BTC"}, {"assetSymbol": "ETH"}])

        assert scanner.scan() == 2
        assert on_signal.call_count == 2

    def test_failing_probe_skipped(self, caplog):
        """Should log a failing probe and still run the others."""
        on_signal = Mock()
        scanner = AnomalyScanner(on_signal)
        scanner.register("broken", Mock(side_effect=ConnectionError("feed down")))
        scanner.register("news", lambda: [{"assetSymbol": "SOL"}])

        with caplog.at_level("ERROR", logger="beacon.data.scanner"):
            forwarded = scanner.scan()

        assert forwarded == 1
        on_signal.assert_called_once_with({"assetSymbol": "SOL"})
        assert "Anomaly probe broken failed" in caplog.text


class TestCreateScheduler:
    """Test job registration."""

    @pytest.fixture
    def digests(self):
        return DigestService(Mock(), Mock(), Mock(), Mock(), Mock())

    def test_all_jobs(self, digests, clock):
        """Should register scan, digest and purge jobs without starting."""
        scheduler = create_scheduler(
            ScheduleConfig(),
            scanner=AnomalyScanner(Mock()),
            digests=digests,
            rate_limiter=RateLimitWindow(clock=clock),
        )

        assert scheduler.running is False
        assert {job.id for job in scheduler.get_jobs()} == {
            "anomaly_scan",
            "digest:hourly",
            "digest:daily",
            "digest:weekly",
            "rate_limit_purge",
        }

    def test_digests_disabled(self, digests):
        """Should leave out digest jobs when disabled."""
        scheduler = create_scheduler(ScheduleConfig(digest_enabled=False), digests=digests)
        assert scheduler.get_jobs() == []

    def test_digest_job_arguments(self, digests):
        """Should pass the period to each digest job."""
        scheduler = create_scheduler(ScheduleConfig(), digests=digests)
        args = {job.id: job.args for job in scheduler.get_jobs()}

        assert args["digest:weekly"] == ("weekly",)
        assert args["digest:hourly"] == ("hourly",)
