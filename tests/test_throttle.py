"""
Throttle tests.
Tests for hourly rate limits and quiet hours.
"""

import threading
from datetime import datetime

import pytest

from beacon.database.models import NotificationSettings, QuietHours
from beacon.throttle.quiet_hours import QuietHoursEvaluator
from beacon.throttle.rate_limit import RateLimitWindow


class TestRateLimitWindow:
    """Test fixed one-hour windows."""

    def test_hard_cap(self, clock):
        """Should reject the attempt after the cap within one window."""
        limiter = RateLimitWindow(clock=clock)

        results = [limiter.try_consume("u1", "price_alert", 3) for _ in range(4)]

        assert results == [True, True, True, False]

    def test_next_window_allows(self, clock):
        """Should allow again once the window has rolled over."""
        limiter = RateLimitWindow(clock=clock)
        for _ in range(3):
            limiter.try_consume("u1", "price_alert", 3)

        clock.advance(minutes=59)
        assert limiter.try_consume("u1", "price_alert", 3) is False

        clock.advance(minutes=1)
        assert limiter.try_consume("u1", "price_alert", 3) is True

    def test_keys_are_independent(self, clock):
        """Should count users and types separately."""
        limiter = RateLimitWindow(clock=clock)
        assert limiter.try_consume("u1", "news", 1) is True
        assert limiter.try_consume("u1", "news", 1) is False
        assert limiter.try_consume("u1", "signal", 1) is True
        assert limiter.try_consume("u2", "news", 1) is True

    def test_zero_cap_rejects(self, clock):
        """Should reject everything when the cap is zero."""
        limiter = RateLimitWindow(clock=clock)
        assert limiter.try_consume("u1", "news", 0) is False

    def test_rejection_is_logged(self, clock, caplog):
        """Should log rejections at INFO."""
        limiter = RateLimitWindow(clock=clock)
        limiter.try_consume("u1", "news", 1)

        with caplog.at_level("INFO", logger="beacon.throttle.rate_limit"):
            limiter.try_consume("u1", "news", 1)

        assert "Rate limit reached for user u1" in caplog.text

    def test_remaining_and_state(self, clock):
        """Should report remaining quota without consuming it."""
        limiter = RateLimitWindow(clock=clock)
        assert limiter.remaining("u1", "news", 5) == 5
        limiter.try_consume("u1", "news", 5)
        assert limiter.remaining("u1", "news", 5) == 4
        state = limiter.get_state("u1", "news")
        assert state.count == 1

    def test_refund(self, clock):
        """Should return a unit to the current window but never below zero."""
        limiter = RateLimitWindow(clock=clock)
        limiter.try_consume("u1", "news", 1)
        assert limiter.try_consume("u1", "news", 1) is False

        limiter.refund("u1", "news")
        assert limiter.try_consume("u1", "news", 1) is True

        limiter.refund("u1", "news")
        limiter.refund("u1", "news")
        assert limiter.get_state("u1", "news").count == 0

    def test_refund_after_rollover_ignored(self, clock):
        """Should not touch a window that has already expired."""
        limiter = RateLimitWindow(clock=clock)
        limiter.try_consume("u1", "news", 5)
        clock.advance(hours=2)

        limiter.refund("u1", "news")
        assert limiter.get_state("u1", "news").count == 1

    def test_purge_expired(self, clock):
        """Should drop rolled-over windows."""
        limiter = RateLimitWindow(clock=clock)
        limiter.try_consume("u1", "news", 5)
        clock.advance(hours=2)

        assert limiter.purge_expired() == 1
        assert limiter.get_state("u1", "news") is None

    def test_atomic_under_concurrency(self, clock):
        """Should never allow more than the cap across threads."""
        limiter = RateLimitWindow(clock=clock)
        allowed = []

        def attempt():
            for _ in range(50):
                allowed.append(limiter.try_consume("u1", "signal", 25))

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(allowed) == 25


class TestQuietHours:
    """Test quiet-hours evaluation."""

    @pytest.fixture
    def overnight(self):
        return NotificationSettings(user_id="u1", quiet_hours=QuietHours(True, "22:00", "08:00"))

    @pytest.mark.parametrize(
        "hour,minute,expected",
        [(23, 0, True), (22, 0, True), (3, 15, True), (8, 0, True), (8, 1, False), (12, 0, False), (21, 59, False)],
    )
    def test_overnight_window(self, overnight, hour, minute, expected):
        """Should wrap midnight with inclusive ends."""
        now = datetime(2024, 3, 1, hour, minute)
        assert QuietHoursEvaluator.is_quiet(now, overnight) is expected

    def test_same_day_window(self):
        """Should handle windows that do not wrap."""
        settings = NotificationSettings(user_id="u1", quiet_hours=QuietHours(True, "12:00", "14:00"))
        assert QuietHoursEvaluator.is_quiet(datetime(2024, 3, 1, 13, 0), settings) is True
        assert QuietHoursEvaluator.is_quiet(datetime(2024, 3, 1, 15, 0), settings) is False

    def test_disabled(self, overnight):
        """Should never be quiet when disabled."""
        overnight.quiet_hours.enabled = False
        assert QuietHoursEvaluator.is_quiet(datetime(2024, 3, 1, 23, 0), overnight) is False

    def test_critical_bypasses(self, overnight):
        """Should let critical notifications through."""
        now = datetime(2024, 3, 1, 23, 0)
        assert QuietHoursEvaluator.allows(now, overnight, "critical") is True
        assert QuietHoursEvaluator.allows(now, overnight, "high") is False
        assert QuietHoursEvaluator.allows(now, overnight, "medium") is False
