"""
Quiet hours evaluation.
"""

from datetime import datetime, time

from beacon.database.models import NotificationSettings, Priority, QuietHours


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


class QuietHoursEvaluator:
    """Pure checks against a user's quiet-hours window."""

    @staticmethod
    def is_quiet(now: datetime, settings: NotificationSettings) -> bool:
        """
        Check whether ``now`` falls inside the user's quiet hours.

        Times are compared at minute resolution and both ends are
        inclusive. ``start > end`` means the window wraps midnight.

        Args:
            now: Current local time
            settings: User settings holding the window

        Returns:
            True if non-critical delivery should be suppressed
        """
        return QuietHoursEvaluator.in_window(now, settings.quiet_hours)

    @staticmethod
    def in_window(now: datetime, quiet_hours: QuietHours) -> bool:
        if not quiet_hours.enabled:
            return False

        current = time(now.hour, now.minute)
        start = _parse_hhmm(quiet_hours.start)
        end = _parse_hhmm(quiet_hours.end)

        if start <= end:
            return start <= current <= end
        # Window spans midnight
        return current >= start or current <= end

    @staticmethod
    def allows(now: datetime, settings: NotificationSettings, priority: str) -> bool:
        """True if a notification of this priority may be delivered now."""
        if priority == Priority.CRITICAL.value:
            return True
        return not QuietHoursEvaluator.is_quiet(now, settings)
