"""Background scheduler for anomaly scans, digests and housekeeping."""

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from beacon.config import ScheduleConfig
from beacon.data.scanner import AnomalyScanner
from beacon.notifications.digest import DigestService
from beacon.throttle.rate_limit import RateLimitWindow

logger = logging.getLogger(__name__)

RATE_LIMIT_PURGE_MINUTES = 10


def create_scheduler(
    config: ScheduleConfig,
    scanner: Optional[AnomalyScanner] = None,
    digests: Optional[DigestService] = None,
    rate_limiter: Optional[RateLimitWindow] = None,
) -> BackgroundScheduler:
    """
    Build a scheduler with every recurring job registered but not started.

    Args:
        config: Intervals, digest times and timezone
        scanner: Anomaly scanner to run on an interval
        digests: Digest sender for hourly/daily/weekly emails
        rate_limiter: Window store whose expired keys are purged

    Returns:
        Configured BackgroundScheduler
    """
    scheduler = BackgroundScheduler(daemon=True, timezone=config.timezone)

    if scanner is not None:
        scheduler.add_job(
            scanner.scan,
            "interval",
            minutes=config.anomaly_scan_minutes,
            id="anomaly_scan",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=60 * 5,
            next_run_time=datetime.now(timezone.utc),
        )
        logger.info(f"Scheduled anomaly scan every {config.anomaly_scan_minutes} minutes")

    if digests is not None and config.digest_enabled:
        scheduler.add_job(
            digests.send_digests,
            "cron",
            minute=0,
            args=("hourly",),
            id="digest:hourly",
            replace_existing=True,
            misfire_grace_time=60 * 5,
        )
        scheduler.add_job(
            digests.send_digests,
            "cron",
            hour=config.daily_digest_hour,
            minute=0,
            args=("daily",),
            id="digest:daily",
            replace_existing=True,
            misfire_grace_time=60 * 30,
        )
        scheduler.add_job(
            digests.send_digests,
            "cron",
            day_of_week=config.weekly_digest_day,
            hour=config.daily_digest_hour,
            minute=0,
            args=("weekly",),
            id="digest:weekly",
            replace_existing=True,
            misfire_grace_time=60 * 60,
        )
        logger.info(
            f"Scheduled digests (daily at {config.daily_digest_hour:02d}:00, "
            f"weekly on {config.weekly_digest_day})"
        )

    if rate_limiter is not None:
        scheduler.add_job(
            rate_limiter.purge_expired,
            "interval",
            minutes=RATE_LIMIT_PURGE_MINUTES,
            id="rate_limit_purge",
            replace_existing=True,
        )

    return scheduler


__all__ = ["create_scheduler"]
