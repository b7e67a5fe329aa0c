"""
Main application entry point.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Union

from dotenv import load_dotenv

load_dotenv()

from beacon.config import AppConfig, load_config
from beacon.data.scanner import AnomalyScanner, HttpFeedProbe
from beacon.data.signal import Signal
from beacon.database.connection import Database
from beacon.database.repository import (
    AlertSettingRepository,
    DeviceTokenRepository,
    NotificationSettingsRepository,
    UserRepository,
)
from beacon.database.store import NotificationStore
from beacon.notifications.digest import DigestService
from beacon.notifications.factory import NotificationFactory
from beacon.notifications.grouping import NotificationGroupingEngine
from beacon.notifiers.email import EmailNotifier
from beacon.notifiers.live import LiveSessionNotifier, SessionRegistry
from beacon.notifiers.push import PushNotifier
from beacon.notifiers.router import DeliveryRouter
from beacon.pipeline import SignalNotificationPipeline, SignalReport
from beacon.rules.engine import AlertRuleEvaluator
from beacon.scheduler import create_scheduler
from beacon.service import NotificationService
from beacon.throttle.rate_limit import RateLimitWindow

logger = logging.getLogger(__name__)


class BeaconApp:
    """Wires repositories, pipeline, channels and the user-facing service."""

    def __init__(
        self,
        config: AppConfig,
        db: Database,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize Beacon app.

        Args:
            config: Loaded application configuration
            db: Database instance (already initialized)
            clock: Time source shared by every time-based component
        """
        self.config = config
        self.db = db

        # Initialize repositories
        self.user_repo = UserRepository(db)
        self.alert_settings_repo = AlertSettingRepository(db)
        self.settings_repo = NotificationSettingsRepository(db)
        self.token_repo = DeviceTokenRepository(db)
        self.store = NotificationStore(db)

        # Initialize delivery channels
        self.sessions = SessionRegistry()
        self.email = EmailNotifier(config.delivery.email)
        self.router = DeliveryRouter(
            channels=[
                LiveSessionNotifier(self.sessions, config.delivery.live),
                PushNotifier(config.delivery.push, self.token_repo),
                self.email,
            ],
            timeout_seconds=config.pipeline.channel_timeout_seconds,
            clock=clock,
        )

        # Initialize pipeline
        self.rate_limiter = RateLimitWindow(clock=clock)
        self.pipeline = SignalNotificationPipeline(
            users=self.user_repo,
            settings_repo=self.settings_repo,
            store=self.store,
            evaluator=AlertRuleEvaluator(self.alert_settings_repo, config.defaults),
            factory=NotificationFactory(),
            grouping=NotificationGroupingEngine(
                store=self.store,
                lookback=timedelta(minutes=config.pipeline.grouping_lookback_minutes),
                prefix_tokens=config.pipeline.grouping_prefix_tokens,
                clock=clock,
            ),
            rate_limiter=self.rate_limiter,
            router=self.router,
            sessions=self.sessions,
            max_workers=config.pipeline.max_workers,
            clock=clock,
        )

        # Initialize services
        self.service = NotificationService(
            store=self.store,
            settings_repo=self.settings_repo,
            alert_settings=self.alert_settings_repo,
            tokens=self.token_repo,
            clock=clock,
        )
        self.digests = DigestService(
            users=self.user_repo,
            alert_settings=self.alert_settings_repo,
            settings_repo=self.settings_repo,
            store=self.store,
            email=self.email,
            clock=clock,
        )
        self.scanner = AnomalyScanner(self.on_signal)
        for index, url in enumerate(config.schedule.anomaly_feed_urls):
            self.scanner.register(f"feed-{index}", HttpFeedProbe(url))

    def on_signal(self, signal: Union[Signal, dict[str, Any]]) -> SignalReport:
        """Inbound entry point for feed producers and the anomaly scanner."""
        return self.pipeline.on_signal(signal)

    def close(self) -> None:
        self.router.close()
        self.db.close()


def main():
    """Service entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Beacon Notification Service")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--once", action="store_true", help="Run one anomaly scan and exit"
    )

    args = parser.parse_args()

    # Load config
    config = load_config(args.config)

    # Setup logging
    log_level = logging.DEBUG if args.debug else getattr(logging, config.advanced.log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    # Initialize database
    db = Database(config.database.path)
    db.initialize()

    app = BeaconApp(config=config, db=db)

    if args.once:
        forwarded = app.scanner.scan()
        logger.info(f"Scan complete, {forwarded} signals processed")
        app.close()
        return

    scheduler = create_scheduler(
        config.schedule,
        scanner=app.scanner if app.scanner.probes else None,
        digests=app.digests,
        rate_limiter=app.rate_limiter,
    )
    scheduler.start()
    logger.info("Beacon service running")

    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down")
    finally:
        scheduler.shutdown(wait=False)
        app.close()


if __name__ == "__main__":
    main()
