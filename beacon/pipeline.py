"""
Signal to notification pipeline.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Union

from beacon.data.signal import Signal, SignalValidationError
from beacon.database.models import NotificationRecord, User
from beacon.database.repository import NotificationSettingsRepository, UserRepository
from beacon.database.store import NotificationStore, StoreError
from beacon.notifications.factory import NotificationFactory
from beacon.notifications.grouping import NotificationGroupingEngine
from beacon.notifiers.base import Recipient
from beacon.notifiers.live import SessionRegistry
from beacon.notifiers.router import DeliveryOutcome, DeliveryRouter
from beacon.rules.engine import AlertRuleEvaluator
from beacon.throttle.rate_limit import RateLimitWindow

logger = logging.getLogger(__name__)


@dataclass
class UserResult:
    """What happened for one user while processing one signal."""

    user_id: str
    records: list[NotificationRecord] = field(default_factory=list)
    deliveries: dict[str, DeliveryOutcome] = field(default_factory=dict)
    rate_limited: int = 0
    failed: bool = False


@dataclass
class SignalReport:
    """Summary of one ``on_signal`` call."""

    signal: Optional[Signal] = None
    records: list[NotificationRecord] = field(default_factory=list)
    deliveries: dict[str, DeliveryOutcome] = field(default_factory=dict)
    rate_limited: int = 0
    failed_users: list[str] = field(default_factory=list)
    users_processed: int = 0
    rejected: bool = False
    error: Optional[str] = None

    def add(self, result: UserResult) -> None:
        self.users_processed += 1
        self.records.extend(result.records)
        self.deliveries.update(result.deliveries)
        self.rate_limited += result.rate_limited
        if result.failed:
            self.failed_users.append(result.user_id)


class SignalNotificationPipeline:
    """Runs every incoming signal through evaluation, grouping, throttling,
    persistence and delivery for each subscribed user.

    Users are processed concurrently on a bounded pool. Within one user the
    steps run strictly in order and a record is persisted before any
    channel sees it.
    """

    def __init__(
        self,
        users: UserRepository,
        settings_repo: NotificationSettingsRepository,
        store: NotificationStore,
        evaluator: AlertRuleEvaluator,
        factory: NotificationFactory,
        grouping: NotificationGroupingEngine,
        rate_limiter: RateLimitWindow,
        router: DeliveryRouter,
        sessions: Optional[SessionRegistry] = None,
        max_workers: int = 4,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.users = users
        self.settings_repo = settings_repo
        self.store = store
        self.evaluator = evaluator
        self.factory = factory
        self.grouping = grouping
        self.rate_limiter = rate_limiter
        self.router = router
        self.sessions = sessions
        self.max_workers = max_workers
        self.clock = clock

    def on_signal(self, signal: Union[Signal, dict[str, Any]]) -> SignalReport:
        """
        Process one signal for every user following its asset.

        Malformed payloads are logged and rejected without raising. A store
        failure abandons only the affected user. The live signal broadcast runs
        on the delivery pool and is not awaited.

        Args:
            signal: Signal or its wire dictionary

        Returns:
            SignalReport describing records created and users affected
        """
        if not isinstance(signal, Signal):
            try:
                signal = Signal.from_dict(signal)
            except SignalValidationError as e:
                logger.warning(f"Rejected malformed signal: {e}")
                return SignalReport(rejected=True, error=str(e))

        report = SignalReport(signal=signal)

        if self.sessions is not None:
            self.router.submit_background(self.sessions.broadcast_signal, signal)

        subscribers = self.users.list_subscribers(signal.asset_symbol)
        if not subscribers:
            logger.debug(f"No subscribers for {signal.asset_symbol}")
            return report

        logger.info(
            f"Processing {signal.kind.value} signal for {signal.asset_symbol} "
            f"({len(subscribers)} subscribers)"
        )

        if len(subscribers) == 1 or self.max_workers <= 1:
            for user in subscribers:
                report.add(self._run_user(user, signal))
        else:
            workers = min(self.max_workers, len(subscribers))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="beacon-user") as pool:
                futures = [pool.submit(self._run_user, user, signal) for user in subscribers]
                for future in futures:
                    report.add(future.result())

        if report.records:
            logger.info(
                f"Signal {signal.asset_symbol}/{signal.kind.value}: "
                f"{len(report.records)} notifications, {report.rate_limited} rate limited"
            )
        return report

    def _run_user(self, user: User, signal: Signal) -> UserResult:
        """Process one user; never raises so other users are unaffected."""
        result = UserResult(user_id=user.id)
        try:
            self.process_user(user, signal, result)
        except StoreError as e:
            logger.error(
                f"Store failure for user {user.id}, abandoning signal {signal.asset_symbol}: {e}",
                exc_info=True,
            )
            result.failed = True
        except Exception as e:
            logger.error(f"Unexpected error processing user {user.id}: {e}", exc_info=True)
            result.failed = True
        return result

    def process_user(
        self, user: User, signal: Signal, result: Optional[UserResult] = None
    ) -> UserResult:
        """
        Evaluate, build, group, throttle, persist and deliver for one user.

        Raises:
            StoreError: If a record cannot be persisted
        """
        result = result or UserResult(user_id=user.id)

        fired = self.evaluator.evaluate(user.id, signal)
        if not fired:
            return result

        settings = self.settings_repo.get_or_create(user.id)
        recipient = Recipient(user_id=user.id, email=user.email, name=user.name)

        for rule in fired:
            record = self.factory.build(user.id, signal, rule)
            record.group_id = self.grouping.assign_group(
                record, grouping_enabled=settings.grouping_enabled
            )

            if not self.rate_limiter.try_consume(user.id, record.type, settings.limit_for(record.type)):
                result.rate_limited += 1
                continue

            record.sent_at = self.clock()
            try:
                self.store.create(record)
            except StoreError:
                self.rate_limiter.refund(user.id, record.type)
                raise
            result.records.append(record)

            result.deliveries[record.id] = self.router.dispatch(record, settings, recipient, rule)

        return result
