"""
Delivery routing across channels.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from time import monotonic
from typing import Callable, Iterable, Optional

from beacon.database.models import (
    AlertSetting,
    NotificationRecord,
    NotificationSettings,
    Priority,
    priority_weight,
)
from beacon.throttle.quiet_hours import QuietHoursEvaluator
from .base import DeliveryChannel, NotificationResult, Recipient

logger = logging.getLogger(__name__)

LIVE_SESSION = "live_session"
PUSH = "push"
EMAIL = "email"


@dataclass
class DeliveryOutcome:
    """Best-effort record of what was delivered; diagnostics only."""

    live_session: bool = False
    push: bool = False
    email: bool = False
    suppressed_reason: Optional[str] = None
    results: dict[str, NotificationResult] = field(default_factory=dict)

    @property
    def delivered(self) -> bool:
        return self.live_session or self.push or self.email


class DeliveryRouter:
    """Dispatches a persisted record to every eligible channel.

    Channels run concurrently and independently. Each attempt is made once;
    a channel that fails, raises or exceeds the timeout is reported as not
    delivered and never retried.
    """

    def __init__(
        self,
        channels: Iterable[DeliveryChannel],
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = datetime.now,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """
        Args:
            channels: Available channels, keyed by their ``name``
            timeout_seconds: Wall-clock deadline for all channels of one record
            clock: Time source for quiet hours
            executor: Pool to run channel sends on; one is created if omitted
        """
        self.channels = {channel.name: channel for channel in channels}
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max(len(self.channels), 1) * 4,
            thread_name_prefix="beacon-delivery",
        )

    def dispatch(
        self,
        record: NotificationRecord,
        settings: NotificationSettings,
        recipient: Optional[Recipient] = None,
        rule: Optional[AlertSetting] = None,
    ) -> DeliveryOutcome:
        """
        Deliver a record subject to the user's preferences.

        Records under quiet hours (unless critical) or below the user's
        priority threshold are not delivered anywhere.

        Args:
            record: Record that has already been persisted
            settings: Recipient's channel settings
            recipient: Recipient details; defaults to the record's user
            rule: Rule that fired, for its push/email toggles and frequency

        Returns:
            DeliveryOutcome with one flag per channel
        """
        recipient = recipient or Recipient(user_id=record.user_id)
        outcome = DeliveryOutcome()

        reason = self._suppression_reason(record, settings)
        if reason:
            outcome.suppressed_reason = reason
            logger.debug(f"Delivery of {record.id} to user {record.user_id} suppressed: {reason}")
            return outcome

        futures: dict[str, Future] = {}
        for name in self._eligible_channels(record, settings, rule):
            channel = self.channels[name]
            futures[name] = self.executor.submit(channel.send, record, recipient, settings)

        deadline = monotonic() + self.timeout_seconds
        for name, future in futures.items():
            result = self._collect(name, future, deadline, record)
            outcome.results[name] = result
            if result.success:
                setattr(outcome, name, True)

        return outcome

    def _suppression_reason(
        self, record: NotificationRecord, settings: NotificationSettings
    ) -> Optional[str]:
        threshold = Priority.parse(settings.priority_threshold)
        if priority_weight(record.priority) < threshold.weight:
            return "priority_threshold"
        if not QuietHoursEvaluator.allows(self.clock(), settings, record.priority):
            return "quiet_hours"
        return None

    def _eligible_channels(
        self,
        record: NotificationRecord,
        settings: NotificationSettings,
        rule: Optional[AlertSetting],
    ) -> list[str]:
        eligible = []

        if LIVE_SESSION in self.channels:
            eligible.append(LIVE_SESSION)

        if PUSH in self.channels and settings.push_enabled:
            if rule is None or rule.push_notifications:
                eligible.append(PUSH)

        if EMAIL in self.channels and settings.email_enabled:
            frequency = rule.alert_frequency if rule else record.data.get("alertFrequency", "immediate")
            # Non-immediate rules are emailed in digests
            if (rule is None or rule.email_notifications) and frequency == "immediate":
                eligible.append(EMAIL)

        return eligible

    def _collect(
        self, name: str, future: Future, deadline: float, record: NotificationRecord
    ) -> NotificationResult:
        try:
            result = future.result(timeout=max(deadline - monotonic(), 0))
        except FutureTimeoutError:
            future.cancel()
            logger.warning(f"Channel {name} timed out delivering {record.id}")
            return NotificationResult(success=False, channel=name, error="timed out")
        except Exception as e:
            logger.error(f"Channel {name} raised while delivering {record.id}: {e}", exc_info=True)
            return NotificationResult(success=False, channel=name, error=str(e))

        if result.skipped:
            logger.debug(f"Channel {name} skipped {record.id}: {result.error}")
        elif not result.success:
            logger.warning(f"Channel {name} failed for {record.id}: {result.error}")
        return result

    def submit_background(self, task: Callable, *args) -> Future:
        """Run a task on the delivery pool without waiting; failures are logged."""
        future = self.executor.submit(task, *args)
        future.add_done_callback(_log_background_failure)
        return future

    def close(self) -> None:
        """Shut down the owned executor without waiting for stragglers."""
        if self._owns_executor:
            self.executor.shutdown(wait=False, cancel_futures=True)


def _log_background_failure(future: Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Background delivery task failed: {error}", exc_info=error)
