"""
Base delivery channel classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from beacon.database.models import NotificationRecord, NotificationSettings


@dataclass
class NotificationResult:
    """Result of a delivery attempt."""

    success: bool
    channel: str
    error: Optional[str] = None
    skipped: bool = False

    @classmethod
    def skip(cls, channel: str, reason: str) -> "NotificationResult":
        return cls(success=False, channel=channel, error=reason, skipped=True)


@dataclass
class Recipient:
    """Who a record is delivered to."""

    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None


class DeliveryChannel(ABC):
    """Abstract base class for delivery channels."""

    name: str = "channel"

    @abstractmethod
    def send(
        self,
        record: NotificationRecord,
        recipient: Recipient,
        settings: NotificationSettings,
    ) -> NotificationResult:
        """
        Deliver a single record.

        Implementations never raise: failures and skips come back as a
        NotificationResult.

        Args:
            record: Persisted record to deliver
            recipient: Target user
            settings: Target user's channel settings

        Returns:
            NotificationResult indicating success, failure or skip
        """
        pass

