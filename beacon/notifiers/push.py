"""
Push gateway notifier.
"""

import logging
from typing import Any, Optional

import requests

from beacon.config import PushDeliveryConfig
from beacon.database.models import NotificationRecord, NotificationSettings, Priority
from beacon.database.repository import DeviceTokenRepository
from .base import DeliveryChannel, NotificationResult, Recipient

logger = logging.getLogger(__name__)

# Gateway error codes that mean the token will never work again
INVALID_TOKEN_ERRORS = {"unregistered", "invalid_token", "not_registered"}


class PushNotifier(DeliveryChannel):
    """Sends records to registered devices through an HTTP push gateway."""

    name = "push"

    def __init__(self, config: PushDeliveryConfig, tokens: DeviceTokenRepository):
        """
        Initialize push notifier.

        Args:
            config: Gateway URL, credentials and platform hints
            tokens: Device token registry
        """
        self.config = config
        self.tokens = tokens

    def is_configured(self) -> bool:
        return bool(self.config.gateway_url)

    def send(
        self,
        record: NotificationRecord,
        recipient: Recipient,
        settings: NotificationSettings,
    ) -> NotificationResult:
        """Send record to every device of the recipient. No retry on failure."""
        if not self.is_configured():
            return NotificationResult.skip(self.name, "push gateway not configured")

        device_tokens = [t.token for t in self.tokens.get_user_tokens(recipient.user_id)]
        if not device_tokens:
            return NotificationResult.skip(self.name, "no registered device")

        try:
            payload = self._create_payload(record, settings, device_tokens)
            response = requests.post(
                self.config.gateway_url,
                json=payload,
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )

            if not response.ok:
                return NotificationResult(
                    success=False,
                    channel=self.name,
                    error=f"HTTP {response.status_code}: {response.text}",
                )

            delivered = self._handle_results(response, device_tokens)
            if delivered == 0:
                return NotificationResult(
                    success=False, channel=self.name, error="no device accepted the message"
                )
            return NotificationResult(success=True, channel=self.name)

        except requests.exceptions.Timeout as e:
            return NotificationResult(
                success=False,
                channel=self.name,
                error=f"Timeout: {str(e)}",
            )
        except requests.exceptions.ConnectionError as e:
            return NotificationResult(
                success=False,
                channel=self.name,
                error=f"Connection error: {str(e)}",
            )
        except Exception as e:
            return NotificationResult(
                success=False,
                channel=self.name,
                error=str(e),
            )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _handle_results(self, response: requests.Response, device_tokens: list[str]) -> int:
        """
        Prune tokens the gateway rejected as invalid.

        Returns:
            Number of devices that accepted the message
        """
        try:
            body = response.json()
        except ValueError:
            body = None
        results = body.get("results") if isinstance(body, dict) else None
        if not results:
            # Gateway gave no per-device breakdown
            return len(device_tokens)

        delivered = 0
        for result in results:
            error = result.get("error")
            if not error:
                delivered += 1
                continue
            token = result.get("token")
            if token and str(error).lower() in INVALID_TOKEN_ERRORS:
                logger.info(f"Removing invalid device token ({error})")
                self.tokens.remove(token)
            else:
                logger.warning(f"Push to device failed: {error}")
        return delivered

    def _create_payload(
        self,
        record: NotificationRecord,
        settings: NotificationSettings,
        device_tokens: list[str],
    ) -> dict[str, Any]:
        """Create push gateway payload."""
        signal = record.data.get("signal") or {}
        sound: Optional[str] = "default" if settings.sound_enabled else None

        payload: dict[str, Any] = {
            "tokens": device_tokens,
            "notification": {
                "title": record.title,
                "body": record.message,
            },
            # Gateway data values must be strings
            "data": {
                "notificationId": str(record.id),
                "type": str(record.type),
                "priority": str(record.priority),
                "assetSymbol": str(record.asset_symbol or ""),
                "signalId": str(signal.get("id") or ""),
            },
            "android": {
                "channelId": self.config.android_channel_id,
                "priority": "high" if record.priority == Priority.CRITICAL.value else "normal",
                "sound": sound,
            },
            "apns": {
                "badge": 1,
                "category": record.type,
                "sound": sound,
            },
        }

        if self.config.icon:
            payload["notification"]["icon"] = self.config.icon

        return payload
