"""
Builds notification records from fired signals.
"""

import uuid
from typing import Callable, Optional

from beacon.data.signal import Signal, SignalKind
from beacon.database.models import (
    AlertSetting,
    NotificationRecord,
    Priority,
    QuickAction,
    NEWS_ALERT,
    PRICE_ALERT,
    SIGNAL_ALERT,
    VOLUME_ALERT,
)

NOTIFICATION_TYPE_BY_KIND = {
    SignalKind.PRICE: PRICE_ALERT,
    SignalKind.SENTIMENT: SIGNAL_ALERT,
    SignalKind.NARRATIVE: SIGNAL_ALERT,
    SignalKind.VOLUME: VOLUME_ALERT,
    SignalKind.NEWS: NEWS_ALERT,
}

# Strength-based kinds escalate on absolute strength
CRITICAL_STRENGTH = 90
HIGH_STRENGTH = 80
LOW_NEWS_STRENGTH = 50

# Price escalates on multiples of the rule threshold
CRITICAL_PRICE_MULTIPLE = 3.0
HIGH_PRICE_MULTIPLE = 2.0

DEFAULT_SNOOZE_MINUTES = 30


def strength_level(strength: float) -> str:
    """Human label for a 0-100 signal strength."""
    if strength >= 85:
        return "Very Strong"
    if strength >= 70:
        return "Strong"
    if strength >= 50:
        return "Medium"
    if strength >= 30:
        return "Weak"
    return "Very Weak"


def notification_type_for(signal: Signal) -> str:
    """Notification type (and rate-limit key) for a signal kind."""
    return NOTIFICATION_TYPE_BY_KIND[signal.kind]


def priority_for(signal: Signal, rule: AlertSetting) -> Priority:
    """
    Deterministic priority tiering.

    Price signals: ``|change| >= 3x`` the rule threshold is critical,
    ``>= 2x`` is high, anything else medium. Other kinds: strength >= 90
    is critical, >= 80 high, otherwise medium, except news below 50
    which is low.
    """
    if signal.kind == SignalKind.PRICE:
        change = abs(signal.price_change or 0.0)
        threshold = rule.price_change_threshold
        if threshold > 0 and change >= CRITICAL_PRICE_MULTIPLE * threshold:
            return Priority.CRITICAL
        if threshold > 0 and change >= HIGH_PRICE_MULTIPLE * threshold:
            return Priority.HIGH
        return Priority.MEDIUM

    if signal.strength >= CRITICAL_STRENGTH:
        return Priority.CRITICAL
    if signal.strength >= HIGH_STRENGTH:
        return Priority.HIGH
    if signal.kind == SignalKind.NEWS and signal.strength < LOW_NEWS_STRENGTH:
        return Priority.LOW
    return Priority.MEDIUM


class NotificationFactory:
    """Builds unsent NotificationRecords; has no side effects."""

    def __init__(self, id_factory: Optional[Callable[[], str]] = None):
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def build(self, user_id: str, signal: Signal, rule: AlertSetting) -> NotificationRecord:
        """
        Build a record for a rule that fired.

        Args:
            user_id: Recipient
            signal: Signal that fired
            rule: Rule that matched

        Returns:
            NotificationRecord without sent_at or group_id
        """
        title, message = self._render(signal)
        threshold = (
            rule.price_change_threshold
            if signal.kind == SignalKind.PRICE
            else rule.sentiment_threshold
        )

        return NotificationRecord(
            id=self.id_factory(),
            user_id=user_id,
            title=title,
            message=message,
            type=notification_type_for(signal),
            priority=priority_for(signal, rule).value,
            asset_symbol=signal.asset_symbol,
            data={
                "signal": signal.to_dict(),
                "triggerThreshold": threshold,
                "ruleId": rule.id,
                "alertFrequency": rule.alert_frequency,
            },
            quick_actions=self._quick_actions(signal),
        )

    def _render(self, signal: Signal) -> tuple[str, str]:
        """Title and message for a signal kind."""
        asset = signal.asset_symbol
        level = strength_level(signal.strength)
        kind = signal.kind

        if kind == SignalKind.PRICE:
            direction = "increase" if signal.direction == "up" else "decrease"
            title = f"{asset} price {direction} alert"
            return title, signal.description or self._price_message(signal)

        elif kind == SignalKind.SENTIMENT:
            title = f"{asset} sentiment shift ({level})"
        elif kind == SignalKind.NARRATIVE:
            title = f"{asset} narrative change ({level})"
        elif kind == SignalKind.VOLUME:
            title = f"{asset} volume spike ({level})"
        else:
            title = f"{asset} news update ({level})"

        message = signal.description or (
            f"{asset} {kind.value} signal with strength {signal.strength}/100"
        )
        return title, message

    def _price_message(self, signal: Signal) -> str:
        source = signal.price_source
        change = source.price_change if source else 0.0
        verb = "rose" if change >= 0 else "fell"
        message = f"{signal.asset_symbol} {verb} {abs(change):.2f}%"
        if source and source.current_price is not None:
            message += f" to ${source.current_price:,.2f}"
        if source and source.previous_price is not None:
            message += f" (from ${source.previous_price:,.2f})"
        return message

    def _quick_actions(self, signal: Signal) -> list[QuickAction]:
        symbol = signal.asset_symbol
        return [
            QuickAction(id="view", label=f"View {symbol}", action="view_asset", data={"symbol": symbol}),
            QuickAction(id="alert", label="Adjust alert", action="set_alert", data={"symbol": symbol}),
            QuickAction(
                id="snooze",
                label=f"Snooze {DEFAULT_SNOOZE_MINUTES}m",
                action="snooze",
                data={"minutes": DEFAULT_SNOOZE_MINUTES},
            ),
            QuickAction(id="dismiss", label="Dismiss", action="dismiss"),
        ]
