"""
Alert rule evaluation.
"""

import logging
from typing import Optional

from beacon.config import DefaultRuleConfig
from beacon.data.signal import Signal, SignalKind
from beacon.database.models import AlertSetting
from beacon.database.repository import AlertSettingRepository

logger = logging.getLogger(__name__)

__all__ = ["AlertRuleEvaluator", "default_rule"]


def default_rule(user_id: str, defaults: Optional[DefaultRuleConfig] = None) -> AlertSetting:
    """
    Built-in rule applied when a user has configured nothing.

    Every signal kind is enabled; thresholds come from ``defaults``
    (sentiment 20, price change 5.0% unless configured). Push on, email off.
    """
    defaults = defaults or DefaultRuleConfig()
    return AlertSetting(
        user_id=user_id,
        asset_symbol=None,
        sentiment_threshold=defaults.sentiment_threshold,
        price_change_threshold=defaults.price_change_threshold,
        alert_frequency="immediate",
        email_notifications=False,
        push_notifications=True,
        is_builtin=True,
    )


class AlertRuleEvaluator:
    """Decides, per user and signal, which rules fire."""

    def __init__(
        self,
        settings_repo: Optional[AlertSettingRepository] = None,
        defaults: Optional[DefaultRuleConfig] = None,
    ):
        """
        Args:
            settings_repo: Source of stored rules (needed only for resolve_rules)
            defaults: Thresholds for the built-in fallback rule
        """
        self.settings_repo = settings_repo
        self.defaults = defaults or DefaultRuleConfig()

    def should_fire(self, signal: Signal, rule: AlertSetting) -> bool:
        """
        Decide whether a single rule fires for a signal.

        Args:
            signal: Incoming signal
            rule: Rule to test

        Returns:
            True if the rule's enable flag is set and the threshold is met
        """
        kind = signal.kind

        if kind == SignalKind.SENTIMENT:
            return rule.enable_sentiment_alerts and signal.strength >= rule.sentiment_threshold

        elif kind == SignalKind.NARRATIVE:
            return rule.enable_narrative_alerts and signal.strength >= rule.sentiment_threshold

        elif kind == SignalKind.PRICE:
            if not rule.enable_price_alerts:
                return False
            change = signal.price_change
            if change is None:
                return False
            return abs(change) >= rule.price_change_threshold

        elif kind == SignalKind.VOLUME:
            return rule.enable_volume_alerts and signal.strength >= rule.sentiment_threshold

        elif kind == SignalKind.NEWS:
            return rule.enable_news_alerts and signal.strength >= rule.sentiment_threshold

        return False

    def resolve_rules(self, user_id: str, asset_symbol: str) -> list[AlertSetting]:
        """
        Resolve the rules that apply to a user for one asset.

        Asset-specific rules win over global rules, which win over the
        built-in default. All rules of the winning tier are returned.
        """
        if self.settings_repo is not None:
            rules = self.settings_repo.get_for_asset(user_id, asset_symbol)
            if rules:
                return rules

            rules = self.settings_repo.get_global(user_id)
            if rules:
                return rules

        logger.debug(f"No alert settings for user {user_id}, using default rule")
        return [default_rule(user_id, self.defaults)]

    def evaluate(self, user_id: str, signal: Signal) -> list[AlertSetting]:
        """
        Evaluate every resolved rule against a signal.

        Each matching rule fires independently, so overlapping rules yield
        one entry each.

        Returns:
            Rules that fired, in resolution order
        """
        rules = self.resolve_rules(user_id, signal.asset_symbol)
        return [rule for rule in rules if self.should_fire(signal, rule)]
