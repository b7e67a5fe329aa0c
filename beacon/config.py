"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/beacon.db"


@dataclass
class PipelineConfig:
    """Signal pipeline tuning."""

    max_workers: int = 4
    grouping_lookback_minutes: int = 60
    grouping_prefix_tokens: int = 2
    channel_timeout_seconds: float = 5.0


@dataclass
class PushDeliveryConfig:
    """Push gateway settings."""

    gateway_url: str = ""
    api_key: str = ""
    timeout_seconds: float = 5.0
    android_channel_id: str = "beacon_alerts"
    icon: str = ""


@dataclass
class EmailDeliveryConfig:
    """Email SMTP settings."""

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_address: str = ""
    use_tls: bool = True
    timeout_seconds: float = 10.0
    app_url: str = "http://localhost:3000"


@dataclass
class LiveDeliveryConfig:
    """Live session settings."""

    browser_notifications: bool = True
    icon: str = "/icons/alert.png"


@dataclass
class DeliveryConfig:
    """Delivery channel configuration."""

    push: PushDeliveryConfig = field(default_factory=PushDeliveryConfig)
    email: EmailDeliveryConfig = field(default_factory=EmailDeliveryConfig)
    live: LiveDeliveryConfig = field(default_factory=LiveDeliveryConfig)


@dataclass
class ScheduleConfig:
    """Background job schedule configuration."""

    timezone: str = "UTC"
    anomaly_scan_minutes: int = 15
    anomaly_feed_urls: list[str] = field(default_factory=list)
    digest_enabled: bool = True
    daily_digest_hour: int = 9
    weekly_digest_day: str = "mon"


@dataclass
class DefaultRuleConfig:
    """Thresholds of the built-in rule used when a user configured nothing."""

    sentiment_threshold: int = 20
    price_change_threshold: float = 5.0


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    defaults: DefaultRuleConfig = field(default_factory=DefaultRuleConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


_WEEKDAYS = {"mon", "tue", "wed", "thu", "fri", "sat", "sun"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path", DatabaseConfig.path)
    if not db_path:
        raise ConfigValidationError("Database path is required")

    if db_path != ":memory:":
        parent = Path(db_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")

    pipeline = config_dict.get("pipeline") or {}
    if int(pipeline.get("max_workers", 1)) < 1:
        raise ConfigValidationError("pipeline.max_workers must be at least 1")
    if float(pipeline.get("channel_timeout_seconds", 1)) <= 0:
        raise ConfigValidationError("pipeline.channel_timeout_seconds must be positive")
    if int(pipeline.get("grouping_prefix_tokens", 1)) < 1:
        raise ConfigValidationError("pipeline.grouping_prefix_tokens must be at least 1")

    schedule = config_dict.get("schedule") or {}
    if not schedule.get("timezone", "UTC"):
        raise ConfigValidationError("Timezone cannot be empty")
    hour = int(schedule.get("daily_digest_hour", 9))
    if not 0 <= hour <= 23:
        raise ConfigValidationError(f"Invalid daily_digest_hour: {hour}")
    weekday = str(schedule.get("weekly_digest_day", "mon")).lower()
    if weekday not in _WEEKDAYS:
        raise ConfigValidationError(f"Invalid weekly_digest_day: {weekday}")

    advanced = config_dict.get("advanced") or {}
    level = str(advanced.get("log_level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ConfigValidationError(f"Invalid log level: {level}")


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    return build_config(raw_config)


def build_config(raw_config: Optional[dict[str, Any]] = None) -> AppConfig:
    """
    Build an AppConfig from an already-parsed mapping.

    Args:
        raw_config: Parsed YAML mapping (may be empty)

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    config_dict = _substitute_env_vars(raw_config or {})
    _validate_config(config_dict)

    try:
        database = DatabaseConfig(**(config_dict.get("database") or {}))
        pipeline = PipelineConfig(**(config_dict.get("pipeline") or {}))

        # Delivery
        delivery_dict = config_dict.get("delivery") or {}
        delivery = DeliveryConfig(
            push=PushDeliveryConfig(**(delivery_dict.get("push") or {})),
            email=EmailDeliveryConfig(**(delivery_dict.get("email") or {})),
            live=LiveDeliveryConfig(**(delivery_dict.get("live") or {})),
        )

        schedule = ScheduleConfig(**(config_dict.get("schedule") or {}))
        schedule.weekly_digest_day = schedule.weekly_digest_day.lower()
        defaults = DefaultRuleConfig(**(config_dict.get("defaults") or {}))

        advanced = AdvancedConfig(**(config_dict.get("advanced") or {}))
        advanced.log_level = advanced.log_level.upper()
    except TypeError as e:
        # Unknown keys in a section
        raise ConfigValidationError(f"Invalid configuration: {e}") from e

    return AppConfig(
        database=database,
        pipeline=pipeline,
        delivery=delivery,
        schedule=schedule,
        defaults=defaults,
        advanced=advanced,
    )
