"""
Configuration management for the alerting service.

Configuration is loaded from config/alerting.yaml and validated with
Pydantic models. Connection settings and a few operational knobs come
from the environment:
    - DATABASE_URL: Rule store connection URL
    - METRICS_DATABASE_URL: Metrics store connection URL
    - REDIS_URL: Redis connection URL
    - LOG_LEVEL: Application log level
    - RESEND_API_KEY / EMAIL_FROM: Email channel defaults
    - ALERT_INTERVAL_SECONDS: Evaluation tick interval

Example:
    >>> from stream_alerts.config import load_config
    >>> config = load_config()
    >>> config.scheduler.interval_seconds
    60

Modules:
    loader: Configuration file loading utilities
    models: Pydantic models for configuration validation
"""

from stream_alerts.config.loader import ConfigLoadError, ConfigLoader, load_config
from stream_alerts.config.models import (
    # Enums
    LogFormat,
    LogLevel,
    # Sections
    ApiConfig,
    EmailProviderConfig,
    LoggingConfig,
    MetricsQueryConfig,
    NotificationsConfig,
    PagerDutyProviderConfig,
    RealtimeConfig,
    SchedulerConfig,
    # Connections
    PostgresConnectionConfig,
    RedisConnectionConfig,
    # Root
    AppConfig,
)

__all__ = [
    # Loader
    "ConfigLoadError",
    "ConfigLoader",
    "load_config",
    # Enums
    "LogFormat",
    "LogLevel",
    # Sections
    "ApiConfig",
    "EmailProviderConfig",
    "LoggingConfig",
    "MetricsQueryConfig",
    "NotificationsConfig",
    "PagerDutyProviderConfig",
    "RealtimeConfig",
    "SchedulerConfig",
    # Connections
    "PostgresConnectionConfig",
    "RedisConnectionConfig",
    # Root
    "AppConfig",
]
