"""
Configuration loader for YAML-based application configuration.

This module provides utilities to load and validate configuration from YAML
files. All configuration is validated using Pydantic models to ensure type
safety and catch configuration errors early.

Configuration files expected:
    - config/alerting.yaml: Scheduler, notifications, realtime, API, logging

Environment variables override:
    - DATABASE_URL: Rule store (PostgreSQL) connection URL
    - METRICS_DATABASE_URL: Metrics store connection URL (defaults to DATABASE_URL)
    - REDIS_URL: Redis connection URL
    - LOG_LEVEL: Application log level
    - RESEND_API_KEY: Default API key for email channels
    - EMAIL_FROM: Default sender for email channels
    - ALERT_INTERVAL_SECONDS: Evaluation tick interval

Example:
    >>> from stream_alerts.config.loader import load_config
    >>> config = load_config("config")
    >>> config.scheduler.interval_seconds
    60
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from stream_alerts.config.models import (
    ApiConfig,
    AppConfig,
    EmailProviderConfig,
    LoggingConfig,
    LogLevel,
    MetricsQueryConfig,
    NotificationsConfig,
    PagerDutyProviderConfig,
    PostgresConnectionConfig,
    RealtimeConfig,
    RedisConnectionConfig,
    SchedulerConfig,
)


CONFIG_FILENAME = "alerting.yaml"


class ConfigLoadError(Exception):
    """
    Raised when configuration loading fails.

    Attributes:
        message: Error message describing what went wrong.
        file_path: Path to the file that caused the error, if applicable.
        cause: Original exception that caused the error, if any.
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[Path] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.file_path = file_path
        self.cause = cause
        super().__init__(message)


class ConfigLoader:
    """
    Loads and validates application configuration from YAML files.

    Expects the following directory structure:
        config/
        └── alerting.yaml  - Scheduler, notification and logging settings

    Example:
        >>> loader = ConfigLoader("config")
        >>> config = loader.load()
        >>> config.realtime.channel
        'alerts'
    """

    def __init__(self, config_dir: Path | str = "config"):
        """
        Initialize config loader.

        Args:
            config_dir: Path to configuration directory (default: 'config').

        Raises:
            ConfigLoadError: If config directory does not exist.
        """
        self.config_dir = Path(config_dir)
        if not self.config_dir.exists():
            raise ConfigLoadError(
                f"Configuration directory not found: {self.config_dir}",
                file_path=self.config_dir,
            )
        if not self.config_dir.is_dir():
            raise ConfigLoadError(
                f"Configuration path is not a directory: {self.config_dir}",
                file_path=self.config_dir,
            )

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        """
        Load a YAML file from the config directory.

        Args:
            filename: Name of YAML file (e.g., 'alerting.yaml').

        Returns:
            Dict containing parsed YAML content.

        Raises:
            ConfigLoadError: If file not found, empty, or invalid YAML.
        """
        file_path = self.config_dir / filename
        if not file_path.exists():
            raise ConfigLoadError(
                f"Configuration file not found: {file_path}",
                file_path=file_path,
            )

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
                if data is None:
                    raise ConfigLoadError(
                        f"Configuration file is empty: {file_path}",
                        file_path=file_path,
                    )
                if not isinstance(data, dict):
                    raise ConfigLoadError(
                        f"Configuration file must contain a mapping: {file_path}",
                        file_path=file_path,
                    )
                return data
        except yaml.YAMLError as e:
            raise ConfigLoadError(
                f"Invalid YAML syntax in {file_path}: {e}",
                file_path=file_path,
                cause=e,
            ) from e
        except OSError as e:
            raise ConfigLoadError(
                f"Error reading {file_path}: {e}",
                file_path=file_path,
                cause=e,
            ) from e

    def _load_scheduler(self, data: Dict[str, Any]) -> SchedulerConfig:
        """Parse the scheduler section, applying ALERT_INTERVAL_SECONDS."""
        scheduler_data = data.get("scheduler", {}) or {}
        interval = scheduler_data.get("interval_seconds", 60)

        interval_env = os.getenv("ALERT_INTERVAL_SECONDS")
        if interval_env:
            try:
                interval = int(interval_env)
            except ValueError as e:
                raise ConfigLoadError(
                    f"ALERT_INTERVAL_SECONDS must be an integer, got {interval_env!r}",
                    cause=e,
                ) from e

        return SchedulerConfig(
            interval_seconds=interval,
            max_concurrent_rules=scheduler_data.get("max_concurrent_rules", 10),
            shutdown_grace_seconds=scheduler_data.get("shutdown_grace_seconds", 5.0),
        )

    def _load_notifications(self, data: Dict[str, Any]) -> NotificationsConfig:
        """Parse the notifications section, applying email env defaults."""
        notif_data = data.get("notifications", {}) or {}
        email_data = notif_data.get("email", {}) or {}
        pagerduty_data = notif_data.get("pagerduty", {}) or {}

        email = EmailProviderConfig(
            api_url=email_data.get("api_url", "https://api.resend.com/emails"),
            api_key=os.getenv("RESEND_API_KEY") or email_data.get("api_key"),
            from_email=os.getenv("EMAIL_FROM")
            or email_data.get("from_email", "NATS Console <noreply@nats-console.local>"),
        )

        pagerduty = PagerDutyProviderConfig(
            events_url=pagerduty_data.get(
                "events_url", "https://events.pagerduty.com/v2/enqueue"
            ),
            source=pagerduty_data.get("source", "stream-alerts"),
        )

        return NotificationsConfig(
            timeout_seconds=notif_data.get("timeout_seconds", 5.0),
            user_agent=notif_data.get("user_agent", "stream-alerts/1.0"),
            email=email,
            pagerduty=pagerduty,
        )

    def _load_logging(self, data: Dict[str, Any]) -> LoggingConfig:
        """Parse the logging section; LOG_LEVEL wins over the file."""
        logging_data = data.get("logging", {}) or {}
        level = self._get_log_level(logging_data.get("level", "INFO"))
        return LoggingConfig(
            format=logging_data.get("format", "json"),
            level=level,
        )

    def _load_redis_connection(self) -> RedisConnectionConfig:
        """
        Load Redis connection configuration from environment.

        Environment variables:
            - REDIS_URL: Redis connection URL (default: redis://localhost:6379)

        Returns:
            RedisConnectionConfig object.
        """
        redis_url = os.getenv("REDIS_URL", "redis://localhost:6379")
        return RedisConnectionConfig(url=redis_url)

    def _load_postgres_connection(self) -> PostgresConnectionConfig:
        """
        Load rule store connection configuration from environment.

        Environment variables:
            - DATABASE_URL: PostgreSQL connection URL

        Returns:
            PostgresConnectionConfig object.
        """
        db_url = os.getenv("DATABASE_URL")
        if db_url:
            return PostgresConnectionConfig(url=db_url)
        return PostgresConnectionConfig()

    def _load_metrics_connection(
        self, postgres: PostgresConnectionConfig
    ) -> PostgresConnectionConfig:
        """
        Load metrics store connection configuration from environment.

        Environment variables:
            - METRICS_DATABASE_URL: Time-series database URL. Falls back to
              the rule store URL when unset.
        """
        metrics_url = os.getenv("METRICS_DATABASE_URL")
        if metrics_url:
            return PostgresConnectionConfig(url=metrics_url)
        return PostgresConnectionConfig(url=postgres.url)

    def _get_log_level(self, default: str = "INFO") -> LogLevel:
        """
        Get log level from environment.

        Environment variables:
            - LOG_LEVEL: Log level (default: value from the file, then INFO)

        Returns:
            LogLevel enum value.
        """
        level_str = os.getenv("LOG_LEVEL", str(default)).upper()
        try:
            return LogLevel(level_str)
        except ValueError:
            return LogLevel.INFO

    def load(self) -> AppConfig:
        """
        Load and validate all configuration.

        Loads alerting.yaml, merges environment variables, and returns a
        fully validated AppConfig object.

        Returns:
            AppConfig: Validated application configuration.

        Raises:
            ConfigLoadError: If any configuration is invalid or missing.
        """
        try:
            data = self._load_yaml(CONFIG_FILENAME)
            metrics_data = data.get("metrics", {}) or {}
            realtime_data = data.get("realtime", {}) or {}
            api_data = data.get("api", {}) or {}

            postgres = self._load_postgres_connection()

            return AppConfig(
                scheduler=self._load_scheduler(data),
                metrics=MetricsQueryConfig(
                    query_timeout_seconds=metrics_data.get("query_timeout_seconds", 5.0),
                ),
                notifications=self._load_notifications(data),
                realtime=RealtimeConfig(
                    enabled=realtime_data.get("enabled", True),
                    channel=realtime_data.get("channel", "alerts"),
                ),
                api=ApiConfig(
                    enabled=api_data.get("enabled", True),
                    host=api_data.get("host", "0.0.0.0"),
                    port=api_data.get("port", 3002),
                ),
                logging=self._load_logging(data),
                redis=self._load_redis_connection(),
                postgres=postgres,
                metrics_store=self._load_metrics_connection(postgres),
            )

        except ConfigLoadError:
            raise
        except ValidationError as e:
            raise ConfigLoadError(
                f"Configuration validation failed: {e}",
                file_path=self.config_dir / CONFIG_FILENAME,
                cause=e,
            ) from e
        except Exception as e:
            raise ConfigLoadError(
                f"Unexpected error loading configuration: {e}",
                cause=e,
            ) from e


def load_config(config_dir: Path | str = "config") -> AppConfig:
    """
    Convenience function to load application configuration.

    Args:
        config_dir: Path to configuration directory (default: 'config').

    Returns:
        AppConfig: Validated application configuration.

    Raises:
        ConfigLoadError: If configuration loading fails.
    """
    loader = ConfigLoader(config_dir)
    return loader.load()
