"""
Service runtime shared by the alerting entry points.

Components:
    setup_logging: structlog configuration for every service process
    ServiceRunner: Base class handling configuration, connections,
        signal handling and cleanup around a service body
    alert_processor: The rule evaluation service

Example:
    >>> class MyService(ServiceRunner):
    ...     @property
    ...     def service_name(self) -> str:
    ...         return "my-service"
    ...     async def _initialize(self) -> None: ...
    ...     async def _run(self) -> None:
    ...         await self.shutdown_event.wait()
    >>> await MyService(config_path="config").run()
"""

import asyncio
import logging
import signal
from abc import ABC, abstractmethod
from typing import Optional, Union

import structlog

from stream_alerts.config.loader import load_config
from stream_alerts.config.models import AppConfig, LogFormat, LogLevel
from stream_alerts.storage.metrics_client import MetricsClient
from stream_alerts.storage.postgres_client import PostgresClient
from stream_alerts.storage.redis_client import RedisClient, RedisClientError


def setup_logging(
    level: Union[LogLevel, str] = LogLevel.INFO,
    log_format: Union[LogFormat, str] = LogFormat.JSON,
) -> None:
    """
    Configure structured logging for a service process.

    Args:
        level: Minimum log level.
        log_format: "json" for machine-readable lines, "text" for the
            console renderer.
    """
    level_name = LogLevel(level).value if isinstance(level, LogLevel) else str(level).upper()
    renderer = (
        structlog.dev.ConsoleRenderer()
        if LogFormat(log_format) == LogFormat.TEXT
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level_name, logging.INFO),
        force=True,
    )

    # Reduce noise from uvicorn access logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class ServiceRunner(ABC):
    """
    Base class for long-running services.

    run() loads configuration, reconfigures logging from it, connects the
    rule store, metrics store and Redis, then runs the service body until
    it returns or SIGINT/SIGTERM sets shutdown_event.

    Attributes:
        config_path: Directory containing alerting.yaml.
        config: Loaded configuration.
        postgres_client: Rule store client.
        metrics_client: Metrics store client.
        redis_client: Realtime bridge client.
        shutdown_event: Set when the service should stop.
    """

    def __init__(self, config_path: str = "config") -> None:
        self.config_path = config_path
        self.config: Optional[AppConfig] = None
        self.postgres_client: Optional[PostgresClient] = None
        self.metrics_client: Optional[MetricsClient] = None
        self.redis_client: Optional[RedisClient] = None
        self.shutdown_event = asyncio.Event()
        self.logger = structlog.get_logger(self.__class__.__module__)

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Service name used in log events."""

    @abstractmethod
    async def _initialize(self) -> None:
        """Build service components once connections are up."""

    @abstractmethod
    async def _run(self) -> None:
        """Service body; should return once shutdown_event is set."""

    async def _cleanup(self) -> None:
        """Service-specific cleanup."""

    def request_shutdown(self) -> None:
        """Ask the service body to stop."""
        if not self.shutdown_event.is_set():
            self.logger.info("shutdown_requested", service=self.service_name)
            self.shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                # Signal handlers are unavailable on some platforms
                self.logger.debug("signal_handler_unavailable", signal=sig.name)

    async def _connect(self) -> None:
        """Create and connect the storage clients."""
        if self.config is None:
            raise RuntimeError("Configuration not loaded")

        self.postgres_client = PostgresClient(self.config.postgres)
        await self.postgres_client.connect()

        self.metrics_client = MetricsClient(
            self.config.metrics_store,
            query_timeout=self.config.metrics.query_timeout_seconds,
        )
        await self.metrics_client.connect()

        if self.config.realtime.enabled:
            await self._connect_redis()

    async def _connect_redis(self) -> None:
        """Connect the realtime bridge; run without it if Redis is down."""
        if self.config is None:
            raise RuntimeError("Configuration not loaded")

        client = RedisClient(self.config.redis)
        try:
            await client.connect()
        except RedisClientError as e:
            self.logger.warning(
                "redis_unavailable",
                service=self.service_name,
                error=str(e),
            )
            await client.disconnect()
            self.redis_client = None
            return

        self.redis_client = client

    async def _disconnect(self) -> None:
        """Close any storage client that is still connected."""
        for client in (self.metrics_client, self.redis_client, self.postgres_client):
            if client is None:
                continue
            try:
                await client.disconnect()
            except Exception as e:
                self.logger.error(
                    "client_disconnect_error",
                    client=type(client).__name__,
                    error=str(e),
                )

    async def run(self) -> None:
        """
        Run the service until shutdown.

        Raises:
            ConfigLoadError: If configuration cannot be loaded.
            Exception: Connection or initialization failures, after cleanup.
        """
        self.config = load_config(self.config_path)
        setup_logging(self.config.logging.level, self.config.logging.format)

        self.logger.info("service_starting", service=self.service_name)
        self._install_signal_handlers()

        try:
            await self._connect()
            await self._initialize()
            self.logger.info("service_started", service=self.service_name)
            await self._run()
        finally:
            try:
                await self._cleanup()
            except Exception as e:
                self.logger.error(
                    "service_cleanup_error",
                    service=self.service_name,
                    error=str(e),
                )
            await self._disconnect()
            self.logger.info("service_stopped", service=self.service_name)


__all__ = ["ServiceRunner", "setup_logging"]
