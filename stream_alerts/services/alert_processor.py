"""
Alert Processor Service entry point.

This service is responsible for:
- Loading enabled alert rules from the rule store every tick
- Resolving each rule's metric from the metrics store
- Opening and resolving incidents
- Dispatching notifications to the rule's channels
- Publishing lifecycle events to Redis for dashboards
- Serving the health and manual test API

Usage:
    stream-alerts
    python -m stream_alerts.services.alert_processor

Environment Variables:
    DATABASE_URL: Rule store connection URL
    METRICS_DATABASE_URL: Metrics store connection URL (default: DATABASE_URL)
    REDIS_URL: Redis connection URL (default: redis://localhost:6379)
    LOG_LEVEL: Logging level (default: INFO)
    CONFIG_PATH: Path to config directory (default: config)
    ALERT_INTERVAL_SECONDS: Evaluation interval (default: 60)
    RESEND_API_KEY: Default API key for email channels (optional)
    EMAIL_FROM: Default sender for email channels (optional)
"""

import asyncio
import os
import sys
from typing import Optional

import structlog
import uvicorn

from stream_alerts.api import create_app
from stream_alerts.detection.dispatcher import NotificationDispatcher
from stream_alerts.detection.evaluator import ThresholdEvaluator, create_evaluator
from stream_alerts.detection.manager import IncidentManager, create_incident_manager
from stream_alerts.detection.publisher import RealtimePublisher
from stream_alerts.detection.resolver import MetricResolver
from stream_alerts.detection.scheduler import AlertScheduler, create_scheduler
from stream_alerts.detection.state import create_rule_state_registry
from stream_alerts.detection.storage import create_incident_storage
from stream_alerts.services import ServiceRunner, setup_logging

logger = structlog.get_logger(__name__)


class AlertProcessorService(ServiceRunner):
    """
    Rule evaluation service.

    Builds the detection components on top of the connected clients, runs
    the scheduler and, when enabled, the HTTP API until shutdown.

    Attributes:
        resolver: Metric resolver.
        evaluator: Threshold evaluator.
        dispatcher: Notification dispatcher.
        manager: Incident manager.
        scheduler: Alert scheduler.
    """

    def __init__(self, config_path: str = "config") -> None:
        """Initialize the alert processor service."""
        super().__init__(config_path)
        self.resolver: Optional[MetricResolver] = None
        self.evaluator: Optional[ThresholdEvaluator] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.manager: Optional[IncidentManager] = None
        self.scheduler: Optional[AlertScheduler] = None
        self._server: Optional[uvicorn.Server] = None
        self._server_task: Optional[asyncio.Task] = None

    @property
    def service_name(self) -> str:
        """Return service name."""
        return "alert-processor"

    async def _initialize(self) -> None:
        """Initialize detection components."""
        if self.config is None or self.postgres_client is None or self.metrics_client is None:
            raise RuntimeError("Service not properly initialized")

        self.resolver = MetricResolver(self.metrics_client)
        self.evaluator = create_evaluator()
        self.dispatcher = NotificationDispatcher(self.config.notifications)

        publisher = RealtimePublisher(
            self.redis_client,
            channel=self.config.realtime.channel,
        )

        self.manager = create_incident_manager(
            resolver=self.resolver,
            evaluator=self.evaluator,
            storage=create_incident_storage(self.postgres_client),
            dispatcher=self.dispatcher,
            publisher=publisher,
            state=create_rule_state_registry(),
        )

        self.scheduler = create_scheduler(
            rule_store=self.postgres_client,
            manager=self.manager,
            config=self.config.scheduler,
            metrics_client=self.metrics_client,
            redis_client=self.redis_client,
        )

        self.logger.info(
            "alert_components_initialized",
            interval_seconds=self.config.scheduler.interval_seconds,
            realtime_enabled=self.redis_client is not None,
            api_enabled=self.config.api.enabled,
        )

    async def _run(self) -> None:
        """Main service loop - run the scheduler and API until shutdown."""
        if self.config is None or self.scheduler is None:
            raise RuntimeError("Service not properly initialized")

        await self.scheduler.start()

        if self.config.api.enabled:
            await self._start_api()

        await self.shutdown_event.wait()

    async def _start_api(self) -> None:
        """Serve the HTTP API in a background task."""
        if self.config is None or self.resolver is None or self.evaluator is None:
            return
        if self.dispatcher is None:
            return

        app = create_app(
            resolver=self.resolver,
            evaluator=self.evaluator,
            dispatcher=self.dispatcher,
            rule_store=self.postgres_client,
            scheduler=self.scheduler,
            redis_client=self.redis_client,
        )

        server_config = uvicorn.Config(
            app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_level=self.config.logging.level.value.lower(),
            access_log=False,
        )
        self._server = uvicorn.Server(server_config)
        # The service owns SIGINT/SIGTERM
        self._server.install_signal_handlers = lambda: None
        self._server_task = asyncio.create_task(self._server.serve())

        self.logger.info(
            "api_server_started",
            host=self.config.api.host,
            port=self.config.api.port,
        )

    async def _cleanup(self) -> None:
        """Stop the API server, then the scheduler."""
        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            try:
                await self._server_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                self.logger.error("api_server_error", error=str(e))

        if self.scheduler is not None:
            await self.scheduler.stop()

            if self.scheduler.last_tick is not None:
                self.logger.info(
                    "cleanup_state",
                    last_tick=self.scheduler.last_tick.to_dict(),
                    tracked_rules=len(self.scheduler.state_snapshot()),
                )


async def main() -> None:
    """Main entry point."""
    # Set up initial logging
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    config_path = os.getenv("CONFIG_PATH", "config")

    logger.info(
        "alert_processor_service_starting",
        version="1.0.0",
        config_path=config_path,
    )

    service = AlertProcessorService(config_path=config_path)

    try:
        await service.run()
    except Exception as e:
        logger.error("service_failed", error=str(e))
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
