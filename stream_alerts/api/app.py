"""
FastAPI application for the alerting service.

Exposes the health endpoint and the manual test paths next to the
scheduler. The application is created around already-built components,
so it owns no connections and has no startup work of its own.

Routes:
    GET  /health                       Scheduler status and store checks
    POST /rules/test                   Check an ad-hoc rule
    POST /rules/{rule_id}/test         Check a stored rule
    POST /channels/{channel_id}/test   Send a test notification
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI, Request

from stream_alerts.detection.dispatcher import NotificationDispatcher
from stream_alerts.detection.evaluator import ThresholdEvaluator
from stream_alerts.detection.resolver import MetricResolver
from stream_alerts.detection.scheduler import AlertScheduler
from stream_alerts.storage.postgres_client import PostgresClient
from stream_alerts.storage.redis_client import RedisClient

logger = structlog.get_logger(__name__)


@dataclass
class AppState:
    """
    Components the routes read from.

    Attributes:
        rule_store: Rule store client for stored rules and channels.
        resolver: Metric resolver for rule checks.
        evaluator: Threshold evaluator for rule checks.
        dispatcher: Dispatcher for channel tests.
        scheduler: Running scheduler, if any.
        redis_client: Realtime bridge client, if connected.
        start_time: When the application was created.
    """

    rule_store: Optional[PostgresClient]
    resolver: MetricResolver
    evaluator: ThresholdEvaluator
    dispatcher: NotificationDispatcher
    scheduler: Optional[AlertScheduler] = None
    redis_client: Optional[RedisClient] = None
    start_time: Optional[datetime] = None


def get_app_state(request: Request) -> AppState:
    """Dependency returning the application's component container."""
    return request.app.state.alerting


def create_app(
    resolver: MetricResolver,
    evaluator: ThresholdEvaluator,
    dispatcher: NotificationDispatcher,
    rule_store: Optional[PostgresClient] = None,
    scheduler: Optional[AlertScheduler] = None,
    redis_client: Optional[RedisClient] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        resolver: Metric resolver.
        evaluator: Threshold evaluator.
        dispatcher: Notification dispatcher.
        rule_store: Rule store client (needed by the stored-rule and
            channel test routes).
        scheduler: Scheduler reported by the health route.
        redis_client: Realtime bridge client pinged by the health route.

    Returns:
        FastAPI: Configured application.

    Example:
        >>> app = create_app(resolver, evaluator, dispatcher, postgres_client, scheduler)
        >>> server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=3002))
    """
    app = FastAPI(
        title="Stream Alerts",
        description="Threshold alerting for NATS JetStream metrics",
        version="1.0.0",
        docs_url="/docs",
        redoc_url=None,
    )

    app.state.alerting = AppState(
        rule_store=rule_store,
        resolver=resolver,
        evaluator=evaluator,
        dispatcher=dispatcher,
        scheduler=scheduler,
        redis_client=redis_client,
        start_time=datetime.now(timezone.utc),
    )

    from stream_alerts.api.channels import router as channels_router
    from stream_alerts.api.health import router as health_router
    from stream_alerts.api.rules import router as rules_router

    app.include_router(health_router, tags=["Health"])
    app.include_router(rules_router, tags=["Rules"])
    app.include_router(channels_router, tags=["Channels"])

    logger.info("fastapi_app_created")

    return app
