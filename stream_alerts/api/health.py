"""
Health API endpoint.

Provides:
    GET /health - Service status, scheduler state and store connectivity
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from stream_alerts.api.app import AppState, get_app_state

logger = structlog.get_logger(__name__)

router = APIRouter()


class SchedulerHealthModel(BaseModel):
    """Scheduler part of the health response."""

    running: bool = False
    lastTick: Optional[Dict[str, Any]] = None
    inflightTicks: int = 0
    trackedRules: int = 0


class InfrastructureHealthModel(BaseModel):
    """Connectivity of the external stores."""

    ruleStore: str = "unknown"
    redis: str = "unknown"


class HealthResponse(BaseModel):
    """Response model for health endpoint."""

    status: str
    timestamp: str
    uptimeSeconds: int = 0
    scheduler: SchedulerHealthModel
    infrastructure: InfrastructureHealthModel


async def _ping_status(client: Any, name: str) -> str:
    """Map a client's ping to connected/disconnected/error."""
    if client is None:
        return "disabled"
    try:
        if await client.ping():
            return "connected"
        return "disconnected"
    except Exception as e:
        logger.warning("health_ping_failed", store=name, error=str(e))
        return "error"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Get service health",
)
async def get_health(state: AppState = Depends(get_app_state)) -> HealthResponse:
    """
    Get service health.

    Status is "ok" while the scheduler runs, "stopped" otherwise. Store
    connectivity is reported but does not change the status: the scheduler
    keeps ticking through store outages.

    Returns:
        HealthResponse: Status, timestamp, scheduler state and store checks.
    """
    now = datetime.now(timezone.utc)
    uptime_seconds = int((now - state.start_time).total_seconds()) if state.start_time else 0

    infrastructure = InfrastructureHealthModel(
        ruleStore=await _ping_status(state.rule_store, "rule_store"),
        redis=await _ping_status(state.redis_client, "redis"),
    )

    scheduler = state.scheduler
    if scheduler is None:
        return HealthResponse(
            status="stopped",
            timestamp=now.isoformat(),
            uptimeSeconds=uptime_seconds,
            scheduler=SchedulerHealthModel(),
            infrastructure=infrastructure,
        )

    last_tick = scheduler.last_tick.to_dict() if scheduler.last_tick else None

    return HealthResponse(
        status="ok" if scheduler.is_running else "stopped",
        timestamp=now.isoformat(),
        uptimeSeconds=uptime_seconds,
        scheduler=SchedulerHealthModel(
            running=scheduler.is_running,
            lastTick=last_tick,
            inflightTicks=scheduler.inflight_ticks,
            trackedRules=len(scheduler.state_snapshot()),
        ),
        infrastructure=infrastructure,
    )
