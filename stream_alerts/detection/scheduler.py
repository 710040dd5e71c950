"""
Alert scheduler.

This module provides the AlertScheduler class which owns the evaluation
cadence: every interval it loads the enabled rules from the rule store and
evaluates each one through the IncidentManager.

Key Features:
    - Immediate first pass on start, then a periodic tick
    - Each periodic tick runs as its own task, so slow ticks may overlap
    - Bounded per-tick concurrency with per-rule failure isolation
    - Graceful stop: timer first, then in-flight ticks, then connections
    - Last tick summary and runtime state for the health endpoint

Example:
    >>> scheduler = AlertScheduler(postgres_client, manager, config.scheduler)
    >>> await scheduler.start()
    >>> scheduler.is_running
    True
    >>> await scheduler.stop()
"""

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import structlog

from stream_alerts.config.models import SchedulerConfig
from stream_alerts.detection.manager import (
    EvaluationAction,
    EvaluationOutcome,
    IncidentManager,
)
from stream_alerts.models.alerts import AlertRule
from stream_alerts.storage.metrics_client import MetricsClient
from stream_alerts.storage.postgres_client import PostgresClient
from stream_alerts.storage.redis_client import RedisClient

logger = structlog.get_logger(__name__)


@dataclass
class TickSummary:
    """
    Result of one evaluation pass.

    Attributes:
        started_at: Tick start time.
        duration_ms: Wall time of the tick.
        rules_loaded: Number of enabled rules evaluated.
        counts: Outcomes per action value.
        load_error: Set when the rules could not be loaded.
        outcomes: Per-rule outcomes.
    """

    started_at: datetime
    duration_ms: float = 0.0
    rules_loaded: int = 0
    counts: Dict[str, int] = field(default_factory=dict)
    load_error: Optional[str] = None
    outcomes: List[EvaluationOutcome] = field(default_factory=list)

    def count(self, action: EvaluationAction) -> int:
        return self.counts.get(action.value, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startedAt": self.started_at.isoformat(),
            "durationMs": self.duration_ms,
            "rules": self.rules_loaded,
            "counts": dict(self.counts),
            "error": self.load_error,
        }


class AlertScheduler:
    """
    Periodic driver of rule evaluation.

    Attributes:
        rule_store: Rule store client used to load rules each tick.
        manager: Incident manager applying the state machine.
        config: Scheduler settings.
        metrics_client: Metrics store client released on stop.
        redis_client: Realtime bridge client released on stop.
        last_tick: Summary of the most recently finished tick.
    """

    def __init__(
        self,
        rule_store: PostgresClient,
        manager: IncidentManager,
        config: Optional[SchedulerConfig] = None,
        metrics_client: Optional[MetricsClient] = None,
        redis_client: Optional[RedisClient] = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            rule_store: Rule store client.
            manager: Incident manager.
            config: Scheduler settings; defaults to SchedulerConfig().
            metrics_client: Metrics store client to release on stop.
            redis_client: Redis client to release on stop.
        """
        self.rule_store = rule_store
        self.manager = manager
        self.config = config or SchedulerConfig()
        self.metrics_client = metrics_client
        self.redis_client = redis_client
        self.last_tick: Optional[TickSummary] = None

        self._running = False
        self._timer_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

        logger.info(
            "alert_scheduler_initialized",
            interval_seconds=self.config.interval_seconds,
            max_concurrent_rules=self.config.max_concurrent_rules,
        )

    @property
    def is_running(self) -> bool:
        """Check if the periodic timer is active."""
        return self._running

    @property
    def inflight_ticks(self) -> int:
        """Number of ticks currently executing."""
        return len(self._inflight)

    def state_snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Runtime state of every rule seen so far."""
        return self.manager.state.snapshot()

    async def start(self) -> None:
        """
        Start evaluating rules.

        Runs one pass immediately, then one every interval_seconds.
        Calling start on a running scheduler does nothing.
        """
        if self._running:
            logger.debug("alert_scheduler_already_running")
            return

        self._running = True
        self._spawn_tick()
        self._timer_task = asyncio.create_task(self._timer_loop())

        logger.info(
            "alert_scheduler_started",
            interval_seconds=self.config.interval_seconds,
        )

    async def stop(self) -> None:
        """
        Stop the scheduler and release external connections.

        The timer is cancelled first so no new tick starts. In-flight ticks
        get shutdown_grace_seconds to finish and are cancelled after that.
        Connections are then closed in order: notification session,
        metrics store, realtime bridge, rule store.
        """
        was_running = self._running
        self._running = False

        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        if self._inflight:
            pending_ticks = set(self._inflight)
            _, pending = await asyncio.wait(
                pending_ticks,
                timeout=self.config.shutdown_grace_seconds,
            )
            if pending:
                logger.warning(
                    "alert_scheduler_ticks_cancelled",
                    count=len(pending),
                    grace_seconds=self.config.shutdown_grace_seconds,
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        await self._release_connections()

        logger.info("alert_scheduler_stopped", was_running=was_running)

    async def _release_connections(self) -> None:
        """Close external connections, continuing past individual failures."""
        steps = [
            ("notification_session", self.manager.dispatcher.close),
        ]
        if self.metrics_client is not None:
            steps.append(("metrics_store", self.metrics_client.disconnect))
        if self.redis_client is not None:
            steps.append(("realtime_bridge", self.redis_client.disconnect))
        steps.append(("rule_store", self.rule_store.disconnect))

        for name, close in steps:
            try:
                await close()
            except Exception as e:
                logger.warning(
                    "connection_release_failed",
                    resource=name,
                    error=str(e),
                )

    async def _timer_loop(self) -> None:
        """Spawn a tick every interval until stopped."""
        try:
            while self._running:
                await asyncio.sleep(self.config.interval_seconds)
                if not self._running:
                    break
                self._spawn_tick()
        except asyncio.CancelledError:
            logger.debug("alert_scheduler_timer_cancelled")

    def _spawn_tick(self) -> asyncio.Task:
        """Run one tick in its own task and track it until done."""
        task = asyncio.create_task(self._guarded_tick())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

        if len(self._inflight) > 1:
            logger.warning("alert_ticks_overlapping", inflight=len(self._inflight))

        return task

    async def _guarded_tick(self) -> None:
        try:
            await self.run_tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "alert_tick_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    async def run_tick(self, now: Optional[datetime] = None) -> TickSummary:
        """
        Evaluate every enabled rule once.

        A failure to load rules is logged and ends the tick. A failure while
        evaluating one rule is logged and recorded as an error outcome for
        that rule only.

        Args:
            now: Evaluation time shared by all rules (defaults to current UTC time).

        Returns:
            TickSummary: Counts per action and duration.
        """
        now = now or datetime.now(timezone.utc)
        start_time = time.monotonic()
        summary = TickSummary(started_at=now)

        try:
            rules = await self.rule_store.fetch_enabled_rules()
        except Exception as e:
            summary.load_error = str(e)
            summary.duration_ms = round((time.monotonic() - start_time) * 1000, 2)
            self.last_tick = summary
            logger.error(
                "alert_rules_load_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return summary

        semaphore = asyncio.Semaphore(self.config.max_concurrent_rules)

        async def _evaluate(rule: AlertRule) -> EvaluationOutcome:
            async with semaphore:
                try:
                    return await self.manager.evaluate_rule(rule, now)
                except Exception as e:
                    logger.error(
                        "rule_evaluation_failed",
                        rule_id=rule.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return EvaluationOutcome(
                        rule_id=rule.id,
                        action=EvaluationAction.ERROR,
                        error=str(e),
                    )

        outcomes = await asyncio.gather(*(_evaluate(rule) for rule in rules))

        summary.rules_loaded = len(rules)
        summary.outcomes = list(outcomes)
        summary.counts = dict(Counter(outcome.action.value for outcome in outcomes))
        summary.duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        self.last_tick = summary

        logger.info(
            "alert_tick_completed",
            rules=summary.rules_loaded,
            duration_ms=summary.duration_ms,
            **summary.counts,
        )

        return summary


def create_scheduler(
    rule_store: PostgresClient,
    manager: IncidentManager,
    config: Optional[SchedulerConfig] = None,
    metrics_client: Optional[MetricsClient] = None,
    redis_client: Optional[RedisClient] = None,
) -> AlertScheduler:
    """
    Factory function to create an AlertScheduler.

    Returns:
        AlertScheduler: Configured scheduler (not started).
    """
    return AlertScheduler(
        rule_store=rule_store,
        manager=manager,
        config=config,
        metrics_client=metrics_client,
        redis_client=redis_client,
    )
