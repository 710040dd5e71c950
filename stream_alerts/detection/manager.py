"""
Incident manager for the per-rule alert lifecycle.

This module provides the IncidentManager class which takes one rule
through one evaluation: resolve the metric, compare it with the threshold,
and apply the incident state machine.

Key Features:
    - Open-incident signal re-queried from the rule store on every evaluation
    - Cooldown between fires, never reset by a resolve
    - Atomic incident creation; losing a race to another tick is a no-op
    - Notification fan-out and realtime publish strictly after the
      transition is durable
    - Each evaluation reports an EvaluationOutcome

State table:
    breach, no open incident, cooldown elapsed  -> fired
    breach, no open incident, in cooldown       -> suppressed
    breach, open incident                       -> already_open
    no breach, open incident                    -> resolved
    no breach, no open incident                 -> idle

Example:
    >>> manager = IncidentManager(resolver, evaluator, storage, dispatcher, publisher)
    >>> outcome = await manager.evaluate_rule(rule, now)
    >>> outcome.action
    <EvaluationAction.FIRED: 'fired'>
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from stream_alerts.detection.dispatcher import DispatchReport, NotificationDispatcher
from stream_alerts.detection.errors import PersistenceError
from stream_alerts.detection.evaluator import ThresholdEvaluator
from stream_alerts.detection.publisher import RealtimePublisher
from stream_alerts.detection.resolver import MetricResolver
from stream_alerts.detection.state import RuleStateRegistry
from stream_alerts.detection.storage import IncidentStorage
from stream_alerts.models.alerts import AlertRule
from stream_alerts.models.incidents import Incident, LifecycleEvent, LifecycleKind

logger = structlog.get_logger(__name__)


class EvaluationAction(str, Enum):
    """What one evaluation of one rule did."""

    NO_DATA = "no_data"
    FIRED = "fired"
    SUPPRESSED = "suppressed"
    ALREADY_OPEN = "already_open"
    RESOLVED = "resolved"
    IDLE = "idle"
    ERROR = "error"


@dataclass
class EvaluationOutcome:
    """
    Result of evaluating one rule once.

    Attributes:
        rule_id: Evaluated rule.
        action: What happened.
        metric_value: Resolved value, if any.
        breached: Threshold comparison result, if a value was resolved.
        incident_id: Incident opened, resolved or found open.
        dispatch: Notification report for fired/resolved outcomes.
        error: Failure description for error outcomes.
    """

    rule_id: str
    action: EvaluationAction
    metric_value: Optional[float] = None
    breached: Optional[bool] = None
    incident_id: Optional[str] = None
    dispatch: Optional[DispatchReport] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "action": self.action.value,
            "metricValue": self.metric_value,
            "breached": self.breached,
            "incidentId": self.incident_id,
            "error": self.error,
        }


class IncidentManager:
    """
    Applies the incident state machine for one rule at a time.

    Attributes:
        resolver: Metric resolver.
        evaluator: Threshold evaluator.
        storage: Durable incident transitions.
        dispatcher: Notification fan-out.
        publisher: Realtime publisher.
        state: Per-rule runtime state (cooldown map).
    """

    def __init__(
        self,
        resolver: MetricResolver,
        evaluator: ThresholdEvaluator,
        storage: IncidentStorage,
        dispatcher: NotificationDispatcher,
        publisher: RealtimePublisher,
        state: Optional[RuleStateRegistry] = None,
    ) -> None:
        """
        Initialize the incident manager.

        Args:
            resolver: Metric resolver.
            evaluator: Threshold evaluator.
            storage: Incident storage.
            dispatcher: Notification dispatcher.
            publisher: Realtime publisher.
            state: Runtime state registry; a new one is created if omitted.
        """
        self.resolver = resolver
        self.evaluator = evaluator
        self.storage = storage
        self.dispatcher = dispatcher
        self.publisher = publisher
        self.state = state if state is not None else RuleStateRegistry()

        logger.info("incident_manager_initialized")

    async def evaluate_rule(
        self,
        rule: AlertRule,
        now: Optional[datetime] = None,
    ) -> EvaluationOutcome:
        """
        Evaluate one rule once.

        Rule store failures abort this rule for this tick and are reported
        as an error outcome; the next tick starts from the rule store again.

        Args:
            rule: Rule to evaluate.
            now: Evaluation time (defaults to current UTC time).

        Returns:
            EvaluationOutcome: What happened.
        """
        now = now or datetime.now(timezone.utc)

        value = await self.resolver.resolve(rule, now)
        if value is None:
            return EvaluationOutcome(rule_id=rule.id, action=EvaluationAction.NO_DATA)

        breached = self.evaluator.evaluate_rule(rule, value)

        try:
            open_incident = await self.storage.get_open_incident(rule.id)

            if breached:
                return await self._handle_breach(rule, value, open_incident, now)
            return await self._handle_clear(rule, value, open_incident, now)

        except PersistenceError as e:
            logger.error(
                "rule_evaluation_persistence_failed",
                rule_id=rule.id,
                error=str(e),
            )
            return EvaluationOutcome(
                rule_id=rule.id,
                action=EvaluationAction.ERROR,
                metric_value=value,
                breached=breached,
                error=str(e),
            )

    async def _handle_breach(
        self,
        rule: AlertRule,
        value: float,
        open_incident: Optional[Incident],
        now: datetime,
    ) -> EvaluationOutcome:
        """Breach branch of the state table."""
        if open_incident is not None:
            logger.debug(
                "incident_already_open",
                rule_id=rule.id,
                incident_id=open_incident.id,
            )
            return EvaluationOutcome(
                rule_id=rule.id,
                action=EvaluationAction.ALREADY_OPEN,
                metric_value=value,
                breached=True,
                incident_id=open_incident.id,
            )

        if not self.state.cooldown_elapsed(rule.id, rule.cooldown_seconds, now):
            logger.info(
                "rule_fire_suppressed",
                rule_id=rule.id,
                metric_value=value,
                cooldown_minutes=rule.cooldown_minutes,
            )
            return EvaluationOutcome(
                rule_id=rule.id,
                action=EvaluationAction.SUPPRESSED,
                metric_value=value,
                breached=True,
            )

        incident = await self.storage.open_incident(rule, value, now)
        if incident is None:
            # Another tick opened one between the lookup and the insert
            return EvaluationOutcome(
                rule_id=rule.id,
                action=EvaluationAction.ALREADY_OPEN,
                metric_value=value,
                breached=True,
            )

        self.state.record_fire(rule.id, now)

        logger.info(
            "rule_fired",
            rule_id=rule.id,
            rule_name=rule.name,
            incident_id=incident.id,
            metric_value=value,
            threshold=rule.threshold.value,
            severity=rule.severity.value,
        )

        event = LifecycleEvent.for_transition(
            kind=LifecycleKind.FIRING,
            rule=rule,
            incident=incident,
            metric_value=value,
            timestamp=now,
        )
        report = await self._announce(event, incident)

        return EvaluationOutcome(
            rule_id=rule.id,
            action=EvaluationAction.FIRED,
            metric_value=value,
            breached=True,
            incident_id=incident.id,
            dispatch=report,
        )

    async def _handle_clear(
        self,
        rule: AlertRule,
        value: float,
        open_incident: Optional[Incident],
        now: datetime,
    ) -> EvaluationOutcome:
        """No-breach branch of the state table."""
        if open_incident is None:
            return EvaluationOutcome(
                rule_id=rule.id,
                action=EvaluationAction.IDLE,
                metric_value=value,
                breached=False,
            )

        resolved = await self.storage.resolve_incident(open_incident, now)
        if resolved is None:
            # Closed by an operator or resolved by another tick
            return EvaluationOutcome(
                rule_id=rule.id,
                action=EvaluationAction.IDLE,
                metric_value=value,
                breached=False,
                incident_id=open_incident.id,
            )

        self.state.record_resolve(rule.id)

        logger.info(
            "rule_resolved",
            rule_id=rule.id,
            rule_name=rule.name,
            incident_id=resolved.id,
            metric_value=value,
            duration_seconds=resolved.duration_seconds,
        )

        event = LifecycleEvent.for_transition(
            kind=LifecycleKind.RESOLVED,
            rule=rule,
            incident=resolved,
            metric_value=value,
            timestamp=now,
        )
        report = await self._announce(event, resolved)

        return EvaluationOutcome(
            rule_id=rule.id,
            action=EvaluationAction.RESOLVED,
            metric_value=value,
            breached=False,
            incident_id=resolved.id,
            dispatch=report,
        )

    async def _announce(self, event: LifecycleEvent, incident: Incident) -> DispatchReport:
        """
        Dispatch, publish and log a durable transition.

        notified_at marks when the dispatch attempt finished, whatever the
        per-channel outcome; the report carries delivery results.
        """
        report = await self.dispatcher.dispatch(event, event.rule.channels)
        notified_at = datetime.now(timezone.utc)

        if event.is_firing:
            await self.storage.mark_notified(incident, notified_at)

        await self.publisher.publish(event)
        await self.storage.record_event(event, notified_at)

        return report


def create_incident_manager(
    resolver: MetricResolver,
    evaluator: ThresholdEvaluator,
    storage: IncidentStorage,
    dispatcher: NotificationDispatcher,
    publisher: RealtimePublisher,
    state: Optional[RuleStateRegistry] = None,
) -> IncidentManager:
    """
    Factory function to create an IncidentManager.

    Returns:
        IncidentManager: Configured manager.
    """
    return IncidentManager(
        resolver=resolver,
        evaluator=evaluator,
        storage=storage,
        dispatcher=dispatcher,
        publisher=publisher,
        state=state,
    )
