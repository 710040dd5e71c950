"""
Incident and alert event models.

Models:
    IncidentStatus: Incident lifecycle states
    Incident: Persisted record of one breach occurrence
    AlertEventStatus: firing / resolved
    AlertEvent: Append-only lifecycle log row
    LifecycleKind: Kind of transition being notified
    LifecycleEvent: Transition handed to dispatcher and publisher
    RuleTestResult: Result of a side-effect free rule check
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from stream_alerts.models.alerts import AlertRule, AlertSeverity


class IncidentStatus(str, Enum):
    """
    Incident lifecycle states.

    Only OPEN and RESOLVED are written by the alerting core.
    ACKNOWLEDGED and CLOSED are operator actions.
    """

    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @property
    def is_active(self) -> bool:
        """Check if this status counts as an open incident."""
        return self in (IncidentStatus.OPEN, IncidentStatus.ACKNOWLEDGED)


class Incident(BaseModel):
    """
    Persisted record of one occurrence of a rule's breach.

    Attributes:
        id: Incident identifier.
        rule_id: The rule that fired.
        status: Current lifecycle status.
        triggered_at: When the incident was opened.
        acknowledged_at: When an operator acknowledged it.
        resolved_at: When the breach cleared.
        closed_at: When an operator closed it.
        metadata: Snapshot of metric value, threshold and operator at trigger time.
        notified_at: When notifications for the opening were sent.
    """

    model_config = {"extra": "forbid"}

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Incident identifier",
    )
    rule_id: str = Field(..., description="Rule that fired")
    status: IncidentStatus = Field(
        default=IncidentStatus.OPEN,
        description="Lifecycle status",
    )
    triggered_at: datetime = Field(..., description="When the incident opened")
    acknowledged_at: Optional[datetime] = Field(default=None)
    resolved_at: Optional[datetime] = Field(default=None)
    closed_at: Optional[datetime] = Field(default=None)
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Trigger-time snapshot",
    )
    notified_at: Optional[datetime] = Field(default=None)

    @property
    def is_active(self) -> bool:
        """Check if the incident is open or acknowledged."""
        return self.status.is_active

    @property
    def duration_seconds(self) -> Optional[int]:
        """Seconds between trigger and resolution, if resolved."""
        if self.resolved_at is None:
            return None
        return int((self.resolved_at - self.triggered_at).total_seconds())


class AlertEventStatus(str, Enum):
    """Status recorded on an alert event row."""

    FIRING = "firing"
    RESOLVED = "resolved"


class AlertEvent(BaseModel):
    """
    Append-only lifecycle log row.

    One row is written per fire and one per resolve. Rows are never updated.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    id: str = Field(default_factory=lambda: str(uuid4()))
    rule_id: str
    org_id: str
    cluster_id: Optional[str] = None
    timestamp: datetime
    severity: AlertSeverity
    status: AlertEventStatus
    metric_value: float
    threshold_value: float
    message: str
    notified_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class LifecycleKind(str, Enum):
    """Kind of incident transition being announced."""

    FIRING = "firing"
    RESOLVED = "resolved"


class LifecycleEvent(BaseModel):
    """
    An incident transition, as seen by notification channels and the
    realtime publisher.

    Example:
        >>> event = LifecycleEvent.for_transition(
        ...     kind=LifecycleKind.FIRING,
        ...     rule=rule,
        ...     incident=incident,
        ...     metric_value=1200.0,
        ...     timestamp=now,
        ... )
        >>> event.message
        'Alert "Orders backlog" fired: value 1200.0 >= threshold 1000.0'
    """

    model_config = {"frozen": True, "extra": "forbid"}

    kind: LifecycleKind
    rule: AlertRule
    incident_id: str
    metric_value: float
    threshold: float
    timestamp: datetime
    message: str

    @classmethod
    def for_transition(
        cls,
        kind: LifecycleKind,
        rule: AlertRule,
        incident: Incident,
        metric_value: float,
        timestamp: datetime,
    ) -> "LifecycleEvent":
        """Build the event for an incident transition."""
        return cls(
            kind=kind,
            rule=rule,
            incident_id=incident.id,
            metric_value=metric_value,
            threshold=rule.threshold.value,
            timestamp=timestamp,
            message=build_message(kind, rule, metric_value),
        )

    @property
    def is_firing(self) -> bool:
        """Check if this event announces a new incident."""
        return self.kind == LifecycleKind.FIRING

    def to_payload(self) -> Dict[str, Any]:
        """Flat JSON-ready representation shared by webhook and realtime sinks."""
        return {
            "incidentId": self.incident_id,
            "ruleId": self.rule.id,
            "ruleName": self.rule.name,
            "orgId": self.rule.org_id,
            "clusterId": self.rule.cluster_id,
            "severity": self.rule.severity.value,
            "status": self.kind.value,
            "metric": self.rule.condition.metric_path,
            "metricValue": self.metric_value,
            "threshold": self.threshold,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


def build_message(kind: LifecycleKind, rule: AlertRule, metric_value: float) -> str:
    """
    Build the human-readable line used in every notification.

    Args:
        kind: Transition kind.
        rule: The rule that transitioned.
        metric_value: Metric value at transition time.

    Returns:
        str: Notification text.
    """
    if kind == LifecycleKind.FIRING:
        return (
            f'Alert "{rule.name}" fired: value {metric_value} '
            f"{rule.condition.operator.symbol} threshold {rule.threshold.value}"
        )
    return f'Alert "{rule.name}" resolved: value {metric_value}'


class RuleTestResult(BaseModel):
    """
    Outcome of a side-effect free "would this rule fire now" check.

    Either error is set, or would_fire/metric_value/threshold are.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    would_fire: bool = False
    metric_value: Optional[float] = None
    threshold: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        """Check if the check produced a value."""
        return self.error is None

    def to_response(self) -> Dict[str, Any]:
        """API representation."""
        if self.error is not None:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "wouldFire": self.would_fire,
            "metricValue": self.metric_value,
            "threshold": self.threshold,
        }
