"""
Shared Pydantic data models for the alerting core.

Modules:
    alerts: Alert rules, conditions, thresholds and notification channels
    incidents: Incidents, alert events and lifecycle events
    metrics: Parsed metric queries

Example:
    >>> from stream_alerts.models import AlertRule, AlertCondition, AlertThreshold
    >>> from stream_alerts.models import Incident, IncidentStatus
"""

# Rule models
from stream_alerts.models.alerts import (
    AggregationFunction,
    AlertCondition,
    AlertRule,
    AlertSeverity,
    AlertThreshold,
    ChannelKind,
    ComparisonOperator,
    NotificationChannel,
    ThresholdKind,
)

# Incident models
from stream_alerts.models.incidents import (
    AlertEvent,
    AlertEventStatus,
    Incident,
    IncidentStatus,
    LifecycleEvent,
    LifecycleKind,
    RuleTestResult,
    build_message,
)

# Metric query models
from stream_alerts.models.metrics import (
    METRIC_FIELDS,
    MetricQuery,
    MetricTable,
)

__all__ = [
    # Rules
    "AggregationFunction",
    "AlertCondition",
    "AlertRule",
    "AlertSeverity",
    "AlertThreshold",
    "ChannelKind",
    "ComparisonOperator",
    "NotificationChannel",
    "ThresholdKind",
    # Incidents
    "AlertEvent",
    "AlertEventStatus",
    "Incident",
    "IncidentStatus",
    "LifecycleEvent",
    "LifecycleKind",
    "RuleTestResult",
    "build_message",
    # Metrics
    "METRIC_FIELDS",
    "MetricQuery",
    "MetricTable",
]
