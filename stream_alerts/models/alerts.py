"""
Alert rule data models for the alerting core.

This module defines the rule-side structures: the condition a rule
watches, the threshold it compares against, and the notification
channels attached to it. Rules and channels are owned by the REST layer
and are read-only here.

Models:
    AlertSeverity: Severity levels (info, warning, critical)
    ComparisonOperator: Comparison operators (gt, lt, gte, lte, eq, neq)
    AggregationFunction: Window aggregations (avg, min, max, sum, count)
    ThresholdKind: Threshold interpretation (absolute, percentage)
    ChannelKind: Notification provider kinds
    AlertCondition: Metric path, operator, window and aggregation
    AlertThreshold: Threshold value and kind
    NotificationChannel: A configured notification destination
    AlertRule: A complete alert rule with its channels
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AlertSeverity(str, Enum):
    """
    Alert severity levels.

    Attributes:
        INFO: Informational, no immediate concern.
        WARNING: Elevated condition requiring investigation.
        CRITICAL: Severe condition requiring immediate attention.
    """

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ComparisonOperator(str, Enum):
    """
    Comparison operators for threshold evaluation.

    Attributes:
        GT: Greater than (value > threshold).
        LT: Less than (value < threshold).
        GTE: Greater than or equal (value >= threshold).
        LTE: Less than or equal (value <= threshold).
        EQ: Exactly equal (value == threshold).
        NEQ: Not equal (value != threshold).
    """

    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"

    def evaluate(self, value: float, threshold: float) -> bool:
        """
        Evaluate the operator.

        Equality is exact: no epsilon is applied to eq/neq.

        Args:
            value: The metric value to check.
            threshold: The threshold to compare against.

        Returns:
            bool: True if the comparison holds.
        """
        if self == ComparisonOperator.GT:
            return value > threshold
        elif self == ComparisonOperator.LT:
            return value < threshold
        elif self == ComparisonOperator.GTE:
            return value >= threshold
        elif self == ComparisonOperator.LTE:
            return value <= threshold
        elif self == ComparisonOperator.EQ:
            return value == threshold
        elif self == ComparisonOperator.NEQ:
            return value != threshold
        return False

    @property
    def symbol(self) -> str:
        """Mathematical symbol for messages."""
        return {
            ComparisonOperator.GT: ">",
            ComparisonOperator.LT: "<",
            ComparisonOperator.GTE: ">=",
            ComparisonOperator.LTE: "<=",
            ComparisonOperator.EQ: "==",
            ComparisonOperator.NEQ: "!=",
        }[self]


class AggregationFunction(str, Enum):
    """Aggregations applied over the evaluation window."""

    AVG = "avg"
    MIN = "min"
    MAX = "max"
    SUM = "sum"
    COUNT = "count"


class ThresholdKind(str, Enum):
    """How a threshold value is meant to be read."""

    ABSOLUTE = "absolute"
    PERCENTAGE = "percentage"


class ChannelKind(str, Enum):
    """Supported notification provider kinds."""

    WEBHOOK = "webhook"
    SLACK = "slack"
    EMAIL = "email"
    TEAMS = "teams"
    PAGERDUTY = "pagerduty"
    GOOGLE_CHAT = "google_chat"


class AlertCondition(BaseModel):
    """
    What a rule measures.

    Attributes:
        metric_path: Dotted metric path, e.g. "stream.ORDERS.messages_rate"
            or "consumer.ORDERS.processor.lag".
        operator: Comparison operator.
        window_seconds: Length of the aggregation window.
        aggregation: Aggregation applied over the window.

    Example:
        >>> condition = AlertCondition(
        ...     metric_path="stream.ORDERS.messages_rate",
        ...     operator=ComparisonOperator.GTE,
        ...     window_seconds=300,
        ...     aggregation=AggregationFunction.AVG,
        ... )
    """

    model_config = {"frozen": True, "extra": "forbid"}

    metric_path: str = Field(
        ...,
        description="Dotted metric path",
        min_length=1,
    )
    operator: ComparisonOperator = Field(
        ...,
        description="Comparison operator",
    )
    window_seconds: int = Field(
        ...,
        description="Aggregation window in seconds",
        ge=1,
    )
    aggregation: AggregationFunction = Field(
        ...,
        description="Aggregation applied over the window",
    )


class AlertThreshold(BaseModel):
    """Threshold value and how to interpret it."""

    model_config = {"frozen": True, "extra": "forbid"}

    value: float = Field(
        ...,
        description="Threshold value",
    )
    kind: ThresholdKind = Field(
        default=ThresholdKind.ABSOLUTE,
        description="Threshold interpretation",
    )


class NotificationChannel(BaseModel):
    """
    A configured notification destination.

    The config bag is stored by the REST layer as JSON with camelCase
    keys (url, webhookUrl, apiKey, recipients, fromEmail, routingKey).

    Example:
        >>> channel = NotificationChannel(
        ...     id="c1",
        ...     org_id="org-1",
        ...     name="ops-slack",
        ...     kind=ChannelKind.SLACK,
        ...     config={"webhookUrl": "https://hooks.slack.com/services/..."},
        ... )
    """

    model_config = {"frozen": True, "extra": "forbid"}

    id: str = Field(..., description="Channel identifier")
    org_id: str = Field(..., description="Owning organization")
    name: str = Field(..., description="Display name", min_length=1)
    kind: ChannelKind = Field(..., description="Provider kind")
    config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Kind-specific configuration",
    )
    enabled: bool = Field(default=True, description="Whether the channel is active")


class AlertRule(BaseModel):
    """
    A user-defined threshold rule.

    Attributes:
        id: Rule identifier.
        org_id: Owning organization.
        cluster_id: Optional cluster scope; None means all clusters.
        name: Human-readable name.
        condition: Metric condition.
        threshold: Threshold configuration.
        severity: Severity attached to incidents.
        enabled: Whether the rule is evaluated.
        cooldown_minutes: Minimum minutes between two fires.
        channels: Ordered notification channels.

    Example:
        >>> rule = AlertRule(
        ...     id="r1",
        ...     org_id="org-1",
        ...     name="Orders backlog",
        ...     condition=condition,
        ...     threshold=AlertThreshold(value=1000),
        ... )
    """

    model_config = {"frozen": True, "extra": "forbid"}

    id: str = Field(..., description="Rule identifier")
    org_id: str = Field(..., description="Owning organization")
    cluster_id: Optional[str] = Field(
        default=None,
        description="Cluster scope (None for all clusters)",
    )
    name: str = Field(..., description="Rule name", min_length=1, max_length=100)
    condition: AlertCondition = Field(..., description="Metric condition")
    threshold: AlertThreshold = Field(..., description="Threshold")
    severity: AlertSeverity = Field(
        default=AlertSeverity.WARNING,
        description="Incident severity",
    )
    enabled: bool = Field(default=True, description="Whether the rule is active")
    cooldown_minutes: int = Field(
        default=5,
        description="Minimum minutes between fires",
        ge=1,
        le=1440,
    )
    channels: List[NotificationChannel] = Field(
        default_factory=list,
        description="Notification channels in configured order",
    )

    @property
    def enabled_channels(self) -> List[NotificationChannel]:
        """Channels that should receive notifications."""
        return [channel for channel in self.channels if channel.enabled]

    @property
    def cooldown_seconds(self) -> int:
        """Cooldown expressed in seconds."""
        return self.cooldown_minutes * 60
