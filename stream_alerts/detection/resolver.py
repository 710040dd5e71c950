"""
Metric resolver.

Turns a rule's condition into one aggregate query against the metrics
store and returns the value, or None when the rule cannot be evaluated
this tick.

Metric paths:
    stream.<stream>.<field>              -> stream_metrics
    consumer.<stream>.<consumer>.<field> -> consumer_metrics

Anything else (wrong prefix, wrong segment count, empty segment, unknown
field) is rejected without querying.

Example:
    >>> parse_metric_path("consumer.ORDERS.processor.lag")
    MetricQuery(table=<MetricTable.CONSUMER_METRICS: 'consumer_metrics'>, field='lag', ...)
    >>> parse_metric_path("unknown.x.y") is None
    True
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog

from stream_alerts.detection.errors import ResolutionUnavailable
from stream_alerts.models.alerts import AlertRule
from stream_alerts.models.metrics import METRIC_FIELDS, MetricQuery, MetricTable
from stream_alerts.storage.metrics_client import MetricsClient, MetricsClientError

logger = structlog.get_logger(__name__)


def parse_metric_path(path: str) -> Optional[MetricQuery]:
    """
    Parse a dotted metric path.

    Args:
        path: Metric path from a rule condition.

    Returns:
        Optional[MetricQuery]: Parsed query, or None if the path is malformed
        or names an unknown field.
    """
    if not path:
        return None

    parts = path.split(".")
    if any(not part for part in parts):
        return None

    kind = parts[0]
    if kind == "stream" and len(parts) == 3:
        query = MetricQuery(
            table=MetricTable.STREAM_METRICS,
            field=parts[2],
            stream_name=parts[1],
        )
    elif kind == "consumer" and len(parts) == 4:
        query = MetricQuery(
            table=MetricTable.CONSUMER_METRICS,
            field=parts[3],
            stream_name=parts[1],
            consumer_name=parts[2],
        )
    else:
        return None

    if query.field not in METRIC_FIELDS[query.table]:
        return None

    return query


class MetricResolver:
    """
    Resolves a rule's metric over its evaluation window.

    Attributes:
        metrics_client: Metrics store client.

    Example:
        >>> resolver = MetricResolver(metrics_client)
        >>> value = await resolver.resolve(rule, datetime.now(timezone.utc))
    """

    def __init__(self, metrics_client: MetricsClient) -> None:
        self.metrics_client = metrics_client

    async def resolve(self, rule: AlertRule, now: datetime) -> Optional[float]:
        """
        Resolve the rule's metric value at now.

        Never raises for a single rule: any failure is logged and reported
        as None so the rule is skipped for this tick.

        Args:
            rule: Rule to resolve.
            now: Evaluation time; the window is [now - window, now].

        Returns:
            Optional[float]: Aggregated value, or None.
        """
        try:
            return await self.resolve_or_raise(rule, now)
        except ResolutionUnavailable as e:
            logger.info(
                "metric_unavailable",
                rule_id=rule.id,
                metric=rule.condition.metric_path,
                reason=str(e),
            )
            return None
        except Exception as e:
            logger.error(
                "metric_resolution_error",
                rule_id=rule.id,
                metric=rule.condition.metric_path,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def resolve_or_raise(self, rule: AlertRule, now: datetime) -> float:
        """
        Resolve or raise ResolutionUnavailable.

        Raises:
            ResolutionUnavailable: Malformed path, no data, or query failure.
        """
        query = parse_metric_path(rule.condition.metric_path)
        if query is None:
            raise ResolutionUnavailable(
                f"Unsupported metric path '{rule.condition.metric_path}'"
            )

        filters: Dict[str, Any] = dict(query.filters)
        if rule.cluster_id is not None:
            filters["cluster_id"] = rule.cluster_id

        window_start = now - timedelta(seconds=rule.condition.window_seconds)

        try:
            value = await self.metrics_client.aggregate(
                rule.condition.aggregation,
                query.table,
                query.field,
                filters,
                window_start,
                now,
            )
        except MetricsClientError as e:
            logger.warning(
                "metric_query_failed",
                rule_id=rule.id,
                metric=rule.condition.metric_path,
                error=str(e),
            )
            raise ResolutionUnavailable(str(e)) from e

        if value is None:
            raise ResolutionUnavailable("No data in window")

        return value
