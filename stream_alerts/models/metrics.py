"""
Metric query models.

A rule's metric path is parsed into a MetricQuery that names the
time-series table, the field to aggregate and the row filters.

Models:
    MetricTable: Time-series tables the metrics store exposes
    MetricQuery: Parsed metric path
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, Field


class MetricTable(str, Enum):
    """Time-series tables populated by the metrics collector."""

    STREAM_METRICS = "stream_metrics"
    CONSUMER_METRICS = "consumer_metrics"


# Numeric columns that may be aggregated, per table
METRIC_FIELDS: Dict[MetricTable, FrozenSet[str]] = {
    MetricTable.STREAM_METRICS: frozenset(
        {
            "messages_total",
            "bytes_total",
            "messages_rate",
            "bytes_rate",
            "consumer_count",
            "first_seq",
            "last_seq",
        }
    ),
    MetricTable.CONSUMER_METRICS: frozenset(
        {
            "pending_count",
            "ack_pending",
            "redelivered",
            "waiting",
            "delivered_rate",
            "ack_rate",
            "lag",
        }
    ),
}


class MetricQuery(BaseModel):
    """
    Parsed metric path.

    Attributes:
        table: Table to query.
        field: Column to aggregate.
        stream_name: Stream filter.
        consumer_name: Consumer filter (consumer metrics only).

    Example:
        >>> MetricQuery(
        ...     table=MetricTable.CONSUMER_METRICS,
        ...     field="lag",
        ...     stream_name="ORDERS",
        ...     consumer_name="processor",
        ... )
    """

    model_config = {"frozen": True, "extra": "forbid"}

    table: MetricTable = Field(..., description="Table to query")
    field: str = Field(..., description="Column to aggregate", min_length=1)
    stream_name: str = Field(..., description="Stream filter", min_length=1)
    consumer_name: Optional[str] = Field(
        default=None,
        description="Consumer filter",
    )

    @property
    def filters(self) -> Dict[str, str]:
        """Column equality filters for this query."""
        filters = {"stream_name": self.stream_name}
        if self.consumer_name is not None:
            filters["consumer_name"] = self.consumer_name
        return filters
