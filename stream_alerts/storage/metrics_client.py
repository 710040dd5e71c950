"""
Async client for the time-series metrics store.

The metrics collector writes one row per stream and per consumer at a fixed
cadence into TimescaleDB hypertables. The alerting core only reads: it asks
for one aggregate of one column over a time window.

Key Tables:
    - stream_metrics: stream_name, cluster_id, timestamp, per-stream counters
    - consumer_metrics: stream_name, consumer_name, cluster_id, timestamp,
      per-consumer counters

Note:
    Table and column names are interpolated into SQL, so both are checked
    against METRIC_FIELDS before a query is built. Filter values are always
    bound parameters.

Example:
    >>> client = MetricsClient(PostgresConnectionConfig(url="postgresql://..."))
    >>> await client.connect()
    >>> value = await client.aggregate(
    ...     AggregationFunction.AVG,
    ...     MetricTable.STREAM_METRICS,
    ...     "messages_rate",
    ...     {"stream_name": "ORDERS"},
    ...     window_start,
    ...     window_end,
    ... )
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog

from stream_alerts.config.models import PostgresConnectionConfig
from stream_alerts.models.alerts import AggregationFunction
from stream_alerts.models.metrics import METRIC_FIELDS, MetricTable
from stream_alerts.storage.base import AsyncpgPoolClient, to_db_timestamp

logger = structlog.get_logger(__name__)


class MetricsClientError(Exception):
    """Base exception for metrics store errors."""

    pass


class MetricsConnectionException(MetricsClientError):
    """Raised when the metrics store connection fails."""

    pass


class MetricsOperationError(MetricsClientError):
    """Raised when a metrics query fails, times out or is rejected."""

    pass


# Columns a query may filter on
FILTER_COLUMNS = frozenset({"stream_name", "consumer_name", "cluster_id"})

_SQL_AGGREGATES = {
    AggregationFunction.AVG: "AVG",
    AggregationFunction.MIN: "MIN",
    AggregationFunction.MAX: "MAX",
    AggregationFunction.SUM: "SUM",
    AggregationFunction.COUNT: "COUNT",
}


def build_aggregate_query(
    fn: AggregationFunction,
    table: MetricTable,
    field: str,
    filters: Mapping[str, Any],
    window_start: datetime,
    window_end: datetime,
) -> Tuple[str, List[Any]]:
    """
    Build a parameterized aggregate query.

    Args:
        fn: Aggregation function.
        table: Metrics table.
        field: Column to aggregate; must be a known column of the table.
        filters: Column equality filters; keys must be in FILTER_COLUMNS.
        window_start: Inclusive window start.
        window_end: Inclusive window end.

    Returns:
        Tuple[str, List[Any]]: SQL text and bound parameters.

    Raises:
        MetricsOperationError: If the table, field or a filter column is unknown.
    """
    table = MetricTable(table)
    if field not in METRIC_FIELDS[table]:
        raise MetricsOperationError(f"Unknown field '{field}' for table {table.value}")

    unknown = set(filters) - FILTER_COLUMNS
    if unknown:
        raise MetricsOperationError(f"Unknown filter columns: {sorted(unknown)}")

    params: List[Any] = [to_db_timestamp(window_start), to_db_timestamp(window_end)]
    clauses = ["timestamp >= $1", "timestamp <= $2"]
    for column in sorted(filters):
        params.append(filters[column])
        clauses.append(f"{column} = ${len(params)}")

    sql = (
        f"SELECT {_SQL_AGGREGATES[AggregationFunction(fn)]}({field}) AS value "
        f"FROM {table.value} "
        f"WHERE {' AND '.join(clauses)}"
    )
    return sql, params


class MetricsClient(AsyncpgPoolClient):
    """
    Read-only client for stream and consumer metrics.

    Attributes:
        query_timeout: Hard timeout in seconds for one aggregate query.

    Example:
        >>> client = MetricsClient(config, query_timeout=5.0)
        >>> await client.connect()
    """

    log_prefix = "metrics_store"
    connection_error = MetricsConnectionException
    operation_error = MetricsOperationError

    def __init__(
        self,
        config: PostgresConnectionConfig,
        query_timeout: float = 5.0,
    ) -> None:
        super().__init__(config)
        self.query_timeout = query_timeout

    async def aggregate(
        self,
        fn: AggregationFunction,
        table: MetricTable,
        field: str,
        filters: Dict[str, Any],
        window_start: datetime,
        window_end: datetime,
    ) -> Optional[float]:
        """
        Aggregate one column over a time window.

        Args:
            fn: Aggregation function.
            table: Metrics table.
            field: Column to aggregate.
            filters: Column equality filters.
            window_start: Inclusive window start.
            window_end: Inclusive window end.

        Returns:
            Optional[float]: The aggregate, or None when the window holds no
            rows. COUNT over an empty window is 0, not None.

        Raises:
            MetricsConnectionException: If not connected.
            MetricsOperationError: If the query is rejected, fails or times out.
        """
        sql, params = build_aggregate_query(
            fn, table, field, filters, window_start, window_end
        )
        start_time = time.monotonic()

        async def _query() -> Any:
            async with self._acquire_connection() as conn:
                return await conn.fetchval(sql, *params)

        try:
            value = await asyncio.wait_for(
                self._execute_with_retry("aggregate", _query),
                timeout=self.query_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                "metrics_query_timeout",
                table=MetricTable(table).value,
                field=field,
                timeout=self.query_timeout,
            )
            raise MetricsOperationError(
                f"Metrics query timed out after {self.query_timeout}s"
            ) from e

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.debug(
            "metrics_aggregated",
            fn=AggregationFunction(fn).value,
            table=MetricTable(table).value,
            field=field,
            value=value,
            elapsed_ms=round(elapsed_ms, 2),
        )

        if value is None:
            return None
        return float(value)
