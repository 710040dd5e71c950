"""
Storage clients for the alerting core.

Components:
    postgres_client: Rule store (rules, channels, incidents, alert events)
    metrics_client: Time-series metrics store (read-only aggregates)
    redis_client: Realtime bridge (pub/sub publish)
    base: Shared asyncpg pool handling
"""

from stream_alerts.storage.metrics_client import (
    MetricsClient,
    MetricsClientError,
    MetricsConnectionException,
    MetricsOperationError,
)
from stream_alerts.storage.postgres_client import (
    PostgresClient,
    PostgresClientError,
    PostgresConnectionException,
    PostgresOperationError,
)
from stream_alerts.storage.redis_client import (
    RedisClient,
    RedisClientError,
    RedisConnectionException,
    RedisOperationError,
)

__all__: list[str] = [
    # Metrics store
    "MetricsClient",
    "MetricsClientError",
    "MetricsConnectionException",
    "MetricsOperationError",
    # PostgreSQL
    "PostgresClient",
    "PostgresClientError",
    "PostgresConnectionException",
    "PostgresOperationError",
    # Redis
    "RedisClient",
    "RedisClientError",
    "RedisConnectionException",
    "RedisOperationError",
]
