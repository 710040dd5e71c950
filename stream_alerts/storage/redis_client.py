"""
Async Redis client for the realtime bridge.

The alerting core pushes incident lifecycle events onto a Redis pub/sub
channel. The API gateway subscribes to that channel and relays the events
to connected dashboards.

Key Patterns:
    - Pub/Sub channel: `alerts` (configurable), one JSON document per event

Example:
    >>> from stream_alerts.config.models import RedisConnectionConfig
    >>> from stream_alerts.storage.redis_client import RedisClient
    >>>
    >>> client = RedisClient(RedisConnectionConfig(url="redis://localhost:6379"))
    >>> await client.connect()
    >>> await client.publish("alerts", {"type": "alert", "ruleId": "r1"})
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Union

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from stream_alerts.config.models import RedisConnectionConfig
from stream_alerts.storage.base import sanitize_url

logger = structlog.get_logger(__name__)


class RedisClientError(Exception):
    """Base exception for Redis client errors."""

    pass


class RedisConnectionException(RedisClientError):
    """Raised when Redis connection fails."""

    pass


class RedisOperationError(RedisClientError):
    """Raised when a Redis operation fails."""

    pass


class RedisClient:
    """
    Async Redis client used as a publish-only realtime bridge.

    Attributes:
        config: Redis connection configuration.
        _pool: Connection pool for efficient connection reuse.
        _client: Redis client instance.
        _connected: Whether the client is connected.

    Example:
        >>> client = RedisClient(RedisConnectionConfig(url="redis://localhost:6379"))
        >>> await client.connect()
        >>> try:
        ...     await client.publish("alerts", payload)
        ... finally:
        ...     await client.disconnect()
    """

    def __init__(self, config: RedisConnectionConfig) -> None:
        """
        Initialize the Redis client.

        Args:
            config: Redis connection configuration containing URL, db, and pool settings.
        """
        self.config = config
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None  # type: ignore[type-arg]
        self._connected: bool = False

        logger.info(
            "redis_client_initialized",
            url=sanitize_url(config.url),
            db=config.db,
            max_connections=config.max_connections,
        )

    @property
    def is_connected(self) -> bool:
        """
        Check if the client is connected to Redis.

        Returns:
            bool: True if connected, False otherwise.
        """
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        Raises:
            RedisConnectionException: If connection fails.
        """
        if self._connected:
            logger.warning("redis_already_connected")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self.config.url,
                db=self.config.db,
                max_connections=self.config.max_connections,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_timeout,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            # Verify connection with ping
            await self._client.ping()
            self._connected = True

            logger.info(
                "redis_connected",
                url=sanitize_url(self.config.url),
                db=self.config.db,
            )

        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            self._connected = False
            logger.error(
                "redis_connection_failed",
                url=sanitize_url(self.config.url),
                error=str(e),
            )
            raise RedisConnectionException(
                f"Failed to connect to Redis at {sanitize_url(self.config.url)}: {e}"
            ) from e

    async def disconnect(self) -> None:
        """
        Close Redis connection and release resources.

        Safe to call multiple times.
        """
        if self._client is not None:
            try:
                await self._client.aclose()
            except RedisError as e:
                logger.warning("redis_close_error", error=str(e))
            finally:
                self._client = None

        if self._pool is not None:
            try:
                await self._pool.aclose()
            except Exception as e:
                logger.warning("redis_pool_close_error", error=str(e))
            finally:
                self._pool = None

        self._connected = False
        logger.info("redis_disconnected")

    async def ping(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            bool: True if Redis responds to PING, False otherwise.
        """
        if not self._client:
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    def _require_connection(self) -> Redis:  # type: ignore[type-arg]
        """
        Ensure client is connected and return the Redis instance.

        Raises:
            RedisConnectionException: If not connected.
        """
        if not self._connected or self._client is None:
            raise RedisConnectionException("Redis client is not connected")
        return self._client

    async def publish(
        self,
        channel: str,
        payload: Union[Dict[str, Any], str],
    ) -> int:
        """
        Publish a message to a pub/sub channel.

        Args:
            channel: Channel name.
            payload: JSON-serializable dict, or an already encoded string.

        Returns:
            int: Number of subscribers that received the message.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()

        try:
            message = payload if isinstance(payload, str) else json.dumps(payload, default=str)
            count = await client.publish(channel, message)

            logger.debug(
                "message_published",
                channel=channel,
                subscribers=count,
            )

            return int(count)

        except RedisError as e:
            logger.error(
                "message_publish_failed",
                channel=channel,
                error=str(e),
            )
            raise RedisOperationError(
                f"Failed to publish to {channel}: {e}"
            ) from e
