"""
Shared asyncpg pool handling for the PostgreSQL-backed stores.

Both the rule store and the metrics store talk to PostgreSQL through an
asyncpg pool with the same connect/ping/retry behaviour. Subclasses pick
their own exception types and log event prefix.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Type

import asyncpg
import structlog
from asyncpg import Connection, Pool
from asyncpg.exceptions import (
    ConnectionDoesNotExistError,
    DataError,
    InterfaceError,
    PostgresError,
    TooManyConnectionsError,
)

from stream_alerts.config.models import PostgresConnectionConfig

logger = structlog.get_logger(__name__)


def to_db_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    """
    Convert a datetime to naive UTC for TIMESTAMP columns.

    Args:
        value: Aware or naive (assumed UTC) datetime.

    Returns:
        Optional[datetime]: Naive UTC datetime or None.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a naive TIMESTAMP value."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def sanitize_url(url: str) -> str:
    """Sanitize URL for logging (remove password)."""
    if "@" in url:
        parts = url.split("@")
        if ":" in parts[0]:
            user_part = parts[0].rsplit(":", 1)[0]
            return f"{user_part}:***@{parts[1]}"
    return url


class AsyncpgPoolClient:
    """
    Base class for asyncpg pool clients.

    Attributes:
        config: PostgreSQL connection configuration.
        log_prefix: Prefix for structured log event names.
        connection_error: Exception raised on connection failures.
        operation_error: Exception raised when an operation exhausts retries.
    """

    # Maximum retries for transient errors
    MAX_RETRIES = 3

    # Retry delay in seconds
    RETRY_DELAY = 0.5

    log_prefix: str = "postgres"
    connection_error: Type[Exception] = ConnectionError
    operation_error: Type[Exception] = RuntimeError

    def __init__(self, config: PostgresConnectionConfig) -> None:
        self.config = config
        self._pool: Optional[Pool] = None
        self._connected: bool = False

        logger.info(
            f"{self.log_prefix}_client_initialized",
            url=sanitize_url(config.url),
            pool_size=config.pool_size,
        )

    @property
    def is_connected(self) -> bool:
        """
        Check if the client is connected.

        Returns:
            bool: True if connected, False otherwise.
        """
        return self._connected and self._pool is not None

    async def connect(self) -> None:
        """
        Establish the connection pool.

        Raises:
            connection_error: If connection fails.
        """
        if self._connected:
            logger.warning(f"{self.log_prefix}_already_connected")
            return

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.config.url,
                min_size=1,
                max_size=self.config.pool_size + self.config.max_overflow,
                command_timeout=self.config.pool_timeout,
                init=self._init_connection,
            )

            # Verify connection with a simple query
            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")

            self._connected = True

            logger.info(
                f"{self.log_prefix}_connected",
                url=sanitize_url(self.config.url),
            )

        except (PostgresError, OSError, asyncio.TimeoutError) as e:
            self._connected = False
            logger.error(
                f"{self.log_prefix}_connection_failed",
                url=sanitize_url(self.config.url),
                error=str(e),
            )
            raise self.connection_error(
                f"Failed to connect to {self.log_prefix}: {e}"
            ) from e

    async def _init_connection(self, conn: Connection) -> None:
        """Set timezone to UTC for consistent timestamps."""
        await conn.execute("SET timezone = 'UTC'")

    async def disconnect(self) -> None:
        """
        Close the connection pool and release resources.

        Safe to call multiple times.
        """
        if self._pool is not None:
            try:
                await self._pool.close()
            except Exception as e:
                logger.warning(f"{self.log_prefix}_close_error", error=str(e))
            finally:
                self._pool = None

        self._connected = False
        logger.info(f"{self.log_prefix}_disconnected")

    async def ping(self) -> bool:
        """
        Check connection health.

        Returns:
            bool: True if the database responds, False otherwise.
        """
        if not self._pool:
            return False

        try:
            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"{self.log_prefix}_ping_failed", error=str(e))
            return False

    @asynccontextmanager
    async def _acquire_connection(self) -> AsyncIterator[Connection]:
        """
        Acquire a connection from the pool with error handling.

        Lost connections are re-raised unchanged so _execute_with_retry can
        try again; the pool replaces dead connections on the next acquire.

        Yields:
            Connection: asyncpg connection from the pool.

        Raises:
            connection_error: If not connected or pool exhausted.
            operation_error: If a query argument is rejected by the driver.
        """
        if not self._connected or self._pool is None:
            raise self.connection_error(f"{self.log_prefix} client is not connected")

        try:
            async with self._pool.acquire() as conn:
                yield conn
        except TooManyConnectionsError as e:
            logger.error(f"{self.log_prefix}_pool_exhausted", error=str(e))
            raise self.connection_error(
                f"Connection pool exhausted: {e}"
            ) from e
        except DataError as e:
            # DataError subclasses InterfaceError but says nothing about the connection
            logger.warning(f"{self.log_prefix}_invalid_argument", error=str(e))
            raise self.operation_error(f"Invalid query argument: {e}") from e
        except (ConnectionDoesNotExistError, InterfaceError) as e:
            logger.warning(f"{self.log_prefix}_connection_lost", error=str(e))
            raise

    async def _execute_with_retry(
        self,
        operation: str,
        func: Any,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute a database operation with retry logic for transient errors.

        Args:
            operation: Name of the operation for logging.
            func: Async function to execute.
            *args: Positional arguments for the function.
            **kwargs: Keyword arguments for the function.

        Returns:
            Any: Result of the function call.

        Raises:
            operation_error: If all retries fail.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.MAX_RETRIES):
            try:
                return await func(*args, **kwargs)
            except (PostgresError, ConnectionDoesNotExistError, InterfaceError) as e:
                last_error = e
                if attempt < self.MAX_RETRIES - 1:
                    logger.warning(
                        f"{self.log_prefix}_operation_retry",
                        operation=operation,
                        attempt=attempt + 1,
                        max_retries=self.MAX_RETRIES,
                        error=str(e),
                    )
                    await asyncio.sleep(self.RETRY_DELAY * (attempt + 1))
                else:
                    logger.error(
                        f"{self.log_prefix}_operation_failed",
                        operation=operation,
                        error=str(e),
                    )

        raise self.operation_error(
            f"Operation '{operation}' failed after {self.MAX_RETRIES} attempts: {last_error}"
        )
