"""
Async PostgreSQL client for the rule store.

The rule store is owned by the REST layer. The alerting core reads rules
and notification channels from it and writes only incident transitions and
the append-only alert event log.

Key Tables:
    - alert_rules: Rule definitions (condition/threshold as JSONB)
    - notification_channels: Provider configurations (config as JSONB)
    - alert_rule_notification_channels: Rule to channel links
    - alert_incidents: Incident lifecycle, one open incident per rule
    - alert_events: Append-only firing/resolved log

Note:
    Columns are TIMESTAMP without time zone and hold UTC. Datetimes are
    converted to naive UTC on write and made aware on read.

Schema:
    The REST layer's migrations create every table above except
    alert_events, which deployers must create in the rule store database:

        CREATE TABLE alert_events (
            id              UUID PRIMARY KEY,
            org_id          UUID NOT NULL,
            alert_rule_id   UUID NOT NULL,
            cluster_id      UUID,
            timestamp       TIMESTAMP NOT NULL,
            severity        TEXT NOT NULL,
            status          TEXT NOT NULL,
            metric_value    DOUBLE PRECISION NOT NULL,
            threshold_value DOUBLE PRECISION NOT NULL,
            message         TEXT NOT NULL,
            notified_at     TIMESTAMP,
            resolved_at     TIMESTAMP
        );
        CREATE INDEX alert_events_rule_ts ON alert_events (alert_rule_id, timestamp);

    Without it every insert_alert_event exhausts its retries and the event
    is dropped with a logged warning; incident handling is unaffected.

Example:
    >>> from stream_alerts.config.models import PostgresConnectionConfig
    >>> from stream_alerts.storage.postgres_client import PostgresClient
    >>>
    >>> client = PostgresClient(PostgresConnectionConfig(url="postgresql://..."))
    >>> await client.connect()
    >>> rules = await client.fetch_enabled_rules()
    >>> incident = await client.get_open_incident(rules[0].id)
"""

from __future__ import annotations

import json
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

import structlog
from pydantic import ValidationError

from stream_alerts.models.alerts import (
    AlertCondition,
    AlertRule,
    AlertThreshold,
    NotificationChannel,
)
from stream_alerts.models.incidents import AlertEvent, Incident
from stream_alerts.storage.base import (
    AsyncpgPoolClient,
    from_db_timestamp,
    to_db_timestamp,
)

logger = structlog.get_logger(__name__)


class PostgresClientError(Exception):
    """Base exception for PostgreSQL client errors."""

    pass


class PostgresConnectionException(PostgresClientError):
    """Raised when PostgreSQL connection fails."""

    pass


class PostgresOperationError(PostgresClientError):
    """Raised when a PostgreSQL operation fails."""

    pass


def _json_value(value: Any) -> Any:
    """Decode a JSON/JSONB column that asyncpg hands back as text."""
    if value is None:
        return None
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def channel_from_record(record: Mapping[str, Any]) -> NotificationChannel:
    """
    Build a NotificationChannel from a notification_channels row.

    Args:
        record: Row (or aggregated JSON object) with id, org_id, name,
            type, config and is_enabled.

    Returns:
        NotificationChannel: Parsed channel.
    """
    return NotificationChannel(
        id=str(record["id"]),
        org_id=str(record["org_id"]),
        name=record["name"],
        kind=record["type"],
        config=_json_value(record["config"]) or {},
        enabled=bool(record["is_enabled"]),
    )


def rule_from_record(
    record: Mapping[str, Any],
    channels: Optional[List[NotificationChannel]] = None,
) -> AlertRule:
    """
    Build an AlertRule from an alert_rules row.

    The JSONB columns use the REST layer's shape:
    condition = {metric, operator, window, aggregation} and
    threshold = {value, type}.

    Args:
        record: alert_rules row.
        channels: Linked channels in configured order.

    Returns:
        AlertRule: Parsed rule.

    Raises:
        ValidationError: If the stored rule is malformed.
        KeyError: If a required JSON key is missing.
    """
    condition = _json_value(record["condition"]) or {}
    threshold = _json_value(record["threshold"]) or {}

    return AlertRule(
        id=str(record["id"]),
        org_id=str(record["org_id"]),
        cluster_id=str(record["cluster_id"]) if record["cluster_id"] else None,
        name=record["name"],
        condition=AlertCondition(
            metric_path=condition["metric"],
            operator=condition["operator"],
            window_seconds=condition["window"],
            aggregation=condition["aggregation"],
        ),
        threshold=AlertThreshold(
            value=threshold["value"],
            kind=threshold.get("type", "absolute"),
        ),
        severity=record["severity"],
        enabled=bool(record["is_enabled"]),
        cooldown_minutes=record["cooldown_mins"],
        channels=channels or [],
    )


def incident_from_record(record: Mapping[str, Any]) -> Incident:
    """Build an Incident from an alert_incidents row."""
    return Incident(
        id=str(record["id"]),
        rule_id=str(record["rule_id"]),
        status=record["status"],
        triggered_at=from_db_timestamp(record["triggered_at"]),
        acknowledged_at=from_db_timestamp(record["acknowledged_at"]),
        resolved_at=from_db_timestamp(record["resolved_at"]),
        closed_at=from_db_timestamp(record["closed_at"]),
        metadata=_json_value(record["metadata"]) or {},
        notified_at=from_db_timestamp(record["notified_at"]),
    )


_INCIDENT_COLUMNS = """
    id, rule_id, status, triggered_at, acknowledged_at,
    resolved_at, closed_at, metadata, notified_at
"""

_RULE_SELECT = """
    SELECT
        r.id, r.org_id, r.cluster_id, r.name, r.condition, r.threshold,
        r.severity, r.is_enabled, r.cooldown_mins,
        COALESCE(
            json_agg(
                json_build_object(
                    'id', c.id,
                    'org_id', c.org_id,
                    'name', c.name,
                    'type', c.type,
                    'config', c.config,
                    'is_enabled', c.is_enabled
                )
                ORDER BY c.created_at, c.id
            ) FILTER (WHERE c.id IS NOT NULL),
            '[]'::json
        ) AS channels
    FROM alert_rules r
    LEFT JOIN alert_rule_notification_channels rc ON rc.rule_id = r.id
    LEFT JOIN notification_channels c ON c.id = rc.channel_id
"""


class PostgresClient(AsyncpgPoolClient):
    """
    Async PostgreSQL client for alert rules and incidents.

    Provides the read side the scheduler needs (rules with their channels,
    the current open incident) and the small set of writes the alerting core
    owns (incident open/resolve, notified stamp, alert events).

    Example:
        >>> client = PostgresClient(PostgresConnectionConfig(url="postgresql://..."))
        >>> await client.connect()
        >>> try:
        ...     rules = await client.fetch_enabled_rules()
        ... finally:
        ...     await client.disconnect()
    """

    log_prefix = "postgres"
    connection_error = PostgresConnectionException
    operation_error = PostgresOperationError

    # =========================================================================
    # RULES AND CHANNELS
    # =========================================================================

    def _parse_rule_row(self, row: Mapping[str, Any]) -> Optional[AlertRule]:
        """Parse a rule row with its aggregated channels; None if malformed."""
        try:
            channels = [
                channel_from_record(item)
                for item in (_json_value(row["channels"]) or [])
            ]
            return rule_from_record(row, channels)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning(
                "rule_parse_failed",
                rule_id=str(row["id"]),
                error=str(e),
            )
            return None

    async def fetch_enabled_rules(self) -> List[AlertRule]:
        """
        Load every enabled rule with its linked notification channels.

        Malformed rules are logged and skipped so one bad row cannot stop
        evaluation of the others.

        Returns:
            List[AlertRule]: Enabled rules.

        Raises:
            PostgresConnectionException: If not connected.
            PostgresOperationError: If the query fails.
        """
        start_time = time.monotonic()

        async def _query() -> List[Any]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(
                    _RULE_SELECT
                    + """
                    WHERE r.is_enabled = true
                    GROUP BY r.id
                    ORDER BY r.created_at, r.id
                    """
                )

        rows = await self._execute_with_retry("fetch_enabled_rules", _query)

        rules = []
        for row in rows:
            rule = self._parse_rule_row(row)
            if rule is not None:
                rules.append(rule)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.debug(
            "enabled_rules_fetched",
            count=len(rules),
            skipped=len(rows) - len(rules),
            elapsed_ms=round(elapsed_ms, 2),
        )

        return rules

    async def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        """
        Load one rule with its channels, regardless of its enabled flag.

        Args:
            rule_id: Rule identifier.

        Returns:
            Optional[AlertRule]: The rule, or None if absent or malformed.
        """

        async def _query() -> Optional[Any]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    _RULE_SELECT
                    + """
                    WHERE r.id = $1
                    GROUP BY r.id
                    """,
                    rule_id,
                )

        row = await self._execute_with_retry("get_rule", _query)
        if row is None:
            return None
        return self._parse_rule_row(row)

    async def get_channel(self, channel_id: str) -> Optional[NotificationChannel]:
        """
        Load one notification channel.

        Args:
            channel_id: Channel identifier.

        Returns:
            Optional[NotificationChannel]: The channel, or None if absent.
        """

        async def _query() -> Optional[Any]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    """
                    SELECT id, org_id, name, type, config, is_enabled
                    FROM notification_channels
                    WHERE id = $1
                    """,
                    channel_id,
                )

        row = await self._execute_with_retry("get_channel", _query)
        if row is None:
            return None
        return channel_from_record(row)

    # =========================================================================
    # INCIDENTS
    # =========================================================================

    async def get_open_incident(self, rule_id: str) -> Optional[Incident]:
        """
        Return the rule's open or acknowledged incident, if any.

        Args:
            rule_id: Rule identifier.

        Returns:
            Optional[Incident]: The active incident or None.
        """

        async def _query() -> Optional[Any]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    f"""
                    SELECT {_INCIDENT_COLUMNS}
                    FROM alert_incidents
                    WHERE rule_id = $1
                      AND status IN ('open', 'acknowledged')
                    ORDER BY triggered_at DESC
                    LIMIT 1
                    """,
                    rule_id,
                )

        row = await self._execute_with_retry("get_open_incident", _query)
        if row is None:
            return None
        return incident_from_record(row)

    async def create_incident(
        self,
        rule_id: str,
        triggered_at: datetime,
        metadata: Dict[str, Any],
    ) -> Optional[Incident]:
        """
        Open an incident unless the rule already has an active one.

        The check and the insert run in one transaction holding a
        transaction-scoped advisory lock keyed on the rule, so concurrent
        callers for the same rule serialize and only one insert succeeds.

        Args:
            rule_id: Rule identifier.
            triggered_at: Trigger time.
            metadata: Trigger-time snapshot.

        Returns:
            Optional[Incident]: The new incident, or None if one was already
            open or acknowledged.

        Raises:
            PostgresConnectionException: If not connected.
            PostgresOperationError: If the operation fails.
        """
        start_time = time.monotonic()
        incident_id = str(uuid4())

        async def _insert() -> Optional[Any]:
            async with self._acquire_connection() as conn:
                async with conn.transaction():
                    await conn.execute(
                        "SELECT pg_advisory_xact_lock(hashtext($1::text))",
                        rule_id,
                    )
                    return await conn.fetchrow(
                        f"""
                        INSERT INTO alert_incidents (
                            id, rule_id, status, triggered_at, metadata
                        )
                        SELECT $1, $2, 'open', $3, $4::jsonb
                        WHERE NOT EXISTS (
                            SELECT 1 FROM alert_incidents
                            WHERE rule_id = $2
                              AND status IN ('open', 'acknowledged')
                        )
                        RETURNING {_INCIDENT_COLUMNS}
                        """,
                        incident_id,
                        rule_id,
                        to_db_timestamp(triggered_at),
                        json.dumps(metadata),
                    )

        row = await self._execute_with_retry("create_incident", _insert)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        if row is None:
            logger.info(
                "incident_already_open",
                rule_id=rule_id,
                elapsed_ms=round(elapsed_ms, 2),
            )
            return None

        logger.info(
            "incident_created",
            rule_id=rule_id,
            incident_id=incident_id,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return incident_from_record(row)

    async def resolve_incident(
        self,
        incident_id: str,
        resolved_at: datetime,
    ) -> Optional[Incident]:
        """
        Mark an open or acknowledged incident resolved.

        Args:
            incident_id: Incident identifier.
            resolved_at: Resolution time.

        Returns:
            Optional[Incident]: The updated incident, or None if it was no
            longer active.
        """
        start_time = time.monotonic()

        async def _update() -> Optional[Any]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    f"""
                    UPDATE alert_incidents
                    SET status = 'resolved', resolved_at = $2
                    WHERE id = $1
                      AND status IN ('open', 'acknowledged')
                    RETURNING {_INCIDENT_COLUMNS}
                    """,
                    incident_id,
                    to_db_timestamp(resolved_at),
                )

        row = await self._execute_with_retry("resolve_incident", _update)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "incident_resolve_attempted",
            incident_id=incident_id,
            resolved=row is not None,
            elapsed_ms=round(elapsed_ms, 2),
        )

        if row is None:
            return None
        return incident_from_record(row)

    async def mark_incident_notified(
        self,
        incident_id: str,
        notified_at: datetime,
    ) -> None:
        """Stamp the time notifications for an incident's opening were sent."""

        async def _update() -> None:
            async with self._acquire_connection() as conn:
                await conn.execute(
                    """
                    UPDATE alert_incidents
                    SET notified_at = $2
                    WHERE id = $1
                    """,
                    incident_id,
                    to_db_timestamp(notified_at),
                )

        await self._execute_with_retry("mark_incident_notified", _update)

    # =========================================================================
    # ALERT EVENTS
    # =========================================================================

    async def insert_alert_event(self, event: AlertEvent) -> None:
        """
        Append one row to the alert event log.

        Args:
            event: The AlertEvent to insert.

        Raises:
            PostgresConnectionException: If not connected.
            PostgresOperationError: If the operation fails.
        """
        start_time = time.monotonic()

        async def _insert() -> None:
            async with self._acquire_connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO alert_events (
                        id, org_id, alert_rule_id, cluster_id, timestamp,
                        severity, status, metric_value, threshold_value,
                        message, notified_at, resolved_at
                    ) VALUES (
                        $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12
                    )
                    """,
                    event.id,
                    event.org_id,
                    event.rule_id,
                    event.cluster_id,
                    to_db_timestamp(event.timestamp),
                    event.severity.value,
                    event.status.value,
                    event.metric_value,
                    event.threshold_value,
                    event.message,
                    to_db_timestamp(event.notified_at),
                    to_db_timestamp(event.resolved_at),
                )

        await self._execute_with_retry("insert_alert_event", _insert)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.debug(
            "alert_event_inserted",
            rule_id=event.rule_id,
            status=event.status.value,
            elapsed_ms=round(elapsed_ms, 2),
        )
