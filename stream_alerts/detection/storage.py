"""
Durable incident transitions.

This module provides the IncidentStorage class which records incident
transitions in the rule store and appends to the alert event log.

Key Features:
    - Open-incident lookup, re-queried on every evaluation
    - Atomic insert-if-none-open for new incidents
    - Conditional resolve (only open/acknowledged incidents)
    - Best-effort notified stamp and event log append

Rule store failures on the open/lookup/resolve path are raised as
PersistenceError; failures after the transition is durable are logged.

Example:
    >>> storage = IncidentStorage(postgres_client)
    >>> incident = await storage.open_incident(rule, 1200.0, now)
    >>> if incident is None:
    ...     print("Another tick already opened one")
"""

from datetime import datetime
from typing import Optional

import structlog

from stream_alerts.detection.errors import PersistenceError
from stream_alerts.models.alerts import AlertRule
from stream_alerts.models.incidents import (
    AlertEvent,
    AlertEventStatus,
    Incident,
    LifecycleEvent,
    LifecycleKind,
)
from stream_alerts.storage.postgres_client import PostgresClient, PostgresClientError

logger = structlog.get_logger(__name__)


class IncidentStorage:
    """
    Incident persistence on top of the rule store.

    Attributes:
        postgres_client: Rule store client.

    Example:
        >>> storage = IncidentStorage(postgres_client)
        >>> open_incident = await storage.get_open_incident(rule.id)
    """

    def __init__(self, postgres_client: PostgresClient) -> None:
        """
        Initialize the incident storage.

        Args:
            postgres_client: Connected rule store client.
        """
        self.postgres_client = postgres_client

        logger.debug("incident_storage_initialized")

    async def get_open_incident(self, rule_id: str) -> Optional[Incident]:
        """
        Fetch the rule's open or acknowledged incident.

        Raises:
            PersistenceError: If the rule store cannot be read.
        """
        try:
            return await self.postgres_client.get_open_incident(rule_id)
        except PostgresClientError as e:
            logger.error("open_incident_lookup_failed", rule_id=rule_id, error=str(e))
            raise PersistenceError(f"Failed to read open incident for rule {rule_id}: {e}") from e

    async def open_incident(
        self,
        rule: AlertRule,
        metric_value: float,
        now: datetime,
    ) -> Optional[Incident]:
        """
        Open an incident for the rule.

        Args:
            rule: The breaching rule.
            metric_value: Value that breached.
            now: Trigger time.

        Returns:
            Optional[Incident]: The new incident, or None if one was already
            open (a concurrent tick won).

        Raises:
            PersistenceError: If the insert fails.
        """
        metadata = {
            "metricValue": metric_value,
            "threshold": rule.threshold.value,
            "thresholdType": rule.threshold.kind.value,
            "operator": rule.condition.operator.value,
            "metric": rule.condition.metric_path,
            "aggregation": rule.condition.aggregation.value,
            "window": rule.condition.window_seconds,
        }

        try:
            return await self.postgres_client.create_incident(
                rule_id=rule.id,
                triggered_at=now,
                metadata=metadata,
            )
        except PostgresClientError as e:
            logger.error("incident_open_failed", rule_id=rule.id, error=str(e))
            raise PersistenceError(f"Failed to open incident for rule {rule.id}: {e}") from e

    async def resolve_incident(
        self,
        incident: Incident,
        now: datetime,
    ) -> Optional[Incident]:
        """
        Resolve an incident.

        Returns:
            Optional[Incident]: The resolved incident, or None if it was no
            longer active (closed by an operator or resolved concurrently).

        Raises:
            PersistenceError: If the update fails.
        """
        try:
            return await self.postgres_client.resolve_incident(incident.id, now)
        except PostgresClientError as e:
            logger.error(
                "incident_resolve_failed",
                rule_id=incident.rule_id,
                incident_id=incident.id,
                error=str(e),
            )
            raise PersistenceError(f"Failed to resolve incident {incident.id}: {e}") from e

    async def mark_notified(self, incident: Incident, now: datetime) -> None:
        """Stamp notified_at; failures are logged only."""
        try:
            await self.postgres_client.mark_incident_notified(incident.id, now)
        except PostgresClientError as e:
            logger.warning(
                "incident_notified_stamp_failed",
                incident_id=incident.id,
                error=str(e),
            )

    async def record_event(self, event: LifecycleEvent, notified_at: datetime) -> None:
        """
        Append the transition to the alert event log; failures are logged only.

        Args:
            event: The lifecycle event that was dispatched.
            notified_at: When notifications were sent.
        """
        rule = event.rule
        is_resolved = event.kind == LifecycleKind.RESOLVED

        row = AlertEvent(
            rule_id=rule.id,
            org_id=rule.org_id,
            cluster_id=rule.cluster_id,
            timestamp=event.timestamp,
            severity=rule.severity,
            status=AlertEventStatus.RESOLVED if is_resolved else AlertEventStatus.FIRING,
            metric_value=event.metric_value,
            threshold_value=event.threshold,
            message=event.message,
            notified_at=notified_at,
            resolved_at=event.timestamp if is_resolved else None,
        )

        try:
            await self.postgres_client.insert_alert_event(row)
        except PostgresClientError as e:
            logger.warning(
                "alert_event_insert_failed",
                rule_id=rule.id,
                status=row.status.value,
                error=str(e),
            )


def create_incident_storage(postgres_client: PostgresClient) -> IncidentStorage:
    """
    Factory function to create an IncidentStorage.

    Args:
        postgres_client: Connected rule store client.

    Returns:
        IncidentStorage: Configured storage instance.
    """
    return IncidentStorage(postgres_client)
