"""
Realtime publisher.

Pushes incident lifecycle events onto a Redis pub/sub channel for the API
gateway to relay to dashboards. Publishing is best-effort: failures are
logged and never affect the incident transition.

Example:
    >>> publisher = RealtimePublisher(redis_client, channel="alerts")
    >>> await publisher.publish(event)
"""

from typing import Any, Dict, Optional

import structlog

from stream_alerts.models.incidents import LifecycleEvent
from stream_alerts.storage.redis_client import RedisClient, RedisClientError

logger = structlog.get_logger(__name__)


DEFAULT_CHANNEL = "alerts"


def build_realtime_message(event: LifecycleEvent) -> Dict[str, Any]:
    """
    JSON document published for an event.

    Args:
        event: Lifecycle event.

    Returns:
        Dict[str, Any]: {type: "alert", incidentId, ruleId, ruleName, orgId,
        clusterId, severity, status, metricValue, threshold, timestamp, message}.
    """
    payload = event.to_payload()
    return {
        "type": "alert",
        "incidentId": payload["incidentId"],
        "ruleId": payload["ruleId"],
        "ruleName": payload["ruleName"],
        "orgId": payload["orgId"],
        "clusterId": payload["clusterId"],
        "severity": payload["severity"],
        "status": payload["status"],
        "metricValue": payload["metricValue"],
        "threshold": payload["threshold"],
        "timestamp": payload["timestamp"],
        "message": payload["message"],
    }


class RealtimePublisher:
    """
    Best-effort publisher of lifecycle events.

    Attributes:
        redis_client: Realtime bridge client, or None to disable publishing.
        channel: Pub/sub channel name.
    """

    def __init__(
        self,
        redis_client: Optional[RedisClient],
        channel: str = DEFAULT_CHANNEL,
    ) -> None:
        self.redis_client = redis_client
        self.channel = channel

        logger.debug(
            "realtime_publisher_initialized",
            channel=channel,
            enabled=redis_client is not None,
        )

    async def publish(self, event: LifecycleEvent) -> bool:
        """
        Publish one event.

        Args:
            event: Lifecycle event.

        Returns:
            bool: True if the message was handed to Redis.
        """
        if self.redis_client is None:
            return False

        try:
            await self.redis_client.publish(self.channel, build_realtime_message(event))
            return True
        except RedisClientError as e:
            logger.warning(
                "realtime_publish_failed",
                channel=self.channel,
                rule_id=event.rule.id,
                incident_id=event.incident_id,
                error=str(e),
            )
        except Exception as e:
            logger.error(
                "realtime_publish_error",
                channel=self.channel,
                rule_id=event.rule.id,
                error=str(e),
                error_type=type(e).__name__,
            )
        return False
