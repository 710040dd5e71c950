"""
Generic webhook provider.

Posts a flat JSON envelope to a user-supplied URL, with optional extra
headers from the channel config.

Config:
    url: Target URL (required)
    headers: Mapping of extra request headers (optional)
"""

from typing import Any, Dict

from stream_alerts.detection.channels.base import NotificationProvider
from stream_alerts.models.alerts import ChannelKind
from stream_alerts.models.incidents import LifecycleEvent


class WebhookProvider(NotificationProvider):
    """Delivers the raw event envelope to a webhook URL."""

    kind = ChannelKind.WEBHOOK
    required_fields = ("url",)

    def target_url(self) -> str:
        return self.config_value("url")

    def headers(self) -> Dict[str, str]:
        headers = self.config_value("headers") or {}
        if not isinstance(headers, dict):
            return {}
        return {str(key): str(value) for key, value in headers.items()}

    def build_payload(self, event: LifecycleEvent) -> Dict[str, Any]:
        return {
            "rule": event.rule.name,
            "ruleId": event.rule.id,
            "incidentId": event.incident_id,
            "severity": event.rule.severity.value,
            "status": event.kind.value,
            "metricValue": event.metric_value,
            "threshold": event.threshold,
            "message": event.message,
            "timestamp": event.timestamp.isoformat(),
        }
