"""
PagerDuty Events API v2 provider.

Firing events trigger, resolved events resolve. The dedup key is derived
from the rule id so a resolve closes the alert its trigger opened.

Config:
    routingKey: Integration routing key (required)
"""

from typing import Any, Dict

from stream_alerts.detection.channels.base import NotificationProvider
from stream_alerts.models.alerts import ChannelKind
from stream_alerts.models.incidents import LifecycleEvent


def dedup_key_for(rule_id: str) -> str:
    """PagerDuty dedup key for a rule."""
    return f"stream-alerts-rule-{rule_id}"


class PagerDutyProvider(NotificationProvider):
    """Delivers events to the PagerDuty Events API."""

    kind = ChannelKind.PAGERDUTY
    required_fields = ("routingKey",)

    def target_url(self) -> str:
        return self.settings.pagerduty.events_url

    def build_payload(self, event: LifecycleEvent) -> Dict[str, Any]:
        rule = event.rule
        payload: Dict[str, Any] = {
            "routing_key": self.config_value("routingKey"),
            "event_action": "trigger" if event.is_firing else "resolve",
            "dedup_key": dedup_key_for(rule.id),
        }

        if event.is_firing:
            payload["payload"] = {
                "summary": event.message,
                "severity": rule.severity.value,
                "source": self.settings.pagerduty.source,
                "timestamp": event.timestamp.isoformat(),
                "custom_details": {
                    "rule_id": rule.id,
                    "rule_name": rule.name,
                    "incident_id": event.incident_id,
                    "cluster_id": rule.cluster_id,
                    "metric": rule.condition.metric_path,
                    "metric_value": event.metric_value,
                    "threshold": event.threshold,
                    "operator": rule.condition.operator.value,
                },
            }

        return payload
