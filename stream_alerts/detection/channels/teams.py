"""
Microsoft Teams incoming-webhook provider (Office 365 MessageCard).

Config:
    webhookUrl: Teams incoming webhook URL (required)
"""

from typing import Any, Dict

from stream_alerts.detection.channels.base import (
    NotificationProvider,
    event_color,
    event_title,
)
from stream_alerts.models.alerts import ChannelKind
from stream_alerts.models.incidents import LifecycleEvent


class TeamsProvider(NotificationProvider):
    """Delivers events to a Teams incoming webhook."""

    kind = ChannelKind.TEAMS
    required_fields = ("webhookUrl",)

    def target_url(self) -> str:
        return self.config_value("webhookUrl")

    def build_payload(self, event: LifecycleEvent) -> Dict[str, Any]:
        rule = event.rule
        title = event_title(event)

        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": event_color(event).lstrip("#"),
            "summary": title,
            "sections": [
                {
                    "activityTitle": title,
                    "activitySubtitle": event.message,
                    "facts": [
                        {"name": "Metric", "value": rule.condition.metric_path},
                        {"name": "Value", "value": str(event.metric_value)},
                        {
                            "name": "Threshold",
                            "value": f"{rule.condition.operator.symbol} {event.threshold}",
                        },
                        {"name": "Severity", "value": rule.severity.value},
                        {"name": "Time", "value": event.timestamp.isoformat()},
                    ],
                    "markdown": True,
                }
            ],
        }
