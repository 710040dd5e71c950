"""
Slack incoming-webhook provider.

Sends Block Kit blocks for the headline plus a coloured attachment carrying
the metric details.

Config:
    webhookUrl: Slack incoming webhook URL (required)
"""

from typing import Any, Dict

from stream_alerts.detection.channels.base import (
    NotificationProvider,
    event_color,
    event_title,
)
from stream_alerts.models.alerts import ChannelKind
from stream_alerts.models.incidents import LifecycleEvent


class SlackProvider(NotificationProvider):
    """Delivers events to a Slack incoming webhook."""

    kind = ChannelKind.SLACK
    required_fields = ("webhookUrl",)

    def target_url(self) -> str:
        return self.config_value("webhookUrl")

    def build_payload(self, event: LifecycleEvent) -> Dict[str, Any]:
        rule = event.rule
        emoji = ":rotating_light:" if event.is_firing else ":white_check_mark:"

        return {
            "text": event.message,
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": event_title(event)},
                },
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"{emoji} {event.message}"},
                },
            ],
            "attachments": [
                {
                    "color": event_color(event),
                    "fields": [
                        {"title": "Metric", "value": rule.condition.metric_path, "short": True},
                        {"title": "Value", "value": str(event.metric_value), "short": True},
                        {
                            "title": "Threshold",
                            "value": f"{rule.condition.operator.symbol} {event.threshold}",
                            "short": True,
                        },
                        {"title": "Severity", "value": rule.severity.value, "short": True},
                    ],
                    "footer": f"incident {event.incident_id}",
                    "ts": int(event.timestamp.timestamp()),
                }
            ],
        }
