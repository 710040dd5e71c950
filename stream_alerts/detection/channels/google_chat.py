"""
Google Chat incoming-webhook provider (cardsV2).

Config:
    webhookUrl: Space webhook URL (required)
"""

from typing import Any, Dict

from stream_alerts.detection.channels.base import NotificationProvider, event_title
from stream_alerts.models.alerts import ChannelKind
from stream_alerts.models.incidents import LifecycleEvent


class GoogleChatProvider(NotificationProvider):
    """Delivers events to a Google Chat space webhook."""

    kind = ChannelKind.GOOGLE_CHAT
    required_fields = ("webhookUrl",)

    def target_url(self) -> str:
        return self.config_value("webhookUrl")

    def build_payload(self, event: LifecycleEvent) -> Dict[str, Any]:
        rule = event.rule

        def _field(label: str, value: str) -> Dict[str, Any]:
            return {"decoratedText": {"topLabel": label, "text": value}}

        return {
            "text": event.message,
            "cardsV2": [
                {
                    "cardId": f"incident-{event.incident_id}",
                    "card": {
                        "header": {
                            "title": event_title(event),
                            "subtitle": event.message,
                        },
                        "sections": [
                            {
                                "widgets": [
                                    _field("Metric", rule.condition.metric_path),
                                    _field("Value", str(event.metric_value)),
                                    _field(
                                        "Threshold",
                                        f"{rule.condition.operator.symbol} {event.threshold}",
                                    ),
                                    _field("Time", event.timestamp.isoformat()),
                                ]
                            }
                        ],
                    },
                }
            ],
        }
