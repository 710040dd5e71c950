"""
Transactional email provider (Resend API).

Config:
    recipients: List of addresses, or a single address (required)
    apiKey: API key; falls back to the service-wide key
    fromEmail: Sender; falls back to the service-wide sender
"""

import html
from typing import Any, Dict, List

from stream_alerts.detection.channels.base import NotificationProvider, event_color
from stream_alerts.detection.errors import ChannelConfigError
from stream_alerts.models.alerts import ChannelKind
from stream_alerts.models.incidents import LifecycleEvent


class EmailProvider(NotificationProvider):
    """Delivers events by email through the Resend send endpoint."""

    kind = ChannelKind.EMAIL
    required_fields = ("recipients",)

    def api_key(self) -> str:
        return self.config_value("apiKey") or self.settings.email.api_key or ""

    def recipients(self) -> List[str]:
        value = self.config_value("recipients") or []
        if isinstance(value, str):
            value = [value]
        return [str(address).strip() for address in value if str(address).strip()]

    def validate(self) -> None:
        super().validate()
        if not self.recipients():
            raise ChannelConfigError(
                f"email channel '{self.channel.name}' has no recipients",
                field="recipients",
            )
        if not self.api_key():
            raise ChannelConfigError(
                f"email channel '{self.channel.name}' has no API key",
                field="apiKey",
            )

    def target_url(self) -> str:
        return self.settings.email.api_url

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key()}"}

    def build_payload(self, event: LifecycleEvent) -> Dict[str, Any]:
        rule = event.rule
        subject = f"[{rule.severity.value.upper()}] {rule.name} {event.kind.value}"

        rows = [
            ("Metric", rule.condition.metric_path),
            ("Value", str(event.metric_value)),
            ("Threshold", f"{rule.condition.operator.symbol} {event.threshold}"),
            ("Severity", rule.severity.value),
            ("Time", event.timestamp.isoformat()),
        ]
        table = "".join(
            f"<tr><td><strong>{html.escape(label)}</strong></td>"
            f"<td>{html.escape(value)}</td></tr>"
            for label, value in rows
        )
        body = (
            f'<h2 style="color: {event_color(event)}">{html.escape(subject)}</h2>'
            f"<p>{html.escape(event.message)}</p>"
            f"<table>{table}</table>"
        )
        text = "\n".join([event.message, ""] + [f"{label}: {value}" for label, value in rows])

        return {
            "from": self.config_value("fromEmail") or self.settings.email.from_email,
            "to": self.recipients(),
            "subject": subject,
            "html": body,
            "text": text,
        }
