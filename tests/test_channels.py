"""Tests for notification provider payloads and HTTP error mapping."""

from __future__ import annotations

import aiohttp
import pytest

from fakes import T0, make_channel, make_rule
from stream_alerts.config.models import EmailProviderConfig, NotificationsConfig
from stream_alerts.detection.channels import PROVIDERS, build_provider, dedup_key_for
from stream_alerts.detection.channels.base import RESOLVED_COLOR, SEVERITY_COLORS
from stream_alerts.detection.errors import ChannelConfigError, DeliveryError
from stream_alerts.models.alerts import AlertSeverity, ChannelKind
from stream_alerts.models.incidents import Incident, LifecycleEvent, LifecycleKind

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status: int, body: str = ""):
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Records POSTs and answers with a fixed status or raises."""

    def __init__(self, status: int = 200, error: Exception = None):
        self.status = status
        self.error = error
        self.requests = []
        self.closed = False

    def post(self, url, json=None, headers=None):
        self.requests.append({"url": url, "json": json, "headers": headers})
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status, body="upstream said no")


def event_for(kind=LifecycleKind.FIRING, severity=AlertSeverity.CRITICAL, value=1500.0):
    rule = make_rule(rule_id="rule-42", severity=severity)
    incident = Incident(id="inc-1", rule_id=rule.id, triggered_at=T0)
    return LifecycleEvent.for_transition(kind, rule, incident, value, T0)


async def deliver(kind, config, event=None, settings=None, session=None):
    session = session or FakeSession()
    channel = make_channel("ch-1", kind=kind, config=config)
    provider = build_provider(channel, session, settings or NotificationsConfig())
    await provider.deliver(event or event_for())
    return session


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_every_channel_kind_has_a_provider():
    assert set(PROVIDERS) == set(ChannelKind)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class TestWebhook:
    async def test_envelope_and_headers(self):
        session = await deliver(
            ChannelKind.WEBHOOK,
            {"url": "https://hooks.example.com/x", "headers": {"X-Token": "abc"}},
        )

        request = session.requests[0]
        assert request["url"] == "https://hooks.example.com/x"
        assert request["headers"] == {"X-Token": "abc"}
        assert request["json"] == {
            "rule": "Orders backlog",
            "ruleId": "rule-42",
            "incidentId": "inc-1",
            "severity": "critical",
            "status": "firing",
            "metricValue": 1500.0,
            "threshold": 1000.0,
            "message": 'Alert "Orders backlog" fired: value 1500.0 > threshold 1000.0',
            "timestamp": T0.isoformat(),
        }


class TestSlack:
    async def test_firing_uses_severity_colour(self):
        session = await deliver(ChannelKind.SLACK, {"webhookUrl": "https://hooks.slack.com/x"})

        body = session.requests[0]["json"]
        assert body["attachments"][0]["color"] == SEVERITY_COLORS[AlertSeverity.CRITICAL]
        assert body["blocks"][0]["type"] == "header"
        assert "[CRITICAL]" in body["blocks"][0]["text"]["text"]

    async def test_resolved_is_green(self):
        session = await deliver(
            ChannelKind.SLACK,
            {"webhookUrl": "https://hooks.slack.com/x"},
            event=event_for(kind=LifecycleKind.RESOLVED, value=10.0),
        )

        assert session.requests[0]["json"]["attachments"][0]["color"] == RESOLVED_COLOR


class TestEmail:
    async def test_resend_request(self):
        session = await deliver(
            ChannelKind.EMAIL,
            {"recipients": ["ops@example.com"], "apiKey": "re_123"},
        )

        request = session.requests[0]
        assert request["url"] == "https://api.resend.com/emails"
        assert request["headers"] == {"Authorization": "Bearer re_123"}
        assert request["json"]["to"] == ["ops@example.com"]
        assert request["json"]["subject"] == "[CRITICAL] Orders backlog firing"
        assert request["json"]["from"] == EmailProviderConfig().from_email

    async def test_falls_back_to_service_key_and_single_recipient(self):
        settings = NotificationsConfig(
            email=EmailProviderConfig(api_key="re_default", from_email="alerts@example.com")
        )
        session = await deliver(
            ChannelKind.EMAIL,
            {"recipients": "ops@example.com"},
            settings=settings,
        )

        request = session.requests[0]
        assert request["headers"]["Authorization"] == "Bearer re_default"
        assert request["json"]["to"] == ["ops@example.com"]
        assert request["json"]["from"] == "alerts@example.com"

    async def test_missing_key_is_config_error(self):
        with pytest.raises(ChannelConfigError) as excinfo:
            await deliver(ChannelKind.EMAIL, {"recipients": ["ops@example.com"]})

        assert excinfo.value.field == "apiKey"

    async def test_html_is_escaped(self):
        rule = make_rule().model_copy(update={"name": "<script>x</script>"})
        incident = Incident(id="inc-1", rule_id=rule.id, triggered_at=T0)
        event = LifecycleEvent.for_transition(LifecycleKind.FIRING, rule, incident, 1.0, T0)

        session = await deliver(
            ChannelKind.EMAIL,
            {"recipients": ["ops@example.com"], "apiKey": "k"},
            event=event,
        )

        assert "<script>" not in session.requests[0]["json"]["html"]


class TestTeams:
    async def test_message_card(self):
        session = await deliver(ChannelKind.TEAMS, {"webhookUrl": "https://outlook.example.com/x"})

        body = session.requests[0]["json"]
        assert body["@type"] == "MessageCard"
        assert body["themeColor"] == SEVERITY_COLORS[AlertSeverity.CRITICAL].lstrip("#")
        facts = {fact["name"]: fact["value"] for fact in body["sections"][0]["facts"]}
        assert facts["Value"] == "1500.0"


class TestPagerDuty:
    async def test_trigger(self):
        session = await deliver(ChannelKind.PAGERDUTY, {"routingKey": "R0UT1NG"})

        body = session.requests[0]["json"]
        assert session.requests[0]["url"] == "https://events.pagerduty.com/v2/enqueue"
        assert body["routing_key"] == "R0UT1NG"
        assert body["event_action"] == "trigger"
        assert body["dedup_key"] == "stream-alerts-rule-rule-42"
        assert body["payload"]["severity"] == "critical"

    async def test_resolve_uses_same_dedup_key(self):
        session = await deliver(
            ChannelKind.PAGERDUTY,
            {"routingKey": "R0UT1NG"},
            event=event_for(kind=LifecycleKind.RESOLVED),
        )

        body = session.requests[0]["json"]
        assert body["event_action"] == "resolve"
        assert body["dedup_key"] == dedup_key_for("rule-42")
        assert "payload" not in body


class TestGoogleChat:
    async def test_card(self):
        session = await deliver(ChannelKind.GOOGLE_CHAT, {"webhookUrl": "https://chat.example.com/x"})

        body = session.requests[0]["json"]
        assert body["cardsV2"][0]["cardId"] == "incident-inc-1"
        assert body["text"].startswith('Alert "Orders backlog" fired')


# ---------------------------------------------------------------------------
# Validation and errors
# ---------------------------------------------------------------------------


class TestErrors:
    @pytest.mark.parametrize(
        "kind,field",
        [
            (ChannelKind.WEBHOOK, "url"),
            (ChannelKind.SLACK, "webhookUrl"),
            (ChannelKind.TEAMS, "webhookUrl"),
            (ChannelKind.PAGERDUTY, "routingKey"),
            (ChannelKind.GOOGLE_CHAT, "webhookUrl"),
            (ChannelKind.EMAIL, "recipients"),
        ],
    )
    async def test_missing_required_field(self, kind, field):
        session = FakeSession()

        with pytest.raises(ChannelConfigError) as excinfo:
            await deliver(kind, {field: ""}, session=session)

        assert excinfo.value.field == field
        assert session.requests == []

    async def test_non_2xx_is_delivery_error(self):
        with pytest.raises(DeliveryError) as excinfo:
            await deliver(
                ChannelKind.WEBHOOK,
                {"url": "https://hooks.example.com/x"},
                session=FakeSession(status=503),
            )

        assert excinfo.value.status == 503
        assert excinfo.value.channel_id == "ch-1"

    async def test_transport_error_is_delivery_error(self):
        session = FakeSession(error=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(DeliveryError, match="refused"):
            await deliver(ChannelKind.WEBHOOK, {"url": "https://hooks.example.com/x"}, session=session)
