"""Tests for the health and manual test HTTP endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from fakes import T0, FakeResolver, FakeRuleStore, make_channel, make_rule
from stream_alerts.api.app import create_app
from stream_alerts.detection.dispatcher import ChannelResult
from stream_alerts.detection.evaluator import ThresholdEvaluator
from stream_alerts.detection.scheduler import TickSummary

RULE_BODY = {
    "name": "Orders backlog",
    "condition": {
        "metric": "consumer.ORDERS.processor.pending_count",
        "operator": "gt",
        "window": 300,
        "aggregation": "avg",
    },
    "threshold": {"value": 1000},
    "severity": "critical",
}


@pytest.fixture
def api_resolver():
    return FakeResolver(1500.0)


@pytest.fixture
def api_dispatcher():
    dispatcher = MagicMock()
    dispatcher.send_test = AsyncMock(
        return_value=ChannelResult(channel_id="ch-1", kind="webhook", delivered=True, elapsed_ms=12.5)
    )
    return dispatcher


@pytest.fixture
def api_store():
    return FakeRuleStore(rules=[make_rule()], channels=[make_channel()])


def make_client(resolver, dispatcher, store=None, scheduler=None) -> TestClient:
    app = create_app(
        resolver=resolver,
        evaluator=ThresholdEvaluator(),
        dispatcher=dispatcher,
        rule_store=store,
        scheduler=scheduler,
    )
    return TestClient(app)


@pytest.fixture
def client(api_resolver, api_dispatcher, api_store):
    return make_client(api_resolver, api_dispatcher, api_store)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_without_scheduler(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "stopped"
        assert body["scheduler"]["running"] is False

    def test_running_scheduler(self, api_resolver, api_dispatcher):
        scheduler = MagicMock()
        scheduler.is_running = True
        scheduler.inflight_ticks = 1
        scheduler.last_tick = TickSummary(started_at=T0, duration_ms=4.0, rules_loaded=2)
        scheduler.state_snapshot.return_value = {"rule-1": {}, "rule-2": {}}

        response = make_client(api_resolver, api_dispatcher, scheduler=scheduler).get("/health")

        body = response.json()
        assert body["status"] == "ok"
        assert body["scheduler"]["inflightTicks"] == 1
        assert body["scheduler"]["trackedRules"] == 2
        assert body["scheduler"]["lastTick"]["rules"] == 2

    def test_reports_store_connectivity(self, api_resolver, api_dispatcher, api_store):
        redis_client = MagicMock()
        redis_client.ping = AsyncMock(return_value=False)
        app = create_app(
            resolver=api_resolver,
            evaluator=ThresholdEvaluator(),
            dispatcher=api_dispatcher,
            rule_store=api_store,
            redis_client=redis_client,
        )

        body = TestClient(app).get("/health").json()

        assert body["infrastructure"] == {"ruleStore": "connected", "redis": "disconnected"}
        redis_client.ping.assert_awaited_once()

    def test_ping_failure_is_reported_not_raised(self, api_resolver, api_dispatcher, api_store):
        api_store.ping = AsyncMock(side_effect=RuntimeError("pool closed"))

        response = make_client(api_resolver, api_dispatcher, api_store).get("/health")

        assert response.status_code == 200
        assert response.json()["infrastructure"] == {"ruleStore": "error", "redis": "disabled"}


# ---------------------------------------------------------------------------
# Rule checks
# ---------------------------------------------------------------------------


class TestRuleTest:
    def test_ad_hoc_rule_would_fire(self, client):
        response = client.post("/rules/test", json=RULE_BODY)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "wouldFire": True,
            "metricValue": 1500.0,
            "threshold": 1000.0,
        }

    def test_no_data(self, api_dispatcher, api_store):
        response = make_client(FakeResolver(None), api_dispatcher, api_store).post(
            "/rules/test", json=RULE_BODY
        )

        assert response.json() == {"success": False, "error": "No data in window"}

    def test_invalid_rule_is_400(self, client):
        body = dict(RULE_BODY, name="x" * 101)

        response = client.post("/rules/test", json=body)

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_malformed_body_is_rejected(self, client):
        body = dict(RULE_BODY, condition=dict(RULE_BODY["condition"], operator="between"))

        response = client.post("/rules/test", json=body)

        assert response.status_code == 422

    def test_stored_rule(self, client):
        response = client.post("/rules/rule-1/test")

        assert response.status_code == 200
        assert response.json()["wouldFire"] is True

    def test_stored_rule_not_found(self, client):
        response = client.post("/rules/missing/test")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Rule not found"}

    def test_stored_rule_without_store(self, api_resolver, api_dispatcher):
        response = make_client(api_resolver, api_dispatcher).post("/rules/rule-1/test")

        assert response.status_code == 503

    def test_checks_open_no_incidents(self, client, api_store, api_dispatcher):
        client.post("/rules/rule-1/test")

        assert api_store.incidents == {}
        assert api_store.events == []
        api_dispatcher.dispatch.assert_not_called()


# ---------------------------------------------------------------------------
# Channel checks
# ---------------------------------------------------------------------------


class TestChannelTest:
    def test_sends_test_notification(self, client, api_dispatcher):
        response = client.post("/channels/ch-1/test")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "channelId": "ch-1",
            "kind": "webhook",
            "delivered": True,
            "error": None,
            "elapsedMs": 12.5,
        }
        assert api_dispatcher.send_test.await_args.args[0].id == "ch-1"

    def test_failed_delivery_is_reported(self, client, api_dispatcher):
        api_dispatcher.send_test.return_value = ChannelResult(
            channel_id="ch-1", kind="webhook", delivered=False, error="HTTP 500"
        )

        body = client.post("/channels/ch-1/test").json()

        assert body["success"] is False
        assert body["error"] == "HTTP 500"

    def test_channel_not_found(self, client):
        response = client.post("/channels/missing/test")

        assert response.status_code == 404
        assert response.json()["error"] == "Channel not found"
