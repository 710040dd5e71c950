"""Tests for rule store row mapping and incident storage error handling."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from fakes import T0, FakeRuleStore, make_rule
from stream_alerts.detection.errors import PersistenceError
from stream_alerts.detection.storage import IncidentStorage
from stream_alerts.models.alerts import (
    AggregationFunction,
    ChannelKind,
    ComparisonOperator,
    ThresholdKind,
)
from stream_alerts.models.incidents import IncidentStatus
from stream_alerts.storage.postgres_client import (
    channel_from_record,
    incident_from_record,
    rule_from_record,
)

RULE_ROW = {
    "id": "rule-1",
    "org_id": "org-1",
    "cluster_id": None,
    "name": "Orders backlog",
    "condition": json.dumps(
        {"metric": "consumer.ORDERS.processor.pending_count", "operator": "gt", "window": 300, "aggregation": "avg"}
    ),
    "threshold": json.dumps({"value": 1000, "type": "absolute"}),
    "severity": "critical",
    "is_enabled": True,
    "cooldown_mins": 10,
}

CHANNEL_ROW = {
    "id": "ch-1",
    "org_id": "org-1",
    "name": "Ops Slack",
    "type": "slack",
    "config": {"webhookUrl": "https://hooks.slack.com/x"},
    "is_enabled": True,
}


class TestRowMapping:
    def test_rule_from_record(self):
        channel = channel_from_record(CHANNEL_ROW)

        rule = rule_from_record(RULE_ROW, [channel])

        assert rule.condition.metric_path == "consumer.ORDERS.processor.pending_count"
        assert rule.condition.operator == ComparisonOperator.GT
        assert rule.condition.window_seconds == 300
        assert rule.condition.aggregation == AggregationFunction.AVG
        assert rule.threshold.value == 1000
        assert rule.threshold.kind == ThresholdKind.ABSOLUTE
        assert rule.cooldown_seconds == 600
        assert rule.channels[0].kind == ChannelKind.SLACK

    def test_threshold_type_defaults_to_absolute(self):
        row = dict(RULE_ROW, threshold={"value": 5})

        assert rule_from_record(row).threshold.kind == ThresholdKind.ABSOLUTE

    def test_malformed_rule_raises(self):
        row = dict(RULE_ROW, condition={"metric": "stream.X.messages_rate", "operator": "between", "window": 60, "aggregation": "avg"})

        with pytest.raises(ValidationError):
            rule_from_record(row)

    def test_incident_timestamps_become_aware(self):
        row = {
            "id": "inc-1",
            "rule_id": "rule-1",
            "status": "open",
            "triggered_at": datetime(2026, 1, 1, 12, 0),
            "acknowledged_at": None,
            "resolved_at": None,
            "closed_at": None,
            "metadata": '{"metricValue": 1500}',
            "notified_at": None,
        }

        incident = incident_from_record(row)

        assert incident.status == IncidentStatus.OPEN
        assert incident.triggered_at == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert incident.metadata == {"metricValue": 1500}


class TestIncidentStorage:
    async def test_open_failure_raises_persistence_error(self):
        store = FakeRuleStore()
        store.fail_incident_reads = True

        with pytest.raises(PersistenceError):
            await IncidentStorage(store).get_open_incident("rule-1")

    async def test_open_records_snapshot(self):
        store = FakeRuleStore()
        rule = make_rule()

        incident = await IncidentStorage(store).open_incident(rule, 1500.0, T0)

        assert incident.metadata == {
            "metricValue": 1500.0,
            "threshold": 1000.0,
            "thresholdType": "absolute",
            "operator": "gt",
            "metric": "consumer.ORDERS.processor.pending_count",
            "aggregation": "avg",
            "window": 300,
        }
