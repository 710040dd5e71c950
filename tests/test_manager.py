"""Tests for the per-rule incident state machine."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from fakes import T0, make_channel, make_rule
from stream_alerts.detection.dispatcher import ChannelResult, DispatchReport
from stream_alerts.detection.manager import EvaluationAction
from stream_alerts.models.incidents import (
    AlertEventStatus,
    IncidentStatus,
    LifecycleKind,
)


def minutes(n: int):
    return T0 + timedelta(minutes=n)


# ---------------------------------------------------------------------------
# State table
# ---------------------------------------------------------------------------


class TestStateTable:
    async def test_no_data_is_a_no_op(self, manager, resolver, rule, rule_store, dispatcher):
        resolver.value = None

        outcome = await manager.evaluate_rule(rule, T0)

        assert outcome.action == EvaluationAction.NO_DATA
        assert rule_store.incidents == {}
        dispatcher.dispatch.assert_not_called()

    async def test_breach_opens_incident(
        self, manager, resolver, rule, rule_store, dispatcher, publisher, state
    ):
        resolver.value = 1500

        outcome = await manager.evaluate_rule(rule, T0)

        assert outcome.action == EvaluationAction.FIRED
        assert outcome.breached is True
        incident = rule_store.incidents[outcome.incident_id]
        assert incident.status == IncidentStatus.OPEN
        assert incident.triggered_at == T0
        assert incident.metadata["metricValue"] == 1500
        assert incident.metadata["operator"] == "gt"

        event = dispatcher.dispatch.call_args.args[0]
        assert event.kind == LifecycleKind.FIRING
        assert event.metric_value == 1500
        publisher.publish.assert_awaited_once()
        assert outcome.incident_id in rule_store.notified
        assert [e.status for e in rule_store.events] == [AlertEventStatus.FIRING]
        assert state.get(rule.id).is_firing is True
        assert state.get(rule.id).last_fired_at == T0

    async def test_breach_with_open_incident_never_duplicates(
        self, manager, resolver, rule, rule_store, dispatcher
    ):
        resolver.value = 1500
        first = await manager.evaluate_rule(rule, T0)

        second = await manager.evaluate_rule(rule, minutes(1))

        assert second.action == EvaluationAction.ALREADY_OPEN
        assert second.incident_id == first.incident_id
        assert len(rule_store.incidents) == 1
        assert dispatcher.dispatch.await_count == 1

    async def test_clear_resolves_with_current_value(
        self, manager, resolver, rule, rule_store, dispatcher, state
    ):
        resolver.value = 1500
        fired = await manager.evaluate_rule(rule, T0)
        resolver.value = 400

        outcome = await manager.evaluate_rule(rule, minutes(2))

        assert outcome.action == EvaluationAction.RESOLVED
        incident = rule_store.incidents[fired.incident_id]
        assert incident.status == IncidentStatus.RESOLVED
        assert incident.resolved_at == minutes(2)

        event = dispatcher.dispatch.call_args.args[0]
        assert event.kind == LifecycleKind.RESOLVED
        assert event.metric_value == 400
        assert rule_store.events[-1].status == AlertEventStatus.RESOLVED
        assert rule_store.events[-1].resolved_at == minutes(2)
        assert state.get(rule.id).is_firing is False

    async def test_clear_without_incident_is_idle(self, manager, resolver, rule, dispatcher):
        resolver.value = 10

        outcome = await manager.evaluate_rule(rule, T0)

        assert outcome.action == EvaluationAction.IDLE
        dispatcher.dispatch.assert_not_called()

    async def test_incident_closed_elsewhere_is_not_resolved_again(
        self, manager, resolver, rule, rule_store, dispatcher
    ):
        resolver.value = 1500
        fired = await manager.evaluate_rule(rule, T0)
        incident = rule_store.incidents[fired.incident_id]
        resolver.value = 10

        # Operator closes the incident after the lookup but before the update
        original_resolve = rule_store.resolve_incident

        async def close_then_resolve(incident_id, resolved_at):
            rule_store.incidents[incident_id] = incident.model_copy(
                update={"status": IncidentStatus.CLOSED}
            )
            return await original_resolve(incident_id, resolved_at)

        rule_store.resolve_incident = close_then_resolve

        outcome = await manager.evaluate_rule(rule, minutes(1))

        assert outcome.action == EvaluationAction.IDLE
        assert dispatcher.dispatch.await_count == 1

    async def test_acknowledged_incident_counts_as_open(
        self, manager, resolver, rule, rule_store
    ):
        resolver.value = 1500
        fired = await manager.evaluate_rule(rule, T0)
        rule_store.incidents[fired.incident_id] = rule_store.incidents[
            fired.incident_id
        ].model_copy(update={"status": IncidentStatus.ACKNOWLEDGED})

        outcome = await manager.evaluate_rule(rule, minutes(10))

        assert outcome.action == EvaluationAction.ALREADY_OPEN


# ---------------------------------------------------------------------------
# Cooldown
# ---------------------------------------------------------------------------


class TestCooldown:
    async def test_sustained_breach_scenario(
        self, manager, resolver, rule, rule_store, dispatcher, publisher
    ):
        """Breach at 0, 1; clear at 2; breach at 3 and 6 with a 5 minute cooldown."""
        timeline = [
            (0, 1500, EvaluationAction.FIRED),
            (1, 1500, EvaluationAction.ALREADY_OPEN),
            (2, 500, EvaluationAction.RESOLVED),
            (3, 1500, EvaluationAction.SUPPRESSED),
            (6, 1500, EvaluationAction.FIRED),
        ]

        for minute, value, expected in timeline:
            resolver.value = value
            outcome = await manager.evaluate_rule(rule, minutes(minute))
            assert outcome.action == expected, f"t={minute}"

        assert len(rule_store.incidents) == 2
        assert len(rule_store.active_incidents(rule.id)) == 1
        assert [e.status for e in rule_store.events] == [
            AlertEventStatus.FIRING,
            AlertEventStatus.RESOLVED,
            AlertEventStatus.FIRING,
        ]
        assert dispatcher.dispatch.await_count == 3
        assert publisher.publish.await_count == 3

    async def test_resolve_does_not_reset_cooldown(self, manager, resolver, rule, state):
        resolver.value = 1500
        await manager.evaluate_rule(rule, T0)
        resolver.value = 0
        await manager.evaluate_rule(rule, minutes(1))

        assert state.get(rule.id).last_fired_at == T0

        resolver.value = 1500
        outcome = await manager.evaluate_rule(rule, minutes(4))
        assert outcome.action == EvaluationAction.SUPPRESSED

        outcome = await manager.evaluate_rule(rule, minutes(5))
        assert outcome.action == EvaluationAction.FIRED


# ---------------------------------------------------------------------------
# Concurrency and failures
# ---------------------------------------------------------------------------


class TestConcurrency:
    async def test_overlapping_evaluations_open_one_incident(
        self, manager, resolver, rule, rule_store, dispatcher
    ):
        resolver.value = 1500

        outcomes = await asyncio.gather(
            *(manager.evaluate_rule(rule, T0) for _ in range(5))
        )

        actions = [outcome.action for outcome in outcomes]
        assert actions.count(EvaluationAction.FIRED) == 1
        assert set(actions) <= {
            EvaluationAction.FIRED,
            EvaluationAction.ALREADY_OPEN,
            EvaluationAction.SUPPRESSED,
        }
        assert len(rule_store.incidents) == 1
        assert dispatcher.dispatch.await_count == 1


class TestFailures:
    async def test_rule_store_failure_is_an_error_outcome(
        self, manager, resolver, rule, rule_store, dispatcher, state
    ):
        resolver.value = 1500
        rule_store.fail_incident_reads = True

        outcome = await manager.evaluate_rule(rule, T0)

        assert outcome.action == EvaluationAction.ERROR
        assert "connection reset" in outcome.error
        dispatcher.dispatch.assert_not_called()
        assert state.get(rule.id).last_fired_at is None

    async def test_failed_delivery_keeps_transition(
        self, manager, resolver, rule, rule_store, dispatcher
    ):
        resolver.value = 1500
        dispatcher.dispatch.return_value = DispatchReport(
            results=[ChannelResult(channel_id="ch-1", kind="webhook", delivered=False, error="500")]
        )

        outcome = await manager.evaluate_rule(rule, T0)

        assert outcome.action == EvaluationAction.FIRED
        assert outcome.dispatch.failed_count == 1
        assert rule_store.incidents[outcome.incident_id].is_active
        assert outcome.incident_id in rule_store.notified
        assert len(rule_store.events) == 1

    async def test_fire_without_enabled_channels_is_stamped(
        self, manager, resolver, rule_store, dispatcher
    ):
        rule = make_rule(channels=[make_channel(enabled=False)])
        rule_store.rules = [rule]
        resolver.value = 1500
        dispatcher.dispatch.return_value = DispatchReport()

        outcome = await manager.evaluate_rule(rule, T0)

        assert outcome.action == EvaluationAction.FIRED
        assert outcome.incident_id in rule_store.notified
        assert rule_store.events[0].notified_at == rule_store.notified[outcome.incident_id]

    async def test_event_log_failure_is_not_fatal(self, manager, resolver, rule, rule_store):
        from stream_alerts.storage.postgres_client import PostgresOperationError

        async def failing_insert(event):
            raise PostgresOperationError("disk full")

        rule_store.insert_alert_event = failing_insert
        resolver.value = 1500

        outcome = await manager.evaluate_rule(rule, T0)

        assert outcome.action == EvaluationAction.FIRED

    async def test_separate_rules_do_not_share_cooldown(
        self, manager, resolver, rule
    ):
        other = rule.model_copy(update={"id": "rule-2"})
        resolver.value = 1500

        first = await manager.evaluate_rule(rule, T0)
        second = await manager.evaluate_rule(other, T0)

        assert first.action == EvaluationAction.FIRED
        assert second.action == EvaluationAction.FIRED
