"""Tests for the evaluation cadence, tick isolation and shutdown."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from fakes import T0, FakeRuleStore, make_rule
from stream_alerts.config.models import SchedulerConfig
from stream_alerts.detection.manager import EvaluationAction, EvaluationOutcome
from stream_alerts.detection.scheduler import AlertScheduler

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def stub_manager(evaluate):
    manager = MagicMock()
    manager.evaluate_rule = AsyncMock(side_effect=evaluate)
    manager.dispatcher.close = AsyncMock()
    manager.state.snapshot.return_value = {}
    return manager


async def idle(rule, now):
    return EvaluationOutcome(rule_id=rule.id, action=EvaluationAction.IDLE)


def quiet_config(**overrides):
    values = {"interval_seconds": 3600, "max_concurrent_rules": 4, "shutdown_grace_seconds": 1}
    values.update(overrides)
    return SchedulerConfig(**values)


# ---------------------------------------------------------------------------
# run_tick
# ---------------------------------------------------------------------------


class TestRunTick:
    async def test_evaluates_enabled_rules(self):
        store = FakeRuleStore(
            rules=[make_rule("r1"), make_rule("r2"), make_rule("r3", enabled=False)]
        )
        manager = stub_manager(idle)
        scheduler = AlertScheduler(store, manager, quiet_config())

        summary = await scheduler.run_tick(T0)

        assert summary.rules_loaded == 2
        assert summary.count(EvaluationAction.IDLE) == 2
        assert {call.args[0].id for call in manager.evaluate_rule.call_args_list} == {"r1", "r2"}
        assert all(call.args[1] == T0 for call in manager.evaluate_rule.call_args_list)
        assert scheduler.last_tick is summary

    async def test_rule_failure_is_isolated(self):
        async def evaluate(rule, now):
            if rule.id == "r2":
                raise RuntimeError("boom")
            return EvaluationOutcome(rule_id=rule.id, action=EvaluationAction.FIRED)

        store = FakeRuleStore(rules=[make_rule("r1"), make_rule("r2"), make_rule("r3")])
        scheduler = AlertScheduler(store, stub_manager(evaluate), quiet_config())

        summary = await scheduler.run_tick(T0)

        assert summary.count(EvaluationAction.FIRED) == 2
        assert summary.count(EvaluationAction.ERROR) == 1
        errored = [o for o in summary.outcomes if o.action == EvaluationAction.ERROR]
        assert errored[0].rule_id == "r2"
        assert errored[0].error == "boom"

    async def test_rule_load_failure_ends_tick(self):
        store = FakeRuleStore(rules=[make_rule("r1")])
        store.fail_rule_load = True
        manager = stub_manager(idle)
        scheduler = AlertScheduler(store, manager, quiet_config())

        summary = await scheduler.run_tick(T0)

        assert summary.load_error is not None
        assert summary.rules_loaded == 0
        manager.evaluate_rule.assert_not_called()
        assert scheduler.last_tick.to_dict()["error"] == summary.load_error

    async def test_concurrency_is_bounded(self):
        running = 0
        peak = 0

        async def evaluate(rule, now):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return EvaluationOutcome(rule_id=rule.id, action=EvaluationAction.IDLE)

        store = FakeRuleStore(rules=[make_rule(f"r{i}") for i in range(10)])
        scheduler = AlertScheduler(
            store, stub_manager(evaluate), quiet_config(max_concurrent_rules=3)
        )

        await scheduler.run_tick(T0)

        assert peak == 3

    async def test_overlapping_ticks_open_one_incident(self, manager, resolver, rule, rule_store):
        resolver.value = 1500
        scheduler = AlertScheduler(rule_store, manager, quiet_config())

        summaries = await asyncio.gather(scheduler.run_tick(T0), scheduler.run_tick(T0))

        assert sum(s.count(EvaluationAction.FIRED) for s in summaries) == 1
        assert len(rule_store.active_incidents(rule.id)) == 1


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_start_runs_immediately_and_is_idempotent(self):
        store = FakeRuleStore(rules=[make_rule("r1")])
        manager = stub_manager(idle)
        scheduler = AlertScheduler(store, manager, quiet_config())

        await scheduler.start()
        await scheduler.start()
        assert scheduler.is_running is True

        await scheduler.stop()

        assert scheduler.is_running is False
        assert manager.evaluate_rule.await_count == 1
        assert scheduler.last_tick.rules_loaded == 1

    async def test_stop_releases_connections_in_order(self):
        order = []
        store = FakeRuleStore()
        store.disconnect = AsyncMock(side_effect=lambda: order.append("rule_store"))
        manager = stub_manager(idle)
        manager.dispatcher.close = AsyncMock(side_effect=lambda: order.append("session"))
        metrics_client = MagicMock()
        metrics_client.disconnect = AsyncMock(side_effect=lambda: order.append("metrics"))
        redis_client = MagicMock()
        redis_client.disconnect = AsyncMock(side_effect=lambda: order.append("redis"))

        scheduler = AlertScheduler(
            store,
            manager,
            quiet_config(),
            metrics_client=metrics_client,
            redis_client=redis_client,
        )
        await scheduler.start()
        await scheduler.stop()

        assert order == ["session", "metrics", "redis", "rule_store"]

    async def test_release_continues_past_failures(self):
        store = FakeRuleStore()
        manager = stub_manager(idle)
        manager.dispatcher.close = AsyncMock(side_effect=RuntimeError("already closed"))

        scheduler = AlertScheduler(store, manager, quiet_config())
        await scheduler.stop()

        assert store.disconnected is True

    async def test_stop_cancels_ticks_after_grace(self):
        started = asyncio.Event()

        async def hang(rule, now):
            started.set()
            await asyncio.sleep(30)

        store = FakeRuleStore(rules=[make_rule("r1")])
        scheduler = AlertScheduler(
            store, stub_manager(hang), quiet_config(shutdown_grace_seconds=0.05)
        )

        await scheduler.start()
        await asyncio.wait_for(started.wait(), timeout=1)
        await asyncio.wait_for(scheduler.stop(), timeout=2)

        assert scheduler.inflight_ticks == 0
        assert store.disconnected is True

    async def test_no_tick_after_stop(self):
        store = FakeRuleStore(rules=[make_rule("r1")])
        manager = stub_manager(idle)
        scheduler = AlertScheduler(store, manager, quiet_config())

        await scheduler.start()
        await scheduler.stop()
        calls = manager.evaluate_rule.await_count
        await asyncio.sleep(0.01)

        assert manager.evaluate_rule.await_count == calls
