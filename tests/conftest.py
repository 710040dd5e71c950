"""Shared fixtures for the alerting test suite."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from fakes import FakeResolver, FakeRuleStore, delivered_report, make_rule
from stream_alerts.config.models import NotificationsConfig
from stream_alerts.detection.evaluator import ThresholdEvaluator
from stream_alerts.detection.manager import IncidentManager
from stream_alerts.detection.state import RuleStateRegistry
from stream_alerts.detection.storage import IncidentStorage


@pytest.fixture
def rule():
    return make_rule()


@pytest.fixture
def rule_store(rule):
    return FakeRuleStore(rules=[rule], channels=rule.channels)


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def dispatcher():
    mock = MagicMock()
    mock.dispatch = AsyncMock(return_value=delivered_report("ch-1"))
    mock.send_test = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def publisher():
    mock = MagicMock()
    mock.publish = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def state():
    return RuleStateRegistry()


@pytest.fixture
def manager(resolver, rule_store, dispatcher, publisher, state):
    return IncidentManager(
        resolver=resolver,
        evaluator=ThresholdEvaluator(),
        storage=IncidentStorage(rule_store),
        dispatcher=dispatcher,
        publisher=publisher,
        state=state,
    )


@pytest.fixture
def notifications_config():
    return NotificationsConfig(timeout_seconds=0.2)
