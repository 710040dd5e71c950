"""Tests for service startup around optional connections."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

import stream_alerts.services as services
from stream_alerts.config.models import AppConfig, RealtimeConfig
from stream_alerts.services import ServiceRunner
from stream_alerts.storage.redis_client import RedisConnectionException

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class RecordingService(ServiceRunner):
    """Runs once and records which realtime client it was given."""

    def __init__(self) -> None:
        super().__init__(config_path="unused")
        self.ran = False
        self.seen_redis = "unset"

    @property
    def service_name(self) -> str:
        return "recording-service"

    async def _initialize(self) -> None:
        pass

    async def _run(self) -> None:
        self.ran = True
        self.seen_redis = self.redis_client

    def _install_signal_handlers(self) -> None:
        pass


def client_class(connect_error=None):
    instance = MagicMock()
    instance.connect = AsyncMock(side_effect=connect_error)
    instance.disconnect = AsyncMock()
    return MagicMock(return_value=instance), instance


@pytest.fixture
def stores(monkeypatch):
    postgres_cls, postgres = client_class()
    metrics_cls, metrics = client_class()
    monkeypatch.setattr(services, "PostgresClient", postgres_cls)
    monkeypatch.setattr(services, "MetricsClient", metrics_cls)
    monkeypatch.setattr(services, "setup_logging", lambda *args, **kwargs: None)
    return postgres, metrics


def use_config(monkeypatch, config: AppConfig) -> None:
    monkeypatch.setattr(services, "load_config", lambda path: config)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class TestRealtimeStartup:
    async def test_redis_down_does_not_stop_the_service(self, monkeypatch, stores):
        redis_cls, redis = client_class(
            RedisConnectionException("Failed to connect to Redis at redis://127.0.0.1:1")
        )
        monkeypatch.setattr(services, "RedisClient", redis_cls)
        use_config(monkeypatch, AppConfig())
        service = RecordingService()

        await service.run()

        assert service.ran is True
        assert service.seen_redis is None
        redis.disconnect.assert_awaited()

    async def test_connected_redis_is_kept(self, monkeypatch, stores):
        redis_cls, redis = client_class()
        monkeypatch.setattr(services, "RedisClient", redis_cls)
        use_config(monkeypatch, AppConfig())
        service = RecordingService()

        await service.run()

        assert service.seen_redis is redis

    async def test_realtime_disabled_skips_redis(self, monkeypatch, stores):
        redis_cls, _ = client_class()
        monkeypatch.setattr(services, "RedisClient", redis_cls)
        use_config(monkeypatch, AppConfig(realtime=RealtimeConfig(enabled=False)))
        service = RecordingService()

        await service.run()

        redis_cls.assert_not_called()
        assert service.seen_redis is None

    async def test_rule_store_failure_is_still_fatal(self, monkeypatch, stores):
        postgres, _ = stores
        postgres.connect.side_effect = ConnectionError("refused")
        use_config(monkeypatch, AppConfig())
        service = RecordingService()

        with pytest.raises(ConnectionError):
            await service.run()

        assert service.ran is False
        postgres.disconnect.assert_awaited()
