"""
Notification dispatcher.

This module provides the NotificationDispatcher class which fans an
incident transition out to every enabled channel of a rule.

Key Features:
    - One delivery attempt per enabled channel, all channels concurrently
    - Hard per-channel timeout
    - Per-channel isolation: a failing channel is logged and reported,
      never raised, and never blocks the others
    - No retry
    - Test delivery of a synthetic event to a single channel

Example:
    >>> dispatcher = NotificationDispatcher(settings)
    >>> report = await dispatcher.dispatch(event, rule.channels)
    >>> report.delivered_count, report.failed_count
    (2, 1)
    >>> await dispatcher.close()
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import aiohttp
import structlog

from stream_alerts.config.models import NotificationsConfig
from stream_alerts.detection.channels import build_provider
from stream_alerts.detection.channels.base import NotificationProvider
from stream_alerts.detection.errors import ChannelConfigError, DeliveryError
from stream_alerts.models.alerts import (
    AggregationFunction,
    AlertCondition,
    AlertRule,
    AlertSeverity,
    AlertThreshold,
    ComparisonOperator,
    NotificationChannel,
)
from stream_alerts.models.incidents import LifecycleEvent, LifecycleKind

logger = structlog.get_logger(__name__)


ProviderFactory = Callable[
    [NotificationChannel, aiohttp.ClientSession, NotificationsConfig],
    NotificationProvider,
]


@dataclass
class ChannelResult:
    """
    Outcome of one delivery attempt.

    Attributes:
        channel_id: Channel identifier.
        kind: Channel kind value.
        delivered: True if the provider accepted the event.
        error: Failure description when not delivered.
        elapsed_ms: Time spent on the attempt.
    """

    channel_id: str
    kind: str
    delivered: bool
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "kind": self.kind,
            "delivered": self.delivered,
            "error": self.error,
            "elapsedMs": self.elapsed_ms,
        }


@dataclass
class DispatchReport:
    """Per-channel outcomes of one dispatch."""

    results: List[ChannelResult] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return sum(1 for result in self.results if result.delivered)

    @property
    def failed_count(self) -> int:
        return sum(1 for result in self.results if not result.delivered)

    @property
    def all_delivered(self) -> bool:
        return self.failed_count == 0

    def result_for(self, channel_id: str) -> Optional[ChannelResult]:
        for result in self.results:
            if result.channel_id == channel_id:
                return result
        return None


def build_test_event(channel: NotificationChannel, now: datetime) -> LifecycleEvent:
    """
    Synthetic firing event used to check a channel's configuration.

    Args:
        channel: Channel under test.
        now: Event time.

    Returns:
        LifecycleEvent: Event with a placeholder rule.
    """
    rule = AlertRule(
        id="test",
        org_id=channel.org_id,
        name=f"Test notification for {channel.name}",
        condition=AlertCondition(
            metric_path="stream.TEST.messages_rate",
            operator=ComparisonOperator.GT,
            window_seconds=60,
            aggregation=AggregationFunction.AVG,
        ),
        threshold=AlertThreshold(value=0),
        severity=AlertSeverity.INFO,
    )
    return LifecycleEvent(
        kind=LifecycleKind.FIRING,
        rule=rule,
        incident_id="test",
        metric_value=1.0,
        threshold=0.0,
        timestamp=now,
        message=f'Test notification from stream-alerts for channel "{channel.name}"',
    )


class NotificationDispatcher:
    """
    Fans lifecycle events out to notification providers.

    Attributes:
        settings: Notification settings (timeout, user agent, providers).
        provider_factory: Builds a provider for a channel.

    Example:
        >>> dispatcher = NotificationDispatcher(settings)
        >>> report = await dispatcher.dispatch(event, channels)
    """

    def __init__(
        self,
        settings: NotificationsConfig,
        provider_factory: ProviderFactory = build_provider,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            settings: Notification settings.
            provider_factory: Provider constructor; defaults to the kind registry.
            session: Optional pre-built session; one is created lazily otherwise.
        """
        self.settings = settings
        self.provider_factory = provider_factory
        self._session = session

        logger.info(
            "notification_dispatcher_initialized",
            timeout_seconds=settings.timeout_seconds,
        )

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": self.settings.user_agent},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("notification_session_closed")
        self._session = None

    async def dispatch(
        self,
        event: LifecycleEvent,
        channels: Sequence[NotificationChannel],
    ) -> DispatchReport:
        """
        Deliver an event to every enabled channel.

        Never raises for a channel failure.

        Args:
            event: The transition to announce.
            channels: The rule's channels; disabled ones are skipped.

        Returns:
            DispatchReport: Outcome per attempted channel.
        """
        enabled = [channel for channel in channels if channel.enabled]
        if not enabled:
            logger.debug(
                "dispatch_no_channels",
                rule_id=event.rule.id,
                incident_id=event.incident_id,
            )
            return DispatchReport()

        session = await self._ensure_session()
        results = await asyncio.gather(
            *(self._deliver_one(channel, event, session) for channel in enabled)
        )
        report = DispatchReport(results=list(results))

        logger.info(
            "event_dispatched",
            rule_id=event.rule.id,
            incident_id=event.incident_id,
            kind=event.kind.value,
            channels=len(enabled),
            delivered=report.delivered_count,
            failed=report.failed_count,
        )

        return report

    async def send_test(
        self,
        channel: NotificationChannel,
        now: Optional[datetime] = None,
    ) -> ChannelResult:
        """
        Deliver a synthetic event to one channel, regardless of its enabled flag.

        Args:
            channel: Channel to test.
            now: Event time (defaults to current UTC time).

        Returns:
            ChannelResult: Outcome of the attempt.
        """
        event = build_test_event(channel, now or datetime.now(timezone.utc))
        session = await self._ensure_session()
        result = await self._deliver_one(channel, event, session)

        logger.info(
            "channel_test_sent",
            channel_id=channel.id,
            kind=channel.kind.value,
            delivered=result.delivered,
        )

        return result

    async def _deliver_one(
        self,
        channel: NotificationChannel,
        event: LifecycleEvent,
        session: aiohttp.ClientSession,
    ) -> ChannelResult:
        """Run one provider call with timeout and failure isolation."""
        start_time = time.monotonic()
        error: Optional[str] = None

        try:
            provider = self.provider_factory(channel, session, self.settings)
            await asyncio.wait_for(
                provider.deliver(event),
                timeout=self.settings.timeout_seconds,
            )
        except ChannelConfigError as e:
            error = f"configuration error: {e}"
            logger.error(
                "channel_config_invalid",
                channel_id=channel.id,
                kind=channel.kind.value,
                field=e.field,
                error=str(e),
            )
        except asyncio.TimeoutError:
            error = f"timeout after {self.settings.timeout_seconds}s"
            logger.error(
                "channel_dispatch_timeout",
                channel_id=channel.id,
                kind=channel.kind.value,
                timeout=self.settings.timeout_seconds,
            )
        except DeliveryError as e:
            error = str(e)
            logger.error(
                "channel_dispatch_failed",
                channel_id=channel.id,
                kind=channel.kind.value,
                status=e.status,
                error=str(e),
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(
                "channel_dispatch_error",
                channel_id=channel.id,
                kind=channel.kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )

        elapsed_ms = round((time.monotonic() - start_time) * 1000, 2)
        return ChannelResult(
            channel_id=channel.id,
            kind=channel.kind.value,
            delivered=error is None,
            error=error,
            elapsed_ms=elapsed_ms,
        )


def create_dispatcher(settings: Optional[NotificationsConfig] = None) -> NotificationDispatcher:
    """
    Factory function to create a NotificationDispatcher.

    Args:
        settings: Notification settings; defaults to NotificationsConfig().

    Returns:
        NotificationDispatcher: Configured dispatcher.
    """
    return NotificationDispatcher(settings or NotificationsConfig())
