"""
Base class for notification providers.

A provider turns a LifecycleEvent into one HTTP call against an external
service. Each provider declares the config fields it needs; a channel that
lacks one raises ChannelConfigError before any request is made.

Key Features:
    - Shared aiohttp session owned by the dispatcher
    - Non-2xx responses, transport errors and timeouts become DeliveryError
    - Severity colours shared across chat providers
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import aiohttp
import structlog

from stream_alerts.config.models import NotificationsConfig
from stream_alerts.detection.errors import ChannelConfigError, DeliveryError
from stream_alerts.models.alerts import AlertSeverity, ChannelKind, NotificationChannel
from stream_alerts.models.incidents import LifecycleEvent

logger = structlog.get_logger(__name__)


# Hex colours per severity; resolved events always use RESOLVED_COLOR
SEVERITY_COLORS: Dict[AlertSeverity, str] = {
    AlertSeverity.INFO: "#439FE0",
    AlertSeverity.WARNING: "#FFCC00",
    AlertSeverity.CRITICAL: "#D00000",
}
RESOLVED_COLOR = "#36A64F"


def event_color(event: LifecycleEvent) -> str:
    """Colour for an event: severity colour when firing, green when resolved."""
    if not event.is_firing:
        return RESOLVED_COLOR
    return SEVERITY_COLORS[event.rule.severity]


def event_title(event: LifecycleEvent) -> str:
    """Short title such as "[CRITICAL] Orders backlog firing"."""
    return f"[{event.rule.severity.value.upper()}] {event.rule.name} {event.kind.value}"


class NotificationProvider(ABC):
    """
    One delivery attempt to one external provider.

    Attributes:
        kind: Channel kind this provider serves.
        required_fields: Config keys that must be present and non-empty.
        channel: The configured channel.
        session: Shared aiohttp session.
        settings: Notification settings.
    """

    kind: ChannelKind
    required_fields: Tuple[str, ...] = ()

    def __init__(
        self,
        channel: NotificationChannel,
        session: aiohttp.ClientSession,
        settings: NotificationsConfig,
    ) -> None:
        self.channel = channel
        self.session = session
        self.settings = settings

    def config_value(self, key: str, default: Any = None) -> Any:
        """Read a config value, treating empty strings as missing."""
        value = self.channel.config.get(key, default)
        if value == "":
            return default
        return value

    def validate(self) -> None:
        """
        Check required config fields.

        Raises:
            ChannelConfigError: If a required field is missing.
        """
        for field in self.required_fields:
            if not self.config_value(field):
                raise ChannelConfigError(
                    f"{self.kind.value} channel '{self.channel.name}' is missing '{field}'",
                    field=field,
                )

    @abstractmethod
    def target_url(self) -> str:
        """URL the payload is posted to."""

    @abstractmethod
    def build_payload(self, event: LifecycleEvent) -> Dict[str, Any]:
        """Provider-specific JSON body for the event."""

    def headers(self) -> Dict[str, str]:
        """Extra request headers."""
        return {}

    async def deliver(self, event: LifecycleEvent) -> None:
        """
        Deliver the event.

        Raises:
            ChannelConfigError: If the channel config is incomplete.
            DeliveryError: If the provider call fails.
        """
        self.validate()
        await self._post_json(self.target_url(), self.build_payload(event), self.headers())

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        POST a JSON body and check the status.

        Raises:
            DeliveryError: On status >= 400, transport error or timeout.
        """
        try:
            async with self.session.post(url, json=payload, headers=headers or {}) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    logger.error(
                        "provider_request_failed",
                        kind=self.kind.value,
                        channel_id=self.channel.id,
                        status=response.status,
                        error=error_text[:500],
                    )
                    raise DeliveryError(
                        f"{self.kind.value} request failed with status {response.status}",
                        channel_id=self.channel.id,
                        status=response.status,
                    )

                logger.debug(
                    "provider_request_succeeded",
                    kind=self.kind.value,
                    channel_id=self.channel.id,
                    status=response.status,
                )

        except aiohttp.ClientError as e:
            logger.error(
                "provider_client_error",
                kind=self.kind.value,
                channel_id=self.channel.id,
                error=str(e),
            )
            raise DeliveryError(
                f"{self.kind.value} request failed: {e}",
                channel_id=self.channel.id,
            ) from e
        except asyncio.TimeoutError as e:
            logger.error(
                "provider_timeout",
                kind=self.kind.value,
                channel_id=self.channel.id,
                timeout=self.settings.timeout_seconds,
            )
            raise DeliveryError(
                f"{self.kind.value} request timeout after {self.settings.timeout_seconds}s",
                channel_id=self.channel.id,
            ) from e
