"""
Notification providers.

Each ChannelKind maps to one NotificationProvider subclass. Adding a
provider means adding a class and a PROVIDERS entry.

Components:
    base: NotificationProvider and shared helpers
    webhook: Generic JSON webhook
    slack: Slack incoming webhook
    email: Resend transactional email
    teams: Microsoft Teams MessageCard
    pagerduty: PagerDuty Events API v2
    google_chat: Google Chat cardsV2

Example:
    >>> provider = build_provider(channel, session, settings)
    >>> await provider.deliver(event)
"""

from typing import Dict, Type

import aiohttp

from stream_alerts.config.models import NotificationsConfig
from stream_alerts.detection.channels.base import NotificationProvider
from stream_alerts.detection.channels.email import EmailProvider
from stream_alerts.detection.channels.google_chat import GoogleChatProvider
from stream_alerts.detection.channels.pagerduty import PagerDutyProvider, dedup_key_for
from stream_alerts.detection.channels.slack import SlackProvider
from stream_alerts.detection.channels.teams import TeamsProvider
from stream_alerts.detection.channels.webhook import WebhookProvider
from stream_alerts.models.alerts import ChannelKind, NotificationChannel

PROVIDERS: Dict[ChannelKind, Type[NotificationProvider]] = {
    ChannelKind.WEBHOOK: WebhookProvider,
    ChannelKind.SLACK: SlackProvider,
    ChannelKind.EMAIL: EmailProvider,
    ChannelKind.TEAMS: TeamsProvider,
    ChannelKind.PAGERDUTY: PagerDutyProvider,
    ChannelKind.GOOGLE_CHAT: GoogleChatProvider,
}


def build_provider(
    channel: NotificationChannel,
    session: aiohttp.ClientSession,
    settings: NotificationsConfig,
) -> NotificationProvider:
    """
    Instantiate the provider for a channel.

    Args:
        channel: Configured channel.
        session: Shared aiohttp session.
        settings: Notification settings.

    Returns:
        NotificationProvider: Provider bound to the channel.
    """
    return PROVIDERS[channel.kind](channel, session, settings)


__all__ = [
    "PROVIDERS",
    "build_provider",
    "dedup_key_for",
    "NotificationProvider",
    "EmailProvider",
    "GoogleChatProvider",
    "PagerDutyProvider",
    "SlackProvider",
    "TeamsProvider",
    "WebhookProvider",
]
