"""
Exceptions raised inside the alerting core.

None of these escape a scheduler tick: each is caught at the boundary of
the rule or channel it concerns and logged.

Hierarchy:
    AlertingError
    ├── ResolutionUnavailable  - metric has no data or the query failed
    ├── DeliveryError          - a notification provider call failed
    ├── PersistenceError       - rule store read/write failed
    └── ChannelConfigError     - a channel is missing required config
"""

from typing import Optional


class AlertingError(Exception):
    """Base exception for alerting core errors."""

    pass


class ResolutionUnavailable(AlertingError):
    """Raised when a metric value cannot be resolved for a rule."""

    pass


class DeliveryError(AlertingError):
    """
    Raised when a notification provider call fails.

    Attributes:
        channel_id: Channel that failed, when known.
        status: HTTP status returned by the provider, if any.
    """

    def __init__(
        self,
        message: str,
        channel_id: Optional[str] = None,
        status: Optional[int] = None,
    ):
        self.channel_id = channel_id
        self.status = status
        super().__init__(message)


class PersistenceError(AlertingError):
    """Raised when an incident transition cannot be read or written."""

    pass


class ChannelConfigError(AlertingError):
    """Raised when a channel lacks a required configuration field."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)
