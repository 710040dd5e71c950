"""
Rule evaluation and incident lifecycle.

This module contains metric resolution, threshold evaluation, the per-rule
incident state machine, notification fan-out and the scheduler that drives
them.

Components:
    resolver: MetricResolver for metric path parsing and window aggregation
    evaluator: ThresholdEvaluator for operator comparison
    state: RuleStateRegistry for per-rule cooldown state
    storage: IncidentStorage for durable incident transitions
    manager: IncidentManager for the incident state machine
    dispatcher: NotificationDispatcher for channel fan-out
    channels/: Notification providers (webhook, slack, email, teams,
        pagerduty, google_chat)
    publisher: RealtimePublisher for Redis pub/sub events
    scheduler: AlertScheduler for the evaluation cadence
    preview: preview_rule for side-effect free checks

Example:
    >>> from stream_alerts.detection import (
    ...     AlertScheduler,
    ...     IncidentManager,
    ...     MetricResolver,
    ...     NotificationDispatcher,
    ... )
    >>>
    >>> manager = IncidentManager(
    ...     resolver=MetricResolver(metrics_client),
    ...     evaluator=ThresholdEvaluator(),
    ...     storage=IncidentStorage(postgres_client),
    ...     dispatcher=NotificationDispatcher(config.notifications),
    ...     publisher=RealtimePublisher(redis_client),
    ... )
    >>> scheduler = AlertScheduler(postgres_client, manager, config.scheduler)
    >>> await scheduler.start()
"""

from stream_alerts.detection.dispatcher import (
    ChannelResult,
    DispatchReport,
    NotificationDispatcher,
    build_test_event,
    create_dispatcher,
)
from stream_alerts.detection.errors import (
    AlertingError,
    ChannelConfigError,
    DeliveryError,
    PersistenceError,
    ResolutionUnavailable,
)
from stream_alerts.detection.evaluator import ThresholdEvaluator, create_evaluator
from stream_alerts.detection.manager import (
    EvaluationAction,
    EvaluationOutcome,
    IncidentManager,
    create_incident_manager,
)
from stream_alerts.detection.preview import preview_rule
from stream_alerts.detection.publisher import RealtimePublisher, build_realtime_message
from stream_alerts.detection.resolver import MetricResolver, parse_metric_path
from stream_alerts.detection.scheduler import AlertScheduler, TickSummary, create_scheduler
from stream_alerts.detection.state import (
    RuleRuntimeState,
    RuleStateRegistry,
    create_rule_state_registry,
)
from stream_alerts.detection.storage import IncidentStorage, create_incident_storage

__all__ = [
    # Errors
    "AlertingError",
    "ChannelConfigError",
    "DeliveryError",
    "PersistenceError",
    "ResolutionUnavailable",
    # Resolver
    "MetricResolver",
    "parse_metric_path",
    # Evaluator
    "ThresholdEvaluator",
    "create_evaluator",
    # State
    "RuleRuntimeState",
    "RuleStateRegistry",
    "create_rule_state_registry",
    # Storage
    "IncidentStorage",
    "create_incident_storage",
    # Manager
    "EvaluationAction",
    "EvaluationOutcome",
    "IncidentManager",
    "create_incident_manager",
    # Dispatcher
    "ChannelResult",
    "DispatchReport",
    "NotificationDispatcher",
    "build_test_event",
    "create_dispatcher",
    # Publisher
    "RealtimePublisher",
    "build_realtime_message",
    # Scheduler
    "AlertScheduler",
    "TickSummary",
    "create_scheduler",
    # Preview
    "preview_rule",
]
