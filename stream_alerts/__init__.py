"""
Stream Alerts.

Threshold alerting for NATS JetStream stream and consumer metrics: rules
are evaluated on a fixed cadence, sustained breaches become incidents, and
every incident transition is fanned out to the rule's notification
channels.

This package provides:
- Data models for rules, channels, incidents and metric queries
- Configuration management
- Storage clients for the rule store, metrics store and Redis
- Rule evaluation, incident lifecycle and notification dispatch
- The alert processor service and its HTTP API
"""

__version__ = "1.0.0"
