"""
HTTP API for the alerting service.

Modules:
    app: create_app and the AppState container
    health: GET /health
    rules: Rule test endpoints
    channels: Channel test endpoint
"""

from stream_alerts.api.app import AppState, create_app, get_app_state

__all__ = ["AppState", "create_app", "get_app_state"]
