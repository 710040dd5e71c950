"""
Channel test API endpoint.

Provides:
    POST /channels/{channel_id}/test - Send a test notification to a channel
"""

from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from stream_alerts.api.app import AppState, get_app_state
from stream_alerts.storage.postgres_client import PostgresClientError

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/channels/{channel_id}/test", summary="Send a test notification")
async def test_channel(
    channel_id: str,
    state: AppState = Depends(get_app_state),
) -> Dict[str, Any]:
    """
    Deliver a synthetic event to one channel, even if it is disabled.

    Returns:
        Dict[str, Any]: {success, channelId, kind, delivered, error, elapsedMs};
        404 if the channel does not exist.
    """
    if state.rule_store is None:
        return JSONResponse(
            status_code=503,
            content={"success": False, "error": "Rule store unavailable"},
        )

    try:
        channel = await state.rule_store.get_channel(channel_id)
    except PostgresClientError as e:
        logger.error("channel_lookup_failed", channel_id=channel_id, error=str(e))
        return JSONResponse(
            status_code=503,
            content={"success": False, "error": "Rule store unavailable"},
        )

    if channel is None:
        return JSONResponse(
            status_code=404,
            content={"success": False, "error": "Channel not found"},
        )

    result = await state.dispatcher.send_test(channel)
    return {"success": result.delivered, **result.to_dict()}
