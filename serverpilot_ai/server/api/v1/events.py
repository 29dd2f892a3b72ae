"""Serialization shared by the Server-Sent Events endpoints."""

import json
from typing import Any, Dict

from pydantic import BaseModel

from serverpilot_ai.core.logging_config import get_logger
from serverpilot_ai.server.schemas import ErrorEvent, KeepAliveEvent

logger = get_logger(__name__)


def serialize_event(event: Any) -> str:
    """
    Serialize an event to a JSON string.

    Converts Pydantic models to JSON-serializable format with proper datetime handling.

    Args:
        event: Pydantic model or plain JSON-compatible object

    Returns:
        JSON string representation of the event
    """
    try:
        if isinstance(event, BaseModel):
            return event.model_dump_json(by_alias=True)
        return json.dumps(event)
    except Exception as e:
        logger.error(f"Failed to serialize event: {e}", exc_info=True)
        # Return error event instead of crashing
        error_event = ErrorEvent(error="Failed to serialize event", details=str(e))
        return error_event.model_dump_json()


def sse_message(event_name: str, event: Any) -> Dict[str, str]:
    """Build a named SSE message for ``EventSourceResponse``."""
    if isinstance(event, KeepAliveEvent):
        event_name = "keep-alive"
    return {"event": event_name, "data": serialize_event(event)}
