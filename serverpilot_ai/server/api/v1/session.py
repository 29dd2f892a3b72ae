"""
Remote Session API Endpoints.

This module exposes the shared shell session: connecting and disconnecting,
interactive passthrough from the user's terminal, and the live output stream.

Includes:
- Session lifecycle (connect, disconnect, status)
- Interactive write and resize
- Real-time session events via Server-Sent Events (SSE)
"""

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from serverpilot_ai.core.logging_config import get_logger
from serverpilot_ai.server.api.v1.events import sse_message
from serverpilot_ai.server.schemas import SessionConnect, SessionResize, SessionStatus, SessionWrite
from serverpilot_ai.server.services.deps import WorkspaceDep

logger = get_logger(__name__)
router = APIRouter()


def _status(workspace) -> SessionStatus:
    channel = workspace.channel
    return SessionStatus(
        connected=channel.is_connected,
        os_info=channel.os_info,
        busy=channel.lease_owner is not None,
    )


@router.post(
    "/connect",
    response_model=SessionStatus,
    summary="Connect Session",
    description="Open the remote shell session (ssh or a local shell) and detect the host's operating system.",
    response_description="The session status including the detected OS.",
    responses={409: {"description": "A session is already connected"}},
)
async def connect_session(body: SessionConnect, workspace: WorkspaceDep):
    """
    Connect the remote session.

    Spawns the session, starts forwarding its output to `/session/events`, runs
    OS detection and emits a `connected` event.
    """
    await workspace.connect(body)
    return _status(workspace)


@router.post(
    "/disconnect",
    response_model=SessionStatus,
    summary="Disconnect Session",
    description="Close the remote shell session.",
    response_description="The session status.",
)
async def disconnect_session(workspace: WorkspaceDep):
    """
    Disconnect the remote session.

    Emits a `disconnected` event. Any command still running fails with a lost connection.
    """
    await workspace.disconnect()
    return _status(workspace)


@router.get(
    "/status",
    response_model=SessionStatus,
    summary="Session Status",
    description="Report whether a session is connected and whether a plan command currently owns it.",
    response_description="The session status.",
)
async def session_status(workspace: WorkspaceDep):
    return _status(workspace)


@router.post(
    "/write",
    status_code=204,
    summary="Write To Terminal",
    description="Forward keystrokes from the user's terminal to the session.",
    responses={409: {"description": "A plan command currently owns the session"}},
)
async def write_session(body: SessionWrite, workspace: WorkspaceDep):
    """
    Write raw input to the session.

    Rejected with 409 while a plan step is executing on the session.
    """
    await workspace.channel.write(body.data)


@router.post(
    "/resize",
    status_code=204,
    summary="Resize Terminal",
    description="Propagate the user's terminal geometry to the session.",
)
async def resize_session(body: SessionResize, workspace: WorkspaceDep):
    await workspace.channel.resize(body.cols, body.rows)


@router.get(
    "/events",
    summary="Stream Session Events",
    description="Subscribe to a Server-Sent Events (SSE) stream of session output and lifecycle events.",
    response_description="A stream of event objects.",
    responses={
        200: {
            "description": "SSE stream established",
            "content": {"text/event-stream": {"example": 'event: data\ndata: {"type": "data", "data": "$ "}\n\n'}},
        }
    },
)
async def stream_session_events(request: Request, workspace: WorkspaceDep):
    """
    Stream session events via Server-Sent Events (SSE).

    Event names are `data`, `connected`, `disconnected` and `error`, and each
    payload mirrors the `ChannelEvent` schema. A `keep-alive` event is sent
    while the session is idle.
    """
    logger.info("Starting session event stream")

    async def event_generator():
        try:
            async for event in workspace.session_events.stream():
                if await request.is_disconnected():
                    logger.info("Client disconnected from session event stream")
                    break
                yield sse_message(getattr(getattr(event, "type", None), "value", "message"), event)
        except Exception as e:
            logger.error(f"Error in session event stream: {e}", exc_info=True)
            yield sse_message("error", {"error": str(e)})

    return EventSourceResponse(event_generator())
