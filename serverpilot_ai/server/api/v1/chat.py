"""
Chat API Endpoints.

This module sends the user's goals to the configured chat backend. A reply that
carries an execution plan loads the plan into the engine, which announces it
with a `generated` event on `/plans/events`.

Includes:
- Blocking and streaming (SSE) goal submission
- Chat stream cancellation
- Session token usage
- Provider API key validation
"""

import asyncio

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from serverpilot_ai.agent_core.service import ChatTurn
from serverpilot_ai.core.logging_config import get_logger
from serverpilot_ai.server.api.v1.events import sse_message
from serverpilot_ai.server.schemas import (
    ApiKeyCheck,
    ApiKeyCheckResult,
    ChatReply,
    ChatRequest,
    ErrorEvent,
    StreamChunkEvent,
    StreamEndEvent,
    TokenUsage,
)
from serverpilot_ai.server.services.deps import WorkspaceDep

logger = get_logger(__name__)
router = APIRouter()

_STREAM_DONE = object()


@router.post(
    "/messages",
    response_model=ChatReply,
    response_model_by_alias=True,
    summary="Send Goal",
    description="Send a goal to the model and wait for the complete reply.",
    response_description="The reply and the plan it produced, if any.",
    responses={
        401: {"description": "The backend rejected the API key"},
        409: {"description": "The provider is not initialized or another request is in flight"},
        422: {"description": "The reply contained a malformed plan"},
        502: {"description": "The backend failed"},
    },
)
async def send_message(body: ChatRequest, workspace: WorkspaceDep):
    """
    Send a goal (blocking).

    - **content**: The goal in natural language.
    - **mode**: Execution mode described to the model (optional).
    """
    logger.info(f"Sending goal to {workspace.chat.provider.name}: {body.content[:80]}")
    turn = await workspace.chat.send_goal(body.content, workspace.goal_context(body.mode))
    return ChatReply(content=turn.content, has_plan=turn.has_plan, plan=turn.plan, usage=turn.usage)


@router.post(
    "/stream",
    summary="Stream Goal",
    description="Send a goal to the model and stream the reply as Server-Sent Events.",
    response_description="A stream of `stream-chunk` events followed by `stream-end` or `error`.",
    responses={
        200: {
            "description": "SSE stream established",
            "content": {"text/event-stream": {"example": 'event: stream-chunk\ndata: {"text": "Sure"}\n\n'}},
        },
        409: {"description": "Another chat request is in flight"},
    },
)
async def stream_message(body: ChatRequest, request: Request, workspace: WorkspaceDep):
    """
    Send a goal (streaming).

    Emits `stream-chunk` events with text deltas, then exactly one of
    `stream-end` (`{content, hasPlan, planId, usage}`) or `error`. Closing the
    connection cancels the stream.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def on_chunk(text: str) -> None:
        await queue.put(sse_message("stream-chunk", StreamChunkEvent(text=text)))

    async def on_end(turn: ChatTurn) -> None:
        end = StreamEndEvent(
            content=turn.content,
            has_plan=turn.has_plan,
            plan_id=turn.plan.id if turn.plan is not None else None,
            usage=turn.usage,
        )
        await queue.put(sse_message("stream-end", end))
        await queue.put(_STREAM_DONE)

    async def on_error(error: BaseException) -> None:
        await queue.put(sse_message("error", ErrorEvent(error=type(error).__name__, details=str(error))))
        await queue.put(_STREAM_DONE)

    handle = workspace.chat.stream_goal(
        body.content,
        on_chunk=on_chunk,
        on_end=on_end,
        on_error=on_error,
        context=workspace.goal_context(body.mode),
    )
    logger.info(f"Streaming goal to {workspace.chat.provider.name}: {body.content[:80]}")

    async def event_generator():
        try:
            while True:
                message = await queue.get()
                if message is _STREAM_DONE:
                    break
                if await request.is_disconnected():
                    logger.info("Client disconnected from chat stream")
                    break
                yield message
        finally:
            if not handle.done:
                handle.cancel()

    return EventSourceResponse(event_generator())


@router.post(
    "/cancel",
    summary="Cancel Chat Stream",
    description="Cancel the in-flight streaming reply. Plan execution is not affected.",
    response_description="Whether a stream was cancelled.",
)
async def cancel_stream(workspace: WorkspaceDep):
    """
    Cancel the chat stream.

    The stream ends with an `error` event of type `StreamCancelledError`.
    """
    return {"cancelled": workspace.chat.cancel()}


@router.get(
    "/tokens",
    response_model=TokenUsage,
    summary="Token Usage",
    description="Tokens consumed by the chat session so far.",
    response_description="Input, output and total token counts.",
)
async def token_usage(workspace: WorkspaceDep):
    usage = workspace.chat.session_usage
    return TokenUsage(
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        total_tokens=usage.total_tokens,
    )


@router.post(
    "/validate-key",
    response_model=ApiKeyCheckResult,
    summary="Validate API Key",
    description="Check an API key against the configured backend without storing it.",
    response_description="The validation outcome.",
)
async def validate_key(body: ApiKeyCheck, workspace: WorkspaceDep):
    """
    Validate a provider API key.

    A structurally malformed key is reported invalid without contacting the
    backend. An inconclusive live check is reported `indeterminate` and accepted.
    """
    result = await workspace.chat.validate_key(body.api_key)
    return ApiKeyCheckResult(result=result, accepted=result.is_accepted)
