from __future__ import annotations

"""Chat service: from a natural-language goal to a loaded plan.

``ChatService`` provides an application-friendly API over the provider
gateway, the plan parser and the plan engine.

Workflow
--------

- ``send_goal`` (blocking) and ``stream_goal`` (streaming):

  1. Build the system prompt from the connected system and execution mode.
  2. Send the conversation history plus the new goal to the provider.
  3. On completion, extract the plan from the reply and ``load`` it into the
     engine, which emits ``generated``.
  4. Add the reply's usage to the session token counter.

- ``cancel`` stops the in-flight chat stream only. It never touches plan
  execution; plans are cancelled through the engine.

``ChatService`` delegates execution semantics to the engine and contains no
gating logic itself.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from ..core.errors import ChatBusyError, PlanValidationError
from .abstraction.base import ApiKeyValidation, ChatProvider
from .abstraction.stream import CallbackStreamHandler, StreamHandle
from .planning.parser import PlanParser
from .planning.prompts import build_system_prompt
from .runtime.engine import PlanEngine
from .schemas.base import BaseSchema
from .schemas.domain import ChatMessage, ChatResponse, ChatRole, ExecutionMode, ExecutionPlan, Usage

logger = logging.getLogger(__name__)


class ChatTurn(BaseSchema):
    """Result of one goal sent to the model."""

    content: str
    plan: Optional[ExecutionPlan] = None
    usage: Usage
    session_usage: Usage

    @property
    def has_plan(self) -> bool:
        return self.plan is not None


@dataclass
class GoalContext:
    """Session context injected into the system prompt."""

    os_summary: Optional[str] = None
    mode: Optional[ExecutionMode] = None
    terminal_context: Optional[str] = None


@dataclass(frozen=True)
class ChatServiceDeps:
    """Dependency bundle for ``ChatService``.

    - ``provider``: the configured chat backend.
    - ``engine``: receives every plan extracted from a reply.
    - ``parser``: plan extraction and validation.
    """

    provider: ChatProvider
    engine: PlanEngine
    parser: PlanParser = field(default_factory=PlanParser)


class ChatService:
    """Conversation state and plan generation for one session."""

    def __init__(self, *, deps: ChatServiceDeps) -> None:
        self._deps = deps
        self._history: List[ChatMessage] = []
        self._session_usage = Usage()
        self._stream: Optional[StreamHandle] = None

    @property
    def provider(self) -> ChatProvider:
        return self._deps.provider

    @property
    def history(self) -> List[ChatMessage]:
        return list(self._history)

    @property
    def session_usage(self) -> Usage:
        return self._session_usage

    @property
    def is_processing(self) -> bool:
        return self._stream is not None and not self._stream.done

    def reset(self) -> None:
        """Forget the conversation and the token counter."""
        if self.is_processing:
            raise ChatBusyError("cannot reset while a chat request is in flight")
        self._history.clear()
        self._session_usage = Usage()

    async def send_goal(self, goal: str, context: Optional[GoalContext] = None) -> ChatTurn:
        """Send ``goal`` and wait for the whole reply."""
        self._ensure_idle()
        history = self._history + [ChatMessage(role=ChatRole.user, content=goal)]
        response = await self._deps.provider.send_message(self._system_prompt(context), history)
        return await self._complete_turn(history, response)

    def stream_goal(
        self,
        goal: str,
        *,
        on_chunk: Callable[[str], Awaitable[None]],
        on_end: Callable[[ChatTurn], Awaitable[None]],
        on_error: Callable[[BaseException], Awaitable[None]],
        context: Optional[GoalContext] = None,
    ) -> StreamHandle:
        """Stream the reply to ``goal``.

        ``on_chunk`` receives text deltas, then exactly one of ``on_end`` (with
        the finished turn) or ``on_error``. A reply carrying a malformed plan
        ends in ``on_error(PlanValidationError)``; the reply text is still kept
        in the history.
        """
        self._ensure_idle()
        history = self._history + [ChatMessage(role=ChatRole.user, content=goal)]

        async def _complete(response: ChatResponse) -> None:
            try:
                turn = await self._complete_turn(history, response)
            except PlanValidationError as e:
                await on_error(e)
                return
            await on_end(turn)

        handler = CallbackStreamHandler(on_chunk=on_chunk, on_complete=_complete, on_error=on_error)
        self._stream = self._deps.provider.send_message_stream(self._system_prompt(context), history, handler)
        return self._stream

    def cancel(self) -> bool:
        """Cancel the in-flight chat stream. Returns ``False`` if there is none."""
        if self._stream is None:
            return False
        cancelled = self._stream.cancel()
        if cancelled:
            logger.info("Chat stream cancelled")
        return cancelled

    async def validate_key(self, api_key: str) -> ApiKeyValidation:
        return await self._deps.provider.validate_api_key(api_key)

    def _ensure_idle(self) -> None:
        if self.is_processing:
            raise ChatBusyError("a chat request is already in flight")

    def _system_prompt(self, context: Optional[GoalContext]) -> str:
        ctx = context or GoalContext()
        return build_system_prompt(os_summary=ctx.os_summary, mode=ctx.mode, terminal_context=ctx.terminal_context)

    async def _complete_turn(self, history: List[ChatMessage], response: ChatResponse) -> ChatTurn:
        self._history = history + [ChatMessage(role=ChatRole.assistant, content=response.content)]
        self._session_usage = self._session_usage + response.usage
        logger.debug(
            "Chat turn finished: stop_reason=%s tokens=%d session_tokens=%d",
            response.stop_reason.value,
            response.usage.total_tokens,
            self._session_usage.total_tokens,
        )

        plan = self._deps.parser.parse_content(response.content)
        if plan is not None:
            await self._deps.engine.load(plan)
        return ChatTurn(content=response.content, plan=plan, usage=response.usage, session_usage=self._session_usage)
