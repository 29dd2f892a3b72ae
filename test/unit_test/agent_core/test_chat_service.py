from __future__ import annotations

import asyncio
import json
from typing import List, Optional, Tuple

import pytest

from serverpilot_ai.agent_core.abstraction.base import ApiKeyValidation
from serverpilot_ai.agent_core.abstraction.stream import StreamHandle
from serverpilot_ai.agent_core.runtime.engine import PlanEngine
from serverpilot_ai.agent_core.runtime.models import EngineDeps
from serverpilot_ai.agent_core.schemas.domain import (
    ChatMessage,
    ChatResponse,
    ChatRole,
    ExecutionMode,
    PlanEvent,
    PlanEventType,
    StopReason,
    Usage,
)
from serverpilot_ai.agent_core.service import ChatService, ChatServiceDeps, ChatTurn, GoalContext
from serverpilot_ai.core.errors import ChatBusyError, PlanValidationError, StreamCancelledError

PLAN_REPLY = "I will check the disk first.\n\n```json\n" + json.dumps(
    {
        "type": "plan",
        "goal": "Check disk usage",
        "steps": [{"description": "Show disk usage", "command": "df -h", "riskLevel": "safe"}],
    }
) + "\n```"


def _response(content: str, input_tokens: int = 10, output_tokens: int = 5) -> ChatResponse:
    return ChatResponse(
        content=content,
        stop_reason=StopReason.end_turn,
        usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
    )


class _FakeProvider:
    name = "fake"
    model = "fake-1"

    def __init__(self, *replies: ChatResponse) -> None:
        self.replies = list(replies)
        self.calls: List[Tuple[str, List[ChatMessage]]] = []
        self.hold: Optional[asyncio.Event] = None
        self.validated: List[str] = []

    async def send_message(self, system_prompt, history) -> ChatResponse:
        self.calls.append((system_prompt, list(history)))
        return self.replies.pop(0)

    def send_message_stream(self, system_prompt, history, handler) -> StreamHandle:
        self.calls.append((system_prompt, list(history)))
        response = self.replies.pop(0)
        hold = self.hold

        handle = StreamHandle(handler, name=self.name)

        async def _run() -> Optional[ChatResponse]:
            for word in response.content.split(" "):
                await handle.chunk(word)
            if hold is not None:
                await hold.wait()
            await handle.complete(response)
            return response

        return handle.start(_run())

    async def validate_api_key(self, api_key: str) -> ApiKeyValidation:
        self.validated.append(api_key)
        return ApiKeyValidation.valid


class _IdleRunner:
    async def run_command(self, command, *, timeout=None, on_output=None):
        raise AssertionError("chat must not dispatch commands")


@pytest.fixture
def plan_events() -> List[PlanEvent]:
    return []


@pytest.fixture
def engine(plan_events) -> PlanEngine:
    async def _sink(event: PlanEvent) -> None:
        plan_events.append(event)

    return PlanEngine(deps=EngineDeps(runner=_IdleRunner(), sink=_sink))


def _service(provider: _FakeProvider, engine: PlanEngine) -> ChatService:
    return ChatService(deps=ChatServiceDeps(provider=provider, engine=engine))


class TestSendGoal:
    @pytest.mark.asyncio
    async def test_conversational_reply_has_no_plan(self, engine):
        provider = _FakeProvider(_response("nginx is a web server."))
        chat = _service(provider, engine)

        turn = await chat.send_goal("What is nginx?")

        assert not turn.has_plan
        assert turn.content == "nginx is a web server."
        assert engine.list_plans() == []
        assert [m.role for m in chat.history] == [ChatRole.user, ChatRole.assistant]

    @pytest.mark.asyncio
    async def test_plan_reply_is_loaded_into_engine(self, engine, plan_events):
        provider = _FakeProvider(_response(PLAN_REPLY))
        chat = _service(provider, engine)

        turn = await chat.send_goal(
            "How full is the disk?",
            GoalContext(os_summary="Debian 12 (bookworm) on x86_64", mode=ExecutionMode.supervised),
        )

        assert turn.has_plan
        assert engine.get_plan(turn.plan.id) is turn.plan
        assert turn.plan.steps[0].command == "df -h"
        assert [e.type for e in plan_events] == [PlanEventType.generated]

        system_prompt, history = provider.calls[0]
        assert "Debian 12 (bookworm)" in system_prompt
        assert "supervised" in system_prompt
        assert history == [ChatMessage(role=ChatRole.user, content="How full is the disk?")]

    @pytest.mark.asyncio
    async def test_history_and_usage_accumulate(self, engine):
        provider = _FakeProvider(_response("first", 10, 4), _response("second", 20, 6))
        chat = _service(provider, engine)

        await chat.send_goal("one")
        turn = await chat.send_goal("two")

        assert [m.content for m in provider.calls[1][1]] == ["one", "first", "two"]
        assert turn.usage == Usage(input_tokens=20, output_tokens=6)
        assert turn.session_usage == Usage(input_tokens=30, output_tokens=10)
        assert chat.session_usage.total_tokens == 40

    @pytest.mark.asyncio
    async def test_malformed_plan_raises_but_keeps_reply(self, engine):
        bad = '```json\n{"type": "plan", "goal": "nothing", "steps": []}\n```'
        chat = _service(_FakeProvider(_response(bad)), engine)

        with pytest.raises(PlanValidationError):
            await chat.send_goal("do nothing")

        assert chat.history[-1].content == bad
        assert engine.list_plans() == []

    @pytest.mark.asyncio
    async def test_reset_clears_history_and_usage(self, engine):
        chat = _service(_FakeProvider(_response("hi")), engine)
        await chat.send_goal("hello")

        chat.reset()

        assert chat.history == []
        assert chat.session_usage.total_tokens == 0

    @pytest.mark.asyncio
    async def test_validate_key_delegates_to_provider(self, engine):
        provider = _FakeProvider()
        chat = _service(provider, engine)

        assert await chat.validate_key("sk-test") == ApiKeyValidation.valid
        assert provider.validated == ["sk-test"]


class TestStreamGoal:
    @pytest.mark.asyncio
    async def test_stream_delivers_chunks_and_turn(self, engine):
        chat = _service(_FakeProvider(_response(PLAN_REPLY)), engine)
        chunks: List[str] = []
        turns: List[ChatTurn] = []
        errors: List[BaseException] = []

        async def on_chunk(text: str) -> None:
            chunks.append(text)

        async def on_end(turn: ChatTurn) -> None:
            turns.append(turn)

        async def on_error(error: BaseException) -> None:
            errors.append(error)

        handle = chat.stream_goal("Check the disk", on_chunk=on_chunk, on_end=on_end, on_error=on_error)
        await handle.wait()

        assert " ".join(chunks) == PLAN_REPLY
        assert errors == []
        assert len(turns) == 1
        assert turns[0].has_plan
        assert not chat.is_processing
        assert len(chat.history) == 2

    @pytest.mark.asyncio
    async def test_malformed_plan_goes_to_on_error(self, engine):
        bad = '```json\n{"type": "plan", "goal": "x", "steps": [{"command": "ls", "riskLevel": "weird"}]}\n```'
        chat = _service(_FakeProvider(_response(bad)), engine)
        turns: List[ChatTurn] = []
        errors: List[BaseException] = []

        async def on_chunk(text: str) -> None:
            return None

        async def on_end(turn: ChatTurn) -> None:
            turns.append(turn)

        async def on_error(error: BaseException) -> None:
            errors.append(error)

        await chat.stream_goal("x", on_chunk=on_chunk, on_end=on_end, on_error=on_error).wait()

        assert turns == []
        assert len(errors) == 1
        assert isinstance(errors[0], PlanValidationError)

    @pytest.mark.asyncio
    async def test_second_request_while_streaming_is_rejected(self, engine):
        provider = _FakeProvider(_response("slow reply"))
        provider.hold = asyncio.Event()
        chat = _service(provider, engine)
        chunks: List[str] = []
        errors: List[BaseException] = []

        async def _ignore(value) -> None:
            return None

        async def on_chunk(text: str) -> None:
            chunks.append(text)

        async def on_error(error: BaseException) -> None:
            errors.append(error)

        handle = chat.stream_goal("first", on_chunk=on_chunk, on_end=_ignore, on_error=on_error)
        assert chat.is_processing
        while len(chunks) < 2:
            await asyncio.sleep(0.005)

        with pytest.raises(ChatBusyError):
            chat.stream_goal("second", on_chunk=_ignore, on_end=_ignore, on_error=on_error)
        with pytest.raises(ChatBusyError):
            await chat.send_goal("third")
        with pytest.raises(ChatBusyError):
            chat.reset()

        assert chat.cancel()
        assert await handle.wait() is None
        assert not chat.is_processing
        assert not chat.cancel()
        assert len(errors) == 1
        assert isinstance(errors[0], StreamCancelledError)
        assert chat.history == []

    def test_cancel_without_stream(self, engine):
        assert not _service(_FakeProvider(), engine).cancel()
