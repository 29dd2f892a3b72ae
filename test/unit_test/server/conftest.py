import json
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Set, Tuple
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from serverpilot_ai.agent_core.abstraction.adapters import AnthropicProvider
from serverpilot_ai.agent_core.abstraction.config import AnthropicConfig
from serverpilot_ai.core.errors import ChannelBusyError, ConnectionLostError
from serverpilot_ai.remote.channel import ChannelEvent, ChannelEventType, CommandResult
from serverpilot_ai.remote.os_detector import OSInfo
from serverpilot_ai.remote.session import SessionConfig
from serverpilot_ai.server.services.workspace import WorkspaceService

TEST_API_KEY = "sk-ant-" + "t" * 40


class FakeChannel:
    """Stands in for ``RemoteCommandChannel``; commands answer from ``results``."""

    def __init__(self) -> None:
        self.listeners: List[Callable] = []
        self.is_connected = False
        self.os_info: Optional[OSInfo] = None
        self.lease_owner: Optional[str] = None
        self.config: Optional[SessionConfig] = None
        self.writes: List[str] = []
        self.geometry: Optional[Tuple[int, int]] = None
        self.commands: List[str] = []
        self.results: Dict[str, Tuple[str, int]] = {}
        self.fail: Set[str] = set()

    def add_listener(self, listener) -> None:
        self.listeners.append(listener)

    async def emit(self, event: ChannelEvent) -> None:
        for listener in list(self.listeners):
            await listener(event)

    async def connect(self, config: SessionConfig) -> OSInfo:
        if self.is_connected:
            raise ChannelBusyError("session already connected")
        self.config = config
        self.is_connected = True
        self.os_info = OSInfo(
            type="linux", distribution="Ubuntu", version="22.04", codename="jammy", architecture="x86_64"
        )
        await self.emit(ChannelEvent(type=ChannelEventType.connected, os_info=self.os_info))
        return self.os_info

    async def disconnect(self) -> None:
        self.is_connected = False
        await self.emit(ChannelEvent(type=ChannelEventType.disconnected))

    async def write(self, data: str) -> None:
        if not self.is_connected:
            raise ConnectionLostError("no session")
        if self.lease_owner is not None:
            raise ChannelBusyError("a plan command owns the session")
        self.writes.append(data)

    async def resize(self, cols: int, rows: int) -> None:
        self.geometry = (cols, rows)

    async def run_command(self, command: str, *, timeout=None, on_output=None) -> CommandResult:
        if command in self.fail:
            raise ConnectionLostError("session dropped")
        self.commands.append(command)
        output, exit_code = self.results.get(command, (f"ok: {command}", 0))
        if on_output is not None:
            await on_output(output)
        return CommandResult(output=output, exit_code=exit_code)


class ChatBackend:
    """Answers Messages API calls with queued replies."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.replies: List[httpx.Response] = []

    def reply_text(self, text: str, input_tokens: int = 12, output_tokens: int = 8) -> None:
        self.replies.append(
            httpx.Response(
                200,
                json={
                    "content": [{"type": "text", "text": text}],
                    "stop_reason": "end_turn",
                    "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
                },
            )
        )

    def reply_stream(self, *deltas: str, input_tokens: int = 12, output_tokens: int = 8) -> None:
        blocks = [
            {"type": "message_start", "message": {"usage": {"input_tokens": input_tokens, "output_tokens": 0}}},
            *(
                {"type": "content_block_delta", "delta": {"type": "text_delta", "text": d}}
                for d in deltas
            ),
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": output_tokens}},
            {"type": "message_stop"},
        ]
        body = "".join(f"event: {b['type']}\ndata: {json.dumps(b)}\n\n" for b in blocks)
        self.replies.append(httpx.Response(200, content=body.encode("utf-8")))

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.replies:
            return httpx.Response(500, json={"error": {"message": "no reply queued"}})
        return self.replies.pop(0)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self._handle))


def plan_reply(*steps: Dict[str, Any], rollback: Optional[List[str]] = None) -> str:
    plan: Dict[str, Any] = {"type": "plan", "goal": "Keep the server healthy", "steps": list(steps)}
    if rollback:
        plan["rollbackPlan"] = rollback
    return f"Here is the plan.\n\n```json\n{json.dumps(plan)}\n```"


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def chat_backend() -> ChatBackend:
    return ChatBackend()


@pytest.fixture
def plan_reply_builder():
    return plan_reply


@pytest_asyncio.fixture
async def workspace(fake_channel, chat_backend) -> AsyncGenerator[WorkspaceService, None]:
    provider = AnthropicProvider(AnthropicConfig(base_url="http://mock/v1"), client=chat_backend.client())
    provider.initialize(TEST_API_KEY)
    service = WorkspaceService(channel=fake_channel, provider=provider)
    yield service
    await service.aclose()


@pytest.fixture
def mock_request():
    request = AsyncMock()
    request.is_disconnected = AsyncMock(return_value=False)
    return request


@pytest_asyncio.fixture(name="client")
async def client_fixture(workspace) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with mocked lifespan and overridden dependencies."""
    from serverpilot_ai.server.main import app
    from serverpilot_ai.server.services.workspace import get_workspace

    app.dependency_overrides[get_workspace] = lambda: workspace

    # Mock the lifespan so no real session or provider is created during tests
    async def mock_lifespan(app):
        yield

    with patch("serverpilot_ai.server.main.lifespan", mock_lifespan):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
            yield client

    app.dependency_overrides.clear()
