from __future__ import annotations

import asyncio
from typing import AsyncGenerator, Generic, Optional, Set, TypeVar, Union

from serverpilot_ai.agent_core.abstraction import (
    AnthropicConfig,
    ChatProvider,
    CompatibleChatConfig,
    CompatibleFlavor,
    create_provider,
)
from serverpilot_ai.agent_core.runtime import EngineDeps, PlanEngine
from serverpilot_ai.agent_core.schemas.domain import ExecutionMode, PlanEvent
from serverpilot_ai.agent_core.service import ChatService, ChatServiceDeps, GoalContext
from serverpilot_ai.core.errors import ConnectionLostError
from serverpilot_ai.core.logging_config import get_logger
from serverpilot_ai.remote import RemoteCommandChannel, SessionConfig
from serverpilot_ai.remote.channel import ChannelEvent, ChannelEventType
from serverpilot_ai.remote.os_detector import OSInfo
from serverpilot_ai.server.core import constant
from serverpilot_ai.server.core.config import Settings, settings
from serverpilot_ai.server.schemas import KeepAliveEvent, SessionConnect

logger = get_logger(__name__)

E = TypeVar("E")


class EventBroadcaster(Generic[E]):
    """
    Fan-out of events to any number of SSE subscribers.

    Each subscriber owns a bounded queue. A subscriber that falls behind loses
    events instead of blocking the publisher.
    """

    def __init__(self, name: str, maxsize: int = 1000) -> None:
        self._name = name
        self._maxsize = maxsize
        self._subscribers: Set["asyncio.Queue[E]"] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> "asyncio.Queue[E]":
        queue: "asyncio.Queue[E]" = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.add(queue)
        logger.debug(f"New {self._name} subscriber ({len(self._subscribers)} total)")
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[E]") -> None:
        self._subscribers.discard(queue)
        logger.debug(f"{self._name} subscriber left ({len(self._subscribers)} total)")

    async def publish(self, event: E) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping {self._name} event for a slow subscriber")

    async def stream(
        self, keep_alive: float = constant.SSE_KEEP_ALIVE_SECONDS
    ) -> AsyncGenerator[Union[E, KeepAliveEvent], None]:
        """Yield published events, with a keep-alive whenever the stream is idle."""
        queue = self.subscribe()
        try:
            while True:
                try:
                    yield await asyncio.wait_for(queue.get(), timeout=keep_alive)
                except asyncio.TimeoutError:
                    yield KeepAliveEvent()
        finally:
            self.unsubscribe(queue)


def build_provider(cfg: Settings) -> ChatProvider:
    """Build and, when a key is configured, initialize the configured chat backend."""
    name = cfg.provider.strip().lower()
    if name == "anthropic":
        anthropic = cfg.anthropic
        provider = create_provider(AnthropicConfig(model=anthropic.model, base_url=anthropic.base_url))
        api_key = anthropic.api_key
    elif name in (CompatibleFlavor.openai.value, CompatibleFlavor.moonshot.value):
        group = cfg.openai if name == CompatibleFlavor.openai.value else cfg.moonshot
        provider = create_provider(
            CompatibleChatConfig(flavor=CompatibleFlavor(name), model=group.model, base_url=group.base_url)
        )
        api_key = group.api_key
    else:
        raise ValueError(f"Unsupported chat provider {cfg.provider!r}; expected anthropic, openai or moonshot")

    if api_key:
        provider.initialize(api_key)
    else:
        logger.warning(f"No API key configured for provider {name}; chat calls fail until one is set")
    return provider


class WorkspaceService:
    """
    Service layer wiring one remote session, one chat backend and one plan engine.
    Wraps the core services to provide the operations the API exposes.
    """

    def __init__(
        self,
        *,
        cfg: Optional[Settings] = None,
        channel: Optional[RemoteCommandChannel] = None,
        provider: Optional[ChatProvider] = None,
    ) -> None:
        self.settings = cfg or settings
        execution = self.settings.execution

        self.plan_events: EventBroadcaster[PlanEvent] = EventBroadcaster("plan")
        self.session_events: EventBroadcaster[ChannelEvent] = EventBroadcaster("session")

        self.channel = channel or RemoteCommandChannel(
            command_timeout=execution.command_timeout,
            max_output_bytes=execution.max_output_bytes,
        )
        self.channel.add_listener(self._on_channel_event)

        self.engine = PlanEngine(
            deps=EngineDeps(
                runner=self.channel,
                sink=self.plan_events.publish,
                command_timeout=execution.command_timeout,
                idle_warning_seconds=execution.idle_warning_seconds,
                idle_stalled_seconds=execution.idle_stalled_seconds,
            )
        )
        self.chat = ChatService(
            deps=ChatServiceDeps(provider=provider or build_provider(self.settings), engine=self.engine)
        )

    @property
    def default_mode(self) -> ExecutionMode:
        return ExecutionMode(self.settings.execution.default_mode)

    def goal_context(self, mode: Optional[ExecutionMode] = None) -> GoalContext:
        os_info = self.channel.os_info
        return GoalContext(
            os_summary=os_info.summary() if os_info is not None else None,
            mode=mode or self.default_mode,
        )

    async def connect(self, body: SessionConnect) -> OSInfo:
        config = SessionConfig(
            host=body.host or "localhost",
            port=body.port,
            username=body.username,
            identity_file=body.identity_file,
            ssh_options=body.ssh_options,
            local=body.local,
            cols=body.cols,
            rows=body.rows,
        )
        logger.info(f"Connecting session to {'local shell' if config.local else config.host}")
        return await self.channel.connect(config)

    async def disconnect(self) -> None:
        logger.info("Disconnecting session")
        await self.channel.disconnect()

    async def aclose(self) -> None:
        if self.chat.is_processing:
            self.chat.cancel()
        if self.channel.is_connected:
            await self.channel.disconnect()
        await self.chat.provider.aclose()

    async def _on_channel_event(self, event: ChannelEvent) -> None:
        await self.session_events.publish(event)
        if event.type == ChannelEventType.error:
            self.engine.on_connection_lost(ConnectionLostError(event.message or "session lost"))
        elif event.type == ChannelEventType.disconnected and self.engine.active_plan is not None:
            self.engine.on_connection_lost(ConnectionLostError("session disconnected"))


_workspace: Optional[WorkspaceService] = None


def get_workspace() -> WorkspaceService:
    global _workspace
    if _workspace is None:
        _workspace = WorkspaceService()
    return _workspace


async def shutdown_workspace() -> None:
    global _workspace
    if _workspace is not None:
        await _workspace.aclose()
        _workspace = None
