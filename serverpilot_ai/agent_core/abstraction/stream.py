"""Cancellable handle over a streaming chat call."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional

from ...core.errors import StreamCancelledError
from ..schemas.domain import ChatResponse

logger = logging.getLogger(__name__)


class StreamHandler:
    """
    Receiver for a streaming chat call.

    ``on_chunk`` is called once per text delta, then exactly one of
    ``on_complete`` or ``on_error``. Subclasses override what they need; the
    defaults do nothing. Exceptions raised here are logged by the gateway and
    never propagate back into it.
    """

    async def on_chunk(self, text: str) -> None:
        return None

    async def on_complete(self, response: ChatResponse) -> None:
        return None

    async def on_error(self, error: BaseException) -> None:
        return None


class CallbackStreamHandler(StreamHandler):
    """``StreamHandler`` built from plain async callables."""

    def __init__(
        self,
        *,
        on_chunk: Optional[Callable[[str], Awaitable[None]]] = None,
        on_complete: Optional[Callable[[ChatResponse], Awaitable[None]]] = None,
        on_error: Optional[Callable[[BaseException], Awaitable[None]]] = None,
    ) -> None:
        self._chunk = on_chunk
        self._complete = on_complete
        self._error = on_error

    async def on_chunk(self, text: str) -> None:
        if self._chunk is not None:
            await self._chunk(text)

    async def on_complete(self, response: ChatResponse) -> None:
        if self._complete is not None:
            await self._complete(response)

    async def on_error(self, error: BaseException) -> None:
        if self._error is not None:
            await self._error(error)


class StreamHandle:
    """
    Consumer-side handle of a streaming call.

    The call runs as an ``asyncio.Task`` started with ``start``. The producer
    reports through ``chunk``, ``complete`` and ``fail``; only the first
    terminal report reaches the handler. ``cancel`` stops the task, and the
    handler then receives a single ``on_error(StreamCancelledError)``, also
    when the task is cancelled before it ever ran. ``wait`` resolves once that
    terminal signal has been delivered, to the final ``ChatResponse`` or to
    ``None`` when the stream ended in error or was cancelled.
    """

    def __init__(self, handler: StreamHandler, *, name: str = "chat") -> None:
        self._handler = handler
        self._name = name
        self._task: Optional["asyncio.Task[Optional[ChatResponse]]"] = None
        self._finalizer: Optional[asyncio.Task] = None
        self._terminal_sent = False

    def start(self, coro: Coroutine[Any, Any, Optional[ChatResponse]]) -> "StreamHandle":
        if self._task is not None:
            raise RuntimeError("stream already started")
        self._task = asyncio.create_task(coro, name=f"{self._name}-stream")
        self._task.add_done_callback(self._on_task_done)
        return self

    @property
    def done(self) -> bool:
        task = self._task
        if task is None or not task.done():
            return False
        return self._finalizer is None or self._finalizer.done()

    @property
    def terminal_sent(self) -> bool:
        return self._terminal_sent

    async def chunk(self, text: str) -> None:
        if not self._terminal_sent:
            await self._call(self._handler.on_chunk, text)

    async def complete(self, response: ChatResponse) -> None:
        await self._terminal(self._handler.on_complete, response)

    async def fail(self, error: BaseException) -> None:
        await self._terminal(self._handler.on_error, error)

    def cancel(self) -> bool:
        """Request cancellation. Returns ``False`` if the stream already finished."""
        task = self._require_task()
        if task.done():
            return False
        logger.debug("Cancelling chat stream task %s", task.get_name())
        return task.cancel()

    async def wait(self) -> Optional[ChatResponse]:
        task = self._require_task()
        await asyncio.wait({task})
        if self._finalizer is not None:
            await asyncio.wait({self._finalizer})
        if task.cancelled():
            return None
        return task.result()

    def _require_task(self) -> "asyncio.Task[Optional[ChatResponse]]":
        if self._task is None:
            raise RuntimeError("stream not started")
        return self._task

    def _on_task_done(self, task: "asyncio.Task[Optional[ChatResponse]]") -> None:
        if task.cancelled() and not self._terminal_sent:
            logger.info("%s stream cancelled by consumer", self._name)
            self._finalizer = task.get_loop().create_task(self.fail(StreamCancelledError("chat stream cancelled")))

    async def _terminal(self, callback: Callable[[Any], Awaitable[None]], arg: Any) -> None:
        if self._terminal_sent:
            return
        self._terminal_sent = True
        await self._call(callback, arg)

    async def _call(self, callback: Callable[[Any], Awaitable[None]], arg: Any) -> None:
        try:
            await callback(arg)
        except Exception:
            logger.exception("%s stream handler raised; ignoring", self._name)
