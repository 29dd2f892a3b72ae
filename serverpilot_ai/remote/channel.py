"""Remote Command Channel.

Wraps one interactive byte-stream session and layers a request/response
primitive (``run_command``) over it. Interactive passthrough (``write`` /
``resize``) and programmatic execution share the same stream, so programmatic
commands run under an exclusive lease: while the lease is held, interactive
writes are rejected with ``ChannelBusyError``.

Connection loss is reported to listeners as an ``error`` event followed by
``disconnected``; an outstanding ``run_command`` fails with
``ConnectionLostError``.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Union

from pydantic import BaseModel

from ..core.errors import ChannelBusyError, ConnectionLostError
from .markers import DEFAULT_MAX_OUTPUT_BYTES, MarkerStreamParser, generate_marker_id, strip_ansi, wrap_command
from .os_detector import OSDetector, OSInfo
from .session import ByteStreamSession, SessionConfig, SubprocessSession

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 120.0
DETECTION_TIMEOUT = 15.0
RESYNC_TIMEOUT = 5.0


class ChannelEventType(str, Enum):
    data = "data"
    connected = "connected"
    disconnected = "disconnected"
    error = "error"


class ChannelEvent(BaseModel):
    type: ChannelEventType
    data: Optional[str] = None
    os_info: Optional[OSInfo] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class CommandResult:
    output: str
    exit_code: int
    timed_out: bool = False
    truncated: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


ChannelListener = Callable[[ChannelEvent], Awaitable[None]]
OutputCallback = Callable[[str], Awaitable[None]]
SessionFactory = Callable[[SessionConfig], ByteStreamSession]


@dataclass
class _Capture:
    parser: MarkerStreamParser
    future: "asyncio.Future[int]"
    on_output: Optional[OutputCallback]


class RemoteCommandChannel:
    """One shared shell session with interactive and programmatic access."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory = SubprocessSession,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        resync_timeout: float = RESYNC_TIMEOUT,
    ) -> None:
        self._session_factory = session_factory
        self._command_timeout = command_timeout
        self._resync_timeout = resync_timeout
        self._max_output_bytes = max_output_bytes
        self._session: Optional[ByteStreamSession] = None
        self._reader: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._lease_owner: Optional[str] = None
        self._capture: Optional[_Capture] = None
        self._listeners: List[ChannelListener] = []
        self._os_info: Optional[OSInfo] = None
        self._closing = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._session.is_open

    @property
    def os_info(self) -> Optional[OSInfo]:
        return self._os_info

    @property
    def lease_owner(self) -> Optional[str]:
        return self._lease_owner

    def add_listener(self, listener: ChannelListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChannelListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, config: SessionConfig) -> OSInfo:
        """Start the session, identify the host and announce ``connected``."""
        if self.is_connected:
            raise ChannelBusyError("a session is already connected; disconnect first")

        session = self._session_factory(config)
        await session.start()
        self._session = session
        self._closing = False
        self._reader = asyncio.create_task(self._read_loop(session), name="channel-reader")

        self._os_info = await OSDetector(self._probe).detect()
        await self._emit(ChannelEvent(type=ChannelEventType.connected, os_info=self._os_info))
        return self._os_info

    async def disconnect(self) -> None:
        session = self._session
        if session is None:
            return
        self._closing = True
        self._abandon_capture(ConnectionLostError("session disconnected"))
        await session.close()
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.wait({self._reader})
            self._reader = None
        self._session = None
        logger.info("Channel disconnected")
        await self._emit(ChannelEvent(type=ChannelEventType.disconnected))

    # ------------------------------------------------------------------
    # Interactive passthrough
    # ------------------------------------------------------------------

    async def write(self, data: Union[bytes, str]) -> None:
        """Forward user keystrokes. Rejected while a programmatic command holds the lease."""
        session = self._require_session()
        if self._lock.locked():
            raise ChannelBusyError(f"channel is leased by {self._lease_owner or 'another producer'}")
        payload = data.encode("utf-8") if isinstance(data, str) else data
        await session.write(payload)

    async def resize(self, cols: int, rows: int) -> None:
        await self._require_session().resize(cols, rows)

    async def interrupt(self) -> None:
        await self._require_session().interrupt()

    # ------------------------------------------------------------------
    # Programmatic execution
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def lease(self, owner: str = "engine") -> AsyncIterator[None]:
        """Hold exclusive ownership of the write path for one command."""
        async with self._lock:
            self._lease_owner = owner
            logger.debug("Channel leased by %s", owner)
            try:
                yield
            finally:
                self._lease_owner = None
                logger.debug("Channel lease released by %s", owner)

    async def run_command(
        self,
        command: str,
        *,
        timeout: Optional[float] = None,
        on_output: Optional[OutputCallback] = None,
    ) -> CommandResult:
        """Run ``command`` and capture its output and exit status.

        A timeout interrupts the command, waits for the shell to answer a
        no-op marker again and yields ``exit_code == -1``.
        Cancelling the caller interrupts the command and releases the lease
        before the ``CancelledError`` propagates.

        Raises:
            ConnectionLostError: The session dropped before the command finished.
        """
        limit = self._command_timeout if timeout is None else timeout
        async with self.lease():
            return await self._run_leased(command, limit, on_output)

    async def _run_leased(self, command: str, timeout: float, on_output: Optional[OutputCallback]) -> CommandResult:
        session = self._require_session()
        marker_id = generate_marker_id()
        parser = MarkerStreamParser(marker_id, self._max_output_bytes)
        future: "asyncio.Future[int]" = asyncio.get_running_loop().create_future()
        self._capture = _Capture(parser=parser, future=future, on_output=on_output)
        logger.debug("run_command marker=%s command=%r", marker_id, command)
        try:
            await session.write((wrap_command(command, marker_id) + "\n").encode("utf-8"))
            exit_code = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.warning("Command timed out after %gs: %r", timeout, command)
            output = strip_ansi(parser.output)
            self._capture = None
            await self._interrupt_after_abort()
            await self._resync(session)
            message = f"Command timed out after {timeout:g}s"
            return CommandResult(
                output=f"{output}\n{message}" if output else message,
                exit_code=-1,
                timed_out=True,
                truncated=parser.truncated,
            )
        except asyncio.CancelledError:
            logger.info("Command cancelled, interrupting: %r", command)
            await self._interrupt_after_abort()
            raise
        finally:
            self._capture = None

        return CommandResult(output=strip_ansi(parser.output), exit_code=exit_code, truncated=parser.truncated)

    async def _probe(self, command: str) -> tuple[str, int]:
        result = await self.run_command(command, timeout=DETECTION_TIMEOUT)
        return result.output, result.exit_code

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_session(self) -> ByteStreamSession:
        if self._session is None or not self._session.is_open:
            raise ConnectionLostError("no connected session")
        return self._session

    async def _interrupt_after_abort(self) -> None:
        session = self._session
        if session is None or not session.is_open:
            return
        try:
            await session.interrupt()
        except ConnectionLostError as e:
            # The reader reports the loss itself.
            logger.debug("Interrupt not delivered: %s", e)

    async def _resync(self, session: ByteStreamSession) -> bool:
        """Wait until the shell answers a no-op command after an interrupt."""
        marker_id = generate_marker_id()
        future: "asyncio.Future[int]" = asyncio.get_running_loop().create_future()
        self._capture = _Capture(parser=MarkerStreamParser(marker_id), future=future, on_output=None)
        try:
            await session.write((wrap_command(":", marker_id) + "\n").encode("utf-8"))
            await asyncio.wait_for(future, self._resync_timeout)
        except asyncio.TimeoutError:
            logger.warning("Shell did not answer within %gs of an interrupt", self._resync_timeout)
            return False
        except ConnectionLostError as e:
            logger.warning("Shell lost while resynchronising: %s", e)
            return False
        finally:
            self._capture = None
        logger.debug("Shell answered marker %s after interrupt", marker_id)
        return True

    def _abandon_capture(self, error: BaseException) -> None:
        capture = self._capture
        if capture is not None and not capture.future.done():
            capture.future.set_exception(error)

    async def _read_loop(self, session: ByteStreamSession) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        reason = "remote session closed"
        try:
            async for chunk in session.output():
                text = decoder.decode(chunk)
                if not text:
                    continue
                await self._feed_capture(text)
                await self._emit(ChannelEvent(type=ChannelEventType.data, data=text))
        except ConnectionLostError as e:
            reason = str(e)
        except OSError as e:
            reason = f"session read failed: {e}"
        if not self._closing:
            await self._on_connection_lost(ConnectionLostError(reason))

    async def _feed_capture(self, text: str) -> None:
        capture = self._capture
        if capture is None or capture.future.done():
            return
        result = capture.parser.feed(text)
        if result.new_content and capture.on_output is not None:
            cleaned = strip_ansi(result.new_content)
            if cleaned:
                try:
                    await capture.on_output(cleaned)
                except Exception:
                    logger.exception("run_command output callback raised")
        if result.complete and not capture.future.done():
            capture.future.set_result(result.exit_code if result.exit_code is not None else 1)

    async def _on_connection_lost(self, error: ConnectionLostError) -> None:
        logger.error("Connection lost: %s", error)
        self._abandon_capture(error)
        self._session = None
        self._reader = None
        await self._emit(ChannelEvent(type=ChannelEventType.error, message=str(error)))
        await self._emit(ChannelEvent(type=ChannelEventType.disconnected))

    async def _emit(self, event: ChannelEvent) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception("Channel listener raised on %s event", event.type.value)
