"""Byte-stream sessions the command channel runs on.

``ByteStreamSession`` is the transport seam: an already-connectable
interactive session that accepts keystrokes and yields output bytes.
``SubprocessSession`` implements it by spawning ``ssh -tt`` (or a local
shell) with asyncio subprocess pipes.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import AsyncIterator, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import ConnectionLostError

logger = logging.getLogger(__name__)

_READ_SIZE = 4096
_CTRL_C = b"\x03"
# A piped local shell has no tty to turn Ctrl-C into SIGINT, so it is signalled
# directly and told to survive it; the foreground child still dies.
_LOCAL_PRELUDE = b"trap : INT\n"


class SessionConfig(BaseModel):
    """Connection parameters for a remote shell session."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    host: str = Field(..., description="Remote host name or address; 'localhost' with local=True spawns a local shell")
    port: int = Field(default=22, ge=1, le=65535)
    username: Optional[str] = Field(default=None, description="Login user; ssh defaults apply when unset")
    identity_file: Optional[str] = Field(default=None, description="Private key passed to ssh -i")
    ssh_options: List[str] = Field(default_factory=list, description="Extra '-o Key=Value' options")
    local: bool = Field(default=False, description="Spawn a local /bin/sh instead of ssh")
    cols: int = Field(default=120, ge=1)
    rows: int = Field(default=40, ge=1)

    def argv(self) -> List[str]:
        if self.local:
            return ["/bin/sh"]
        args = ["ssh", "-tt", "-p", str(self.port)]
        if self.identity_file:
            args += ["-i", self.identity_file]
        for opt in self.ssh_options:
            args += ["-o", opt]
        target = f"{self.username}@{self.host}" if self.username else self.host
        args.append(target)
        return args


@runtime_checkable
class ByteStreamSession(Protocol):
    """Minimal interactive session contract."""

    @property
    def is_open(self) -> bool: ...

    async def start(self) -> None: ...

    async def write(self, data: bytes) -> None: ...

    async def resize(self, cols: int, rows: int) -> None: ...

    async def interrupt(self) -> None: ...

    async def close(self) -> None: ...

    def output(self) -> AsyncIterator[bytes]: ...


class SubprocessSession:
    """Session backed by a child process (``ssh -tt`` or ``/bin/sh``)."""

    def __init__(self, config: SessionConfig) -> None:
        self._config = config
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._cols = config.cols
        self._rows = config.rows

    @property
    def is_open(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def geometry(self) -> tuple[int, int]:
        return self._cols, self._rows

    async def start(self) -> None:
        argv = self._config.argv()
        logger.info("Starting session: %s", " ".join(argv))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            raise ConnectionLostError(f"could not start session: {e}") from e
        if self._config.local:
            await self.write(_LOCAL_PRELUDE)

    async def write(self, data: bytes) -> None:
        proc = self._require_open()
        assert proc.stdin is not None
        try:
            proc.stdin.write(data)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ConnectionLostError("session input closed") from e

    async def resize(self, cols: int, rows: int) -> None:
        # A pipe has no window size; the geometry is kept for the next pty-backed session.
        self._cols, self._rows = cols, rows
        logger.debug("Session geometry recorded as %dx%d", cols, rows)

    async def interrupt(self) -> None:
        """Deliver SIGINT to whatever runs in the foreground of the shell."""
        if not self.is_open:
            return
        if not self._config.local:
            await self.write(_CTRL_C)
            return
        assert self._proc is not None
        try:
            os.killpg(self._proc.pid, signal.SIGINT)
        except ProcessLookupError:
            logger.debug("Interrupt raced with session exit")

    async def close(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        if proc.stdin is not None:
            proc.stdin.close()
        try:
            await asyncio.wait_for(proc.wait(), timeout=2.0)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
        logger.info("Session closed with exit status %s", proc.returncode)

    async def output(self) -> AsyncIterator[bytes]:
        proc = self._require_open()
        assert proc.stdout is not None
        while True:
            chunk = await proc.stdout.read(_READ_SIZE)
            if not chunk:
                return
            yield chunk

    def _require_open(self) -> asyncio.subprocess.Process:
        if self._proc is None:
            raise ConnectionLostError("session not started")
        if self._proc.returncode is not None:
            raise ConnectionLostError(f"session exited with status {self._proc.returncode}")
        return self._proc
