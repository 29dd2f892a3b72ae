from __future__ import annotations

import asyncio
import re
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from serverpilot_ai.core.errors import ConnectionLostError
from serverpilot_ai.remote.session import SessionConfig

_WRAPPED = re.compile(r"BEGIN (?P<marker>[0-9a-f]+); (?P<command>.*) 2>&1; SP_EC=")

Reply = Tuple[str, int]

DEFAULT_REPLIES: Dict[str, Reply] = {
    "uname -s": ("Linux", 0),
    "uname -m": ("x86_64", 0),
    "uname -r": ("6.1.0-18-amd64", 0),
    "hostname": ("web-01", 0),
    "cat /etc/os-release": ('NAME="Debian GNU/Linux"\nID=debian\nVERSION_ID="12"\nVERSION_CODENAME=bookworm', 0),
}


class FakeShellSession:
    """In-memory shell that answers wrapped commands from a reply table.

    Commands listed in ``hang`` never print their end marker. ``chunk_size``
    splits every reply into small chunks to exercise marker reassembly.
    """

    def __init__(
        self,
        replies: Optional[Dict[str, Reply]] = None,
        *,
        hang: Optional[set] = None,
        chunk_size: Optional[int] = None,
    ) -> None:
        self.replies = dict(DEFAULT_REPLIES)
        self.replies.update(replies or {})
        self.hang = hang or set()
        self.chunk_size = chunk_size
        self.writes: List[bytes] = []
        self.commands: List[str] = []
        self.interrupts = 0
        self.geometry: Optional[Tuple[int, int]] = None
        self._queue: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def start(self) -> None:
        self._open = True

    async def write(self, data: bytes) -> None:
        if not self._open:
            raise ConnectionLostError("fake session closed")
        self.writes.append(data)
        text = data.decode("utf-8")
        match = _WRAPPED.search(text)
        if match is None:
            # Interactive input is echoed back.
            await self._emit(text)
            return
        command, marker = match.group("command"), match.group("marker")
        self.commands.append(command)
        if command in self.hang:
            await self._emit(f"__SP_BEGIN_{marker}__\n")
            return
        output, exit_code = self.replies.get(command, ("", 0))
        body = f"{output}\n" if output else ""
        await self._emit(f"__SP_BEGIN_{marker}__\n{body}__SP_END_{exit_code}_{marker}__\n$ ")

    async def resize(self, cols: int, rows: int) -> None:
        self.geometry = (cols, rows)

    async def interrupt(self) -> None:
        self.interrupts += 1

    async def close(self) -> None:
        self._open = False
        self._queue.put_nowait(None)

    def drop(self) -> None:
        """Simulate the remote end going away."""
        self._open = False
        self._queue.put_nowait(None)

    async def output(self):
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk

    async def _emit(self, text: str) -> None:
        data = text.encode("utf-8")
        size = self.chunk_size or len(data) or 1
        for i in range(0, len(data), size):
            self._queue.put_nowait(data[i : i + size])


@pytest.fixture
def fake_session() -> FakeShellSession:
    return FakeShellSession()


@pytest.fixture
def session_factory(fake_session: FakeShellSession) -> Callable[[SessionConfig], FakeShellSession]:
    def _factory(config: SessionConfig) -> FakeShellSession:
        return fake_session

    return _factory


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(host="localhost", local=True)
