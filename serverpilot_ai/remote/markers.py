"""Sentinel markers that delimit a programmatic command inside a shared terminal stream.

A wrapped command prints a start marker, runs, stores its exit status and
prints an end marker that embeds that status::

    printf '__SP_%s_%s__\\n' BEGIN 3fa9c2d01b7e; <command> 2>&1; SP_EC=$?; printf '__SP_END_%s_%s__\\n' "$SP_EC" 3fa9c2d01b7e

The markers are assembled by ``printf`` at run time, so the terminal's echo of
the typed line never contains a complete marker.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Longest end marker: "__SP_END_" + 3-digit status + "_" + 12 hex + "__" is 26 chars.
MARKER_TAIL_BUFFER = 64
_END_PREFIX = "__SP_END_"

DEFAULT_MAX_OUTPUT_BYTES = 2 * 1024 * 1024


def generate_marker_id() -> str:
    return secrets.token_hex(6)


def start_marker(marker_id: str) -> str:
    return f"__SP_BEGIN_{marker_id}__"


def wrap_command(command: str, marker_id: str) -> str:
    """Wrap ``command`` so its output and exit status can be cut out of the stream."""
    return (
        f"printf '__SP_%s_%s__\\n' BEGIN {marker_id}; "
        f"{command} 2>&1; SP_EC=$?; "
        f"printf '__SP_END_%s_%s__\\n' \"$SP_EC\" {marker_id}"
    )


class ParserState(str, Enum):
    waiting_for_start = "waiting_for_start"
    capturing = "capturing"
    done = "done"


@dataclass(frozen=True)
class FeedResult:
    new_content: str
    complete: bool
    exit_code: Optional[int] = None


class MarkerStreamParser:
    """Stateful scanner that extracts one command's output from stream chunks.

    Chunks may split a marker anywhere. Text that could still be the start of
    the end marker is held back, along with the line break before it, until
    the next chunk arrives; everything else is released at once so a prompt
    waiting without a newline is visible. Output beyond ``max_bytes`` is
    dropped while the scan for the end marker continues.
    """

    def __init__(self, marker_id: str, max_bytes: int = DEFAULT_MAX_OUTPUT_BYTES) -> None:
        self._start = start_marker(marker_id)
        self._end = re.compile(rf"__SP_END_(\d+)_{re.escape(marker_id)}__")
        self._max_bytes = max_bytes
        self._state = ParserState.waiting_for_start
        self._buffer = ""
        self._captured: list[str] = []
        self._total = 0
        self.truncated = False
        self._at_line_start = False

    @property
    def state(self) -> ParserState:
        return self._state

    @property
    def output(self) -> str:
        """Everything captured so far; partial until ``complete``."""
        return "".join(self._captured)

    def feed(self, chunk: str) -> FeedResult:
        if self._state is ParserState.done:
            return FeedResult("", True)
        self._buffer += chunk
        if self._state is ParserState.waiting_for_start:
            return self._wait_for_start()
        return self._capture()

    def _wait_for_start(self) -> FeedResult:
        idx = self._buffer.find(self._start)
        if idx == -1:
            if len(self._buffer) > len(self._start) * 2:
                self._buffer = self._buffer[-len(self._start):]
            return FeedResult("", False)

        self._state = ParserState.capturing
        self._buffer = self._buffer[idx + len(self._start):]
        self._at_line_start = True
        return self._capture()

    def _capture(self) -> FeedResult:
        if self._at_line_start:
            # The newline after the start marker may arrive in a later chunk.
            if self._buffer in ("", "\r"):
                return FeedResult("", False)
            if self._buffer.startswith("\r\n"):
                self._buffer = self._buffer[2:]
            elif self._buffer.startswith("\n"):
                self._buffer = self._buffer[1:]
            self._at_line_start = False

        match = self._end.search(self._buffer)
        if match:
            content = re.sub(r"\r?\n$", "", self._buffer[: match.start()])
            content = self._keep(content)
            self._state = ParserState.done
            self._buffer = ""
            return FeedResult(content, True, int(match.group(1)))

        safe = self._release_point()
        if safe <= 0:
            return FeedResult("", False)
        content = self._keep(self._buffer[:safe])
        self._buffer = self._buffer[safe:]
        return FeedResult(content, False)

    def _release_point(self) -> int:
        buf = self._buffer
        cut = len(buf)
        idx = buf.find("_", max(0, len(buf) - MARKER_TAIL_BUFFER))
        while idx != -1:
            rest = buf[idx:]
            if rest.startswith(_END_PREFIX) or _END_PREFIX.startswith(rest):
                cut = idx
                break
            idx = buf.find("_", idx + 1)
        return len(buf[:cut].rstrip("\r\n"))

    def _keep(self, text: str) -> str:
        allowed = self._max_bytes - self._total
        if len(text) > allowed:
            text = text[: max(allowed, 0)]
            self.truncated = True
        self._captured.append(text)
        self._total += len(text)
        return text


_CSI = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_OSC = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
_SIMPLE_ESC = re.compile(r"\x1b[^\[\]]")
_BLANK_RUNS = re.compile(r"\n{3,}")


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences and resolve carriage-return overwrites.

    Escapes go first, then every line keeps only its last non-empty
    ``\\r``-separated segment (progress bars), then runs of blank lines are
    collapsed to one.
    """
    text = _CSI.sub("", text)
    text = _OSC.sub("", text)
    text = _SIMPLE_ESC.sub("", text)
    text = text.replace("\x1b", "")

    lines = []
    for line in text.split("\n"):
        if "\r" in line:
            segments = line.split("\r")
            line = next((s for s in reversed(segments) if s.strip()), segments[-1])
        lines.append(line)
    return _BLANK_RUNS.sub("\n\n", "\n".join(lines)).strip()
