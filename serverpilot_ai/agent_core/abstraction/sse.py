"""Line-level Server-Sent Events decoding for streamed HTTP responses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

import httpx


@dataclass(frozen=True)
class SseEvent:
    event: Optional[str]
    data: str


async def aiter_sse_events(response: httpx.Response) -> AsyncIterator[SseEvent]:
    """Yield one ``SseEvent`` per blank-line-terminated block.

    Multiple ``data:`` lines of one block are joined with newlines, and
    comment lines (``:``) are ignored.
    """
    event: Optional[str] = None
    data: List[str] = []
    async for line in response.aiter_lines():
        if not line:
            if data:
                yield SseEvent(event=event, data="\n".join(data))
            event, data = None, []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if data:
        yield SseEvent(event=event, data="\n".join(data))
