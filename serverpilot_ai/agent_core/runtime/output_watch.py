"""Per-command watch over streamed output: interactive prompts and silence.

``OutputWatch`` is fed every output chunk of one running step. It reports

- ``prompt-detected`` when the output tail looks like a prompt waiting for
  input (once per distinct prompt line),
- ``idle-warning`` after ``warning_after`` seconds without output; this
  re-arms whenever output resumes,
- ``idle-stalled`` once per command after ``stalled_after`` seconds without
  output.

A threshold of ``0`` disables that notice. The watch only reports; the
command keeps running until it finishes, times out or is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ...remote.prompt_detector import DEEP_WINDOW, PromptDetection, detect_prompt, detect_prompt_deep
from ..schemas.domain import PlanEventType

logger = logging.getLogger(__name__)

WatchNotify = Callable[[PlanEventType, Dict[str, Any]], Awaitable[None]]


class OutputWatch:
    def __init__(self, notify: WatchNotify, *, warning_after: float, stalled_after: float) -> None:
        self._notify = notify
        self._warning_after = warning_after
        self._stalled_after = stalled_after
        self._tail = ""
        self._last_data = 0.0
        self._warned = False
        self._stalled = False
        self._reported_prompt: Optional[str] = None
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def tail(self) -> str:
        return self._tail

    def start(self) -> None:
        self._last_data = asyncio.get_running_loop().time()
        if self._warning_after > 0 or self._stalled_after > 0:
            self._task = asyncio.create_task(self._run(), name="output-watch")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

    async def feed(self, text: str) -> None:
        self._tail = (self._tail + text)[-DEEP_WINDOW:]
        self._last_data = asyncio.get_running_loop().time()
        self._warned = False
        self._wake.set()
        await self._report_prompt(detect_prompt(self._tail))

    async def _report_prompt(self, detection: Optional[PromptDetection]) -> None:
        if detection is None or detection.prompt_text == self._reported_prompt:
            return
        self._reported_prompt = detection.prompt_text
        logger.info("Command looks like it waits for input (%s): %r", detection.pattern, detection.prompt_text)
        await self._notify(
            PlanEventType.prompt_detected,
            {"prompt_text": detection.prompt_text, "pattern": detection.pattern},
        )

    def _next_deadline(self) -> Optional[float]:
        deadlines = []
        if self._warning_after > 0 and not self._warned:
            deadlines.append(self._last_data + self._warning_after)
        if self._stalled_after > 0 and not self._stalled:
            deadlines.append(self._last_data + self._stalled_after)
        return min(deadlines) if deadlines else None

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            deadline = self._next_deadline()
            if deadline is None:
                self._wake.clear()
                await self._wake.wait()
                continue
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            silence = loop.time() - self._last_data
            if self._warning_after > 0 and not self._warned and silence >= self._warning_after:
                self._warned = True
                await self._report_prompt(detect_prompt_deep(self._tail))
                await self._notify(PlanEventType.idle_warning, self._idle_payload(silence))
            if self._stalled_after > 0 and not self._stalled and silence >= self._stalled_after:
                self._stalled = True
                logger.warning("Command silent for %.1fs", silence)
                await self._notify(PlanEventType.idle_stalled, self._idle_payload(silence))

    def _idle_payload(self, silence: float) -> Dict[str, Any]:
        return {"silence_seconds": round(silence, 1), "last_output": self._tail}
