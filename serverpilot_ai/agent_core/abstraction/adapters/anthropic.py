"""Adapter for the Anthropic Messages API."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Sequence

from ....core.errors import BackendError
from ...schemas.domain import ChatMessage, ChatResponse, StopReason, Usage
from ..base import ChatProvider, StreamState
from ..config import AnthropicConfig
from ..sse import SseEvent

logger = logging.getLogger(__name__)

_STOP_REASONS = {
    "end_turn": StopReason.end_turn,
    "max_tokens": StopReason.max_tokens,
    "stop_sequence": StopReason.stop_sequence,
    "tool_use": StopReason.tool_use,
    "refusal": StopReason.content_filter,
}


def _stop_reason(value: Optional[str]) -> StopReason:
    if value is None:
        return StopReason.unknown
    return _STOP_REASONS.get(value, StopReason.unknown)


class AnthropicProvider(ChatProvider):
    """Messages API adapter.

    The system prompt travels in the top-level ``system`` field. Input tokens
    arrive with ``message_start`` and output tokens with ``message_delta``.
    """

    name = "anthropic"

    def __init__(self, config: Optional[AnthropicConfig] = None, **kwargs: Any) -> None:
        super().__init__(config or AnthropicConfig(), **kwargs)

    def _endpoint(self) -> str:
        return f"{self.base_url}/messages"

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": self._config.api_version,
            "content-type": "application/json",
        }

    def _build_payload(self, system_prompt: str, history: Sequence[ChatMessage], *, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._config.max_tokens,
            "system": system_prompt,
            "messages": [{"role": m.role.value, "content": m.content} for m in history],
        }
        if not self.forbids_sampling():
            payload["temperature"] = self._config.temperature
        if stream:
            payload["stream"] = True
        return payload

    def _validation_payload(self) -> Dict[str, Any]:
        return {
            "model": self._profile.validation_model,
            "max_tokens": 1,
            "messages": [{"role": "user", "content": "hi"}],
        }

    def _parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        text = "".join(
            block.get("text", "") for block in data.get("content") or [] if block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        return ChatResponse(
            content=text,
            stop_reason=_stop_reason(data.get("stop_reason")),
            usage=Usage(
                input_tokens=int(usage.get("input_tokens") or 0),
                output_tokens=int(usage.get("output_tokens") or 0),
            ),
            model=data.get("model") or self._model,
        )

    def _apply_stream_event(self, event: SseEvent, state: StreamState) -> Optional[str]:
        try:
            data = json.loads(event.data)
        except ValueError:
            logger.debug("Ignoring undecodable anthropic stream event %r", event.event)
            return None
        kind = data.get("type") or event.event

        if kind == "message_start":
            message = data.get("message") or {}
            usage = message.get("usage") or {}
            state.model = message.get("model") or state.model
            state.usage = Usage(
                input_tokens=int(usage.get("input_tokens") or 0),
                output_tokens=int(usage.get("output_tokens") or 0),
            )
        elif kind == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta":
                return delta.get("text") or None
        elif kind == "message_delta":
            delta = data.get("delta") or {}
            usage = data.get("usage") or {}
            if delta.get("stop_reason"):
                state.stop_reason = _stop_reason(delta["stop_reason"])
            if "output_tokens" in usage:
                state.usage = Usage(
                    input_tokens=state.usage.input_tokens,
                    output_tokens=int(usage["output_tokens"] or 0),
                )
        elif kind == "message_stop":
            state.finished = True
        elif kind == "error":
            error = data.get("error") or {}
            raise BackendError(None, error.get("message") or error.get("type") or "stream error")
        return None
