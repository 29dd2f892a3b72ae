"""Adapter for OpenAI-compatible ``/chat/completions`` backends (OpenAI, Moonshot)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Sequence

from ....core.errors import BackendError
from ...schemas.domain import ChatMessage, ChatResponse, StopReason, Usage
from ..base import ChatProvider, StreamState
from ..config import CompatibleChatConfig
from ..sse import SseEvent

logger = logging.getLogger(__name__)

_STOP_REASONS = {
    "stop": StopReason.end_turn,
    "length": StopReason.max_tokens,
    "tool_calls": StopReason.tool_use,
    "function_call": StopReason.tool_use,
    "content_filter": StopReason.content_filter,
}

_DONE = "[DONE]"


def _stop_reason(value: Optional[str]) -> StopReason:
    if value is None:
        return StopReason.unknown
    return _STOP_REASONS.get(value, StopReason.unknown)


def _usage(data: Optional[Dict[str, Any]]) -> Usage:
    data = data or {}
    return Usage(
        input_tokens=int(data.get("prompt_tokens") or 0),
        output_tokens=int(data.get("completion_tokens") or 0),
    )


class CompatibleChatProvider(ChatProvider):
    """Chat Completions adapter.

    The system prompt is sent as the first ``system`` message. When streaming,
    ``stream_options.include_usage`` is requested and token usage is read from
    the final chunk only.
    """

    name = "openai_compatible"

    def __init__(self, config: Optional[CompatibleChatConfig] = None, **kwargs: Any) -> None:
        super().__init__(config or CompatibleChatConfig(), **kwargs)
        self.name = self._config.flavor.value

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _token_limit(self, model: str, limit: int) -> Dict[str, int]:
        if self.uses_completion_tokens(model):
            return {"max_completion_tokens": limit}
        return {"max_tokens": limit}

    def _build_payload(self, system_prompt: str, history: Sequence[ChatMessage], *, stream: bool) -> Dict[str, Any]:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": m.role.value, "content": m.content} for m in history)
        payload: Dict[str, Any] = {"model": self._model, "messages": messages}
        payload.update(self._token_limit(self._model, self._config.max_tokens))
        if not self.forbids_sampling():
            payload["temperature"] = self._config.temperature
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    def _validation_payload(self) -> Dict[str, Any]:
        model = self._profile.validation_model
        payload: Dict[str, Any] = {"model": model, "messages": [{"role": "user", "content": "hi"}]}
        payload.update(self._token_limit(model, 1))
        return payload

    def _parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        choices = data.get("choices") or []
        if not choices:
            raise BackendError(None, "response contained no choices")
        choice = choices[0]
        message = choice.get("message") or {}
        return ChatResponse(
            content=message.get("content") or "",
            stop_reason=_stop_reason(choice.get("finish_reason")),
            usage=_usage(data.get("usage")),
            model=data.get("model") or self._model,
        )

    def _apply_stream_event(self, event: SseEvent, state: StreamState) -> Optional[str]:
        if event.data.strip() == _DONE:
            state.finished = True
            return None
        try:
            data = json.loads(event.data)
        except ValueError:
            logger.debug("Ignoring undecodable %s stream chunk", self.name)
            return None
        if "error" in data:
            error = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
            raise BackendError(None, error.get("message") or "stream error")

        state.model = data.get("model") or state.model
        if data.get("usage"):
            state.usage = _usage(data["usage"])

        choices = data.get("choices") or []
        if not choices:
            return None
        choice = choices[0]
        if choice.get("finish_reason"):
            state.stop_reason = _stop_reason(choice["finish_reason"])
        delta = choice.get("delta") or {}
        return delta.get("content") or None
