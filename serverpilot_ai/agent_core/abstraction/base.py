"""Base abstraction for chat-completion backends.

``ChatProvider`` is the one capability contract the rest of the system talks
to. Concrete adapters only describe their wire format (endpoint, headers,
payload, response and stream-event decoding); request execution, error
mapping, key validation and the streaming lifecycle live here so every backend
behaves the same way towards callers.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from ...core.errors import AuthError, BackendError, NotInitializedError
from ..schemas.domain import ChatMessage, ChatResponse, StopReason, Usage
from .config import AnthropicConfig, BackendProfile, CompatibleChatConfig
from .sse import SseEvent, aiter_sse_events
from .stream import StreamHandle, StreamHandler

logger = logging.getLogger(__name__)


class ApiKeyValidation(str, Enum):
    """Outcome of ``ChatProvider.validate_api_key``."""

    valid = "valid"
    invalid = "invalid"
    indeterminate = "indeterminate"

    @property
    def is_accepted(self) -> bool:
        """An indeterminate result is accepted; real validation happens on first use."""
        return self is not ApiKeyValidation.invalid


@dataclass
class StreamState:
    """Accumulator for one streamed response."""

    parts: List[str] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    stop_reason: StopReason = StopReason.unknown
    model: Optional[str] = None
    finished: bool = False

    def to_response(self) -> ChatResponse:
        return ChatResponse(
            content="".join(self.parts),
            stop_reason=self.stop_reason,
            usage=self.usage,
            model=self.model,
        )


def _error_message(body: str) -> str:
    try:
        data = json.loads(body)
    except ValueError:
        return body[:500] or "no response body"
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
        if data.get("message"):
            return str(data["message"])
    return body[:500]


def backend_error_for(status: int, body: str) -> BackendError:
    """Build the error for a non-2xx status; 401/403 become ``AuthError``."""
    message = _error_message(body)
    if status in (401, 403):
        return AuthError(status, message)
    return BackendError(status, message)


class ChatProvider(ABC):
    """Abstract base class for chat backends.

    Subclasses must implement:
    - ``_endpoint()``: URL of the completion endpoint.
    - ``_headers(api_key)``: request headers including authentication.
    - ``_build_payload(...)``: request body for a blocking or streaming call.
    - ``_parse_response(data)``: decode a blocking response body.
    - ``_apply_stream_event(event, state)``: fold one SSE event into ``state``
      and return the text delta it carries, if any.
    """

    name: str = "provider"

    def __init__(
        self,
        config: Union[AnthropicConfig, CompatibleChatConfig],
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            config: Backend configuration.
            client: Optional pre-built HTTP client (tests inject one with a mock transport).
        """
        self._config = config
        self._profile: BackendProfile = config.profile
        self._model = config.model or self._profile.default_model
        self._api_key: Optional[str] = None
        self._client = client

    @property
    def config(self) -> Union[AnthropicConfig, CompatibleChatConfig]:
        return self._config

    @property
    def model(self) -> str:
        return self._model

    @property
    def base_url(self) -> str:
        return (self._config.base_url or self._profile.base_url).rstrip("/")

    def initialize(self, api_key: str) -> None:
        """Store the credential. Idempotent; does not touch the network."""
        key = api_key.strip()
        if not key:
            raise ValueError("api_key must not be empty")
        if key == self._api_key:
            return
        self._api_key = key
        logger.info("%s provider initialized with model %s", self.name, self._model)

    def set_model(self, model_id: str) -> None:
        """Select the model used from the next call on."""
        self._model = model_id
        logger.debug("%s provider model set to %s", self.name, model_id)

    def is_initialized(self) -> bool:
        return self._api_key is not None

    def forbids_sampling(self, model: Optional[str] = None) -> bool:
        """Whether ``model`` rejects sampling parameters such as temperature."""
        target = model or self._model
        return any(re.search(p, target) for p in self._profile.no_sampling_models)

    def uses_completion_tokens(self, model: Optional[str] = None) -> bool:
        target = model or self._model
        return any(re.search(p, target) for p in self._profile.completion_tokens_models)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def send_message(self, system_prompt: str, history: Sequence[ChatMessage]) -> ChatResponse:
        """Run a blocking completion.

        Raises:
            NotInitializedError: ``initialize`` was not called.
            AuthError: The backend answered 401/403.
            BackendError: Any other non-2xx answer or a transport failure.
        """
        api_key = self._require_initialized()
        payload = self._build_payload(system_prompt, history, stream=False)
        logger.debug("%s send_message model=%s messages=%d", self.name, self._model, len(history))
        try:
            response = await self._http().post(self._endpoint(), headers=self._headers(api_key), json=payload)
        except httpx.HTTPError as e:
            raise BackendError(None, str(e) or type(e).__name__) from e
        if not response.is_success:
            raise backend_error_for(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(response.status_code, "response body is not valid JSON") from e
        return self._parse_response(data)

    def send_message_stream(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        handler: StreamHandler,
    ) -> StreamHandle:
        """Start a streaming completion and return its handle.

        The call returns immediately. Text deltas go to ``handler.on_chunk``,
        followed by exactly one of ``on_complete`` or ``on_error``. Every
        failure, including ``NotInitializedError``, is delivered to
        ``on_error`` rather than raised.
        """
        handle = StreamHandle(handler, name=self.name)
        return handle.start(self._run_stream(system_prompt, list(history), handle))

    async def validate_api_key(self, api_key: str) -> ApiKeyValidation:
        """Check a key: structural check first, then a one-token live round-trip.

        A structurally malformed key is ``invalid`` without any network call.
        Backends whose profile disables the live check stop after the
        structural check.
        """
        key = api_key.strip()
        if not key.startswith(self._profile.key_prefix) or len(key) < self._profile.min_key_length:
            logger.info("%s api key failed structural check", self.name)
            return ApiKeyValidation.invalid
        if not self._profile.live_key_check:
            return ApiKeyValidation.valid

        payload = self._validation_payload()
        try:
            response = await self._http().post(self._endpoint(), headers=self._headers(key), json=payload)
        except httpx.HTTPError as e:
            logger.warning("%s api key live check could not complete: %s", self.name, e)
            return ApiKeyValidation.indeterminate

        if response.status_code in (401, 403):
            return ApiKeyValidation.invalid
        if response.is_success:
            return ApiKeyValidation.valid
        logger.warning("%s api key live check returned %d; treating as indeterminate", self.name, response.status_code)
        return ApiKeyValidation.indeterminate

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_initialized(self) -> str:
        if self._api_key is None:
            raise NotInitializedError(self.name)
        return self._api_key

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout)
        return self._client

    async def _run_stream(
        self,
        system_prompt: str,
        history: List[ChatMessage],
        handle: StreamHandle,
    ) -> Optional[ChatResponse]:
        try:
            response = await self._consume_stream(system_prompt, history, handle)
        except asyncio.CancelledError:
            logger.debug("%s stream task cancelled", self.name)
            raise
        except Exception as e:
            logger.warning("%s stream failed: %s", self.name, e)
            await handle.fail(e)
            return None
        await handle.complete(response)
        return response

    async def _consume_stream(
        self,
        system_prompt: str,
        history: List[ChatMessage],
        handle: StreamHandle,
    ) -> ChatResponse:
        api_key = self._require_initialized()
        payload = self._build_payload(system_prompt, history, stream=True)
        state = StreamState(model=self._model)
        logger.debug("%s stream model=%s messages=%d", self.name, self._model, len(history))
        try:
            async with self._http().stream(
                "POST", self._endpoint(), headers=self._headers(api_key), json=payload
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise backend_error_for(response.status_code, body)
                async for event in aiter_sse_events(response):
                    delta = self._apply_stream_event(event, state)
                    if delta:
                        state.parts.append(delta)
                        await handle.chunk(delta)
                    if state.finished:
                        break
        except httpx.HTTPError as e:
            raise BackendError(None, str(e) or type(e).__name__) from e
        return state.to_response()

    @abstractmethod
    def _endpoint(self) -> str:
        """URL of the completion endpoint."""

    @abstractmethod
    def _headers(self, api_key: str) -> Dict[str, str]:
        """Request headers including authentication."""

    @abstractmethod
    def _build_payload(self, system_prompt: str, history: Sequence[ChatMessage], *, stream: bool) -> Dict[str, Any]:
        """Request body for a completion call."""

    @abstractmethod
    def _validation_payload(self) -> Dict[str, Any]:
        """Smallest possible request used by the live key check."""

    @abstractmethod
    def _parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        """Decode a blocking response body."""

    @abstractmethod
    def _apply_stream_event(self, event: SseEvent, state: StreamState) -> Optional[str]:
        """Fold one streamed event into ``state``; return its text delta, if any."""
