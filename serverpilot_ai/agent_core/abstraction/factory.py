"""Provider factory: dispatches on the configuration tag."""

from __future__ import annotations

from typing import Optional, Union

import httpx

from .adapters import AnthropicProvider, CompatibleChatProvider
from .base import ChatProvider
from .config import AnthropicConfig, CompatibleChatConfig


def create_provider(
    config: Union[AnthropicConfig, CompatibleChatConfig],
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> ChatProvider:
    """Build the adapter for ``config``."""
    if isinstance(config, AnthropicConfig):
        return AnthropicProvider(config, client=client)
    if isinstance(config, CompatibleChatConfig):
        return CompatibleChatProvider(config, client=client)
    raise TypeError(f"unsupported provider config: {type(config).__name__}")
