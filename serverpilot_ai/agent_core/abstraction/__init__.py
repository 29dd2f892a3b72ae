"""Provider gateway.

One capability contract (``ChatProvider``) over heterogeneous chat-completion
backends, selected at configuration time through the tagged config union
``AnthropicConfig | CompatibleChatConfig`` and ``create_provider``.
"""

from .base import ApiKeyValidation, ChatProvider
from .config import (
    AnthropicConfig,
    CompatibleChatConfig,
    CompatibleFlavor,
    ProviderConfig,
)
from .factory import create_provider
from .stream import CallbackStreamHandler, StreamHandle, StreamHandler

__all__ = [
    "AnthropicConfig",
    "ApiKeyValidation",
    "CallbackStreamHandler",
    "ChatProvider",
    "CompatibleChatConfig",
    "CompatibleFlavor",
    "ProviderConfig",
    "StreamHandle",
    "StreamHandler",
    "create_provider",
]
