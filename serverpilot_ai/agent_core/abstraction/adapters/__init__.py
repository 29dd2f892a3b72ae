"""Backend adapters implementing ``ChatProvider``."""

from .anthropic import AnthropicProvider
from .openai_compatible import CompatibleChatProvider

__all__ = ["AnthropicProvider", "CompatibleChatProvider"]
