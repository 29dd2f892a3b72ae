"""Provider configuration.

Backends are selected by a tagged union on ``kind``:

- ``AnthropicConfig``: the Anthropic Messages API.
- ``CompatibleChatConfig``: any OpenAI-compatible ``/chat/completions``
  endpoint. ``flavor`` picks the defaults and parameter rules of a known
  vendor (OpenAI, Moonshot).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class CompatibleFlavor(str, Enum):
    openai = "openai"
    moonshot = "moonshot"


@dataclass(frozen=True)
class BackendProfile:
    """
    Static facts about one backend.

    Attributes:
        base_url: Default API root.
        default_model: Model used until ``set_model`` is called.
        key_prefix: Required API key prefix for the structural check.
        min_key_length: Minimum API key length for the structural check.
        validation_model: Cheap model used for the live key round-trip.
        no_sampling_models: Regexes of model ids that reject sampling parameters.
        completion_tokens_models: Regexes of model ids that take ``max_completion_tokens``.
        live_key_check: Whether key validation makes a one-token round-trip after
            the structural check.
    """
    base_url: str
    default_model: str
    key_prefix: str
    min_key_length: int
    validation_model: str
    no_sampling_models: Tuple[str, ...] = ()
    completion_tokens_models: Tuple[str, ...] = ()
    live_key_check: bool = True


ANTHROPIC_PROFILE = BackendProfile(
    base_url="https://api.anthropic.com/v1",
    default_model="claude-opus-4-5",
    key_prefix="sk-ant-",
    min_key_length=32,
    validation_model="claude-haiku-3-5",
    no_sampling_models=(r"thinking",),
)

COMPATIBLE_PROFILES = {
    CompatibleFlavor.openai: BackendProfile(
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o",
        key_prefix="sk-",
        min_key_length=32,
        validation_model="gpt-4o-mini",
        no_sampling_models=(r"^o\d",),
        completion_tokens_models=(r"^o\d",),
    ),
    CompatibleFlavor.moonshot: BackendProfile(
        base_url="https://api.moonshot.ai/v1",
        default_model="kimi-k2.5",
        key_prefix="sk-",
        min_key_length=32,
        validation_model="kimi-k2.5",
        no_sampling_models=(r"^kimi-k2\.5",),
        completion_tokens_models=(r"^kimi-k2\.5",),
        live_key_check=False,
    ),
}


class _ProviderConfigBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    model: Optional[str] = Field(default=None, description="Model id; the backend default when unset")
    base_url: Optional[str] = Field(default=None, description="API root; the backend default when unset")
    max_tokens: int = Field(default=4096, ge=1, description="Upper bound on generated tokens")
    temperature: float = Field(
        default=0.6,
        ge=0.0,
        le=2.0,
        description="Sampling temperature; dropped for models that forbid sampling parameters",
    )
    timeout: float = Field(default=120.0, gt=0.0, description="Request timeout in seconds")


class AnthropicConfig(_ProviderConfigBase):
    kind: Literal["anthropic"] = "anthropic"
    api_version: str = Field(default="2023-06-01", description="Value of the anthropic-version header")

    @property
    def profile(self) -> BackendProfile:
        return ANTHROPIC_PROFILE


class CompatibleChatConfig(_ProviderConfigBase):
    kind: Literal["openai_compatible"] = "openai_compatible"
    flavor: CompatibleFlavor = CompatibleFlavor.openai

    @property
    def profile(self) -> BackendProfile:
        return COMPATIBLE_PROFILES[self.flavor]


ProviderConfig = Annotated[Union[AnthropicConfig, CompatibleChatConfig], Field(discriminator="kind")]
