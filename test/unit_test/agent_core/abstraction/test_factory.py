"""Unit tests for the provider factory and the tagged config union."""

import pytest
from pydantic import TypeAdapter, ValidationError

from serverpilot_ai.agent_core.abstraction import (
    AnthropicConfig,
    CompatibleChatConfig,
    CompatibleFlavor,
    ProviderConfig,
    create_provider,
)
from serverpilot_ai.agent_core.abstraction.adapters import AnthropicProvider, CompatibleChatProvider


class TestCreateProvider:
    def test_anthropic_config_builds_anthropic_adapter(self):
        provider = create_provider(AnthropicConfig())
        assert isinstance(provider, AnthropicProvider)
        assert provider.name == "anthropic"
        assert provider.base_url == "https://api.anthropic.com/v1"
        assert not provider.is_initialized()

    @pytest.mark.parametrize(
        "flavor,model,base_url",
        [
            (CompatibleFlavor.openai, "gpt-4o", "https://api.openai.com/v1"),
            (CompatibleFlavor.moonshot, "kimi-k2.5", "https://api.moonshot.ai/v1"),
        ],
    )
    def test_compatible_config_builds_compatible_adapter(self, flavor, model, base_url):
        provider = create_provider(CompatibleChatConfig(flavor=flavor))
        assert isinstance(provider, CompatibleChatProvider)
        assert provider.name == flavor.value
        assert provider.model == model
        assert provider.base_url == base_url

    def test_base_url_override_drops_trailing_slash(self):
        provider = create_provider(CompatibleChatConfig(base_url="http://mock/v1/"))
        assert provider.base_url == "http://mock/v1"

    def test_unknown_config_type_is_rejected(self):
        with pytest.raises(TypeError):
            create_provider(object())


class TestProviderConfigUnion:
    def test_discriminates_on_kind(self):
        adapter = TypeAdapter(ProviderConfig)
        anthropic = adapter.validate_python({"kind": "anthropic", "model": "claude-sonnet-4-5"})
        moonshot = adapter.validate_python({"kind": "openai_compatible", "flavor": "moonshot"})
        assert isinstance(anthropic, AnthropicConfig)
        assert anthropic.model == "claude-sonnet-4-5"
        assert isinstance(moonshot, CompatibleChatConfig)
        assert moonshot.flavor == CompatibleFlavor.moonshot

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            TypeAdapter(ProviderConfig).validate_python({"kind": "gemini"})

    def test_out_of_range_temperature_is_rejected(self):
        with pytest.raises(ValidationError):
            AnthropicConfig(temperature=3.5)
