"""Unit tests for server configuration settings model.

Tests verify that the Settings model binds environment variables and that the
grouped configuration views read the same values.
"""

import pytest

from serverpilot_ai.server.core.config import (
    AnthropicConfig,
    CORSConfig,
    ExecutionConfig,
    MoonshotConfig,
    OpenAIConfig,
    Settings,
)

ENV_VARS = [
    "SERVERPILOT_AI_SERVER_HOST",
    "SERVERPILOT_AI_SERVER_PORT",
    "SERVERPILOT_AI_LOG_LEVEL",
    "SERVERPILOT_AI_LOG_FORMAT",
    "SERVERPILOT_AI_PROVIDER",
    "SERVERPILOT_AI_COMMAND_TIMEOUT",
    "SERVERPILOT_AI_MAX_OUTPUT_BYTES",
    "SERVERPILOT_AI_DEFAULT_MODE",
    "SERVERPILOT_AI_IDLE_WARNING_SECONDS",
    "SERVERPILOT_AI_IDLE_STALLED_SECONDS",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_MODEL",
    "ANTHROPIC_BASE_URL",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "MOONSHOT_API_KEY",
    "MOONSHOT_MODEL",
    "MOONSHOT_BASE_URL",
    "CORS_ORIGINS",
    "CORS_ALLOW_CREDENTIALS",
    "CORS_ALLOW_METHODS",
    "CORS_ALLOW_HEADERS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove any configuration the host environment might carry."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _settings() -> Settings:
    return Settings(_env_file=None)


class TestSettingsDefaults:
    """Test default values when nothing is configured."""

    def test_server_defaults(self):
        settings = _settings()
        assert settings.server_host == "0.0.0.0"
        assert settings.server_port == 8000
        assert settings.log_level == "INFO"
        assert settings.provider == "anthropic"

    def test_execution_defaults(self):
        execution = _settings().execution
        assert isinstance(execution, ExecutionConfig)
        assert execution.command_timeout == 120.0
        assert execution.max_output_bytes > 0
        assert execution.default_mode == "supervised"
        assert execution.idle_warning_seconds == 15.0
        assert execution.idle_stalled_seconds == 45.0

    def test_provider_defaults(self):
        settings = _settings()
        assert settings.anthropic.api_key is None
        assert settings.openai.model is None
        assert settings.moonshot.base_url is None

    def test_cors_defaults(self):
        cors = _settings().cors
        assert isinstance(cors, CORSConfig)
        assert cors.origins == ["*"]
        assert cors.allow_credentials is True


class TestSettingsBinding:
    """Test Settings model environment variable binding."""

    def test_server_binding(self, monkeypatch):
        monkeypatch.setenv("SERVERPILOT_AI_SERVER_HOST", "127.0.0.1")
        monkeypatch.setenv("SERVERPILOT_AI_SERVER_PORT", "9100")
        monkeypatch.setenv("SERVERPILOT_AI_LOG_LEVEL", "DEBUG")

        settings = _settings()
        assert settings.server_host == "127.0.0.1"
        assert settings.server_port == 9100
        assert settings.log_level == "DEBUG"

    def test_provider_selection_binding(self, monkeypatch):
        monkeypatch.setenv("SERVERPILOT_AI_PROVIDER", "moonshot")
        assert _settings().provider == "moonshot"

    def test_execution_binding(self, monkeypatch):
        monkeypatch.setenv("SERVERPILOT_AI_COMMAND_TIMEOUT", "30.5")
        monkeypatch.setenv("SERVERPILOT_AI_MAX_OUTPUT_BYTES", "4096")
        monkeypatch.setenv("SERVERPILOT_AI_DEFAULT_MODE", "autonomous")
        monkeypatch.setenv("SERVERPILOT_AI_IDLE_WARNING_SECONDS", "5")
        monkeypatch.setenv("SERVERPILOT_AI_IDLE_STALLED_SECONDS", "0")

        execution = _settings().execution
        assert execution.command_timeout == 30.5
        assert execution.max_output_bytes == 4096
        assert execution.default_mode == "autonomous"
        assert execution.idle_warning_seconds == 5.0
        assert execution.idle_stalled_seconds == 0.0

    def test_init_kwargs_use_env_names(self):
        settings = Settings(_env_file=None, SERVERPILOT_AI_PROVIDER="openai", OPENAI_API_KEY="sk-test")
        assert settings.provider == "openai"
        assert settings.openai.api_key == "sk-test"


class TestProviderConfigBinding:
    """Test the grouped provider views."""

    def test_anthropic_binding(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test-key")
        monkeypatch.setenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
        monkeypatch.setenv("ANTHROPIC_BASE_URL", "https://proxy.internal/v1")

        anthropic = _settings().anthropic
        assert isinstance(anthropic, AnthropicConfig)
        assert anthropic.api_key == "sk-ant-test-key"
        assert anthropic.model == "claude-sonnet-4-20250514"
        assert anthropic.base_url == "https://proxy.internal/v1"

    def test_openai_binding(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai-key")
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")

        openai = _settings().openai
        assert isinstance(openai, OpenAIConfig)
        assert openai.api_key == "sk-openai-key"
        assert openai.model == "gpt-4o"

    def test_moonshot_binding(self, monkeypatch):
        monkeypatch.setenv("MOONSHOT_API_KEY", "sk-moon-key")
        monkeypatch.setenv("MOONSHOT_MODEL", "moonshot-v1-8k")

        moonshot = _settings().moonshot
        assert isinstance(moonshot, MoonshotConfig)
        assert moonshot.api_key == "sk-moon-key"
        assert moonshot.model == "moonshot-v1-8k"


class TestCORSConfigBinding:
    """Test CORS configuration binding."""

    def test_cors_origins_binding(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", '["http://localhost:3000", "https://pilot.example.com"]')
        assert _settings().cors.origins == ["http://localhost:3000", "https://pilot.example.com"]

    def test_cors_allow_credentials_binding(self, monkeypatch):
        monkeypatch.setenv("CORS_ALLOW_CREDENTIALS", "false")
        assert _settings().cors.allow_credentials is False

    def test_cors_methods_and_headers_binding(self, monkeypatch):
        monkeypatch.setenv("CORS_ALLOW_METHODS", '["GET", "POST"]')
        monkeypatch.setenv("CORS_ALLOW_HEADERS", '["Content-Type"]')

        cors = _settings().cors
        assert cors.allow_methods == ["GET", "POST"]
        assert cors.allow_headers == ["Content-Type"]
