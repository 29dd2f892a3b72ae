"""
Configuration Settings.

This module defines the application configuration using Pydantic's BaseSettings.
It automatically loads all configuration from environment variables and .env file
without explicit dotenv loading.
"""

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from serverpilot_ai.agent_core.runtime.models import DEFAULT_IDLE_STALLED_SECONDS, DEFAULT_IDLE_WARNING_SECONDS
from serverpilot_ai.remote.markers import DEFAULT_MAX_OUTPUT_BYTES

# =====================================================================
# LLM Provider Configuration Models
# =====================================================================


class AnthropicConfig(BaseModel):
    """Anthropic API configuration."""

    api_key: Optional[str] = Field(
        default=None, alias="ANTHROPIC_API_KEY", description="Anthropic API key for authentication"
    )
    model: Optional[str] = Field(
        default=None, alias="ANTHROPIC_MODEL", description="Anthropic model to use (backend default when unset)"
    )
    base_url: Optional[str] = Field(
        default=None, alias="ANTHROPIC_BASE_URL", description="Custom Anthropic API base URL (optional)"
    )

    model_config = {"populate_by_name": True}


class OpenAIConfig(BaseModel):
    """OpenAI API configuration."""

    api_key: Optional[str] = Field(
        default=None, alias="OPENAI_API_KEY", description="OpenAI API key for authentication"
    )
    model: Optional[str] = Field(
        default=None, alias="OPENAI_MODEL", description="OpenAI model to use (backend default when unset)"
    )
    base_url: Optional[str] = Field(
        default=None, alias="OPENAI_BASE_URL", description="Custom OpenAI API base URL (optional)"
    )

    model_config = {"populate_by_name": True}


class MoonshotConfig(BaseModel):
    """Moonshot (Kimi) API configuration."""

    api_key: Optional[str] = Field(
        default=None, alias="MOONSHOT_API_KEY", description="Moonshot API key for authentication"
    )
    model: Optional[str] = Field(
        default=None, alias="MOONSHOT_MODEL", description="Moonshot model to use (backend default when unset)"
    )
    base_url: Optional[str] = Field(
        default=None, alias="MOONSHOT_BASE_URL", description="Custom Moonshot API base URL (optional)"
    )

    model_config = {"populate_by_name": True}


class ExecutionConfig(BaseModel):
    """Remote command execution configuration."""

    command_timeout: float = Field(
        default=120.0,
        alias="SERVERPILOT_AI_COMMAND_TIMEOUT",
        description="Per-command execution timeout in seconds",
    )
    max_output_bytes: int = Field(
        default=DEFAULT_MAX_OUTPUT_BYTES,
        alias="SERVERPILOT_AI_MAX_OUTPUT_BYTES",
        description="Maximum captured output per command, in bytes",
    )
    default_mode: str = Field(
        default="supervised",
        alias="SERVERPILOT_AI_DEFAULT_MODE",
        description="Execution mode used when a request does not name one (supervised or autonomous)",
    )
    idle_warning_seconds: float = Field(
        default=DEFAULT_IDLE_WARNING_SECONDS,
        ge=0,
        alias="SERVERPILOT_AI_IDLE_WARNING_SECONDS",
        description="Output silence before a running step gets an idle warning (0 disables)",
    )
    idle_stalled_seconds: float = Field(
        default=DEFAULT_IDLE_STALLED_SECONDS,
        ge=0,
        alias="SERVERPILOT_AI_IDLE_STALLED_SECONDS",
        description="Output silence before a running step is reported stalled (0 disables)",
    )

    model_config = {"populate_by_name": True}


class CORSConfig(BaseModel):
    """CORS configuration."""

    origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS", description="Allowed CORS origins (use * for all)")
    allow_credentials: bool = Field(
        default=True, alias="CORS_ALLOW_CREDENTIALS", description="Allow credentials in CORS requests"
    )
    allow_methods: list[str] = Field(
        default=["*"], alias="CORS_ALLOW_METHODS", description="Allowed HTTP methods (use * for all)"
    )
    allow_headers: list[str] = Field(
        default=["*"], alias="CORS_ALLOW_HEADERS", description="Allowed HTTP headers (use * for all)"
    )

    model_config = {"populate_by_name": True}


# =====================================================================
# Main Settings Class
# =====================================================================


class Settings(BaseSettings):
    """
    Application settings model.

    All properties are automatically bound from environment variables and .env file.
    Pydantic's BaseSettings handles dotenv loading automatically via model_config.
    """

    # =====================================================================
    # Pydantic Configuration
    # =====================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )

    # =====================================================================
    # ServerPilot-AI Server Configuration
    # =====================================================================
    server_host: str = Field(
        default="0.0.0.0",
        description="ServerPilot-AI server host address to bind to",
        alias="SERVERPILOT_AI_SERVER_HOST",
    )
    server_port: int = Field(
        default=8000,
        description="ServerPilot-AI server port number",
        alias="SERVERPILOT_AI_SERVER_PORT",
    )
    log_level: str = Field(
        default="INFO",
        description="ServerPilot-AI server logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="SERVERPILOT_AI_LOG_LEVEL",
    )
    log_format: str = Field(
        default="detailed",
        description="Log line format (simple, detailed, json)",
        alias="SERVERPILOT_AI_LOG_FORMAT",
    )
    log_file_dir: str = Field(
        default="logs",
        description="Directory for the log file when file logging is enabled",
        alias="SERVERPILOT_AI_LOG_FILE_DIR",
    )
    enable_file_logging: bool = Field(
        default=False,
        description="Also write logs to a file under log_file_dir",
        alias="SERVERPILOT_AI_ENABLE_FILE_LOGGING",
    )

    # =====================================================================
    # Chat Provider Selection
    # =====================================================================
    provider: str = Field(
        default="anthropic",
        description="Chat backend to use (anthropic, openai, moonshot)",
        alias="SERVERPILOT_AI_PROVIDER",
    )

    # =====================================================================
    # Provider credentials and models (read through the grouped views below)
    # =====================================================================
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_model: Optional[str] = Field(default=None, alias="ANTHROPIC_MODEL")
    anthropic_base_url: Optional[str] = Field(default=None, alias="ANTHROPIC_BASE_URL")
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: Optional[str] = Field(default=None, alias="OPENAI_MODEL")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    moonshot_api_key: Optional[str] = Field(default=None, alias="MOONSHOT_API_KEY")
    moonshot_model: Optional[str] = Field(default=None, alias="MOONSHOT_MODEL")
    moonshot_base_url: Optional[str] = Field(default=None, alias="MOONSHOT_BASE_URL")

    # =====================================================================
    # Execution Configuration
    # =====================================================================
    command_timeout: float = Field(
        default=120.0,
        description="Per-command execution timeout in seconds",
        alias="SERVERPILOT_AI_COMMAND_TIMEOUT",
    )
    max_output_bytes: int = Field(
        default=DEFAULT_MAX_OUTPUT_BYTES,
        description="Maximum captured output per command, in bytes",
        alias="SERVERPILOT_AI_MAX_OUTPUT_BYTES",
    )
    default_mode: str = Field(
        default="supervised",
        description="Execution mode used when a request does not name one",
        alias="SERVERPILOT_AI_DEFAULT_MODE",
    )
    idle_warning_seconds: float = Field(
        default=DEFAULT_IDLE_WARNING_SECONDS,
        description="Output silence before a running step gets an idle warning",
        alias="SERVERPILOT_AI_IDLE_WARNING_SECONDS",
    )
    idle_stalled_seconds: float = Field(
        default=DEFAULT_IDLE_STALLED_SECONDS,
        description="Output silence before a running step is reported stalled",
        alias="SERVERPILOT_AI_IDLE_STALLED_SECONDS",
    )

    # =====================================================================
    # CORS Configuration
    # =====================================================================
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(default=["*"], alias="CORS_ALLOW_METHODS")
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    # =====================================================================
    # Computed Properties (Grouped Configurations)
    # =====================================================================

    @property
    def anthropic(self) -> AnthropicConfig:
        """Get Anthropic configuration from environment variables."""
        return AnthropicConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def openai(self) -> OpenAIConfig:
        """Get OpenAI configuration from environment variables."""
        return OpenAIConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def moonshot(self) -> MoonshotConfig:
        """Get Moonshot configuration from environment variables."""
        return MoonshotConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def execution(self) -> ExecutionConfig:
        """Get remote execution configuration from environment variables."""
        return ExecutionConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def cors(self) -> CORSConfig:
        """Get CORS configuration from environment variables."""
        return CORSConfig.model_validate(self.model_dump(by_alias=True))


settings = Settings()
