"""Configuration management for toolpilot."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from toolpilot.errors import ApiKeyNotConfiguredError
from toolpilot.llm.providers import Provider


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLPILOT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API Configuration
    provider: str | None = Field(default=None, description="LLM provider: anthropic, openai or google")
    api_key: str | None = Field(default=None, description="API key for the LLM provider")
    model: str | None = Field(default=None, description="Model name; empty selects the provider default")
    max_tokens: int = Field(default=16384, ge=1, description="Maximum output tokens per response")
    request_timeout_seconds: float = Field(default=300.0, gt=0, description="Upstream request timeout")

    # Loop Configuration
    max_input_tokens: int = Field(default=150_000, ge=1, description="Input budget for the outgoing conversation")
    chars_per_token: int = Field(default=3, ge=1, description="Characters per token used to size the budget")
    rate_limit_delays: list[float] = Field(
        default_factory=lambda: [10.0, 30.0, 60.0],
        description="Seconds to wait before each retry of a rate-limited request",
    )
    tool_history_limit: int = Field(default=50, ge=1, description="Tool calls kept in the session history")
    system_prompt: str | None = Field(default=None, description="Override for the default system prompt")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")

    @property
    def resolved_provider(self) -> Provider:
        return Provider.parse(self.provider)

    @property
    def resolved_model(self) -> str:
        return self.model or self.resolved_provider.info.default_model

    def require_api_key(self) -> str:
        """Return the API key, raising if it is missing or malformed for the provider."""
        provider = self.resolved_provider
        info = provider.info
        if not self.api_key or not self.api_key.strip():
            raise ApiKeyNotConfiguredError(
                f"API key not configured for {info.display_name}. Set TOOLPILOT_API_KEY. {info.key_hint}"
            )
        key = self.api_key.strip()
        if not provider.validate_api_key(key):
            raise ApiKeyNotConfiguredError(f"{info.key_error} {info.key_hint}")
        return key


def get_settings(**overrides: object) -> Settings:
    """Load settings from the environment and ``.env``, applying explicit overrides."""
    return Settings(**{key: value for key, value in overrides.items() if value is not None})
