"""
Configuration management for Relay-Agent

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ProviderNotConfiguredError

DEFAULT_SYSTEM_PROMPT = """You are Relay, a capable assistant that works through tools.

Use the available tools to inspect files, run commands and make HTTP requests
instead of guessing. When you need information only the user has (passwords,
choices, confirmations), call the `interactive` tool rather than asking in
plain text. Before modifying files or the system, confirm with the user using
`interactive` with the options ["yes", "no", "trust"].

Be concise and report what you changed, with file paths."""


class ProviderConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    type: Literal["openai", "anthropic"] = "openai"
    api_key: str = ""
    base_url: str = ""
    models: list[str] = Field(default_factory=list)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Relay-Agent"
    debug: bool = False
    log_level: str = "INFO"

    # Built-in providers (API keys)
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI base URL")
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    anthropic_base_url: str = Field(default="https://api.anthropic.com", description="Anthropic base URL")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    # Additional named providers, e.g. PROVIDERS='{"local": {"type": "openai", "base_url": "..."}}'
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)

    # Agent
    default_model: str = Field(default="openai/gpt-4o", description="provider/model used at startup")
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    enabled_tools: str = Field(default="", description="Comma-separated tool names (empty = all)")
    max_rounds: int = Field(default=50, description="Max model rounds per turn")
    max_tokens: int = 4096

    # Context compression (<= 0 disables)
    context_limit: int = Field(default=60000, description="Estimated token budget for the transcript")

    # Transport
    request_timeout: float = Field(default=1800.0, description="HTTP timeout in seconds")
    max_retries: int = Field(default=1, description="Retries on HTTP 429/5xx")
    retry_backoff: float = Field(default=2.0, description="Seconds between retries")
    stream_idle_timeout: float = Field(default=300.0, description="Abort a stream idle this long")

    # Tools
    command_timeout: int = Field(default=30, description="Timeout for the bash tool in seconds")
    workspace_dir: str = Field(default="", description="Base directory for relative tool paths")

    @field_validator("max_retries", mode="before")
    @classmethod
    def default_negative_retries(cls, v: int) -> int:
        if v is None or int(v) < 0:
            return 1
        return int(v)

    @property
    def enabled_tools_list(self) -> list[str]:
        """Get list of enabled tool names."""
        if not self.enabled_tools:
            return []
        return [t.strip() for t in self.enabled_tools.split(",") if t.strip()]

    def get_provider_config(self, provider: str) -> ProviderConfig:
        """Get configuration for a named provider."""
        if provider in self.providers:
            return self.providers[provider]

        builtin = {
            "openai": ProviderConfig(
                type="openai",
                api_key=self.openai_api_key,
                base_url=self.openai_base_url,
            ),
            "anthropic": ProviderConfig(
                type="anthropic",
                api_key=self.anthropic_api_key,
                base_url=self.anthropic_base_url,
            ),
            "openrouter": ProviderConfig(
                type="openai",
                api_key=self.openrouter_api_key,
                base_url="https://openrouter.ai/api/v1",
            ),
        }
        if provider not in builtin:
            raise ProviderNotConfiguredError(f"Unknown LLM provider: {provider}")
        return builtin[provider]

    def split_model(self, model: str | None = None) -> tuple[str, str]:
        """Split ``provider/model`` into its parts.

        A bare model name belongs to the default model's provider.
        """
        model = model or self.default_model
        if "/" in model:
            provider, _, model_id = model.partition("/")
            return provider, model_id
        default_provider = self.default_model.partition("/")[0] if "/" in self.default_model else "openai"
        return default_provider, model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
