"""
LLM factory for creating stream adapter instances.

Supports: chat-completions (OpenAI, OpenRouter, compatible) and Messages
(Anthropic) protocols.
"""

from ..config import Settings, get_settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM
from .transport import RetryingTransport


def create_transport(settings: Settings) -> RetryingTransport:
    """Build a transport from settings."""
    return RetryingTransport(
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        idle_timeout=settings.stream_idle_timeout,
        backoff=settings.retry_backoff,
    )


def create_llm(provider: str | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an adapter for a configured provider.

    Routing is by the provider's configured ``type``:
    - openai -> OpenAILLM (chat completions)
    - anthropic -> AnthropicLLM (messages)
    """
    settings = settings or get_settings()
    if provider is None:
        provider, _ = settings.split_model()

    config = settings.get_provider_config(provider)
    transport = create_transport(settings)

    if config.type == "anthropic":
        return AnthropicLLM(
            api_key=config.api_key,
            base_url=config.base_url or settings.anthropic_base_url,
            transport=transport,
            max_tokens=settings.max_tokens,
        )
    return OpenAILLM(
        api_key=config.api_key,
        base_url=config.base_url or settings.openai_base_url,
        transport=transport,
        max_tokens=settings.max_tokens,
    )
