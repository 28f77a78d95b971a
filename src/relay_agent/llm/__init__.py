"""
LLM module: streaming protocol adapters.

Protocols:
- Chat completions (OpenAI, OpenRouter and compatible endpoints)
- Messages (Anthropic Claude)
"""

from .base import BaseLLM, LLMMessage, StreamDelta, ToolCall, ToolDefinition
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .transport import RetryingTransport
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "LLMMessage",
    "StreamDelta",
    "ToolCall",
    "ToolDefinition",
    "AnthropicLLM",
    "OpenAILLM",
    "RetryingTransport",
    "create_llm",
]
