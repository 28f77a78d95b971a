"""
Base classes for LLM stream adapters.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal

from .transport import RetryingTransport


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """A tool call made by the LLM.

    ``arguments`` is the raw JSON string exactly as the provider streamed it.
    """

    id: str
    name: str
    arguments: str = ""

    def parse_arguments(self) -> dict[str, Any]:
        """Decode the argument string. Empty arguments decode to ``{}``."""
        if not self.arguments.strip():
            return {}
        parsed = json.loads(self.arguments)
        if not isinstance(parsed, dict):
            raise ValueError("tool arguments must be a JSON object")
        return parsed


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str = ""
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None


@dataclass
class StreamDelta:
    """One incremental unit of streamed output.

    Carries a text fragment, one or more completed tool calls, or the
    completion marker (``done``).
    """

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    done: bool = False


class BaseLLM(ABC):
    """Base class for streaming protocol adapters."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        transport: RetryingTransport | None = None,
        max_tokens: int = 4096,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.transport = transport or RetryingTransport()
        self.max_tokens = max_tokens

    @abstractmethod
    def build_payload(
        self,
        model: str,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> dict[str, Any]:
        """Translate canonical messages and tools into the wire request body."""

    @abstractmethod
    def stream(
        self,
        model: str,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> AsyncIterator[StreamDelta]:
        """Stream deltas for one request, ending with a ``done`` delta."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""

    async def aclose(self) -> None:
        await self.transport.aclose()


def parse_sse_data(line: str) -> str | None:
    """Return the payload of an SSE ``data:`` line, or None for other lines."""
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()
