"""
Chat-completions protocol adapter (OpenAI, OpenRouter and compatible APIs).
"""

import json
from typing import Any, AsyncIterator

import structlog

from ..exceptions import StreamIncompleteError
from .base import BaseLLM, LLMMessage, StreamDelta, ToolCall, ToolDefinition, parse_sse_data

logger = structlog.get_logger()

DONE_SENTINEL = "[DONE]"


class OpenAILLM(BaseLLM):
    """Chat-completions streaming adapter."""

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to chat-completions format."""
        converted = []

        for msg in messages:
            entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
            if not msg.content and msg.role in ("assistant", "tool"):
                entry["content"] = None
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": tc.arguments,
                        },
                    }
                    for tc in msg.tool_calls
                ]
            if msg.tool_call_id:
                entry["tool_call_id"] = msg.tool_call_id
            converted.append(entry)

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to chat-completions format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def build_payload(
        self,
        model: str,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": self._convert_messages(messages),
            "stream": True,
        }
        if tools:
            payload["tools"] = self._convert_tools(tools)
        return payload

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    async def stream(
        self,
        model: str,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> AsyncIterator[StreamDelta]:
        """Stream a chat completion.

        Tool-call fragments are accumulated per ``index``; the ``[DONE]``
        sentinel closes every open call and emits them in index order along
        with the completion marker.
        """
        payload = self.build_payload(model, messages, tools)
        url = f"{self.base_url}/chat/completions"
        logger.debug("Sending request", provider=self.provider_name, url=url, payload=payload)

        pending: dict[int, ToolCall] = {}
        events = 0

        async with self.transport.stream(
            url, payload, headers=self._headers(), provider=self.provider_name
        ) as response:
            async for line in self.transport.iter_lines(response):
                data = parse_sse_data(line)
                if data is None:
                    continue
                events += 1

                if data == DONE_SENTINEL:
                    logger.debug("Stream done", provider=self.provider_name, events=events)
                    completed = [pending[index] for index in sorted(pending)]
                    yield StreamDelta(tool_calls=completed, done=True)
                    return

                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if not isinstance(chunk, dict):
                    continue

                choices = chunk.get("choices") or []
                if not choices:
                    continue
                delta = choices[0].get("delta") or {}

                content = delta.get("content")
                if content:
                    yield StreamDelta(content=content)

                for fragment in delta.get("tool_calls") or []:
                    index = fragment.get("index", 0)
                    call = pending.get(index)
                    if call is None:
                        call = pending[index] = ToolCall(id="", name="")
                    if fragment.get("id"):
                        call.id = fragment["id"]
                    function = fragment.get("function") or {}
                    if function.get("name"):
                        call.name = function["name"]
                    call.arguments += function.get("arguments") or ""

        raise StreamIncompleteError(events)
