"""
Messages protocol adapter (Anthropic Claude).
"""

import json
from typing import Any, AsyncIterator

import structlog

from ..exceptions import ProtocolError, StreamIncompleteError
from .base import BaseLLM, LLMMessage, StreamDelta, ToolCall, ToolDefinition, parse_sse_data

logger = structlog.get_logger()

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicLLM(BaseLLM):
    """Messages-API streaming adapter."""

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to Messages-API format.

        Tool results are sent as ``tool_result`` blocks under the user role;
        consecutive results share one user message.
        """
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                continue

            if msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": [{"type": "text", "text": msg.content}],
                }
                previous = converted[-1] if converted else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                ):
                    previous["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif msg.role == "assistant" and msg.tool_calls:
                content: list[dict[str, Any]] = []
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    content.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": _tool_input(tc),
                    })
                converted.append({"role": "assistant", "content": content})
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Messages-API format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    def _extract_system_prompt(self, messages: list[LLMMessage]) -> str:
        """Join every system message, in order."""
        return "\n\n".join(m.content for m in messages if m.role == "system" and m.content)

    def build_payload(
        self,
        model: str,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": self.max_tokens,
            "stream": True,
            "messages": self._convert_messages(messages),
        }
        system = self._extract_system_prompt(messages)
        if system:
            payload["system"] = system
        if tools:
            payload["tools"] = self._convert_tools(tools)
        return payload

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    async def stream(
        self,
        model: str,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> AsyncIterator[StreamDelta]:
        """Stream a message.

        Each ``tool_use`` block accumulates its ``partial_json`` fragments
        under the block index and is emitted when that block stops.
        """
        payload = self.build_payload(model, messages, tools)
        url = f"{self.base_url}/v1/messages"
        logger.debug("Sending request", provider=self.provider_name, url=url, payload=payload)

        open_blocks: dict[int, ToolCall] = {}
        events = 0

        async with self.transport.stream(
            url, payload, headers=self._headers(), provider=self.provider_name
        ) as response:
            async for line in self.transport.iter_lines(response):
                data = parse_sse_data(line)
                if data is None:
                    continue
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if not isinstance(event, dict):
                    continue
                events += 1

                event_type = event.get("type")
                index = event.get("index", 0)

                if event_type == "content_block_start":
                    block = event.get("content_block") or {}
                    if block.get("type") == "tool_use":
                        open_blocks[index] = ToolCall(
                            id=block.get("id", ""),
                            name=block.get("name", ""),
                        )

                elif event_type == "content_block_delta":
                    delta = event.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield StreamDelta(content=delta["text"])
                    elif delta.get("type") == "input_json_delta" and index in open_blocks:
                        open_blocks[index].arguments += delta.get("partial_json") or ""

                elif event_type == "content_block_stop":
                    call = open_blocks.pop(index, None)
                    if call is not None:
                        yield StreamDelta(tool_calls=[call])

                elif event_type == "message_stop":
                    logger.debug("Stream done", provider=self.provider_name, events=events)
                    yield StreamDelta(done=True)
                    return

                elif event_type == "error":
                    raise ProtocolError(None, data, provider=self.provider_name)

        raise StreamIncompleteError(events)


def _tool_input(call: ToolCall) -> dict[str, Any]:
    try:
        parsed = json.loads(call.arguments) if call.arguments else {}
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
