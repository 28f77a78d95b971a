"""
Tests for the chat-completions stream adapter.
"""

import json

import httpx
import pytest

from relay_agent.exceptions import ProtocolError, StreamIncompleteError
from relay_agent.llm import LLMMessage, OpenAILLM, StreamDelta, ToolCall, ToolDefinition
from relay_agent.llm.transport import RetryingTransport


def sse(*events: str) -> bytes:
    return "".join(f"data: {event}\n\n" for event in events).encode()


def chunk(delta: dict) -> str:
    return json.dumps({"choices": [{"index": 0, "delta": delta}]})


def make_llm(body: bytes, requests: list | None = None, status: int = 200) -> OpenAILLM:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status, content=body, headers={"content-type": "text/event-stream"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAILLM(
        api_key="sk-test",
        base_url="http://llm.test/v1/",
        transport=RetryingTransport(client=client, backoff=0),
    )


async def collect(llm: OpenAILLM, tools=None) -> list[StreamDelta]:
    messages = [LLMMessage(role="user", content="hi")]
    return [delta async for delta in llm.stream("gpt-test", messages, tools)]


@pytest.mark.asyncio
async def test_streams_text_then_done():
    llm = make_llm(sse(
        chunk({"role": "assistant", "content": "Hello"}),
        chunk({"content": " world"}),
        "[DONE]",
    ))

    deltas = await collect(llm)

    assert [d.content for d in deltas if d.content] == ["Hello", " world"]
    assert deltas[-1].done is True
    assert deltas[-1].tool_calls == []


@pytest.mark.asyncio
async def test_tool_call_fragments_are_joined():
    llm = make_llm(sse(
        chunk({"tool_calls": [{"index": 0, "id": "call_1", "function": {"name": "search", "arguments": ""}}]}),
        chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"q":'}}]}),
        chunk({"tool_calls": [{"index": 0, "function": {"arguments": '"x"}'}}]}),
        "[DONE]",
    ))

    deltas = await collect(llm)
    final = deltas[-1]

    assert final.done is True
    assert final.tool_calls == [ToolCall(id="call_1", name="search", arguments='{"q":"x"}')]
    assert final.tool_calls[0].parse_arguments() == {"q": "x"}


@pytest.mark.asyncio
async def test_tool_calls_emitted_in_index_order():
    llm = make_llm(sse(
        chunk({"tool_calls": [{"index": 1, "id": "b", "function": {"name": "second", "arguments": "{}"}}]}),
        chunk({"tool_calls": [{"index": 0, "id": "a", "function": {"name": "first", "arguments": "{}"}}]}),
        "[DONE]",
    ))

    deltas = await collect(llm)

    assert [tc.id for tc in deltas[-1].tool_calls] == ["a", "b"]


@pytest.mark.asyncio
async def test_fragmentation_does_not_change_arguments():
    whole = make_llm(sse(
        chunk({"tool_calls": [{"index": 0, "id": "c", "function": {"name": "f", "arguments": '{"a": [1, 2]}'}}]}),
        "[DONE]",
    ))
    pieces = ['{"a"', ": [1", ", 2", "]}"]
    split = make_llm(sse(
        chunk({"tool_calls": [{"index": 0, "id": "c", "function": {"name": "f"}}]}),
        *(chunk({"tool_calls": [{"index": 0, "function": {"arguments": p}}]}) for p in pieces),
        "[DONE]",
    ))

    assert (await collect(whole))[-1].tool_calls == (await collect(split))[-1].tool_calls


@pytest.mark.asyncio
async def test_non_json_and_comment_lines_are_skipped():
    body = b": keep-alive\n\n" + sse("not json", chunk({"content": "ok"}), "[DONE]")
    llm = make_llm(body)

    deltas = await collect(llm)

    assert [d.content for d in deltas if d.content] == ["ok"]
    assert deltas[-1].done is True


@pytest.mark.asyncio
async def test_missing_done_marker_is_incomplete():
    llm = make_llm(sse(chunk({"content": "partial"})))

    with pytest.raises(StreamIncompleteError):
        await collect(llm)


@pytest.mark.asyncio
async def test_http_error_status_raises_protocol_error():
    llm = make_llm(b'{"error": {"message": "invalid key"}}', status=401)

    with pytest.raises(ProtocolError) as exc_info:
        await collect(llm)

    assert exc_info.value.status == 401
    assert "invalid key" in exc_info.value.body


@pytest.mark.asyncio
async def test_request_wire_format():
    requests: list[httpx.Request] = []
    llm = make_llm(sse("[DONE]"), requests)
    tools = [ToolDefinition(name="search", description="Search", parameters={"type": "object"})]

    await collect(llm, tools)

    request = requests[0]
    payload = json.loads(request.content)
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert payload["model"] == "gpt-test"
    assert payload["stream"] is True
    assert payload["tools"] == [{
        "type": "function",
        "function": {"name": "search", "description": "Search", "parameters": {"type": "object"}},
    }]


def test_convert_messages_with_tool_calls():
    llm = OpenAILLM(api_key="", base_url="http://llm.test/v1")
    messages = [
        LLMMessage(role="system", content="be brief"),
        LLMMessage(role="user", content="find x"),
        LLMMessage(role="assistant", tool_calls=[ToolCall(id="c1", name="search", arguments='{"q":"x"}')]),
        LLMMessage(role="tool", content="found", tool_call_id="c1"),
    ]

    converted = llm.build_payload("m", messages)["messages"]

    assert converted[0] == {"role": "system", "content": "be brief"}
    assert converted[2]["content"] is None
    assert converted[2]["tool_calls"][0] == {
        "id": "c1",
        "type": "function",
        "function": {"name": "search", "arguments": '{"q":"x"}'},
    }
    assert converted[3] == {"role": "tool", "content": "found", "tool_call_id": "c1"}
    assert "tools" not in llm.build_payload("m", messages)
