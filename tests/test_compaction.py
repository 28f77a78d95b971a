"""
Tests for conversation compaction.
"""

from unittest.mock import MagicMock

import pytest

from relay_agent.agent.compaction import (
    SUMMARY_HEADER,
    CompactionConfig,
    compact_conversation,
    estimate_tokens,
    find_compaction_boundary,
    needs_compaction,
    render_for_summary,
)
from relay_agent.llm.base import LLMMessage, StreamDelta, ToolCall


def summarizer(text: str = "SUMMARY", error: Exception | None = None) -> MagicMock:
    """An adapter double whose stream yields one text delta."""
    requests = []

    async def stream(model, messages, tools=None):
        requests.append((model, messages, tools))
        if error is not None:
            raise error
        yield StreamDelta(content=text)
        yield StreamDelta(done=True)

    llm = MagicMock()
    llm.stream = stream
    llm.requests = requests
    return llm


def long_conversation(pairs: int, size: int = 250) -> list[LLMMessage]:
    messages = [LLMMessage(role="system", content="system prompt")]
    for i in range(pairs):
        messages.append(LLMMessage(role="user", content=f"question {i} " + "x" * size))
        messages.append(LLMMessage(role="assistant", content=f"answer {i} " + "y" * size))
    return messages


def test_estimate_tokens():
    messages = [
        LLMMessage(role="user", content="a" * 25),
        LLMMessage(role="assistant", tool_calls=[ToolCall(id="1", name="abcde", arguments="b" * 20)]),
    ]

    assert estimate_tokens(messages) == 20


def test_needs_compaction_disabled_with_zero_limit():
    messages = long_conversation(50)

    assert needs_compaction(messages, CompactionConfig(context_limit=100))
    assert not needs_compaction(messages, CompactionConfig(context_limit=0))


def test_boundary_never_splits_tool_group():
    messages = [
        LLMMessage(role="system", content="sys"),
        LLMMessage(role="user", content="u" * 50),
        LLMMessage(role="assistant", tool_calls=[
            ToolCall(id="a", name="t", arguments="{}"),
            ToolCall(id="b", name="t", arguments="{}"),
        ]),
        LLMMessage(role="tool", content="r" * 500, tool_call_id="a"),
        LLMMessage(role="tool", content="r" * 500, tool_call_id="b"),
        LLMMessage(role="user", content="next"),
    ]
    # target is 40 tokens: the user message and the assistant call fit, the
    # results do not, but they are pulled in with their call.
    cut = find_compaction_boundary(messages, CompactionConfig(context_limit=50))

    assert cut == 5
    assert messages[cut].role == "user"


def test_boundary_empty_when_first_message_too_large():
    messages = [
        LLMMessage(role="system", content="sys"),
        LLMMessage(role="user", content="u" * 10000),
        LLMMessage(role="assistant", content="ok"),
    ]

    assert find_compaction_boundary(messages, CompactionConfig(context_limit=100)) == 1


def test_render_for_summary():
    messages = [
        LLMMessage(role="system", content=SUMMARY_HEADER + "older stuff"),
        LLMMessage(role="user", content="hi"),
        LLMMessage(role="assistant", tool_calls=[ToolCall(id="1", name="grep", arguments='{"pattern":"x"}')]),
        LLMMessage(role="tool", content="z" * 20, tool_call_id="1"),
        LLMMessage(role="assistant", content="done"),
    ]

    rendered = render_for_summary(messages, preview=5)

    assert "Earlier summary: older stuff" in rendered
    assert "User: hi" in rendered
    assert 'Assistant called tool grep({"pattern":"x"})' in rendered
    assert "Tool result: zzzzz...(truncated)" in rendered
    assert "Assistant: done" in rendered


@pytest.mark.asyncio
async def test_compaction_rebuilds_transcript():
    messages = long_conversation(40)
    config = CompactionConfig(context_limit=4000)
    llm = summarizer("the gist")

    compacted, result = await compact_conversation(llm, "model-x", messages, config)

    assert result.success is True
    assert result.summary == "the gist"
    assert compacted[0] is messages[0]
    assert compacted[1].role == "system"
    assert compacted[1].content == SUMMARY_HEADER + "the gist"
    assert compacted[2:] == messages[len(messages) - len(compacted) + 2:]
    assert len(compacted) < len(messages)
    assert result.tokens_saved_estimate > 0

    model, request, tools = llm.requests[0]
    assert model == "model-x"
    assert [m.role for m in request] == ["system", "user"]
    assert tools is None


@pytest.mark.asyncio
async def test_compaction_failure_leaves_transcript_intact():
    messages = long_conversation(40)
    snapshot = list(messages)

    compacted, result = await compact_conversation(
        summarizer(error=RuntimeError("provider down")),
        "m",
        messages,
        CompactionConfig(context_limit=4000),
    )

    assert result.success is False
    assert "provider down" in result.error
    assert compacted is messages
    assert messages == snapshot


@pytest.mark.asyncio
async def test_empty_summary_is_a_failure():
    messages = long_conversation(40)

    compacted, result = await compact_conversation(
        summarizer("   "), "m", messages, CompactionConfig(context_limit=4000)
    )

    assert result.success is False
    assert compacted is messages


@pytest.mark.asyncio
async def test_no_compaction_under_limit():
    messages = long_conversation(2)
    llm = summarizer()

    compacted, result = await compact_conversation(llm, "m", messages, CompactionConfig())

    assert compacted is messages
    assert result.success is True
    assert result.summary == ""
    assert llm.requests == []
