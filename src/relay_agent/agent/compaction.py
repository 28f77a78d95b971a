"""
Conversation Compaction - summarize older transcript messages.

When the estimated size of the transcript passes the configured limit, the
oldest messages after the leading system prompt are summarized by one
isolated LLM call and replaced with a single system message. The most recent
messages are kept verbatim. Compaction is destructive; if the summary call
fails the transcript is left untouched.
"""

from dataclasses import dataclass

import structlog

from ..llm.base import BaseLLM, LLMMessage

logger = structlog.get_logger()

# Rough character-to-token ratio; not a real tokenizer
CHARS_PER_TOKEN = 2.5

DEFAULT_CONTEXT_LIMIT = 60_000
DEFAULT_TARGET_RATIO = 0.8  # Summarize up to 80% of the limit
TOOL_RESULT_PREVIEW = 500

SUMMARY_INSTRUCTION = (
    "Summarize the following conversation concisely, preserving key decisions, "
    "code changes, file paths, and technical details. Output in the same language "
    "as the conversation."
)
SUMMARY_HEADER = "[Compressed context from earlier conversation]\n"


@dataclass
class CompactionConfig:
    """Configuration for conversation compaction."""

    context_limit: int = DEFAULT_CONTEXT_LIMIT
    target_ratio: float = DEFAULT_TARGET_RATIO
    tool_result_preview: int = TOOL_RESULT_PREVIEW

    @property
    def enabled(self) -> bool:
        return self.context_limit > 0


@dataclass
class CompactionResult:
    """Result of a compaction operation."""

    original_message_count: int
    compacted_message_count: int
    summary: str
    tokens_saved_estimate: int
    success: bool
    error: str | None = None


def _message_chars(message: LLMMessage) -> int:
    total = len(message.content)
    for tc in message.tool_calls or []:
        total += len(tc.name) + len(tc.arguments)
    return total


def estimate_tokens(messages: list[LLMMessage]) -> int:
    """Estimate token count for a list of messages."""
    return int(sum(_message_chars(m) for m in messages) / CHARS_PER_TOKEN)


def _message_tokens(message: LLMMessage) -> int:
    tokens = int(len(message.content) / CHARS_PER_TOKEN)
    for tc in message.tool_calls or []:
        tokens += int((len(tc.name) + len(tc.arguments)) / CHARS_PER_TOKEN)
    return tokens


def needs_compaction(messages: list[LLMMessage], config: CompactionConfig) -> bool:
    return config.enabled and estimate_tokens(messages) > config.context_limit


def find_compaction_boundary(messages: list[LLMMessage], config: CompactionConfig) -> int:
    """Return the transcript index where the keep zone starts.

    Messages from after the leading system prompt up to (not including) the
    returned index are summarized. An assistant message with tool calls is
    never separated from the tool results that follow it. Returns the start
    index itself when nothing fits.
    """
    start = 1 if messages and messages[0].role == "system" else 0
    target = int(config.context_limit * config.target_ratio)

    accumulated = 0
    cut = start
    while cut < len(messages):
        message = messages[cut]
        tokens = _message_tokens(message)
        if accumulated + tokens > target:
            break
        accumulated += tokens
        cut += 1

        if message.role == "assistant" and message.tool_calls:
            while cut < len(messages) and messages[cut].role == "tool":
                accumulated += _message_tokens(messages[cut])
                cut += 1

    return cut


def render_for_summary(messages: list[LLMMessage], preview: int = TOOL_RESULT_PREVIEW) -> str:
    """Flatten messages into labeled paragraphs for the summarizer."""
    parts = []
    for msg in messages:
        if msg.role == "user":
            parts.append(f"User: {msg.content}\n\n")
        elif msg.role == "assistant" and msg.content:
            parts.append(f"Assistant: {msg.content}\n\n")
        elif msg.role == "assistant" and msg.tool_calls:
            for tc in msg.tool_calls:
                parts.append(f"Assistant called tool {tc.name}({tc.arguments})\n")
            parts.append("\n")
        elif msg.role == "tool":
            content = msg.content
            if len(content) > preview:
                content = content[:preview] + "...(truncated)"
            parts.append(f"Tool result: {content}\n\n")
        elif msg.role == "system" and msg.content:
            parts.append(f"Earlier summary: {msg.content.removeprefix(SUMMARY_HEADER)}\n\n")
    return "".join(parts)


async def generate_summary(llm: BaseLLM, model: str, transcript: str) -> str:
    """Run one isolated, tool-free LLM call and collect its full text."""
    request = [
        LLMMessage(role="system", content=SUMMARY_INSTRUCTION),
        LLMMessage(role="user", content=transcript),
    ]
    chunks = []
    async for delta in llm.stream(model, request, None):
        if delta.content:
            chunks.append(delta.content)
    return "".join(chunks)


async def compact_conversation(
    llm: BaseLLM,
    model: str,
    messages: list[LLMMessage],
    config: CompactionConfig | None = None,
) -> tuple[list[LLMMessage], CompactionResult]:
    """Compact a conversation by summarizing older messages.

    Args:
        llm: Adapter used for the summary call
        model: Model id for the summary call
        messages: Full transcript, system prompt first
        config: Compaction configuration

    Returns:
        Tuple of (new transcript, compaction result). On failure the original
        list is returned unchanged.
    """
    config = config or CompactionConfig()

    def unchanged(success: bool = True, error: str | None = None) -> tuple[list[LLMMessage], CompactionResult]:
        return messages, CompactionResult(
            original_message_count=len(messages),
            compacted_message_count=len(messages),
            summary="",
            tokens_saved_estimate=0,
            success=success,
            error=error,
        )

    if not needs_compaction(messages, config):
        return unchanged()

    start = 1 if messages and messages[0].role == "system" else 0
    cut = find_compaction_boundary(messages, config)
    if cut == start:
        logger.info("Compaction boundary empty, nothing to summarize")
        return unchanged()

    compress_zone = messages[start:cut]
    keep_zone = messages[cut:]
    current_tokens = estimate_tokens(messages)

    logger.info(
        "Starting conversation compaction",
        zone=len(compress_zone),
        keep=len(keep_zone),
        estimated_tokens=current_tokens,
    )

    try:
        summary = await generate_summary(
            llm, model, render_for_summary(compress_zone, config.tool_result_preview)
        )
    except Exception as e:
        logger.error("Compaction summarization failed, transcript left intact", error=str(e))
        return unchanged(success=False, error=str(e))

    if not summary.strip():
        logger.error("Compaction produced an empty summary, transcript left intact")
        return unchanged(success=False, error="empty summary")

    compacted = messages[:start] + [
        LLMMessage(role="system", content=SUMMARY_HEADER + summary),
    ] + keep_zone

    result = CompactionResult(
        original_message_count=len(messages),
        compacted_message_count=len(compacted),
        summary=summary,
        tokens_saved_estimate=max(0, current_tokens - estimate_tokens(compacted)),
        success=True,
    )

    logger.info(
        "Compaction complete",
        original=result.original_message_count,
        compacted=result.compacted_message_count,
        tokens_saved=result.tokens_saved_estimate,
    )

    return compacted, result
