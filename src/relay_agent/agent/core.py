"""
Core agent implementation: the agentic turn loop.

One turn takes a user message through as many model rounds as needed:
1. Stream the model's reply through the active adapter
2. Record any tool calls and execute them (read-only batches in parallel,
   everything else serially, interactive input through a collaborator)
3. Feed the results back until the model answers with plain text

Any turn failure restores the transcript to its state before the turn.
"""

import asyncio
import inspect
import json
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from ..config import Settings, get_settings
from ..exceptions import (
    EmptyResponseError,
    EngineBusyError,
    RelayAgentError,
    RoundLimitExceededError,
    TurnCancelledError,
)
from ..llm import BaseLLM, LLMMessage, ToolCall, ToolDefinition, create_llm
from ..log import get_secret_masker
from ..tools import (
    INTERACTIVE_TOOL_NAME,
    FieldRequest,
    InteractiveHandler,
    ToolRegistry,
    create_default_registry,
    parse_field_requests,
)
from .compaction import CompactionConfig, CompactionResult, compact_conversation, needs_compaction

logger = structlog.get_logger()

RESULT_PREVIEW_CHARS = 200


class EngineState(str, Enum):
    """Where the engine is in the turn loop."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"
    AWAITING_INTERACTIVE_INPUT = "awaiting_interactive_input"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


ACTIVE_STATES = {
    EngineState.AWAITING_MODEL,
    EngineState.AWAITING_TOOL_RESULTS,
    EngineState.AWAITING_INTERACTIVE_INPUT,
}


@dataclass
class ConversationContext:
    """The transcript. Mutated only by the engine."""

    messages: list[LLMMessage] = field(default_factory=list)

    def add_user_message(self, content: str) -> None:
        """Add a user message."""
        self.messages.append(LLMMessage(role="user", content=content))

    def add_assistant_message(
        self, content: str, tool_calls: list[ToolCall] | None = None
    ) -> None:
        """Add an assistant message."""
        self.messages.append(LLMMessage(
            role="assistant",
            content=content,
            tool_calls=tool_calls or None,
        ))

    def add_tool_result(self, tool_call_id: str, result: str) -> None:
        """Add a tool result."""
        self.messages.append(LLMMessage(
            role="tool",
            content=result,
            tool_call_id=tool_call_id,
        ))

    def snapshot(self) -> list[LLMMessage]:
        return list(self.messages)

    def rollback(self, snapshot: list[LLMMessage]) -> None:
        self.messages[:] = snapshot

    def strip_incomplete_tool_calls(self) -> int:
        """Drop a trailing tool-call sequence left by an interrupted turn."""
        removed = 0
        while self.messages:
            last = self.messages[-1]
            if last.role == "tool" or (last.role == "assistant" and last.tool_calls):
                self.messages.pop()
                removed += 1
                continue
            break
        return removed

    @property
    def message_count(self) -> int:
        """Get the number of messages."""
        return len(self.messages)


@dataclass
class _ToolOutcome:
    text: str
    elapsed: float


class Agent:
    """Orchestration engine: owns the transcript and runs turns.

    Only one turn may run at a time; a concurrent ``send`` raises
    EngineBusyError.
    """

    def __init__(
        self,
        llm: BaseLLM | None = None,
        tool_registry: ToolRegistry | None = None,
        settings: Settings | None = None,
        system_prompt: str | None = None,
        model: str | None = None,
        tool_names: list[str] | None = None,
        max_rounds: int | None = None,
        compaction_config: CompactionConfig | None = None,
    ):
        self.settings = settings or get_settings()
        self.model = model or self.settings.default_model
        self.llm = llm or create_llm(self.settings.split_model(self.model)[0], self.settings)
        self.tool_registry = tool_registry or create_default_registry(self.settings)
        self.tool_names = tool_names
        self.system_prompt = system_prompt or self.settings.system_prompt
        self.max_rounds = max_rounds or self.settings.max_rounds
        self.compaction_config = compaction_config or CompactionConfig(
            context_limit=self.settings.context_limit,
        )
        # Shared with the log processor so that redaction covers every logger.
        self.masker = get_secret_masker()

        self.context = ConversationContext(
            messages=[LLMMessage(role="system", content=self.system_prompt)]
        )
        self.state = EngineState.IDLE
        self.last_error: Exception | None = None
        self.compaction_count = 0
        self._turn = 0

    @property
    def messages(self) -> list[LLMMessage]:
        return self.context.messages

    @property
    def model_id(self) -> str:
        """The model name without its ``provider/`` prefix."""
        _, sep, rest = self.model.partition("/")
        return rest if sep else self.model

    @property
    def tool_definitions(self) -> list[ToolDefinition]:
        return self.tool_registry.get_definitions(self.tool_names)

    def switch_model(self, model: str, llm: BaseLLM | None = None) -> None:
        """Change the active model, and adapter if given. The transcript is kept."""
        logger.info("Switching model", previous=self.model, model=model)
        self.model = model
        if llm is not None:
            self.llm = llm

    def clear(self) -> None:
        """Reset the transcript to the original system prompt."""
        self.context.messages = [LLMMessage(role="system", content=self.system_prompt)]

    async def aclose(self) -> None:
        await self.llm.aclose()
        await self.tool_registry.aclose()

    def needs_compression(self) -> bool:
        return needs_compaction(self.context.messages, self.compaction_config)

    async def compress(self) -> CompactionResult:
        """Summarize older messages if the transcript is over budget."""
        messages, result = await compact_conversation(
            self.llm,
            self.model_id,
            self.context.messages,
            self.compaction_config,
        )
        if result.success and messages is not self.context.messages:
            self.context.messages = messages
            self.compaction_count += 1
        return result

    async def send(
        self,
        message: str,
        on_text: Callable[[str], None] | None = None,
        on_tool_call: Callable[[str], None] | None = None,
        on_tool_result: Callable[[str], None] | None = None,
        interactive: InteractiveHandler | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """Run one turn and return the final assistant text.

        Raises a RelayAgentError (or asyncio.CancelledError) on failure, after
        restoring the transcript to its pre-turn state.
        """
        if self.state in ACTIVE_STATES:
            raise EngineBusyError("a turn is already running on this engine")
        self.state = EngineState.AWAITING_MODEL
        self._turn += 1
        turn = self._turn

        snapshot = self.context.snapshot()
        succeeded = False
        try:
            removed = self.context.strip_incomplete_tool_calls()
            if removed:
                logger.debug("Removed incomplete tool-call messages", count=removed)

            self.context.add_user_message(message)
            logger.debug("Turn started", turn=turn, model=self.model, user=message)

            reply = await self._run_rounds(
                turn, on_text, on_tool_call, on_tool_result, interactive, cancel_event
            )
            succeeded = True

            # Only a completed turn is compressed; a failed one leaves the
            # transcript exactly as the caller had it.
            if self.needs_compression():
                result = await self.compress()
                if not result.success:
                    logger.warning("Automatic compression failed", turn=turn, error=result.error)
            return reply
        except RelayAgentError as e:
            self.last_error = e
            logger.error("Turn failed", turn=turn, error=str(e))
            raise
        finally:
            if succeeded:
                self.state = EngineState.SUCCEEDED
            else:
                self.context.rollback(snapshot)
                logger.debug("Transcript rolled back", turn=turn, messages=len(snapshot))
                self.state = EngineState.FAILED

    async def _run_rounds(
        self,
        turn: int,
        on_text: Callable[[str], None] | None,
        on_tool_call: Callable[[str], None] | None,
        on_tool_result: Callable[[str], None] | None,
        interactive: InteractiveHandler | None,
        cancel_event: asyncio.Event | None,
    ) -> str:
        tools = self.tool_definitions

        for round_number in range(1, self.max_rounds + 1):
            _check_cancelled(cancel_event)
            self.state = EngineState.AWAITING_MODEL

            text, tool_calls = await _race_cancel(
                self._stream_round(turn, round_number, tools, on_text),
                cancel_event,
            )

            if not tool_calls:
                if not text:
                    raise EmptyResponseError(
                        f"empty response from {self.model} "
                        f"(no content, no tool calls, round {round_number})"
                    )
                self.context.add_assistant_message(text)
                logger.debug("Turn finished", turn=turn, round=round_number, chars=len(text))
                return text

            self.context.add_assistant_message(text, tool_calls)
            logger.debug("Tool calls received", turn=turn, round=round_number, count=len(tool_calls))

            _check_cancelled(cancel_event)
            outcomes = await self._execute_tool_calls(tool_calls, interactive, on_tool_call)

            for call, outcome in zip(tool_calls, outcomes):
                display = self.masker.mask(outcome.text)
                logger.debug(
                    "Tool result",
                    tool=call.name,
                    chars=len(outcome.text),
                    elapsed=round(outcome.elapsed, 3),
                    result=display,
                )
                if on_tool_result is not None:
                    preview = display
                    if len(preview) > RESULT_PREVIEW_CHARS:
                        preview = preview[:RESULT_PREVIEW_CHARS] + "..."
                    on_tool_result(f"{call.name} -> {preview} ({outcome.elapsed:.1f}s)")
                self.context.add_tool_result(call.id, outcome.text)

        raise RoundLimitExceededError(self.max_rounds)

    async def _stream_round(
        self,
        turn: int,
        round_number: int,
        tools: list[ToolDefinition],
        on_text: Callable[[str], None] | None,
    ) -> tuple[str, list[ToolCall]]:
        logger.debug(
            "LLM request",
            turn=turn,
            round=round_number,
            model=self.model_id,
            messages=len(self.context.messages),
            tools=[t.name for t in tools],
        )

        chunks: list[str] = []
        tool_calls: list[ToolCall] = []
        stream = self.llm.stream(self.model_id, list(self.context.messages), tools or None)
        async with aclosing(stream):
            async for delta in stream:
                if delta.content:
                    chunks.append(delta.content)
                    if on_text is not None:
                        on_text(delta.content)
                if delta.tool_calls:
                    tool_calls.extend(delta.tool_calls)
                if delta.done:
                    break
        return "".join(chunks), tool_calls

    async def _execute_tool_calls(
        self,
        tool_calls: list[ToolCall],
        interactive: InteractiveHandler | None,
        on_tool_call: Callable[[str], None] | None,
    ) -> list[_ToolOutcome]:
        """Run one round's tool calls; outcomes are in call order."""
        interactive_index, requests = _find_interactive_call(tool_calls)

        collected: dict[str, str] | None = None
        if requests and interactive is not None:
            self.state = EngineState.AWAITING_INTERACTIVE_INPUT
            collected = await self._collect_interactive(requests, interactive)

        self.state = EngineState.AWAITING_TOOL_RESULTS

        parallel = (
            interactive_index < 0
            and len(tool_calls) > 1
            and all(self.tool_registry.is_read_only(tc.name) for tc in tool_calls)
        )

        if parallel:
            if on_tool_call is not None:
                for call in tool_calls:
                    on_tool_call(call.name)
            logger.debug("Executing read-only tools in parallel", count=len(tool_calls))
            return list(await asyncio.gather(*(self._run_tool(tc) for tc in tool_calls)))

        outcomes = []
        for index, call in enumerate(tool_calls):
            if on_tool_call is not None:
                on_tool_call(call.name)
            if index == interactive_index and collected is not None:
                outcomes.append(_ToolOutcome(text=json.dumps(collected), elapsed=0.0))
                continue
            outcomes.append(await self._run_tool(call))
        return outcomes

    async def _collect_interactive(
        self,
        requests: list[FieldRequest],
        interactive: InteractiveHandler,
    ) -> dict[str, str]:
        result = interactive(requests)
        if inspect.isawaitable(result):
            result = await result
        values = dict(result)

        for request in requests:
            if request.sensitive and values.get(request.name):
                self.masker.add(values[request.name])
        logger.debug("Interactive input collected", fields=list(values))
        return values

    async def _run_tool(self, call: ToolCall) -> _ToolOutcome:
        start = time.monotonic()
        logger.debug("Tool call", tool=call.name, arguments=self.masker.mask(call.arguments))

        try:
            arguments = call.parse_arguments()
        except ValueError as e:
            return _ToolOutcome(
                text=f"error: invalid arguments for {call.name}: {e}",
                elapsed=time.monotonic() - start,
            )

        try:
            result = await self.tool_registry.execute(call.name, arguments)
            text = result.to_text()
        except RelayAgentError as e:
            text = f"error: {e}"
        return _ToolOutcome(text=text, elapsed=time.monotonic() - start)


def _find_interactive_call(tool_calls: list[ToolCall]) -> tuple[int, list[FieldRequest] | None]:
    """Locate the first interactive call that carries a fields array.

    Later interactive calls in the same round are executed as ordinary tools.
    """
    for index, call in enumerate(tool_calls):
        if call.name != INTERACTIVE_TOOL_NAME:
            continue
        try:
            arguments = call.parse_arguments()
        except ValueError:
            continue
        requests = parse_field_requests(arguments)
        if requests is not None:
            return index, requests
    return -1, None


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise TurnCancelledError("turn cancelled")


async def _race_cancel(awaitable: Awaitable[Any], cancel_event: asyncio.Event | None) -> Any:
    """Await ``awaitable``, abandoning it if ``cancel_event`` fires first."""
    if cancel_event is None:
        return await awaitable

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not work.done():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)

    if work in done:
        return work.result()
    raise TurnCancelledError("turn cancelled")
