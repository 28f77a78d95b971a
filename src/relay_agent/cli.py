"""
Command-line interface for Relay-Agent.
"""

import argparse
import asyncio
import getpass
import signal
import sys

import structlog

from .agent import Agent
from .config import Settings, get_settings
from .exceptions import ProviderNotConfiguredError, RelayAgentError, TurnCancelledError
from .llm import create_llm
from .log import configure_logging
from .tools import FieldRequest

logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="relay-agent",
        description="Relay-Agent - a streaming, tool-using LLM agent",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    chat_parser = subparsers.add_parser("chat", help="Chat with the agent")
    chat_parser.add_argument("--model", help="provider/model to start with")
    chat_parser.add_argument("--prompt", help="Run a single prompt and exit")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging("DEBUG" if settings.debug else settings.log_level)

    if args.command == "chat":
        sys.exit(asyncio.run(run_chat(settings, args.model, args.prompt)))
    elif args.command == "config":
        show_config(settings, args.check)
    else:
        parser.print_help()


def collect_fields(requests: list[FieldRequest]) -> dict[str, str]:
    """Prompt on the terminal for each requested field."""
    try:
        return _prompt_fields(requests)
    except EOFError as e:
        raise TurnCancelledError("input cancelled") from e


def _prompt_fields(requests: list[FieldRequest]) -> dict[str, str]:
    values = {}
    for request in requests:
        if request.interactive_type == "select" and request.options:
            print(f"\n{request.interactive_hint}")
            for i, option in enumerate(request.options, 1):
                print(f"  {i}. {option}")
            answer = input("> ").strip()
            if answer.isdigit() and 1 <= int(answer) <= len(request.options):
                answer = request.options[int(answer) - 1]
            values[request.name] = answer
        elif request.sensitive:
            values[request.name] = getpass.getpass(f"{request.interactive_hint}: ")
        else:
            values[request.name] = input(f"{request.interactive_hint}: ")
    return values


async def run_turn(agent: Agent, message: str) -> bool:
    """Run one turn, cancelling it on Ctrl-C. Returns False on failure."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, cancel_event.set)

    def on_text(text: str) -> None:
        print(text, end="", flush=True)

    def on_tool_call(name: str) -> None:
        print(f"\n[tool] {name}", flush=True)

    def on_tool_result(summary: str) -> None:
        print(f"[done] {summary}", flush=True)

    try:
        await agent.send(
            message,
            on_text=on_text,
            on_tool_call=on_tool_call,
            on_tool_result=on_tool_result,
            interactive=collect_fields,
            cancel_event=cancel_event,
        )
        print()
        return True
    except RelayAgentError as e:
        print(f"\nerror: {e}", file=sys.stderr)
        return False
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def switch_model(agent: Agent, settings: Settings, model: str) -> None:
    """Switch model, replacing the adapter when the provider changes."""
    provider, _ = settings.split_model(model)
    current, _ = settings.split_model(agent.model)
    if provider == current:
        agent.switch_model(model)
        return

    llm = create_llm(provider, settings)
    previous = agent.llm
    agent.switch_model(model, llm)
    await previous.aclose()


async def run_chat(settings: Settings, model: str | None, prompt: str | None) -> int:
    """Run the chat REPL, or a single prompt."""
    try:
        agent = Agent(settings=settings, model=model)
    except ProviderNotConfiguredError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    try:
        if prompt is not None:
            return 0 if await run_turn(agent, prompt) else 1

        logger.debug("Chat started", model=agent.model, tools=agent.tool_registry.list_tools())
        print(f"{settings.app_name} ({agent.model}). /exit to quit.")
        while True:
            try:
                line = await asyncio.to_thread(input, "\n> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue

            if line in ("/exit", "/quit"):
                break
            if line == "/clear":
                agent.clear()
                print("Conversation cleared.")
                continue
            if line.startswith("/model"):
                _, _, name = line.partition(" ")
                if not name.strip():
                    print(f"Current model: {agent.model}")
                    continue
                try:
                    await switch_model(agent, settings, name.strip())
                except ProviderNotConfiguredError as e:
                    print(f"error: {e}", file=sys.stderr)
                    continue
                print(f"Model: {agent.model}")
                continue
            if line == "/compress":
                result = await agent.compress()
                if not result.success:
                    print(f"Compression failed: {result.error}")
                elif result.summary:
                    print(
                        f"Compressed {result.original_message_count} -> "
                        f"{result.compacted_message_count} messages "
                        f"(~{result.tokens_saved_estimate} tokens saved)"
                    )
                else:
                    print("Nothing to compress.")
                continue

            await run_turn(agent, line)
    finally:
        await agent.aclose()
    return 0


def show_config(settings: Settings, check: bool) -> None:
    """Show current configuration."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print(f"\n=== {settings.app_name} Configuration ===\n")

    print("Application:")
    print(f"  Debug: {settings.debug}")
    print(f"  Log Level: {settings.log_level}")

    print("\nLLM Providers:")
    print(f"  Default Model: {settings.default_model}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  OpenAI Base URL: {settings.openai_base_url}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  Anthropic Base URL: {settings.anthropic_base_url}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")
    for name, provider in settings.providers.items():
        print(f"  {name}: type={provider.type} key={mask(provider.api_key)} url={provider.base_url}")

    print("\nAgent:")
    print(f"  Max Rounds: {settings.max_rounds}")
    print(f"  Context Limit: {settings.context_limit}")
    print(f"  Tools: {settings.enabled_tools or '(all)'}")
    print(f"  Workspace: {settings.workspace_dir or '(current directory)'}")

    print("\nTransport:")
    print(f"  Request Timeout: {settings.request_timeout}s")
    print(f"  Max Retries: {settings.max_retries}")
    print(f"  Stream Idle Timeout: {settings.stream_idle_timeout}s")

    if check:
        print("\n=== Configuration Check ===\n")
        errors = []
        warnings = []

        try:
            provider, _ = settings.split_model()
            if not settings.get_provider_config(provider).api_key:
                errors.append(f"No API key configured for default provider '{provider}'")
        except ProviderNotConfiguredError as e:
            errors.append(str(e))

        if settings.context_limit <= 0:
            warnings.append("CONTEXT_LIMIT <= 0 - context compression is disabled")

        if settings.stream_idle_timeout <= 0:
            warnings.append("STREAM_IDLE_TIMEOUT <= 0 - stalled streams will never be aborted")

        if errors:
            print("❌ Errors:")
            for e in errors:
                print(f"   - {e}")

        if warnings:
            print("⚠️  Warnings:")
            for w in warnings:
                print(f"   - {w}")

        if not errors and not warnings:
            print("✅ Configuration looks good!")
        elif not errors:
            print("\n✅ Configuration is valid (with warnings)")
        else:
            print("\n❌ Configuration has errors - fix them before starting")


if __name__ == "__main__":
    main()
