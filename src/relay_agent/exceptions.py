"""
Exception hierarchy for Relay-Agent.

Turn-level errors abort the current turn and roll the transcript back.
Tool-level errors are downgraded to error text in the transcript.
"""


class RelayAgentError(Exception):
    """Base class for all Relay-Agent errors."""


class ProtocolError(RelayAgentError):
    """The provider answered with a non-2xx status or an error event."""

    def __init__(self, status: int | None, body: str, provider: str = ""):
        self.status = status
        self.body = body
        self.provider = provider
        prefix = f"{provider} API error" if provider else "API error"
        if status is None:
            super().__init__(f"{prefix}: {body}")
        else:
            super().__init__(f"{prefix} {status}: {body}")


class RequestError(RelayAgentError):
    """The HTTP request failed before a response was received."""


class StreamStalledError(RelayAgentError):
    """No data arrived on a streaming response within the idle timeout."""

    def __init__(self, idle_timeout: float):
        self.idle_timeout = idle_timeout
        super().__init__(f"stream idle timeout ({idle_timeout:g}s without data)")


class StreamIncompleteError(RelayAgentError):
    """The stream ended before the provider sent its completion marker."""

    def __init__(self, events: int):
        self.events = events
        super().__init__(
            f"stream ended without completion marker after {events} events "
            "(connection may have dropped)"
        )


class EmptyResponseError(RelayAgentError):
    """The model returned neither text nor tool calls."""


class RoundLimitExceededError(RelayAgentError):
    """The agentic loop ran past its round cap."""

    def __init__(self, max_rounds: int):
        self.max_rounds = max_rounds
        super().__init__(f"agentic loop exceeded {max_rounds} rounds, stopping")


class UnknownToolError(RelayAgentError):
    """A tool was requested that is not in the registry."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unknown tool: {name}")


class ToolExecutionError(RelayAgentError):
    """A tool failed. Never aborts a turn; rendered as error text."""


class TurnCancelledError(RelayAgentError):
    """The caller cancelled the turn."""


class EngineBusyError(RelayAgentError):
    """A turn is already running on this engine."""


class ProviderNotConfiguredError(RelayAgentError):
    """The requested provider has no configuration."""
