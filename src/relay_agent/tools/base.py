"""
Base classes for tools.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine, Protocol, Union

from ..llm.base import ToolDefinition


class ToolConcurrency(str, Enum):
    """Concurrency-safety class of a tool.

    Only rounds made entirely of READ_ONLY calls may run in parallel.
    """

    READ_ONLY = "read_only"
    MUTATING = "mutating"


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    output: str = ""
    data: Any = None
    error: str | None = None
    timed_out: bool = False

    def to_text(self) -> str:
        """Render the result as transcript text."""
        if self.success:
            return self.output
        return f"error: {self.error or 'tool failed'}"


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None
    items: dict[str, Any] | None = None


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.

    This is an alternative to the class-based BaseTool for simpler tools.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, ToolResult]]
    concurrency: ToolConcurrency = ToolConcurrency.MUTATING
    timeout: float | None = None
    schema: dict[str, Any] | None = None

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        if self.schema is not None:
            return self.schema

        properties = {}
        required = []

        for param in self.parameters:
            prop: dict[str, Any] = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.items:
                prop["items"] = param.items
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool handler."""
        return await self.handler(**kwargs)

    async def aclose(self) -> None:
        return None


class BaseTool(ABC):
    """Base class for class-based tools, typically ones owning a resource."""

    concurrency: ToolConcurrency = ToolConcurrency.MUTATING
    timeout: float | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """Get the tool parameters schema (JSON Schema)."""
        pass

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool with given arguments."""
        pass

    async def aclose(self) -> None:
        """Release any resource owned by the tool."""
        return None

    def to_definition(self) -> ToolDefinition:
        """Convert to a tool definition for LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )


AnyTool = Union[BaseTool, Tool]


class ToolProvider(Protocol):
    """The only registry surface exposed to tool-definition sources.

    Skill loaders and remote tool-protocol clients populate the registry
    through this before the engine starts.
    """

    def register(self, tool: AnyTool) -> None:
        ...
