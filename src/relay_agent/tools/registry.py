"""
Tool registry for managing available tools.
"""

import asyncio
from typing import Any

import structlog

from ..config import Settings, get_settings
from ..exceptions import ToolExecutionError, UnknownToolError
from ..llm.base import ToolDefinition
from .base import AnyTool, ToolConcurrency, ToolResult

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for managing tools.

    Execute may be called concurrently for distinct tools; tools that own a
    shared resource serialize their own access.
    """

    def __init__(self):
        self._tools: dict[str, AnyTool] = {}

    def register(self, tool: AnyTool) -> None:
        """Register a tool. A tool with the same name is replaced."""
        if tool.name in self._tools:
            logger.warning("Tool re-registered, replacing previous definition", tool_name=tool.name)
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name, concurrency=tool.concurrency.value)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.info("Tool unregistered", tool_name=name)

    def get(self, name: str) -> AnyTool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def is_read_only(self, name: str) -> bool:
        tool = self._tools.get(name)
        return tool is not None and tool.concurrency == ToolConcurrency.READ_ONLY

    def get_definitions(self, names: list[str] | None = None) -> list[ToolDefinition]:
        """Get tool definitions for the LLM.

        With no names, every tool in registration order; otherwise the named
        tools in the order given, skipping unknown names.
        """
        if names:
            tools = [self._tools[n] for n in names if n in self._tools]
        else:
            tools = list(self._tools.values())

        return [tool.to_definition() for tool in tools]

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name.

        Raises UnknownToolError if the tool is not registered. Handler
        failures and timeouts come back as unsuccessful results.
        """
        tool = self.get(name)
        if tool is None:
            raise UnknownToolError(name)

        try:
            logger.debug("Executing tool", tool_name=name, arguments=arguments)
            if tool.timeout:
                result = await asyncio.wait_for(tool.execute(**arguments), timeout=tool.timeout)
            else:
                result = await tool.execute(**arguments)
            logger.debug("Tool executed", tool_name=name, success=result.success)
            return result
        except asyncio.TimeoutError:
            logger.warning("Tool timed out", tool_name=name, timeout=tool.timeout)
            return ToolResult(
                success=False,
                error=f"{name} timed out after {tool.timeout:g} seconds",
                timed_out=True,
            )
        except ToolExecutionError as e:
            logger.warning("Tool failed", tool_name=name, error=str(e))
            return ToolResult(success=False, error=str(e))
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            return ToolResult(
                success=False,
                output="",
                error=str(e),
            )

    async def aclose(self) -> None:
        """Tear down resources owned by registered tools."""
        for tool in self._tools.values():
            try:
                await tool.aclose()
            except Exception as e:
                logger.warning("Failed to close tool", tool_name=tool.name, error=str(e))


def create_default_registry(settings: Settings | None = None) -> ToolRegistry:
    """Create a registry with the built-in tools.

    When ``enabled_tools`` is set, only those tools (plus ``interactive``)
    are registered.
    """
    settings = settings or get_settings()
    registry = ToolRegistry()

    from .browser import BrowserTool
    from .file_tool import create_file_tools
    from .http_tool import create_http_tools
    from .interactive import create_interactive_tool
    from .shell_tool import create_shell_tools

    tools: list[AnyTool] = []
    tools.extend(create_file_tools(settings.workspace_dir or None))
    tools.extend(create_shell_tools(
        timeout_seconds=settings.command_timeout,
        workspace_dir=settings.workspace_dir or None,
    ))
    tools.extend(create_http_tools())
    tools.append(BrowserTool())

    enabled = set(settings.enabled_tools_list)
    for tool in tools:
        if enabled and tool.name not in enabled:
            continue
        registry.register(tool)

    registry.register(create_interactive_tool())
    return registry
