"""
Tools module for agent capabilities.
"""

from .base import AnyTool, BaseTool, Tool, ToolConcurrency, ToolParameter, ToolProvider, ToolResult
from .registry import ToolRegistry, create_default_registry
from .interactive import INTERACTIVE_TOOL_NAME, FieldRequest, InteractiveHandler, parse_field_requests
from .browser import BrowserSession, BrowserTool

__all__ = [
    "AnyTool",
    "BaseTool",
    "Tool",
    "ToolConcurrency",
    "ToolParameter",
    "ToolProvider",
    "ToolResult",
    "ToolRegistry",
    "create_default_registry",
    "INTERACTIVE_TOOL_NAME",
    "FieldRequest",
    "InteractiveHandler",
    "parse_field_requests",
    "BrowserSession",
    "BrowserTool",
]
