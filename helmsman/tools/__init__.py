"""Tools package for Helmsman."""

from helmsman.tools.calculate import CalculateTool
from helmsman.tools.directory_list import DirectoryListTool
from helmsman.tools.edit import EditTool
from helmsman.tools.google_search import GoogleSearchTool
from helmsman.tools.read import ReadTool
from helmsman.tools.registry import (
    Tool,
    ToolErrorKind,
    ToolFailure,
    ToolRegistry,
    ToolResult,
    get_tool_registry,
    set_tool_registry,
)
from helmsman.tools.shell import BashTool
from helmsman.tools.wikipedia import WikipediaTool
from helmsman.tools.write import WriteTool

BUILTIN_TOOLS: tuple[type[Tool], ...] = (
    BashTool,
    CalculateTool,
    DirectoryListTool,
    EditTool,
    GoogleSearchTool,
    ReadTool,
    WikipediaTool,
    WriteTool,
)


def register_builtin_tools(registry: ToolRegistry | None = None) -> ToolRegistry:
    """Register every built-in tool factory that is not registered yet."""
    registry = registry or get_tool_registry()
    for tool_cls in BUILTIN_TOOLS:
        if not registry.has_tool(tool_cls.name):
            registry.register(tool_cls.name, tool_cls)
    return registry


__all__ = [
    "BUILTIN_TOOLS",
    "BashTool",
    "CalculateTool",
    "DirectoryListTool",
    "EditTool",
    "GoogleSearchTool",
    "ReadTool",
    "Tool",
    "ToolErrorKind",
    "ToolFailure",
    "ToolRegistry",
    "ToolResult",
    "WikipediaTool",
    "WriteTool",
    "get_tool_registry",
    "register_builtin_tools",
    "set_tool_registry",
]
