"""Tool system for cardlink."""

from cardlink.tools.base import CallableToolExecutor, Tool, ToolExecutor, ToolParameter
from cardlink.tools.mcp import MCPGateway, MCPToolExecutor
from cardlink.tools.registry import ToolRegistry
from cardlink.tools.toolset import Toolset, resolve_toolset

__all__ = [
    "CallableToolExecutor",
    "MCPGateway",
    "MCPToolExecutor",
    "Tool",
    "ToolExecutor",
    "ToolParameter",
    "ToolRegistry",
    "Toolset",
    "resolve_toolset",
]
