"""Registry of local tools; doubles as a ``ToolExecutor``."""

from __future__ import annotations

import logging
from typing import Any

from cardlink.errors import ToolExecutionError
from cardlink.tools.base import Tool
from cardlink.types import ToolDefinition

_logger = logging.getLogger(__name__)


class ToolRegistry:
    """Registry of available tools with async execution."""

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool instance."""
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        """Look up a tool by name."""
        return self._tools.get(name)

    def tool_names(self) -> list[str]:
        """Return list of registered tool names."""
        return list(self._tools.keys())

    def definitions(self) -> list[ToolDefinition]:
        """Return the definitions of all registered tools."""
        return [t.definition() for t in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> Any:
        """Execute a tool by name with the given arguments.

        Raises :class:`ToolExecutionError` for an unknown tool; anything the
        tool raises propagates to the caller.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolExecutionError(
                f"Unknown tool: {name}. Available: {', '.join(self._tools.keys())}"
            )
        _logger.debug("Executing tool %s", name)
        return await tool.execute(**arguments)
