"""Executor — runs the tool calls of one turn.

Supports both sequential and concurrent tool execution.  A failing tool
never aborts its siblings: its exception becomes an ``{"error": ...}``
result message.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from cardlink.errors import ToolExecutionError
from cardlink.tools.base import ToolExecutor
from cardlink.types import ToolCall, ToolExecutionResult

_logger = logging.getLogger(__name__)


def _serialize(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


class ToolCallExecutor:
    """Runs tool calls through a ``ToolExecutor``.

    Usage::

        runner = ToolCallExecutor(registry)
        results = await runner.execute(tool_calls)
    """

    def __init__(self, executor: ToolExecutor | None, concurrent: bool = False) -> None:
        self._executor = executor
        self.concurrent = concurrent

    def require_executor(self) -> ToolExecutor:
        """Return the executor or fail: tool calls with no handler are a config bug."""
        if self._executor is None:
            raise ToolExecutionError("No tool handler configured (no handler)")
        return self._executor

    async def execute(self, tool_calls: list[ToolCall]) -> list[ToolExecutionResult]:
        """Execute tool calls sequentially (default) or concurrently.

        Results come back in call order either way and carry the
        originating ``tool_call_id``.
        """
        self.require_executor()
        if self.concurrent and len(tool_calls) > 1:
            return list(await asyncio.gather(*[self.run_one(tc) for tc in tool_calls]))
        results: list[ToolExecutionResult] = []
        for tc in tool_calls:
            results.append(await self.run_one(tc))
        return results

    async def run_one(self, tool_call: ToolCall) -> ToolExecutionResult:
        """Parse arguments and execute one call; exceptions become error results."""
        executor = self.require_executor()
        try:
            arguments = tool_call.parse_arguments()
            result = await executor.execute(tool_call.name, arguments)
            return ToolExecutionResult(
                tool_call_id=tool_call.id,
                name=tool_call.name,
                content=_serialize(result),
            )
        except Exception as e:
            _logger.error(
                "Tool execution error: %s - %s", type(e).__name__, e,
            )
            return ToolExecutionResult(
                tool_call_id=tool_call.id,
                name=tool_call.name,
                content=_serialize({"error": str(e)}),
                is_error=True,
            )
