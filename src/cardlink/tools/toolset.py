"""Resolve the tools and executor in effect for one call."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from cardlink.tools.base import ToolExecutor
from cardlink.tools.mcp import MCPGateway, MCPToolExecutor
from cardlink.types import ToolDefinition


@dataclass
class Toolset:
    """Tool definitions sent upstream plus the executor that runs them."""

    definitions: list[ToolDefinition] = field(default_factory=list)
    executor: ToolExecutor | None = None

    def openai_schemas(self) -> list[dict[str, Any]]:
        return [d.to_openai_schema() for d in self.definitions]

    def __bool__(self) -> bool:
        return bool(self.definitions)


async def resolve_toolset(
    tools: list[ToolDefinition] | None = None,
    executor: ToolExecutor | None = None,
    gateway: MCPGateway | None = None,
) -> Toolset:
    """Build the toolset for one call.

    When a gateway is configured its discovered tools replace *tools*
    (discovery failure leaves the set empty), and calls go to the gateway
    unless an explicit *executor* was given.
    """
    if gateway is None:
        return Toolset(definitions=list(tools or []), executor=executor)

    discovered = await gateway.discover()
    return Toolset(
        definitions=discovered,
        executor=executor or MCPToolExecutor(gateway),
    )
