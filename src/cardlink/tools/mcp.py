"""Gateway to a remote MCP tool server.

The server advertises its tools at ``GET {url}/tools`` and executes them at
``POST {url}/tools/execute``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from cardlink.errors import ToolExecutionError
from cardlink.types import ToolDefinition

_logger = logging.getLogger(__name__)

_DISCOVERY_TIMEOUT = 10
_EXECUTE_TIMEOUT = 30


class MCPGateway:
    """HTTP client for one MCP tool server.

    Parameters
    ----------
    server_url:
        Base URL of the tool server.
    transport:
        Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        server_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def discover(self) -> list[ToolDefinition]:
        """Fetch the advertised tools.

        Discovery failure is not fatal: any network, status or parse problem
        is logged and an empty list is returned.
        """
        try:
            resp = await self._client.get(
                f"{self.server_url}/tools",
                timeout=httpx.Timeout(_DISCOVERY_TIMEOUT),
            )
        except httpx.HTTPError as e:
            _logger.warning("MCP tools loading error: %s", e)
            return []

        if resp.status_code != 200:
            _logger.warning("Failed to load MCP tools: %d", resp.status_code)
            return []
        try:
            descriptors = resp.json()
        except ValueError as e:
            _logger.warning("MCP tools loading error: invalid JSON: %s", e)
            return []
        if not isinstance(descriptors, list):
            _logger.warning("MCP tools loading error: expected a list, got %s",
                            type(descriptors).__name__)
            return []

        tools = [
            ToolDefinition.from_mcp(d) for d in descriptors
            if isinstance(d, dict) and d.get("name")
        ]
        _logger.info("Loaded %d tools from MCP server", len(tools))
        return tools

    async def execute(self, name: str, arguments: dict[str, Any]) -> Any:
        """Execute *name* remotely, unwrapping a ``{"result": ...}`` envelope."""
        resp = await self._client.post(
            f"{self.server_url}/tools/execute",
            json={"name": name, "arguments": arguments},
            timeout=httpx.Timeout(_EXECUTE_TIMEOUT),
        )
        if resp.status_code != 200:
            raise ToolExecutionError(
                f"MCP tool execution failed: {resp.status_code} - {resp.text}"
            )
        body = resp.json()
        if isinstance(body, dict) and "result" in body:
            return body["result"]
        return body

    async def close(self) -> None:
        await self._client.aclose()


class MCPToolExecutor:
    """``ToolExecutor`` that forwards every call to an :class:`MCPGateway`."""

    def __init__(self, gateway: MCPGateway) -> None:
        self._gateway = gateway

    async def execute(self, name: str, arguments: dict[str, Any]) -> Any:
        return await self._gateway.execute(name, arguments)
