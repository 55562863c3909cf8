"""Tests for ToolRegistry, MCPGateway and toolset resolution."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
import pytest

from cardlink.errors import ToolExecutionError
from cardlink.tools.base import Tool, ToolParameter
from cardlink.tools.mcp import MCPGateway, MCPToolExecutor
from cardlink.tools.registry import ToolRegistry
from cardlink.tools.toolset import resolve_toolset
from cardlink.types import ToolDefinition


# ---------------------------------------------------------------------------
# Test tools
# ---------------------------------------------------------------------------

class EchoTool(Tool):
    name = "echo"
    description = "Echo the text back"
    parameters = [
        ToolParameter(name="text", type="string", description="Text", required=True),
        ToolParameter(name="mode", type="string", description="Mode", enum=["plain", "loud"]),
    ]

    async def execute(self, **kwargs: Any) -> Any:
        text = kwargs.get("text", "")
        return text.upper() if kwargs.get("mode") == "loud" else text


class BrokenTool(Tool):
    name = "broken"
    description = "Always fails"
    parameters = []

    async def execute(self, **kwargs: Any) -> Any:
        raise RuntimeError("broken on purpose")


MCP_TOOLS = [
    {
        "name": "lookup",
        "description": "Look something up",
        "inputSchema": {"type": "object", "properties": {"q": {"type": "string"}}},
    },
    {"name": "ping"},
    {"description": "nameless, skipped"},
]


def _gateway(handler) -> MCPGateway:
    return MCPGateway("http://mcp.test/", transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestToolRegistry:
    def test_definitions(self):
        registry = ToolRegistry([EchoTool()])
        (definition,) = registry.definitions()

        assert definition.name == "echo"
        assert definition.parameters["required"] == ["text"]
        assert definition.parameters["properties"]["mode"]["enum"] == ["plain", "loud"]
        schema = definition.to_openai_schema()
        assert schema["type"] == "function"
        assert schema["function"]["name"] == "echo"

    async def test_execute(self):
        registry = ToolRegistry([EchoTool()])
        assert await registry.execute("echo", {"text": "hi", "mode": "loud"}) == "HI"

    async def test_unknown_tool(self):
        registry = ToolRegistry([EchoTool()])
        with pytest.raises(ToolExecutionError, match="Unknown tool: nope"):
            await registry.execute("nope", {})

    async def test_tool_errors_propagate(self):
        registry = ToolRegistry([BrokenTool()])
        with pytest.raises(RuntimeError):
            await registry.execute("broken", {})

    def test_names_and_lookup(self):
        registry = ToolRegistry()
        registry.register(EchoTool())
        assert registry.tool_names() == ["echo"]
        assert isinstance(registry.get("echo"), EchoTool)
        assert registry.get("missing") is None


# ---------------------------------------------------------------------------
# MCP gateway
# ---------------------------------------------------------------------------

class TestMCPGateway:
    async def test_discover(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json=MCP_TOOLS)

        gateway = _gateway(handler)
        tools = await gateway.discover()
        await gateway.close()

        assert seen["url"] == "http://mcp.test/tools"
        assert [t.name for t in tools] == ["lookup", "ping"]
        assert tools[0].parameters["properties"] == {"q": {"type": "string"}}
        assert tools[1].parameters == {"type": "object", "properties": {}, "required": []}

    async def test_unreachable_returns_empty(self, caplog):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with caplog.at_level(logging.WARNING, logger="cardlink.tools.mcp"):
            tools = await _gateway(handler).discover()

        assert tools == []
        assert "MCP tools loading error" in caplog.text

    async def test_bad_status_returns_empty(self, caplog):
        with caplog.at_level(logging.WARNING, logger="cardlink.tools.mcp"):
            tools = await _gateway(lambda r: httpx.Response(500)).discover()
        assert tools == []
        assert "500" in caplog.text

    async def test_non_list_returns_empty(self):
        tools = await _gateway(lambda r: httpx.Response(200, json={"tools": []})).discover()
        assert tools == []

    async def test_execute_unwraps_result(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"result": {"answer": 42}})

        result = await _gateway(handler).execute("lookup", {"q": "life"})

        assert result == {"answer": 42}
        assert seen["url"] == "http://mcp.test/tools/execute"
        assert seen["body"] == {"name": "lookup", "arguments": {"q": "life"}}

    async def test_execute_without_envelope(self):
        result = await _gateway(lambda r: httpx.Response(200, json=[1, 2])).execute("x", {})
        assert result == [1, 2]

    async def test_execute_failure(self):
        gateway = _gateway(lambda r: httpx.Response(502, text="bad gateway"))
        with pytest.raises(ToolExecutionError, match="502"):
            await gateway.execute("lookup", {})


# ---------------------------------------------------------------------------
# Toolset
# ---------------------------------------------------------------------------

class TestResolveToolset:
    async def test_static_tools(self):
        registry = ToolRegistry([EchoTool()])
        toolset = await resolve_toolset(registry.definitions(), registry)
        assert toolset
        assert toolset.executor is registry
        assert toolset.openai_schemas()[0]["function"]["name"] == "echo"

    async def test_gateway_replaces_static_tools(self):
        gateway = _gateway(lambda r: httpx.Response(200, json=MCP_TOOLS))
        static = [ToolDefinition(name="local")]

        toolset = await resolve_toolset(static, None, gateway)

        assert [d.name for d in toolset.definitions] == ["lookup", "ping"]
        assert isinstance(toolset.executor, MCPToolExecutor)

    async def test_empty(self):
        toolset = await resolve_toolset()
        assert not toolset
        assert toolset.executor is None
