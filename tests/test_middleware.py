"""Tests for the LLM request middleware pipeline."""

from __future__ import annotations

from typing import Any

from cardlink.llm.middleware import (
    DefaultOptionsMiddleware,
    LLMRequest,
    MiddlewarePipeline,
    RequestLoggingMiddleware,
)

_TOOLS = [{"type": "function", "function": {"name": "f", "description": "", "parameters": {}}}]


class _FakeClient:
    """Records payloads instead of calling an API."""

    def __init__(self):
        self.payloads: list[dict[str, Any]] = []
        self.cancel = None

    async def chat(self, payload):
        self.payloads.append(payload)
        return {"choices": [{"message": {"role": "assistant", "content": "ok"}}]}

    async def stream(self, payload, cancel=None):
        self.payloads.append(payload)
        self.cancel = cancel
        yield "event"


class _Tagger:
    def __init__(self, tag: str, log: list[str]):
        self.tag = tag
        self.log = log

    async def process(self, request, next_fn):
        self.log.append(f"before:{self.tag}")
        result = await next_fn(request)
        self.log.append(f"after:{self.tag}")
        return result


class TestLLMRequest:
    def test_minimal_payload(self):
        req = LLMRequest(messages=[{"role": "user", "content": "Hi"}], model="m")
        assert req.to_payload() == {
            "model": "m",
            "messages": [{"role": "user", "content": "Hi"}],
            "temperature": 0.7,
            "max_tokens": 4000,
        }

    def test_tool_choice_only_with_tools(self):
        req = LLMRequest(messages=[], model="m", tool_choice="auto")
        assert "tool_choice" not in req.to_payload()
        req.tools = _TOOLS
        payload = req.to_payload()
        assert payload["tools"] == _TOOLS
        assert payload["tool_choice"] == "auto"

    def test_modalities_extra_and_stream(self):
        req = LLMRequest(
            messages=[], model="m", modalities=["text", "image"],
            extra_params={"top_p": 0.9}, stream=True,
        )
        payload = req.to_payload()
        assert payload["modalities"] == ["text", "image"]
        assert payload["top_p"] == 0.9
        assert payload["stream"] is True


class TestDefaultOptionsMiddleware:
    async def test_fills_missing_only(self):
        client = _FakeClient()
        pipeline = MiddlewarePipeline(client).use(
            DefaultOptionsMiddleware(extra_params={"top_p": 0.9, "seed": 1}),
        )
        await pipeline.execute(LLMRequest(messages=[], model="m", extra_params={"seed": 7}))
        assert client.payloads[0]["top_p"] == 0.9
        assert client.payloads[0]["seed"] == 7

    async def test_tool_choice_default_needs_tools(self):
        client = _FakeClient()
        pipeline = MiddlewarePipeline(client).use(DefaultOptionsMiddleware(tool_choice="required"))
        await pipeline.execute(LLMRequest(messages=[], model="m"))
        await pipeline.execute(LLMRequest(messages=[], model="m", tools=_TOOLS))
        assert "tool_choice" not in client.payloads[0]
        assert client.payloads[1]["tool_choice"] == "required"


class TestMiddlewarePipeline:
    async def test_execution_order(self):
        log: list[str] = []
        pipeline = (
            MiddlewarePipeline(_FakeClient())
            .use(_Tagger("outer", log))
            .use(_Tagger("inner", log))
        )
        body = await pipeline.execute(LLMRequest(messages=[], model="m"))
        assert body["choices"][0]["message"]["content"] == "ok"
        assert log == ["before:outer", "before:inner", "after:inner", "after:outer"]

    async def test_open_stream_returns_iterator(self):
        client = _FakeClient()
        token = object()
        pipeline = MiddlewarePipeline(client).use(RequestLoggingMiddleware())
        events = await pipeline.open_stream(LLMRequest(messages=[], model="m"), cancel=token)
        assert [e async for e in events] == ["event"]
        assert client.payloads[0]["stream"] is True
        assert client.cancel is token
