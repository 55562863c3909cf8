"""Tests for AsyncLLMClient with httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from cardlink.config import LLMSettings
from cardlink.errors import (
    ApiError,
    ApiErrorKind,
    ConfigurationError,
    LLMTimeoutError,
    StreamCancelled,
)
from cardlink.llm.client import AsyncLLMClient, CancelToken
from cardlink.types import ContentChunk, StreamEnd, ToolCallDeltas


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _settings(**overrides) -> LLMSettings:
    fields = {"base_url": "http://llm.test/v1/", "api_key": "test-key"}
    fields.update(overrides)
    return LLMSettings(**fields)


def _client(handler, **overrides) -> AsyncLLMClient:
    return AsyncLLMClient(_settings(**overrides), transport=httpx.MockTransport(handler))


def _completion(content: str = "Hello!") -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _sse(*payloads: dict, done: bool = True) -> bytes:
    body = "".join(f"data: {json.dumps(p)}\n\n" for p in payloads)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode()


def _content(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


class _Chunks(httpx.AsyncByteStream):
    """Response body delivered in the given pieces."""

    def __init__(self, chunks: list[bytes]):
        self._chunks = chunks

    async def __aiter__(self):
        for c in self._chunks:
            yield c


_PAYLOAD = {"model": "m", "messages": [{"role": "user", "content": "Hi"}]}


# ---------------------------------------------------------------------------
# Blocking
# ---------------------------------------------------------------------------

class TestChat:
    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion("Hello"))

        async with _client(handler) as client:
            body = await client.chat(_PAYLOAD)

        assert body["choices"][0]["message"]["content"] == "Hello"
        assert seen["url"] == "http://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"] == _PAYLOAD

    async def test_rate_limited(self):
        async with _client(lambda r: httpx.Response(429, text="slow down")) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.chat(_PAYLOAD)
        assert exc_info.value.kind == ApiErrorKind.RATE_LIMITED
        assert exc_info.value.retryable
        assert exc_info.value.status_code == 429

    @pytest.mark.parametrize("status", [500, 502, 503, 599])
    async def test_server_error(self, status):
        async with _client(lambda r: httpx.Response(status)) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.chat(_PAYLOAD)
        assert exc_info.value.kind == ApiErrorKind.SERVER_ERROR
        assert str(exc_info.value) == f"Server error: {status}"

    async def test_generic_error_includes_body(self):
        async with _client(lambda r: httpx.Response(400, text="bad model")) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.chat(_PAYLOAD)
        assert exc_info.value.kind == ApiErrorKind.GENERIC
        assert not exc_info.value.retryable
        assert "400" in str(exc_info.value)
        assert "bad model" in str(exc_info.value)

    async def test_invalid_json_body(self):
        async with _client(lambda r: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.chat(_PAYLOAD)
        assert exc_info.value.kind == ApiErrorKind.INVALID_BODY

    async def test_read_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(LLMTimeoutError, match="30"):
                await client.chat(_PAYLOAD)

    async def test_connect_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(LLMTimeoutError, match="Connection timed out"):
                await client.chat(_PAYLOAD)

    async def test_timeout_is_builtin_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(TimeoutError):
                await client.chat(_PAYLOAD)

    async def test_missing_api_key_sends_nothing(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=_completion())

        async with _client(handler, api_key="") as client:
            with pytest.raises(ConfigurationError, match="LLM_API_KEY"):
                await client.chat(_PAYLOAD)
        assert calls == []

    async def test_missing_base_url(self):
        async with _client(lambda r: httpx.Response(200), base_url="") as client:
            with pytest.raises(ConfigurationError, match="LLM_BASE_URL"):
                await client.chat(_PAYLOAD)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class TestStream:
    async def test_yields_events(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["accept"] = request.headers["accept"]
            return httpx.Response(200, content=_sse(_content("Hel"), _content("lo")))

        async with _client(handler) as client:
            events = [e async for e in client.stream(_PAYLOAD)]

        assert events == [ContentChunk("Hel"), ContentChunk("lo"), StreamEnd()]
        assert seen["body"]["stream"] is True
        assert seen["accept"] == "text/event-stream"

    async def test_chunked_body(self):
        body = _sse(_content("Hello"), {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "c1", "function": {"name": "f", "arguments": "{}"}},
        ]}}]})
        pieces = [body[i:i + 7] for i in range(0, len(body), 7)]

        async with _client(lambda r: httpx.Response(200, stream=_Chunks(pieces))) as client:
            events = [e async for e in client.stream(_PAYLOAD)]

        assert events[0] == ContentChunk("Hello")
        assert isinstance(events[1], ToolCallDeltas)
        assert isinstance(events[-1], StreamEnd)

    async def test_error_status(self):
        async with _client(lambda r: httpx.Response(503, text="down")) as client:
            with pytest.raises(ApiError) as exc_info:
                async for _ in client.stream(_PAYLOAD):
                    pass
        assert exc_info.value.kind == ApiErrorKind.SERVER_ERROR

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(LLMTimeoutError):
                async for _ in client.stream(_PAYLOAD):
                    pass

    async def test_cancel_token_aborts_read(self):
        chunks = [_sse(_content("one"), done=False), _sse(_content("two"), done=False), _sse()]
        token = CancelToken()
        received = []

        async with _client(lambda r: httpx.Response(200, stream=_Chunks(chunks))) as client:
            with pytest.raises(StreamCancelled):
                async for event in client.stream(_PAYLOAD, cancel=token):
                    received.append(event)
                    token.cancel()

        assert received == [ContentChunk("one")]
