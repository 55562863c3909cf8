"""Tests for the SSE stream decoder."""

from __future__ import annotations

import json
import logging

import pytest

from cardlink.llm.sse import SSEDecoder, decode_stream
from cardlink.types import ContentChunk, StreamEnd, ToolCallDeltas


def _line(payload: dict) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode()


def _content(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


async def _aiter(chunks: list[bytes]):
    for c in chunks:
        yield c


class TestSSEDecoder:
    def test_content_lines(self):
        decoder = SSEDecoder()
        events = decoder.feed(_line(_content("Hel")) + _line(_content("lo")))
        assert events == [ContentChunk("Hel"), ContentChunk("lo")]

    def test_done_ends_stream(self):
        decoder = SSEDecoder()
        events = decoder.feed(_line(_content("x")) + b"data: [DONE]\n\n")
        assert isinstance(events[-1], StreamEnd)
        assert decoder.finished
        # Anything after [DONE] is ignored
        assert decoder.feed(_line(_content("late"))) == []
        assert decoder.close() == []

    def test_line_split_across_chunks(self):
        decoder = SSEDecoder()
        raw = _line(_content("Hello"))
        assert decoder.feed(raw[:10]) == []
        assert decoder.feed(raw[10:]) == [ContentChunk("Hello")]

    def test_multibyte_character_split(self):
        decoder = SSEDecoder()
        raw = _line(_content("café ☕"))
        cut = raw.index("☕".encode()) + 1  # inside the 3-byte sequence
        events = decoder.feed(raw[:cut]) + decoder.feed(raw[cut:])
        assert events == [ContentChunk("café ☕")]

    def test_ignores_non_data_lines(self):
        decoder = SSEDecoder()
        events = decoder.feed(b": keep-alive\n\nevent: ping\n" + _line(_content("a")))
        assert events == [ContentChunk("a")]

    def test_malformed_json_skipped_with_warning(self, caplog):
        decoder = SSEDecoder()
        with caplog.at_level(logging.WARNING, logger="cardlink.llm.sse"):
            events = decoder.feed(b"data: {not json\n\n" + _line(_content("ok")))
        assert events == [ContentChunk("ok")]
        assert "Failed to parse SSE chunk" in caplog.text

    def test_empty_content_not_emitted(self):
        decoder = SSEDecoder()
        events = decoder.feed(_line({"choices": [{"delta": {"role": "assistant", "content": ""}}]}))
        assert events == []

    def test_missing_choices_ignored(self):
        decoder = SSEDecoder()
        assert decoder.feed(_line({"id": "x", "choices": []})) == []

    def test_tool_call_deltas(self):
        decoder = SSEDecoder()
        payload = {"choices": [{"delta": {"tool_calls": [{
            "index": 0, "id": "call_1",
            "function": {"name": "get_weather", "arguments": "{\"ci"},
        }]}}]}
        events = decoder.feed(_line(payload))
        assert len(events) == 1
        assert isinstance(events[0], ToolCallDeltas)
        delta = events[0].deltas[0]
        assert (delta.index, delta.id, delta.name, delta.arguments) == (
            0, "call_1", "get_weather", "{\"ci",
        )

    def test_content_precedes_tool_deltas_in_one_line(self):
        decoder = SSEDecoder()
        payload = {"choices": [{"delta": {
            "content": "Checking",
            "tool_calls": [{"index": 0, "function": {"arguments": "{}"}}],
        }}]}
        events = decoder.feed(_line(payload))
        assert isinstance(events[0], ContentChunk)
        assert isinstance(events[1], ToolCallDeltas)

    def test_close_flushes_unterminated_line(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data: " + json.dumps(_content("tail")).encode()) == []
        events = decoder.close()
        assert events[0] == ContentChunk("tail")
        assert isinstance(events[1], StreamEnd)


class TestDecodeStream:
    @pytest.mark.asyncio
    async def test_single_stream_end_without_done(self):
        events = [e async for e in decode_stream(_aiter([_line(_content("a"))]))]
        assert events == [ContentChunk("a"), StreamEnd()]

    async def test_single_stream_end_with_done(self):
        body = _line(_content("a")) + b"data: [DONE]\n\n" + _line(_content("b"))
        events = [e async for e in decode_stream(_aiter([body[:7], body[7:]]))]
        assert events == [ContentChunk("a"), StreamEnd()]
