"""Incremental decoder for chat-completions SSE bodies.

Turns raw body bytes into :class:`~cardlink.types.StreamEvent` objects.
Knows nothing about turns or tools beyond the shape of a delta.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

from cardlink.types import (
    ContentChunk,
    StreamEnd,
    StreamEvent,
    ToolCallDelta,
    ToolCallDeltas,
)

_logger = logging.getLogger(__name__)

_DATA_PREFIX = "data: "
_DONE = "[DONE]"


class SSEDecoder:
    """Line-buffering SSE decoder.

    Bytes are buffered until a ``\\n`` arrives, so a multi-byte character
    split across network chunks is only decoded once the line is whole.

    Usage::

        decoder = SSEDecoder()
        async for raw in response.aiter_bytes():
            for event in decoder.feed(raw):
                ...
        for event in decoder.close():
            ...
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._finished = False

    @property
    def finished(self) -> bool:
        """True once ``StreamEnd`` has been emitted."""
        return self._finished

    def feed(self, data: bytes) -> list[StreamEvent]:
        """Consume *data* and return the events of every completed line."""
        if self._finished:
            return []
        self._buffer += data
        events: list[StreamEvent] = []
        while not self._finished:
            line_end = self._buffer.find(b"\n")
            if line_end < 0:
                break
            line = self._buffer[:line_end]
            self._buffer = self._buffer[line_end + 1:]
            events.extend(self._process_line(line))
        return events

    def close(self) -> list[StreamEvent]:
        """Flush a trailing unterminated line and make sure the stream ends."""
        events: list[StreamEvent] = []
        if not self._finished and self._buffer:
            line, self._buffer = self._buffer, b""
            events.extend(self._process_line(line))
        if not self._finished:
            self._finished = True
            events.append(StreamEnd())
        return events

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _process_line(self, raw: bytes) -> list[StreamEvent]:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line or not line.startswith(_DATA_PREFIX):
            return []

        data = line[len(_DATA_PREFIX):].strip()
        if data == _DONE:
            self._finished = True
            return [StreamEnd()]

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            _logger.warning("Failed to parse SSE chunk: %s", e)
            return []

        return _delta_events(payload)


def _delta_events(payload: Any) -> list[StreamEvent]:
    """Extract content / tool-call events from one parsed SSE payload."""
    if not isinstance(payload, dict):
        return []
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return []
    delta = choices[0].get("delta") or {}

    events: list[StreamEvent] = []
    content = delta.get("content")
    if content:
        events.append(ContentChunk(text=content))
    tool_calls = delta.get("tool_calls")
    if tool_calls:
        events.append(ToolCallDeltas(
            deltas=[ToolCallDelta.from_wire(tc) for tc in tool_calls],
        ))
    return events


async def decode_stream(chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode an async byte iterator, ending with exactly one ``StreamEnd``.

    Bytes after ``[DONE]`` are drained and ignored.
    """
    decoder = SSEDecoder()
    async for raw in chunks:
        for event in decoder.feed(raw):
            yield event
    for event in decoder.close():
        yield event
