"""Reassemble streamed tool-call fragments into complete calls."""

from __future__ import annotations

from cardlink.types import ToolCall, ToolCallDelta


class ToolCallAccumulator:
    """Accumulate tool-call deltas for one turn.

    OpenAI-compatible providers send tool calls as incremental chunks keyed
    by ``index``: the ``id`` usually arrives once, while ``function.name``
    and ``function.arguments`` arrive as fragments that are concatenated in
    arrival order.  Arguments are only meaningful (parseable) once the
    stream has ended.
    """

    def __init__(self) -> None:
        self._calls: dict[int, dict[str, str]] = {}

    def feed(self, deltas: list[ToolCallDelta]) -> None:
        for delta in deltas:
            entry = self._calls.setdefault(
                delta.index, {"id": "", "name": "", "arguments": ""},
            )
            if delta.id:
                entry["id"] = delta.id
            if delta.name:
                entry["name"] += delta.name
            if delta.arguments:
                entry["arguments"] += delta.arguments

    def has_calls(self) -> bool:
        return bool(self._calls)

    def finalize(self) -> list[ToolCall]:
        """Return the assembled calls in ascending index order."""
        return [
            ToolCall(
                id=entry["id"],
                name=entry["name"],
                arguments=entry["arguments"],
                index=idx,
            )
            for idx, entry in sorted(self._calls.items())
        ]
