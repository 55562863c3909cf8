"""Shared data types for cardlink."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any, Union


# ---------------------------------------------------------------------------
# Tool types
# ---------------------------------------------------------------------------

def _empty_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


@dataclass
class ToolDefinition:
    """A callable tool as advertised to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=_empty_schema)

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    @classmethod
    def from_mcp(cls, descriptor: dict[str, Any]) -> ToolDefinition:
        """Build a definition from an MCP tool descriptor.

        MCP servers publish the schema as ``inputSchema``; some publish
        ``parameters`` instead.  Neither present means "no arguments".
        """
        schema = descriptor.get("inputSchema") or descriptor.get("parameters")
        return cls(
            name=descriptor.get("name", ""),
            description=descriptor.get("description") or "",
            parameters=schema or _empty_schema(),
        )


@dataclass
class ToolCall:
    """A complete tool call requested by the model.

    ``arguments`` is the raw JSON string exactly as the model produced it.
    """

    id: str
    name: str
    arguments: str = ""
    index: int = 0

    def parse_arguments(self) -> dict[str, Any]:
        """Decode ``arguments``; an empty string means no arguments."""
        if not self.arguments.strip():
            return {}
        return json.loads(self.arguments)

    def to_message_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_message_dict(cls, raw: dict[str, Any], index: int = 0) -> ToolCall:
        func = raw.get("function") or {}
        arguments = func.get("arguments")
        if arguments is None:
            arguments = ""
        elif not isinstance(arguments, str):
            # Some providers inline the arguments object
            arguments = json.dumps(arguments)
        return cls(
            id=raw.get("id") or "",
            name=func.get("name") or "",
            arguments=arguments,
            index=raw.get("index", index),
        )


@dataclass
class ToolCallDelta:
    """One streamed fragment of a tool call, keyed by ``index``."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> ToolCallDelta:
        func = raw.get("function") or {}
        return cls(
            index=raw.get("index", 0),
            id=raw.get("id"),
            name=func.get("name"),
            arguments=func.get("arguments"),
        )


@dataclass
class ToolExecutionResult:
    """Outcome of one tool call, ready to go back into the history."""

    tool_call_id: str
    name: str
    content: str
    is_error: bool = False

    def to_message(self) -> dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "content": self.content,
        }


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

@dataclass
class ContentChunk:
    """A fragment of assistant text."""

    text: str


@dataclass
class ToolCallDeltas:
    """Tool-call fragments carried by one SSE line."""

    deltas: list[ToolCallDelta] = field(default_factory=list)


@dataclass
class StreamEnd:
    """The model finished this turn."""


StreamEvent = Union[ContentChunk, ToolCallDeltas, StreamEnd]


@dataclass
class ToolInvocation:
    """Emitted by a streaming call right before a tool call is dispatched."""

    tool_call_id: str
    name: str
    arguments: Any


# ---------------------------------------------------------------------------
# Broadcast types
# ---------------------------------------------------------------------------

class BroadcastType(enum.Enum):
    """Discriminator values published to subscribers."""

    CHUNK = "chunk"
    DONE = "done"
    TOOL_CALL = "tool_call"
    ERROR = "error"
    USER_MESSAGE = "user-message"
    ASSISTANT_MESSAGE = "assistant-message"
    STEP_SKIPPED = "step-skipped"
    PROFILE_UPDATED = "profile-updated"
    JOB_FAILED = "job_failed"


@dataclass
class BroadcastEvent:
    """Unit published to a topic; subscribers route on ``type``."""

    type: BroadcastType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type.value}
        payload.update((k, v) for k, v in self.data.items() if k != "type")
        return payload
