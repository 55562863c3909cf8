"""Tool base class and the executor protocol."""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from cardlink.types import ToolDefinition


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, boolean, array, object
    description: str
    required: bool = False
    enum: list[str] | None = None


class ToolExecutor(Protocol):
    """Anything that can run a named tool with decoded JSON arguments."""

    async def execute(self, name: str, arguments: dict[str, Any]) -> Any:
        """Run *name* and return a JSON-serializable result, or raise."""
        ...


class Tool(ABC):
    """Base class for local tools.

    Subclasses set ``name``, ``description``, ``parameters`` as class
    attributes and implement the async ``execute()`` method.
    """

    name: str
    description: str
    parameters: list[ToolParameter]

    @abstractmethod
    async def execute(self, **kwargs: Any) -> Any:
        """Execute the tool and return a JSON-serializable result."""

    def definition(self) -> ToolDefinition:
        """Build the JSON-schema definition advertised to the model."""
        properties: dict[str, Any] = {}
        required: list[str] = []
        for p in self.parameters:
            prop: dict[str, Any] = {
                "type": p.type,
                "description": p.description,
            }
            if p.enum:
                prop["enum"] = p.enum
            properties[p.name] = prop
            if p.required:
                required.append(p.name)

        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters={
                "type": "object",
                "properties": properties,
                "required": required,
            },
        )


class CallableToolExecutor:
    """Adapt a plain ``handler(name, arguments)`` function to ``ToolExecutor``.

    The handler may be sync or async.
    """

    def __init__(self, handler: Callable[[str, dict[str, Any]], Any]) -> None:
        self._handler = handler

    async def execute(self, name: str, arguments: dict[str, Any]) -> Any:
        result = self._handler(name, arguments)
        if inspect.isawaitable(result):
            result = await result
        return result
