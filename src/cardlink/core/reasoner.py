"""Reasoner — interprets one assistant message and decides the next step.

The Reasoner also owns the iteration cap: ``begin_turn()`` is called before
every request and raises once the cap would be exceeded.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from cardlink.errors import EmptyResponseError, IterationLimitError
from cardlink.types import ToolCall

_logger = logging.getLogger(__name__)


class ActionType(enum.Enum):
    """What the orchestrator should do after a turn."""

    EXECUTE_TOOLS = "execute_tools"  # Run the tool calls, then request again
    RESPOND = "respond"              # Final text response, loop ends


@dataclass
class ReasonerDecision:
    """Output of the Reasoner."""

    action: ActionType
    tool_calls: list[ToolCall] = field(default_factory=list)
    response_text: str = ""


class Reasoner:
    """Turn bookkeeping for one logical call.

    Decision logic:
    1. If the message has tool calls → EXECUTE_TOOLS
    2. If it has text and no tool calls → RESPOND (done)
    3. Otherwise → ``EmptyResponseError``, unless the caller allows an
       empty answer (streaming)
    """

    def __init__(self, max_iterations: int = 5) -> None:
        self._max_iterations = max_iterations
        self._iteration = 0

    def begin_turn(self) -> int:
        """Count a new request; raise if it would exceed the cap."""
        self._iteration += 1
        if self._iteration > self._max_iterations:
            _logger.warning("Tool iteration limit reached (%d)", self._max_iterations)
            raise IterationLimitError(
                f"Max tool iterations ({self._max_iterations}) exceeded"
            )
        return self._iteration

    def decide(self, message: dict[str, Any], allow_empty: bool = False) -> ReasonerDecision:
        """Analyze an assistant message and produce a decision.

        Parameters
        ----------
        message:
            The assistant message of the turn that just finished.
        allow_empty:
            Accept a final answer with no text.  Streaming callers have
            already delivered whatever text there was, so an empty answer
            is still a finished answer there.
        """
        raw_calls = message.get("tool_calls") or []
        if raw_calls:
            return ReasonerDecision(
                action=ActionType.EXECUTE_TOOLS,
                tool_calls=[
                    ToolCall.from_message_dict(tc, index=i)
                    for i, tc in enumerate(raw_calls)
                ],
                response_text=message.get("content") or "",
            )

        content = message.get("content")
        if allow_empty:
            return ReasonerDecision(action=ActionType.RESPOND, response_text=content or "")
        if not isinstance(content, str) or not content.strip():
            raise EmptyResponseError("No content in final response")
        return ReasonerDecision(action=ActionType.RESPOND, response_text=content)

    @property
    def iteration(self) -> int:
        return self._iteration
