"""In-process topic pub/sub for relaying events to live subscribers."""

from __future__ import annotations

import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Protocol

_logger = logging.getLogger(__name__)

# Sentinel used for wildcard subscriptions (receive every topic)
_WILDCARD = "*"

# Type alias for handlers (sync or async callables taking topic and payload)
Handler = Callable[[str, dict[str, Any]], Any]


class Publisher(Protocol):
    """The one primitive the job layer needs: publish a payload to a topic."""

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class Published:
    """A payload as recorded in the broker history."""

    topic: str
    payload: dict[str, Any]


def session_topic(session_id: int | str) -> str:
    """Topic a chat session's subscribers listen on."""
    return f"profile_chat_{session_id}"


def onboarding_topic(profile_id: int | str) -> str:
    """Topic of a profile owner's onboarding conversation."""
    return f"profile_onboarding_{profile_id}"


def dashboard_topic(profile_id: int | str) -> str:
    """Topic of a profile owner's dashboard assistant."""
    return f"dashboard_assistant_{profile_id}"


SYSTEM_MONITOR_TOPIC = "system_monitor"


class Broker:
    """Lightweight in-process pub/sub broker.

    Features:
    - Subscribe to one topic or wildcard ``"*"`` for all topics.
    - Handlers can be sync or async.
    - ``publish()`` calls matching handlers one at a time in subscription
      order, so each subscriber sees a topic's payloads in publish order.
    - Handler exceptions are logged and do not reach the publisher.
    """

    def __init__(self, max_history: int = 500) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._history: deque[Published] = deque(maxlen=max_history)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Register *handler* for *topic* (or ``"*"`` for all)."""
        self._handlers.setdefault(topic, []).append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        """Remove *handler* from *topic*."""
        handlers = self._handlers.get(topic, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """Deliver *payload* to the topic's handlers, then wildcard handlers."""
        self._history.append(Published(topic, payload))

        handlers = list(self._handlers.get(topic, []))
        handlers.extend(self._handlers.get(_WILDCARD, []))
        for handler in handlers:
            await self._call_handler(handler, topic, payload)

    def history(self, topic: str | None = None) -> list[Published]:
        """Recorded publications, optionally restricted to one topic."""
        if topic is None:
            return list(self._history)
        return [p for p in self._history if p.topic == topic]

    def payloads(self, topic: str) -> list[dict[str, Any]]:
        return [p.payload for p in self._history if p.topic == topic]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _call_handler(handler: Handler, topic: str, payload: dict[str, Any]) -> None:
        try:
            result = handler(topic, payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "Broker handler %s raised for topic %s",
                getattr(handler, "__name__", handler),
                topic,
            )
