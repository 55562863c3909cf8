"""Background job relaying a streamed answer to a chat session's subscribers."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from cardlink.config import RetrySpec
from cardlink.core.orchestrator import Orchestrator
from cardlink.events.bus import Publisher, session_topic
from cardlink.jobs.base import Job
from cardlink.jobs.retry import RetryPolicy
from cardlink.prompts import visitor_system_prompt
from cardlink.store import ChatMessage, MessageStore, Profile
from cardlink.types import BroadcastEvent, BroadcastType, ContentChunk, ToolInvocation

_logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[Profile], Orchestrator]


def _display_arguments(arguments: Any) -> Any:
    """Arguments as subscribers see them: decoded when they are valid JSON."""
    if not isinstance(arguments, str):
        return arguments
    try:
        return json.loads(arguments) if arguments.strip() else {}
    except ValueError:
        return arguments


class LLMStreamJob(Job):
    """Stream the assistant's answer to *prompt* into a chat session.

    Every text fragment is published to ``profile_chat_<session_id>`` as it
    arrives; tool calls are announced before they run; the final message is
    saved and announced last with a ``done`` event.  Exceptions are left to
    propagate.
    """

    queue_name = "llm"

    def __init__(
        self,
        chat_session_id: int,
        prompt: str,
        store: MessageStore,
        publisher: Publisher,
        orchestrator_factory: OrchestratorFactory,
        history_limit: int = 10,
        retry: RetrySpec | None = None,
    ) -> None:
        super().__init__(publisher)
        self.chat_session_id = chat_session_id
        self.prompt = prompt
        self._store = store
        self._orchestrator_factory = orchestrator_factory
        self._history_limit = history_limit
        self._retry = retry or RetrySpec()

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_spec(self._retry)

    async def perform(self) -> ChatMessage:
        session = self._store.get_session(self.chat_session_id)
        if session is None:
            raise LookupError(f"Chat session {self.chat_session_id} not found")
        profile = self._store.get_profile(session.profile_id)
        if profile is None:
            raise LookupError(f"Profile {session.profile_id} not found")

        topic = session_topic(session.id)
        orchestrator = self._orchestrator_factory(profile)
        stream = orchestrator.call_streaming(
            self.prompt,
            system=visitor_system_prompt(profile),
            history=self._history(),
        )

        async for event in stream:
            if isinstance(event, ContentChunk):
                await self._publish(topic, BroadcastType.CHUNK, {"chunk": event.text})
            elif isinstance(event, ToolInvocation):
                await self._publish(topic, BroadcastType.TOOL_CALL, {
                    "tool_name": event.name,
                    "arguments": _display_arguments(event.arguments),
                })

        message = self._store.add_message(session.id, "assistant", stream.content)
        await self._publish(topic, BroadcastType.DONE, {
            "id": message.id,
            "content": message.content,
            "created_at": message.created_at_iso,
        })
        _logger.info(
            "Streamed answer for session %d (%d chars)", session.id, len(message.content),
        )
        return message

    def _history(self) -> list[dict[str, Any]]:
        """The *history_limit* messages before the prompt.

        One extra row is fetched because the prompt itself is usually the
        newest saved message.
        """
        history = [
            m.to_message()
            for m in self._store.recent_messages(self.chat_session_id, self._history_limit + 1)
        ]
        if history and history[-1] == {"role": "user", "content": self.prompt}:
            history.pop()
        return history[-self._history_limit:] if self._history_limit else []

    async def _publish(self, topic: str, kind: BroadcastType, data: dict[str, Any]) -> None:
        await self.publisher.publish(topic, BroadcastEvent(kind, data).to_payload())
