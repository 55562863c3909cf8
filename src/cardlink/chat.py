"""Visitor chat for one profile's card: sessions, messages and answers."""

from __future__ import annotations

import asyncio
import logging

from cardlink.config import CardlinkConfig
from cardlink.core.orchestrator import Orchestrator
from cardlink.events.bus import Publisher, session_topic
from cardlink.jobs.llm_stream import LLMStreamJob, OrchestratorFactory
from cardlink.jobs.retry import JobRunner
from cardlink.llm.client import AsyncLLMClient
from cardlink.store import ChatSession, MessageStore, Profile
from cardlink.tools.builtin import register_profile_tools
from cardlink.tools.mcp import MCPGateway
from cardlink.tools.registry import ToolRegistry
from cardlink.types import BroadcastEvent, BroadcastType

_logger = logging.getLogger(__name__)

DEFAULT_VISITOR = "Anonymous"


class ChatService:
    """Entry point for a card's live chat.

    Parameters
    ----------
    store:
        Persistence for sessions and messages.
    publisher:
        Pub/sub transport subscribers listen on.
    client:
        Shared LLM transport.
    config:
        Loaded configuration (history size, MCP server, retries).
    runner:
        Runs the answer jobs in the background.
    orchestrator_factory:
        Builds the orchestrator for a profile.  Defaults to the card
        assistant tools, or the MCP server's tools when one is configured.
    """

    def __init__(
        self,
        store: MessageStore,
        publisher: Publisher,
        client: AsyncLLMClient,
        config: CardlinkConfig | None = None,
        runner: JobRunner | None = None,
        orchestrator_factory: OrchestratorFactory | None = None,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._client = client
        self._config = config or CardlinkConfig()
        self._runner = runner or JobRunner()
        self._gateway = (
            MCPGateway(self._config.mcp_server_url)
            if self._config.mcp_server_url else None
        )
        self._orchestrator_factory = orchestrator_factory or self.orchestrator_for

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def open_session(
        self,
        profile_id: int,
        visitor_name: str | None = None,
        visitor_email: str | None = None,
    ) -> ChatSession:
        """Reuse the visitor's active session with this profile, or start one."""
        if self._store.get_profile(profile_id) is None:
            raise LookupError(f"Profile {profile_id} not found")
        name = visitor_name.strip() if visitor_name and visitor_name.strip() else DEFAULT_VISITOR
        session = self._store.find_active_session(profile_id, name)
        if session is not None:
            return session
        session = self._store.create_session(profile_id, name, visitor_email)
        _logger.info("Started chat session %d for profile %d", session.id, profile_id)
        return session

    def close_session(self, session_id: int) -> None:
        session = self._store.get_session(session_id)
        if session is not None and session.active:
            self._store.end_session(session_id)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(self, session_id: int, content: str | None) -> asyncio.Task | None:
        """Save and announce a visitor message, then enqueue the answer job.

        Blank content is ignored and returns ``None``.
        """
        if not content or not content.strip():
            return None
        message = self._store.add_message(session_id, "user", content)
        await self._publisher.publish(
            session_topic(session_id),
            BroadcastEvent(BroadcastType.USER_MESSAGE, {
                "id": message.id,
                "content": message.content,
                "created_at": message.created_at_iso,
            }).to_payload(),
        )
        job = LLMStreamJob(
            chat_session_id=session_id,
            prompt=content,
            store=self._store,
            publisher=self._publisher,
            orchestrator_factory=self._orchestrator_factory,
            history_limit=self._config.history_limit,
            retry=self._config.retry,
        )
        return self._runner.enqueue(job)

    # ------------------------------------------------------------------
    # Orchestrators
    # ------------------------------------------------------------------

    def orchestrator_for(self, profile: Profile) -> Orchestrator:
        if self._gateway is not None:
            return Orchestrator(
                self._client,
                gateway=self._gateway,
                concurrent_tools=self._config.concurrent_tools,
            )
        registry = ToolRegistry()
        register_profile_tools(registry, profile, self._store)
        return Orchestrator(
            self._client,
            tools=registry.definitions(),
            executor=registry,
            concurrent_tools=self._config.concurrent_tools,
        )

    async def close(self) -> None:
        await self._runner.drain()
        if self._gateway is not None:
            await self._gateway.close()
