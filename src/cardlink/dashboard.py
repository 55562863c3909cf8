"""Dashboard assistant: the card owner edits their card by chatting."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cardlink.core.orchestrator import Orchestrator
from cardlink.errors import EmptyResponseError, LLMError
from cardlink.events.bus import Publisher, dashboard_topic
from cardlink.jobs.retry import JobRunner
from cardlink.jobs.specializations import ExtractSpecializationsJob
from cardlink.llm.client import AsyncLLMClient
from cardlink.prompts import UPDATE_MARKER, dashboard_system_prompt
from cardlink.store import MessageStore
from cardlink.types import BroadcastEvent, BroadcastType

_logger = logging.getLogger(__name__)

# Specializations are left to ExtractSpecializationsJob
UPDATABLE_FIELDS = ("full_name", "title", "company", "phone", "email", "location", "bio")

FIELD_LABELS = {
    "full_name": "Name",
    "title": "Title",
    "company": "Company",
    "phone": "Phone",
    "email": "Email",
    "location": "Location",
    "bio": "Bio",
    "specializations": "Specializations",
    "stats": "Professional stats",
}

DEFAULT_REPLY = "Got your message! Is there anything else I can help with?"
DEFAULT_ERROR = "Something went wrong while processing your message, please try again."
UPDATE_FAILED = "The update failed, please try again."
WELCOME_MESSAGE = (
    "Hi! I'm your AI assistant.\n"
    "\n"
    "Just tell me what you'd like to change on your card, for example:\n"
    '- "Change my phone to 555-123-4567"\n'
    '- "Update my bio"\n'
    "\n"
    "I'll take care of it right away!"
)

_JSON_BLOCK_RE = re.compile(r"```json\n(.*?)\n```", re.DOTALL)


@dataclass
class DashboardReply:
    """Outcome of one dashboard message."""

    success: bool
    response: str = ""
    updated: bool = False
    updated_fields: list[str] = field(default_factory=list)
    error: str | None = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def extract_profile_updates(answer: str) -> dict[str, Any]:
    """Pull the fenced JSON update block out of a model answer.

    Unknown fields are dropped; ``stats`` is kept when it is an object.
    Returns ``{}`` when there is no block or it is not valid JSON.
    """
    match = _JSON_BLOCK_RE.search(answer)
    if match is None:
        return {}
    try:
        updates = json.loads(match.group(1))
    except ValueError as e:
        _logger.error("Failed to parse profile updates: %s", e)
        return {}
    if not isinstance(updates, dict):
        return {}

    cleaned: dict[str, Any] = {}
    for key, value in updates.items():
        if key == "stats" and isinstance(value, dict):
            cleaned["stats"] = value
        elif key in UPDATABLE_FIELDS:
            cleaned[key] = value
    return cleaned


def update_summary(fields: list[str]) -> str:
    lines = "\n".join(f"- {FIELD_LABELS.get(name, name)}" for name in fields)
    return f"Updated:\n{lines}"


class DashboardAssistantService:
    """Answers the card owner and applies the updates the model asks for.

    A successful update enqueues :class:`ExtractSpecializationsJob` so the
    keywords follow the new bio.

    Parameters
    ----------
    store:
        Profile persistence.
    client:
        Shared LLM transport.
    publisher:
        Optional pub/sub transport for the live channel entry points.
    runner:
        Runs the specialization job in the background.
    """

    def __init__(
        self,
        store: MessageStore,
        client: AsyncLLMClient,
        publisher: Publisher | None = None,
        runner: JobRunner | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._publisher = publisher
        self._runner = runner or JobRunner()

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def handle(self, profile_id: int, message: str) -> DashboardReply:
        """Answer *message*; apply the update block if the model wrote one."""
        profile = self._store.get_profile(profile_id)
        if profile is None:
            raise LookupError(f"Profile {profile_id} not found")

        settings = dataclasses.replace(self._client.settings, temperature=0.7)
        orchestrator = Orchestrator(self._client, settings=settings)
        try:
            answer = await orchestrator.call_blocking(
                message, system=dashboard_system_prompt(profile),
            )
        except EmptyResponseError:
            return DashboardReply(success=True, response=DEFAULT_REPLY)
        except LLMError as e:
            _logger.error("Dashboard assistant failed for Profile #%d: %s", profile_id, e)
            return DashboardReply(success=False, error=DEFAULT_ERROR)

        if UPDATE_MARKER not in answer:
            return DashboardReply(success=True, response=answer)

        updates = extract_profile_updates(answer)
        if not self.apply_updates(profile_id, updates):
            return DashboardReply(success=False, error=UPDATE_FAILED)
        fields = list(updates)
        return DashboardReply(
            success=True,
            response=f"Done, I've updated your card!\n\n{update_summary(fields)}",
            updated=True,
            updated_fields=fields,
        )

    def apply_updates(self, profile_id: int, updates: dict[str, Any]) -> bool:
        """Write *updates*, merging ``stats`` into the existing stats.

        Returns ``False`` when there is nothing to write or the store rejects
        the values (logged).  Must be called from a running event loop.
        """
        if not updates:
            return False
        updates = dict(updates)
        profile = self._store.get_profile(profile_id)
        if profile is None:
            raise LookupError(f"Profile {profile_id} not found")
        if updates.get("stats"):
            new_stats = {str(k): v for k, v in updates["stats"].items()}
            updates["stats"] = {**profile.stats, **new_stats}
        try:
            self._store.update_profile(profile_id, **updates)
        except ValueError as e:
            _logger.error("Failed to apply profile updates: %s", e)
            return False
        self._refresh_specializations(profile_id)
        return True

    # ------------------------------------------------------------------
    # Live channel
    # ------------------------------------------------------------------

    async def welcome(self, profile_id: int) -> None:
        await self._publish(profile_id, BroadcastType.ASSISTANT_MESSAGE, {
            "content": WELCOME_MESSAGE,
            "is_welcome": True,
            "timestamp": _now_iso(),
        })

    async def send_message(self, profile_id: int, content: str | None) -> DashboardReply | None:
        """Announce the owner's message, answer it and publish the reply.

        Blank content is ignored and returns ``None``.
        """
        if not content or not content.strip():
            return None
        await self._publish(profile_id, BroadcastType.USER_MESSAGE, {
            "content": content,
            "timestamp": _now_iso(),
        })
        reply = await self.handle(profile_id, content)
        if reply.success:
            await self._publish(profile_id, BroadcastType.ASSISTANT_MESSAGE, {
                "content": reply.response,
                "updated": reply.updated,
                "updated_fields": reply.updated_fields,
                "profile_data": self._profile_data(profile_id),
                "timestamp": _now_iso(),
            })
        else:
            await self._publish(profile_id, BroadcastType.ERROR, {
                "message": reply.error or DEFAULT_ERROR,
            })
        return reply

    async def update_profile(self, profile_id: int, updates: dict[str, Any]) -> bool:
        """Apply a direct edit from the dashboard form and announce it."""
        if self.apply_updates(profile_id, updates):
            await self._publish(profile_id, BroadcastType.PROFILE_UPDATED, {
                "success": True,
                "updated_fields": list(updates),
                "profile_data": self._profile_data(profile_id),
            })
            return True
        await self._publish(profile_id, BroadcastType.ERROR, {"message": UPDATE_FAILED})
        return False

    async def close(self) -> None:
        await self._runner.drain()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _refresh_specializations(self, profile_id: int) -> asyncio.Task:
        job = ExtractSpecializationsJob(
            profile_id,
            store=self._store,
            client=self._client,
            publisher=self._publisher,
        )
        return self._runner.enqueue(job)

    def _profile_data(self, profile_id: int) -> dict[str, Any]:
        profile = self._store.get_profile(profile_id)
        return profile.card_data() if profile else {}

    async def _publish(self, profile_id: int, kind: BroadcastType, data: dict[str, Any]) -> None:
        if self._publisher is None:
            return
        await self._publisher.publish(
            dashboard_topic(profile_id), BroadcastEvent(kind, data).to_payload(),
        )
