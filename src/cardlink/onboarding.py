"""Guided onboarding: a fixed sequence of questions that fills in a new card.

Each answer is acknowledged by the model, mined for profile fields with a
second low-temperature call, and saved before the conversation moves to the
next step::

    intro → specializations → case_story → brand_style
          → contact_preferences → avatar_upload → completed
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cardlink.core.orchestrator import Orchestrator
from cardlink.errors import LLMError
from cardlink.events.bus import Publisher, onboarding_topic
from cardlink.llm.client import AsyncLLMClient
from cardlink.prompts import EXTRACTION_SYSTEM_PROMPT, extraction_prompt, strip_code_fences
from cardlink.store import MessageStore, Profile
from cardlink.types import BroadcastEvent, BroadcastType

_logger = logging.getLogger(__name__)

FIRST_STEP = "intro"
COMPLETED = "completed"

FALLBACK_REPLY = "Thanks for sharing! Let's move on to the next step."
DEFAULT_CASE_TITLE = "Success story"
DEFAULT_ERROR = "Something went wrong while processing your message, please try again."

# Fields an extracted answer may write directly
SAVED_FIELDS = ("full_name", "title", "company", "phone", "email", "location", "bio",
                "specializations")

_LIST_SEPARATORS = re.compile(r"[,，、]")


@dataclass(frozen=True)
class OnboardingStep:
    """One question of the onboarding conversation."""

    prompt: str  # What the assistant asks
    system: str  # How the model should treat the answer
    next_step: str
    fields: tuple[str, ...]  # Profile fields the answer may fill


ONBOARDING_STEPS: dict[str, OnboardingStep] = {
    "intro": OnboardingStep(
        prompt="Hi, nice to meet you! Could you briefly introduce yourself, "
               "for example your name and what you do?",
        system="You are a friendly, professional onboarding assistant. The user is "
               "just starting to build their professional card. Guide them to "
               "introduce themselves in a relaxed, warm tone. Once they share the "
               "basics, pick out their name, title and company.",
        next_step="specializations",
        fields=("full_name", "title", "company"),
    ),
    "specializations": OnboardingStep(
        prompt="Great! What kinds of problems are you best at solving, "
               "or what is your area of expertise?",
        system="Guide the user to describe their areas of expertise. They may "
               "mention several; help distill 3-5 key specializations.",
        next_step="case_story",
        fields=("specializations", "bio"),
    ),
    "case_story": OnboardingStep(
        prompt="Is there a client story or success you are particularly proud of? "
               "Would you like to share it?",
        system="Guide the user to share one concrete success story. Help them "
               "condense it into a title, a category and a short description. If "
               "they share several, pick the best one.",
        next_step="brand_style",
        fields=("case_studies",),
    ),
    "brand_style": OnboardingStep(
        prompt="How would you like clients to remember you? What professional "
               "image and service style do you want to convey?",
        system="Guide the user to describe their brand or service style. Help them "
               "find what is distinctive about it so it can go into their bio.",
        next_step="contact_preferences",
        fields=("bio",),
    ),
    "contact_preferences": OnboardingStep(
        prompt="Wonderful! Please tell me how clients can reach you and when it "
               "suits you, so potential clients can get in touch easily.",
        system="Collect the user's contact details (phone, email, address) and "
               "availability. Make sure to get at least one way to contact them.",
        next_step="avatar_upload",
        fields=("phone", "email", "location"),
    ),
    "avatar_upload": OnboardingStep(
        prompt="Perfect! Now let's add a professional photo to your card. "
               "Just upload the one you like best.",
        system="Guide the user to upload a profile photo. If they do not have a "
               "suitable one right now, they can skip this step and upload later.",
        next_step=COMPLETED,
        fields=("avatar",),
    ),
}

COMPLETION_MESSAGE = (
    "Your professional card is ready!\n"
    "\n"
    "I've put together your card from what you told me. You can:\n"
    "1. Preview the card on the right\n"
    "2. Update it any time through the dashboard assistant\n"
    "3. Share the card link with potential clients\n"
)


@dataclass
class OnboardingReply:
    """Outcome of one onboarding message."""

    success: bool
    step: str
    response: str = ""
    next_step: str | None = None
    completed: bool = False
    is_initial: bool = False
    profile_preview: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_extracted(data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any] | None]:
    """Split extracted data into profile updates and an optional case study.

    A comma separated ``specializations`` string becomes a list; fields the
    onboarding never writes are dropped.
    """
    data = dict(data)
    case_study = None
    raw_case = data.pop("case_studies", None)
    if isinstance(raw_case, dict):
        case_study = {
            "title": raw_case.get("title") or DEFAULT_CASE_TITLE,
            "description": raw_case.get("description"),
            "category": raw_case.get("category"),
        }

    specializations = data.get("specializations")
    if isinstance(specializations, str):
        data["specializations"] = [
            s.strip() for s in _LIST_SEPARATORS.split(specializations) if s.strip()
        ]

    updates = {k: v for k, v in data.items() if k in SAVED_FIELDS and v not in (None, "")}
    return updates, case_study


class OnboardingService:
    """Walks a new profile owner through :data:`ONBOARDING_STEPS`.

    Parameters
    ----------
    store:
        Where the profile and its onboarding progress live.
    client:
        LLM transport for the acknowledgement and extraction calls.
    publisher:
        Optional pub/sub transport; the ``start``/``send_message``/``skip_step``
        entry points publish to ``profile_onboarding_<profile_id>``.
    """

    def __init__(
        self,
        store: MessageStore,
        client: AsyncLLMClient,
        publisher: Publisher | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._publisher = publisher

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def handle(
        self,
        profile_id: int,
        content: str | None,
        step: str | None = None,
    ) -> OnboardingReply:
        """Process one answer at *step* (default: the profile's current step).

        A blank answer returns the step's question without calling the model.
        """
        profile = self._profile(profile_id)
        current = step or profile.onboarding_step or FIRST_STEP
        config = ONBOARDING_STEPS.get(current)
        if config is None:
            return OnboardingReply(success=False, step=current, error="Invalid step")

        if not content or not content.strip():
            return OnboardingReply(
                success=True,
                step=current,
                response=config.prompt,
                next_step=config.next_step,
                is_initial=True,
            )

        answer = await self._acknowledge(content, config)
        extracted = await self._extract(content, config)
        self._save_extracted(profile, extracted)
        self._record_exchange(profile_id, current, content, answer)

        profile = self._store.update_profile(profile_id, onboarding_step=config.next_step)
        if config.next_step == COMPLETED:
            profile = self._store.update_profile(profile_id, onboarding_completed=True)
            _logger.info("Profile #%d finished onboarding", profile_id)
            return OnboardingReply(
                success=True,
                step=current,
                response=COMPLETION_MESSAGE,
                next_step=COMPLETED,
                completed=True,
                profile_preview=profile.card_data(),
            )

        follow_up = ONBOARDING_STEPS[config.next_step].prompt
        return OnboardingReply(
            success=True,
            step=current,
            response=f"{answer}\n\n{follow_up}",
            next_step=config.next_step,
            profile_preview=profile.card_data(),
        )

    def skip(self, profile_id: int) -> str:
        """Move past the current step without answering; return the new step."""
        profile = self._profile(profile_id)
        config = ONBOARDING_STEPS.get(profile.onboarding_step or FIRST_STEP)
        next_step = config.next_step if config else COMPLETED
        self._store.update_profile(
            profile_id,
            onboarding_step=next_step,
            onboarding_completed=next_step == COMPLETED,
        )
        return next_step

    # ------------------------------------------------------------------
    # Live channel
    # ------------------------------------------------------------------

    async def start(self, profile_id: int) -> bool:
        """Open the conversation for a profile that has not started yet.

        Returns ``True`` when the first question was published.
        """
        profile = self._profile(profile_id)
        if not profile.needs_onboarding or profile.onboarding_step:
            return False
        self._store.update_profile(profile_id, onboarding_step=FIRST_STEP)
        intro = ONBOARDING_STEPS[FIRST_STEP]
        await self._publish(profile_id, BroadcastType.ASSISTANT_MESSAGE, {
            "content": intro.prompt,
            "step": FIRST_STEP,
            "next_step": intro.next_step,
            "is_initial": True,
            "timestamp": _now_iso(),
        })
        return True

    async def send_message(self, profile_id: int, content: str | None) -> OnboardingReply | None:
        """Announce the owner's answer, process it and publish the reply.

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
                "step": reply.step,
                "next_step": reply.next_step,
                "completed": reply.completed,
                "profile_preview": reply.profile_preview,
                "timestamp": _now_iso(),
            })
        else:
            await self._publish(profile_id, BroadcastType.ERROR, {
                "message": reply.error or DEFAULT_ERROR,
            })
        return reply

    async def skip_step(self, profile_id: int) -> str:
        next_step = self.skip(profile_id)
        step = ONBOARDING_STEPS.get(next_step)
        await self._publish(profile_id, BroadcastType.STEP_SKIPPED, {
            "next_step": next_step,
            "message": step.prompt if step else "Please continue...",
        })
        return next_step

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _profile(self, profile_id: int) -> Profile:
        profile = self._store.get_profile(profile_id)
        if profile is None:
            raise LookupError(f"Profile {profile_id} not found")
        return profile

    def _orchestrator(self, temperature: float) -> Orchestrator:
        settings = dataclasses.replace(self._client.settings, temperature=temperature)
        return Orchestrator(self._client, settings=settings)

    async def _acknowledge(self, content: str, config: OnboardingStep) -> str:
        try:
            return await self._orchestrator(0.7).call_blocking(content, system=config.system)
        except LLMError as e:
            _logger.error("Onboarding reply failed: %s", e)
            return FALLBACK_REPLY

    async def _extract(self, content: str, config: OnboardingStep) -> dict[str, Any]:
        try:
            answer = await self._orchestrator(0.3).call_blocking(
                extraction_prompt(content, config.fields), system=EXTRACTION_SYSTEM_PROMPT,
            )
            data = json.loads(strip_code_fences(answer))
        except (LLMError, ValueError) as e:
            _logger.error("Onboarding extraction failed: %s", e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save_extracted(self, profile: Profile, data: dict[str, Any]) -> None:
        if not data:
            return
        updates, case_study = normalize_extracted(data)
        if case_study is not None:
            updates["case_studies"] = [*profile.case_studies, case_study]
        try:
            self._store.update_profile(profile.id, **updates)
        except ValueError as e:
            _logger.error("Onboarding save failed for Profile #%d: %s", profile.id, e)

    def _record_exchange(self, profile_id: int, step: str, content: str, answer: str) -> None:
        data = dict(self._profile(profile_id).onboarding_data)
        data[step] = {"user_message": content, "ai_response": answer, "timestamp": _now_iso()}
        self._store.update_profile(profile_id, onboarding_data=data)

    async def _publish(self, profile_id: int, kind: BroadcastType, data: dict[str, Any]) -> None:
        if self._publisher is None:
            return
        await self._publisher.publish(
            onboarding_topic(profile_id), BroadcastEvent(kind, data).to_payload(),
        )
