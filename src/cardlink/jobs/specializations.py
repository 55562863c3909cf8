"""Background job extracting specialization keywords from a profile."""

from __future__ import annotations

import dataclasses
import json
import logging

from cardlink.config import RetrySpec
from cardlink.core.orchestrator import Orchestrator
from cardlink.events.bus import Publisher
from cardlink.jobs.base import Job
from cardlink.jobs.retry import RetryPolicy
from cardlink.llm.client import AsyncLLMClient
from cardlink.prompts import (
    SPECIALIZATION_SYSTEM_PROMPT,
    profile_context,
    specialization_prompt,
    strip_code_fences,
)
from cardlink.store import MessageStore

_logger = logging.getLogger(__name__)

MIN_CONTEXT = 20
MAX_KEYWORDS = 5
ACCEPTED_COUNT = range(2, 7)


def parse_specializations(answer: str) -> list[str]:
    """Decode the model's JSON array answer.

    Markdown code fences are stripped first.  Raises ``ValueError`` when
    the remainder is not JSON; a non-array decodes to ``[]``.
    """
    parsed = json.loads(strip_code_fences(answer))
    if not isinstance(parsed, list):
        return []
    keywords: list[str] = []
    for item in parsed:
        if item is None:
            continue
        text = str(item).strip()
        if text and text not in keywords:
            keywords.append(text)
    return keywords[:MAX_KEYWORDS]


class ExtractSpecializationsJob(Job):
    """Ask the model for a profile's specializations and store them."""

    def __init__(
        self,
        profile_id: int,
        store: MessageStore,
        client: AsyncLLMClient,
        publisher: Publisher | None = None,
        retry: RetrySpec | None = None,
    ) -> None:
        super().__init__(publisher)
        self.profile_id = profile_id
        self._store = store
        self._client = client
        self._retry = retry or RetrySpec(timeout_attempts=2)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_spec(self._retry)

    async def perform(self) -> list[str] | None:
        profile = self._store.get_profile(self.profile_id)
        if profile is None:
            raise LookupError(f"Profile {self.profile_id} not found")

        context = profile_context(profile)
        if len(context.strip()) < MIN_CONTEXT:
            _logger.debug("Profile #%d has too little content, skipping", profile.id)
            return None

        settings = dataclasses.replace(self._client.settings, temperature=0.3, max_tokens=200)
        orchestrator = Orchestrator(self._client, settings=settings)
        answer = await orchestrator.call_blocking(
            specialization_prompt(context), system=SPECIALIZATION_SYSTEM_PROMPT,
        )

        try:
            keywords = parse_specializations(answer)
        except ValueError as e:
            _logger.error("Failed to parse specializations for Profile #%d: %s", profile.id, e)
            return None

        if len(keywords) not in ACCEPTED_COUNT:
            return None
        self._store.update_specializations(profile.id, keywords)
        _logger.info("Updated specializations for Profile #%d: %s", profile.id, keywords)
        return keywords
