"""Message history for one logical call."""

from __future__ import annotations

import copy
from typing import Any

from cardlink.errors import LLMError


def build_user_message(prompt: str, images: list[str] | None = None) -> dict[str, Any]:
    """User message; multimodal parts when images are attached."""
    if not images:
        return {"role": "user", "content": prompt}
    parts: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
    for url in images:
        parts.append({"type": "image_url", "image_url": {"url": url}})
    return {"role": "user", "content": parts}


def normalize_images(images: list[str] | str | None) -> list[str]:
    if not images:
        return []
    if isinstance(images, str):
        images = [images]
    return [str(i) for i in images if i is not None and str(i).strip()]


class Conversation:
    """Append-only message history for one prompt → answer call.

    Appended messages are copied, so callers mutating their own dicts later
    cannot rewrite history.
    """

    def __init__(
        self,
        prompt: str,
        system: str | None = None,
        history: list[dict[str, Any]] | None = None,
        images: list[str] | str | None = None,
    ) -> None:
        if not prompt or not prompt.strip():
            raise LLMError("Prompt cannot be blank")
        self.images = normalize_images(images)
        self._messages: list[dict[str, Any]] = []
        if system and system.strip():
            self.append({"role": "system", "content": system})
        for message in history or []:
            self.append(message)
        self.append(build_user_message(prompt, self.images))

    def append(self, message: dict[str, Any]) -> None:
        self._messages.append(copy.deepcopy(message))

    @property
    def messages(self) -> list[dict[str, Any]]:
        """A snapshot of the history."""
        return list(self._messages)

    @property
    def has_images(self) -> bool:
        return bool(self.images)

    def __len__(self) -> int:
        return len(self._messages)
