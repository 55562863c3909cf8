"""Built-in tools for cardlink."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cardlink.store import MessageStore, Profile
    from cardlink.tools.registry import ToolRegistry


def register_profile_tools(
    registry: ToolRegistry,
    profile: Profile,
    store: MessageStore,
) -> None:
    """Register the card assistant tools bound to *profile*."""
    from cardlink.tools.builtin.profile import PROFILE_TOOLS

    for tool_cls in PROFILE_TOOLS:
        registry.register(tool_cls(profile, store))
