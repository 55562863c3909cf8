"""Card assistant tools: let visitors explore a profile and its team."""

from __future__ import annotations

from typing import Any

from cardlink.store import MessageStore, Profile
from cardlink.tools.base import Tool, ToolParameter

_DEFAULT_LIMIT = 5
_MAX_LIMIT = 10


def _truncate(text: str | None, length: int) -> str | None:
    if text is None or len(text) <= length:
        return text
    return text[: length - 3] + "..."


def _limit(arguments: dict[str, Any]) -> int:
    try:
        requested = int(arguments.get("limit") or _DEFAULT_LIMIT)
    except (TypeError, ValueError):
        requested = _DEFAULT_LIMIT
    return max(1, min(requested, _MAX_LIMIT))


def _matches_specialization(member: Profile, keyword: str) -> bool:
    keyword = keyword.lower()
    return any(keyword in s.lower() for s in member.specializations)


def _member_summary(member: Profile) -> dict[str, Any]:
    return {
        "id": member.id,
        "full_name": member.full_name,
        "title": member.title,
        "department": member.department or "not set",
        "specializations": member.specializations[:3],
        "years_experience": member.stats.get("years_experience", 0),
    }


def _no_organization() -> dict[str, Any]:
    return {"status": "error", "message": "This professional has not joined an organization yet"}


class ProfileTool(Tool):
    """A tool bound to the profile whose card the visitor is viewing."""

    def __init__(self, profile: Profile, store: MessageStore) -> None:
        self.profile = profile
        self.store = store

    def _team(self, include_self: bool = False) -> list[Profile]:
        exclude = None if include_self else self.profile.id
        return self.store.organization_members(
            self.profile.organization_id, exclude_profile_id=exclude,
        )


class GetProfileInfoTool(ProfileTool):
    name = "get_profile_info"
    description = (
        "Get details about the current professional, optionally including "
        "case studies and honors."
    )
    parameters = [
        ToolParameter("include_cases", "boolean", "Include case studies"),
        ToolParameter("include_honors", "boolean", "Include honors and awards"),
    ]

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        p = self.profile
        data: dict[str, Any] = {
            "full_name": p.full_name,
            "title": p.title,
            "company": p.company or "not set",
            "department": p.department or "not set",
            "specializations": p.specializations,
            "years_experience": p.stats.get("years_experience", 0),
            "cases_handled": p.stats.get("cases_handled", 0),
            "bio": _truncate(p.bio, 200) or "no bio yet",
        }
        if kwargs.get("include_cases") and p.case_studies:
            data["case_studies"] = [
                {
                    "title": cs.get("title"),
                    "category": cs.get("category"),
                    "description": _truncate(cs.get("description"), 100),
                }
                for cs in p.case_studies[:3]
            ]
        if kwargs.get("include_honors") and p.honors:
            data["honors"] = [
                {"title": h.get("title"), "organization": h.get("organization")}
                for h in p.honors[:3]
            ]
        return {"status": "success", "data": data}


class GetTeamCountTool(ProfileTool):
    name = "get_team_count"
    description = (
        "Get the team size without listing members. Use for questions like "
        "'how many people are on the team'."
    )
    parameters = [
        ToolParameter("specialization", "string", "Optional specialization to count"),
    ]

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        if self.profile.organization_id is None:
            return _no_organization()
        org = self.store.get_organization(self.profile.organization_id)
        members = self._team()
        result: dict[str, Any] = {
            "status": "success",
            "total_count": len(members),
            "organization_name": org.name if org else "",
        }
        specialization = kwargs.get("specialization")
        if specialization:
            filtered = [m for m in members if _matches_specialization(m, specialization)]
            result["filtered_count"] = len(filtered)
            result["specialization"] = specialization
            result["message"] = (
                f"{result['organization_name']} has {len(members)} members, "
                f"{len(filtered)} of them in {specialization}"
            )
        else:
            result["message"] = f"{result['organization_name']} has {len(members)} team members"
        return result


class GetTeamMembersTool(ProfileTool):
    name = "get_team_members"
    description = (
        "List team members (5 by default, at most 10), optionally filtered "
        "by specialization."
    )
    parameters = [
        ToolParameter("specialization", "string", "Filter by specialization keyword"),
        ToolParameter("limit", "integer", "Number of members to return (max 10)"),
    ]

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        if self.profile.organization_id is None:
            return _no_organization()
        members = self._team()
        total = len(members)
        if kwargs.get("specialization"):
            members = [
                m for m in members
                if _matches_specialization(m, kwargs["specialization"])
            ]
        limit = _limit(kwargs)
        shown = members[:limit]
        return {
            "status": "success",
            "total_count": total,
            "displayed_count": len(shown),
            "has_more": len(members) > limit,
            "members": [_member_summary(m) for m in shown],
        }


class SearchTeamMembersTool(ProfileTool):
    name = "search_team_members"
    description = (
        "Search team members by keyword across name, title, specialization "
        "and department."
    )
    parameters = [
        ToolParameter("keyword", "string", "Search keyword", required=True),
        ToolParameter("limit", "integer", "Number of results (default 5)"),
    ]

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        if self.profile.organization_id is None:
            return _no_organization()
        keyword = (kwargs.get("keyword") or "").strip()
        if not keyword:
            return {"status": "error", "message": "Please provide a search keyword"}

        # The current profile is searchable too: visitors may be looking for them
        needle = keyword.lower()
        matched = [
            m for m in self._team(include_self=True)
            if needle in m.full_name.lower()
            or needle in (m.title or "").lower()
            or needle in (m.department or "").lower()
            or _matches_specialization(m, keyword)
        ]
        limit = _limit(kwargs)
        shown = matched[:limit]
        result: dict[str, Any] = {
            "status": "success",
            "keyword": keyword,
            "total_matches": len(matched),
            "displayed_count": len(shown),
            "members": [_member_summary(m) for m in shown],
        }
        if not matched:
            result["message"] = f'No team members found for "{keyword}"'
        elif len(matched) > limit:
            result["message"] = f"Found {len(matched)} matches, showing the first {limit}"
        return result


class RecommendTeamMemberTool(ProfileTool):
    name = "recommend_team_member"
    description = (
        "Recommend a team member to the visitor; their card is shown. Only "
        "call once you have decided whom to recommend."
    )
    parameters = [
        ToolParameter("profile_id", "integer", "profile_id of the member", required=True),
        ToolParameter("reason", "string", "Short reason for the recommendation", required=True),
    ]

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        if self.profile.organization_id is None:
            return _no_organization()
        member = self.store.get_profile(kwargs.get("profile_id"))
        if member is None:
            return {"status": "error", "message": "Team member not found"}
        if member.organization_id != self.profile.organization_id:
            return {"status": "error", "message": "Member is not in the same organization"}
        return {
            "status": "success",
            "action": "recommend_member",
            "reason": kwargs.get("reason"),
            "member": {
                "id": member.id,
                "slug": member.slug,
                "full_name": member.full_name,
                "title": member.title,
                "department": member.department or "not set",
                "specializations": member.specializations[:3],
                "years_experience": member.stats.get("years_experience", 0),
                "cases_handled": member.stats.get("cases_handled", 0),
                "avatar_url": member.avatar_url,
            },
        }


PROFILE_TOOLS: list[type[ProfileTool]] = [
    GetProfileInfoTool,
    GetTeamCountTool,
    GetTeamMembersTool,
    SearchTeamMembersTool,
    RecommendTeamMemberTool,
]
