"""Prompt builders for the card assistants and the specialization extractor."""

from __future__ import annotations

import re

from cardlink.store import Profile

BIO_LIMIT = 500

_FENCE_RE = re.compile(r"```(?:json)?\n?")


def strip_code_fences(answer: str) -> str:
    """Remove Markdown code fences around a JSON answer."""
    return _FENCE_RE.sub("", answer.strip())


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)] + "..."


def visitor_system_prompt(profile: Profile) -> str:
    """System prompt for the assistant answering a card visitor."""
    specializations = ", ".join(profile.specializations) or "not specified"
    return (
        f"You are the AI assistant of {profile.full_name}. Your job is to answer "
        "visitors' questions about their professional services.\n"
        "\n"
        "Professional information:\n"
        f"- Name: {profile.full_name}\n"
        f"- Title: {profile.title}\n"
        f"- Company: {profile.company or ''}\n"
        f"- Specializations: {specializations}\n"
        f"- Bio: {profile.bio or ''}\n"
        "\n"
        "Answer in a professional and friendly way. If a question is outside "
        "what you know, say so politely and suggest contacting the professional "
        "directly. Use the available tools to look up profile and team details. "
        "Keep answers concise and focused."
    )


SPECIALIZATION_SYSTEM_PROMPT = (
    "You are an expert at analysing professional profiles and extracting their "
    "core business areas from text."
)


def profile_context(profile: Profile) -> str:
    """Plain-text summary of the profile fields the extractor looks at."""
    parts = []
    if profile.title:
        parts.append(f"Title: {profile.title}")
    if profile.company:
        parts.append(f"Company: {profile.company}")
    if profile.department:
        parts.append(f"Department: {profile.department}")
    if profile.bio:
        parts.append(f"Bio: {truncate(profile.bio, BIO_LIMIT)}")
    return "\n".join(parts)


def specialization_prompt(context: str) -> str:
    return (
        "Analyse the following professional's information and extract the 3-5 "
        "most central specialization keywords.\n"
        "\n"
        "Requirements:\n"
        "1. Keywords are short (one to three words)\n"
        "2. Keywords are concrete and searchable\n"
        "3. Keywords reflect the core business\n"
        '4. Return only a JSON array of keywords, e.g. ["keyword 1", "keyword 2", "keyword 3"]\n'
        "5. Do not return any other text\n"
        "\n"
        "Professional information:\n"
        f"{context}\n"
    )


# ---------------------------------------------------------------------------
# Onboarding
# ---------------------------------------------------------------------------

EXTRACTION_SYSTEM_PROMPT = (
    "You are a data extraction assistant. Extract structured data from user messages."
)


def extraction_prompt(message: str, fields: list[str] | tuple[str, ...]) -> str:
    """Ask for *fields* out of one onboarding answer, as a JSON object."""
    wanted = "\n".join(f"- {name}" for name in fields)
    return (
        f'Based on the user\'s message: "{message}"\n'
        "Extract the following information and return as JSON:\n"
        f"{wanted}\n"
        "\n"
        "Return only valid JSON, no other text.\n"
        'Example format: {"full_name": "Jane Doe", "title": "Senior Counsel"}\n'
    )


# ---------------------------------------------------------------------------
# Dashboard assistant
# ---------------------------------------------------------------------------

UPDATE_MARKER = "[UPDATE_PROFILE]"


def dashboard_system_prompt(profile: Profile) -> str:
    """System prompt for the owner's assistant that edits the card."""

    def shown(value) -> str:
        return value or "not set"

    specializations = ", ".join(profile.specializations) or "not set"
    return (
        "You are the AI assistant for the user's professional card. The user can "
        "ask you in conversation to update the card.\n"
        "\n"
        "Current card:\n"
        f"- Name: {profile.full_name}\n"
        f"- Title: {profile.title}\n"
        f"- Company: {shown(profile.company)}\n"
        f"- Phone: {shown(profile.phone)}\n"
        f"- Email: {shown(profile.email)}\n"
        f"- Location: {shown(profile.location)}\n"
        f"- Bio: {shown(profile.bio)}\n"
        f"- Specializations: {specializations}\n"
        "\n"
        "Fields you can update:\n"
        "1. full_name - name (text)\n"
        "2. title - job title (text)\n"
        "3. company - company or firm (text)\n"
        "4. phone - phone number (text)\n"
        "5. email - email address\n"
        "6. location - address or city (text)\n"
        "7. bio - biography (long text)\n"
        "8. stats.years_experience - years in practice (number)\n"
        "9. stats.cases_handled - successful cases (number)\n"
        "10. stats.clients_served - clients served (number)\n"
        "11. stats.success_rate - success rate in percent (number)\n"
        "\n"
        "## Workflow\n"
        "1. Understand what the user wants to change\n"
        "2. Extract the fields and new values from the message\n"
        f"3. To update, include the {UPDATE_MARKER} marker in your reply, followed "
        "by the fields as JSON:\n"
        "   ```json\n"
        '   {"full_name": "New name", "title": "New title"}\n'
        "   ```\n"
        f"4. If the user is only asking or chatting, reply normally without {UPDATE_MARKER}\n"
        "\n"
        "## Examples\n"
        'User: "Change my phone to 555-123-4567"\n'
        f'You: "{UPDATE_MARKER}\\n```json\\n{{\\"phone\\": \\"555-123-4567\\"}}\\n```"\n'
        "\n"
        'User: "How does my card look?"\n'
        'You: "Your card is nearly complete. Your bio is still short; would you like '
        'to add more about your background?"\n'
        "\n"
        "Stay friendly and professional and help the user complete their card."
    )
