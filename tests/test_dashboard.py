"""Tests for DashboardAssistantService: editing a card by chatting."""

from __future__ import annotations

import json

import httpx
import pytest

from cardlink.config import LLMSettings
from cardlink.dashboard import (
    DEFAULT_ERROR,
    UPDATE_FAILED,
    DashboardAssistantService,
    extract_profile_updates,
)
from cardlink.events.bus import Broker
from cardlink.jobs.retry import JobRunner
from cardlink.llm.client import AsyncLLMClient
from cardlink.store import MessageStore


def _answer(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _update(fields: dict) -> str:
    return f"[UPDATE_PROFILE]\n```json\n{json.dumps(fields)}\n```"


class _Upstream:
    """Serves the scripted answers in order; the last one repeats."""

    def __init__(self, *answers):
        self._answers = list(answers)
        self.requests: list[dict] = []

    def __call__(self, request):
        self.requests.append(json.loads(request.content))
        answer = self._answers.pop(0) if len(self._answers) > 1 else self._answers[0]
        if isinstance(answer, int):
            return httpx.Response(answer)
        return httpx.Response(200, json=_answer(answer))


class _FakeSleep:
    async def __call__(self, seconds):
        pass


@pytest.fixture
def store():
    s = MessageStore(":memory:")
    yield s
    s.close()


def _service(store, upstream, publisher=None) -> DashboardAssistantService:
    client = AsyncLLMClient(
        LLMSettings(base_url="http://llm.test/v1", api_key="k"),
        transport=httpx.MockTransport(upstream),
    )
    return DashboardAssistantService(
        store, client, publisher=publisher, runner=JobRunner(sleep=_FakeSleep()),
    )


class TestExtractProfileUpdates:
    def test_keeps_known_fields_and_stats(self):
        answer = _update({
            "phone": "555-123-4567",
            "specializations": ["Tax"],
            "stats": {"years_experience": 15},
            "password": "x",
        })
        assert extract_profile_updates(answer) == {
            "phone": "555-123-4567", "stats": {"years_experience": 15},
        }

    def test_no_block_or_bad_json(self):
        assert extract_profile_updates("[UPDATE_PROFILE] phone please") == {}
        assert extract_profile_updates("[UPDATE_PROFILE]\n```json\n{oops\n```") == {}


class TestHandle:
    async def test_plain_answer(self, store):
        profile = store.add_profile("Jane Doe", "Partner", phone="555-000-0000")
        upstream = _Upstream("Your card looks complete.")
        service = _service(store, upstream)

        reply = await service.handle(profile.id, "How does my card look?")

        assert reply.success and not reply.updated
        assert reply.response == "Your card looks complete."
        system = upstream.requests[0]["messages"][0]["content"]
        assert "Phone: 555-000-0000" in system
        assert "Email: not set" in system
        assert upstream.requests[0]["temperature"] == 0.7

    async def test_update_applied_and_specializations_refreshed(self, store):
        profile = store.add_profile("Jane Doe", "Partner", stats={"cases_handled": 40})
        upstream = _Upstream(
            _update({"bio": "Tax litigator with fifteen years of practice",
                     "stats": {"years_experience": 15}}),
            '["Tax", "Litigation"]',
        )
        service = _service(store, upstream)

        reply = await service.handle(profile.id, "Update my bio")
        await service.close()

        assert reply.updated
        assert reply.updated_fields == ["bio", "stats"]
        assert "- Bio" in reply.response
        saved = store.get_profile(profile.id)
        assert saved.bio == "Tax litigator with fifteen years of practice"
        assert saved.stats == {"cases_handled": 40, "years_experience": 15}
        assert saved.specializations == ["Tax", "Litigation"]
        assert len(upstream.requests) == 2

    async def test_rejected_update(self, store, caplog):
        profile = store.add_profile("Jane Doe", "Partner")
        service = _service(store, _Upstream(_update({"email": "nope"})))

        reply = await service.handle(profile.id, "Change my email")

        assert not reply.success
        assert reply.error == UPDATE_FAILED
        assert store.get_profile(profile.id).email is None
        assert "Failed to apply profile updates" in caplog.text

    async def test_model_error(self, store):
        profile = store.add_profile("Jane Doe", "Partner")
        reply = await _service(store, _Upstream(500)).handle(profile.id, "Hi")
        assert not reply.success
        assert reply.error == DEFAULT_ERROR

    async def test_unknown_profile(self, store):
        with pytest.raises(LookupError):
            await _service(store, _Upstream("x")).handle(999, "Hi")


class TestChannel:
    async def test_send_message_publishes_reply(self, store):
        profile = store.add_profile("Jane Doe", "Partner")
        broker = Broker()
        service = _service(store, _Upstream(_update({"location": "Berlin"}), "[]"), publisher=broker)

        await service.send_message(profile.id, "I moved to Berlin")
        await service.close()

        events = broker.payloads(f"dashboard_assistant_{profile.id}")
        assert [e["type"] for e in events] == ["user-message", "assistant-message"]
        assert events[1]["updated"] is True
        assert events[1]["updated_fields"] == ["location"]
        assert events[1]["profile_data"]["location"] == "Berlin"

    async def test_error_published(self, store):
        profile = store.add_profile("Jane Doe", "Partner")
        broker = Broker()
        service = _service(store, _Upstream(500), publisher=broker)

        await service.send_message(profile.id, "Hi")

        events = broker.payloads(f"dashboard_assistant_{profile.id}")
        assert events[-1] == {"type": "error", "message": DEFAULT_ERROR}

    async def test_welcome(self, store):
        broker = Broker()
        await _service(store, _Upstream("x"), publisher=broker).welcome(7)
        (event,) = broker.payloads("dashboard_assistant_7")
        assert event["type"] == "assistant-message"
        assert event["is_welcome"] is True

    async def test_direct_update(self, store):
        profile = store.add_profile("Jane Doe", "Partner")
        broker = Broker()
        service = _service(store, _Upstream("[]"), publisher=broker)

        assert await service.update_profile(profile.id, {"company": "Acme"})
        assert not await service.update_profile(profile.id, {"phone": "call me"})
        await service.close()

        first, second = broker.payloads(f"dashboard_assistant_{profile.id}")
        assert first["type"] == "profile-updated"
        assert first["updated_fields"] == ["company"]
        assert first["profile_data"]["company"] == "Acme"
        assert second == {"type": "error", "message": UPDATE_FAILED}
