"""Tests for ExtractSpecializationsJob."""

from __future__ import annotations

import json

import httpx
import pytest

from cardlink.config import LLMSettings
from cardlink.jobs.specializations import ExtractSpecializationsJob, parse_specializations
from cardlink.llm.client import AsyncLLMClient
from cardlink.store import MessageStore


def _answer(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class _Upstream:
    def __init__(self, content: str):
        self._content = content
        self.requests: list[dict] = []

    def __call__(self, request):
        self.requests.append(json.loads(request.content))
        return httpx.Response(200, json=_answer(self._content))


@pytest.fixture
def store():
    s = MessageStore(":memory:")
    yield s
    s.close()


def _job(store, profile_id, upstream) -> ExtractSpecializationsJob:
    settings = LLMSettings(base_url="http://llm.test/v1", api_key="k")
    client = AsyncLLMClient(settings, transport=httpx.MockTransport(upstream))
    return ExtractSpecializationsJob(profile_id, store, client)


def _rich_profile(store):
    return store.add_profile(
        "Jane Doe", "Senior Partner", company="Acme Law", department="Corporate",
        bio="Advises technology companies on contracts and cross-border mergers.",
    )


class TestParseSpecializations:
    def test_plain_array(self):
        assert parse_specializations('["Contracts", "M&A"]') == ["Contracts", "M&A"]

    def test_markdown_fence(self):
        answer = '```json\n["Contracts", "M&A", "Tax"]\n```'
        assert parse_specializations(answer) == ["Contracts", "M&A", "Tax"]

    def test_unique_non_blank_first_five(self):
        answer = '["a", " a ", "", "b", null, "c", "d", "e", "f"]'
        assert parse_specializations(answer) == ["a", "b", "c", "d", "e"]

    def test_non_array(self):
        assert parse_specializations('{"keywords": ["a"]}') == []

    def test_not_json(self):
        with pytest.raises(ValueError):
            parse_specializations("Contracts, M&A")


class TestExtractSpecializationsJob:
    async def test_updates_profile(self, store):
        profile = _rich_profile(store)
        upstream = _Upstream('```json\n["Contracts", "Mergers", "Technology"]\n```')

        result = await _job(store, profile.id, upstream).run()

        assert result == ["Contracts", "Mergers", "Technology"]
        assert store.get_profile(profile.id).specializations == result
        body = upstream.requests[0]
        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 200
        assert "Senior Partner" in body["messages"][-1]["content"]

    async def test_skips_thin_profile(self, store):
        profile = store.add_profile("Al", "CEO")
        upstream = _Upstream('["x", "y"]')

        assert await _job(store, profile.id, upstream).run() is None
        assert upstream.requests == []

    async def test_too_few_keywords_ignored(self, store):
        profile = _rich_profile(store)
        result = await _job(store, profile.id, _Upstream('["Contracts"]')).run()
        assert result is None
        assert store.get_profile(profile.id).specializations == []

    async def test_unparseable_answer_logged(self, store, caplog):
        profile = _rich_profile(store)
        result = await _job(store, profile.id, _Upstream("Contracts and mergers")).run()
        assert result is None
        assert "Failed to parse specializations" in caplog.text

    async def test_bio_truncated(self, store):
        profile = store.add_profile("Jane Doe", "Partner", bio="x" * 2000)
        upstream = _Upstream('["a", "b"]')

        await _job(store, profile.id, upstream).run()

        prompt = upstream.requests[0]["messages"][-1]["content"]
        assert "x" * 497 + "..." in prompt
        assert "x" * 501 not in prompt

    async def test_missing_profile(self, store):
        with pytest.raises(LookupError):
            await _job(store, 12345, _Upstream("[]")).run()
