"""Tests for cache-first external research."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from copilot.core.background import drain_pending
from copilot.core.research import build_research_prompt, fetch_research, format_research_block
from copilot.core.research_cache import make_cache_key
from copilot.core.schemas_chat import Citation, ResearchDecision, ResearchResult
from tests.fakes.fake_store import TENANT_ID, FakeStore

DECISION = ResearchDecision(
    needed=True,
    queries=["UHN overview", "UHN news", "UHN vendors"],
    reason="account name",
)


class TestFetchResearch:
    @pytest.mark.asyncio
    async def test_not_needed(self):
        live = AsyncMock()
        with patch("copilot.core.research.research", live):
            outcome = await fetch_research(TENANT_ID, "chat", ResearchDecision(needed=False), "UHN")

        assert outcome is None
        live.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_miss_calls_live_and_writes_cache(self):
        store = FakeStore()
        live = AsyncMock(
            return_value=ResearchResult(
                ok=True,
                answer="UHN runs 12 linacs.",
                citations=[Citation(title="UHN", url="https://uhn.ca")],
            )
        )
        with store.install(), patch("copilot.core.research.research", live):
            outcome = await fetch_research(TENANT_ID, "icp_fit", DECISION, "UHN")
            await drain_pending()

        assert outcome.answer == "UHN runs 12 linacs."
        assert outcome.from_cache is False
        assert outcome.cache_key == make_cache_key("icp_fit", DECISION.queries, "UHN")
        assert [r["cache_key"] for r in store.research_cache] == [outcome.cache_key]
        assert store.research_cache[0]["citations"] == [{"title": "UHN", "url": "https://uhn.ca"}]

    @pytest.mark.asyncio
    async def test_hit_skips_live_call(self):
        store = FakeStore()
        key = make_cache_key("icp_fit", DECISION.queries, "UHN")
        store.insert_cached_research(TENANT_ID, key, "cached answer", [])
        live = AsyncMock()

        with store.install(), patch("copilot.core.research.research", live):
            outcome = await fetch_research(TENANT_ID, "icp_fit", DECISION, "UHN")

        live.assert_not_awaited()
        assert outcome.from_cache is True
        assert outcome.answer == "cached answer"

    @pytest.mark.asyncio
    async def test_provider_failure_is_none(self):
        store = FakeStore()
        live = AsyncMock(return_value=ResearchResult(ok=False, error="rate limited"))
        with store.install(), patch("copilot.core.research.research", live):
            outcome = await fetch_research(TENANT_ID, "icp_fit", DECISION, "UHN")
            await drain_pending()

        assert outcome is None
        assert store.research_cache == []

    @pytest.mark.asyncio
    async def test_timeout_is_none(self, override_settings):
        override_settings(RESEARCH_TIMEOUT_SECONDS=0.05)

        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        with FakeStore().install(), patch("copilot.core.research.research", side_effect=slow):
            assert await fetch_research(TENANT_ID, "icp_fit", DECISION, "UHN") is None

    @pytest.mark.asyncio
    async def test_cache_write_failure_does_not_fail(self):
        store = FakeStore()
        live = AsyncMock(return_value=ResearchResult(ok=True, answer="fresh"))
        with (
            store.install(),
            patch("copilot.core.research.research", live),
            patch(
                "copilot.core.research_cache.insert_cached_research",
                side_effect=RuntimeError("db down"),
            ),
        ):
            outcome = await fetch_research(TENANT_ID, "icp_fit", DECISION, "UHN")
            await drain_pending()

        assert outcome.answer == "fresh"


class TestResearchPrompt:
    def test_target_and_extra_queries(self):
        system, messages = build_research_prompt("UHN", ["q1", "", "q2"])

        assert system
        assert "UHN" in messages[0].content
        assert "{target}" not in messages[0].content
        assert "- q1\n- q2" in messages[0].content

    def test_format_block(self):
        block = format_research_block(
            "Answer text", [Citation(title="", url="https://a.example"), Citation(title="B", url="")]
        )
        assert block.startswith("[External Research]\nAnswer text")
        assert "- Source: https://a.example" in block
        assert "- B:" in block
