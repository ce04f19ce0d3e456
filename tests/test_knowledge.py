"""Tests for knowledge retrieval and its context block."""

import time
from unittest.mock import patch

import pytest

from copilot.core.knowledge import format_knowledge_block, retrieve_knowledge
from copilot.core.schemas_chat import KnowledgeHit
from tests.fakes.fake_store import TENANT_ID, FakeStore


class TestRetrieveKnowledge:
    @pytest.mark.asyncio
    async def test_hits_from_store(self):
        store = FakeStore()
        store.knowledge = [
            KnowledgeHit(id="1", title="ICP framework", content="Tier 1 needs 3+ linacs"),
            KnowledgeHit(id="2", title="Pricing", content="List prices"),
        ]
        with store.install():
            hits = await retrieve_knowledge(TENANT_ID, "icp")

        assert [h.id for h in hits] == ["1"]

    @pytest.mark.asyncio
    async def test_blank_query_skips_lookup(self):
        with patch("copilot.core.knowledge.search_knowledge") as search:
            assert await retrieve_knowledge(TENANT_ID, "   ") == []
        search.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_is_empty(self):
        with patch("copilot.core.knowledge.search_knowledge", side_effect=RuntimeError("db down")):
            assert await retrieve_knowledge(TENANT_ID, "icp") == []

    @pytest.mark.asyncio
    async def test_timeout_is_empty(self):
        def slow(*args):
            time.sleep(0.3)
            return [KnowledgeHit(content="late")]

        with patch("copilot.core.knowledge.search_knowledge", side_effect=slow):
            assert await retrieve_knowledge(TENANT_ID, "icp", timeout=0.05) == []

    @pytest.mark.asyncio
    async def test_limit_applied(self):
        hits = [KnowledgeHit(content=f"c{i}") for i in range(10)]
        with patch("copilot.core.knowledge.search_knowledge", return_value=hits):
            assert len(await retrieve_knowledge(TENANT_ID, "c", limit=3)) == 3


class TestFormatKnowledgeBlock:
    def test_empty(self):
        assert format_knowledge_block([]) == ""

    def test_titles_and_truncation(self):
        block = format_knowledge_block(
            [KnowledgeHit(title=None, content="x" * 2000), KnowledgeHit(title="ICP", content="Tier 1")]
        )
        assert block.startswith("[Knowledge Base]\n## Untitled\n")
        assert "…(truncated)" in block
        assert block.endswith("## ICP\nTier 1")
