"""Behavioral tests for the turn orchestrator over in-memory stores and a scripted LLM."""

import asyncio
import time
from contextlib import ExitStack
from unittest.mock import AsyncMock, patch

import pytest

from copilot.core.background import drain_pending
from copilot.core.context_assembler import SYNTHESIS_TASK
from copilot.core.schemas_chat import (
    Citation,
    CompletionResult,
    KnowledgeHit,
    ResearchResult,
    TurnFailure,
    TurnResult,
)
from copilot.services.turn_orchestrator import failure_payload, respond, send_message
from tests.fakes.fake_store import TENANT_ID, USER_ID, FakeLLM, FakeStore


def _research(answer="Toronto General runs 12 linacs and uses Eclipse."):
    return AsyncMock(
        return_value=ResearchResult(
            ok=True,
            answer=answer,
            citations=[Citation(title="UHN annual report", url="https://uhn.ca/report")],
        )
    )


def _harness(store, llm, research=None):
    stack = ExitStack()
    stack.enter_context(store.install())
    stack.enter_context(llm.install())
    stack.enter_context(patch("copilot.core.research.research", research or _research()))
    return stack


def _synthesis_messages(llm):
    calls = [c for c in llm.calls if c["component"] == "synthesis"]
    assert len(calls) == 1
    return calls[0]["messages"]


def _seed(store, *pairs, account_id=None):
    thread = store.create_thread(TENANT_ID, USER_ID)
    if account_id:
        store.threads[thread.id] = thread.model_copy(update={"account_id": account_id})
    for role, content in pairs:
        store.append_message(TENANT_ID, thread.id, role, content)
    return store.threads[thread.id]


class TestAccountNameTurn:
    @pytest.mark.asyncio
    async def test_bare_account_name(self):
        store, llm, research = FakeStore(), FakeLLM(), _research()

        with _harness(store, llm, research):
            result = await send_message(TENANT_ID, USER_ID, None, "Toronto General Hospital")
            await drain_pending()

        assert isinstance(result, TurnResult)
        assert result.route == "icp_fit+stakeholder_map"
        assert result.decision_mode == "judgment"
        assert result.confidence >= 0.82
        assert result.used_research is True
        assert len(result.research.queries) >= 3
        assert result.executed_agents == ["icp_fit", "stakeholder_map"]
        assert all(s.ok for s in result.specialist_results)
        assert result.reply == "Here is the synthesized answer."
        research.assert_awaited_once()

        # router and research decisions came from heuristics
        assert "router" not in llm.components()
        assert "research_router" not in llm.components()

        messages = _synthesis_messages(llm)
        contents = [m.content for m in messages]
        assert messages[-1].role == "user"
        assert messages[-1].content == SYNTHESIS_TASK
        assert any(c.startswith("[External Research]") for c in contents)
        assert any(c.startswith("[Specialist Perspectives]") for c in contents)
        assert any("[icp_fit] Data gap: TPS unknown" in c for c in contents)

        stored = store.list_messages(TENANT_ID, result.thread_id)
        assert [m.role for m in stored] == ["user", "assistant"]
        assert stored[-1].id == result.message_id
        assert stored[-1].content == result.reply
        assert store.threads[result.thread_id].title == "Toronto General Hospital evaluation"

    @pytest.mark.asyncio
    async def test_research_cached_for_next_turn(self):
        store, research = FakeStore(), _research()

        with _harness(store, FakeLLM(), research):
            await send_message(TENANT_ID, USER_ID, None, "Toronto General Hospital")
            await drain_pending()
            second = await send_message(TENANT_ID, USER_ID, None, "Toronto General Hospital")
            await drain_pending()

        assert second.used_research is True
        research.assert_awaited_once()


class TestDraftingTurn:
    @pytest.mark.asyncio
    async def test_draft_email_routes_to_outreach(self):
        store, llm, research = FakeStore(), FakeLLM(), _research()
        thread = _seed(store, ("user", "Toronto General Hospital"), ("assistant", "**Tier 2** fit."))

        with _harness(store, llm, research):
            result = await send_message(TENANT_ID, USER_ID, thread.id, "draft a follow-up email")
            await drain_pending()

        assert result.route == "draft_outreach"
        assert "icp_fit" not in result.executed_agents
        assert "stakeholder_map" not in result.executed_agents
        assert result.research.needed is False
        assert result.used_research is False
        research.assert_not_awaited()
        assert "draft_outreach" in llm.components()
        assert "research_router" not in llm.components()
        assert "thread_title" not in llm.components()


class TestSpecialistTimeout:
    @pytest.mark.asyncio
    async def test_slow_specialist_degrades_turn(self, override_settings):
        override_settings(SPECIALIST_TIMEOUT_SECONDS=0.05)

        async def slow_icp(*args, **kwargs):
            await asyncio.sleep(1)
            return CompletionResult(ok=True, text="too late")

        store, llm = FakeStore(), FakeLLM({"icp_fit": slow_icp})

        with _harness(store, llm):
            result = await send_message(TENANT_ID, USER_ID, None, "Toronto General Hospital")
            await drain_pending()

        assert isinstance(result, TurnResult)
        icp, stakeholder = result.specialist_results
        assert icp.agent == "icp_fit" and icp.ok is False
        assert "timed out" in icp.error
        assert stakeholder.ok is True

        contents = [m.content for m in _synthesis_messages(llm)]
        assert any("Agent ICP Fit failed: specialist icp_fit timed out" in c for c in contents)
        assert not any("### ICP Fit" in c for c in contents)
        assert any("### Stakeholder Map" in c for c in contents)
        assert [m.role for m in store.list_messages(TENANT_ID, result.thread_id)] == ["user", "assistant"]


class TestResearchFill:
    @pytest.mark.asyncio
    async def test_llm_research_with_one_query_is_filled(self):
        llm = FakeLLM(
            {
                "research_router": CompletionResult(
                    ok=True,
                    text='{"needs_research":true,"queries":["UHN capital budget 2026"],"reason":"fresh facts"}',
                )
            }
        )
        store, research = FakeStore(), _research("Capital budget rose 8%.")

        with _harness(store, llm, research):
            result = await send_message(
                TENANT_ID, USER_ID, None, "what changed in their capital budget this year?"
            )
            await drain_pending()

        assert result.route == "chat"
        assert result.executed_agents == []
        assert result.research.needed is True
        assert result.research.queries[0] == "UHN capital budget 2026"
        assert len(result.research.queries) >= 3
        assert result.used_research is True

    @pytest.mark.asyncio
    async def test_research_failure_degrades(self):
        store, llm = FakeStore(), FakeLLM()
        failing = AsyncMock(return_value=ResearchResult(ok=False, error="rate limited"))

        with _harness(store, llm, failing):
            result = await send_message(TENANT_ID, USER_ID, None, "Toronto General Hospital")
            await drain_pending()

        assert isinstance(result, TurnResult)
        assert result.research.needed is True
        assert result.used_research is False
        assert not any(c.startswith("[External Research]") for c in (m.content for m in _synthesis_messages(llm)))


class TestContinuity:
    @pytest.mark.asyncio
    async def test_follow_up_keeps_evaluation_stack(self):
        store, llm = FakeStore(), FakeLLM()
        thread = _seed(
            store,
            ("user", "Toronto General Hospital"),
            ("assistant", "**Tier 2** ICP fit. Score 64/100. CRITICAL gap: TPS unknown."),
        )

        with _harness(store, llm):
            result = await send_message(
                TENANT_ID, USER_ID, thread.id, "not sure about their TPS, how can we find out?"
            )
            await drain_pending()

        assert result.route == "icp_fit+stakeholder_map"
        assert "Continuity" in result.reason
        assert result.entity_resolution.outcome == "skipped"
        assert "router" not in llm.components()


class TestContextBlocks:
    @pytest.mark.asyncio
    async def test_account_memory_and_knowledge(self):
        store, llm = FakeStore(), FakeLLM()
        account = store.add_account("Toronto General Hospital", linacs=12, tps="Eclipse")
        store.knowledge = [
            KnowledgeHit(id="k1", title="Playbook", content="how do we win academic centres? run a pilot"),
        ]
        thread = _seed(store, ("user", "how do we win academic centres?"), account_id=account.id)

        with _harness(store, llm):
            result = await respond(TENANT_ID, thread.id)

        assert result.used_knowledge is True
        messages = _synthesis_messages(llm)
        contents = [m.content for m in messages]
        knowledge_at = next(i for i, c in enumerate(contents) if c.startswith("[Knowledge Base]"))
        assert contents[knowledge_at + 1] == "how do we win academic centres?"
        memory = next(c for c in contents if c.startswith("[Account Memory]"))
        assert '"linacs": 12' in memory

    @pytest.mark.asyncio
    async def test_disambiguation_offered(self):
        store, llm = FakeStore(), FakeLLM()
        store.add_account("Toronto General Hospital", score=0.8)
        store.add_account("Toronto Western Hospital", score=0.75)

        with _harness(store, llm):
            result = await send_message(TENANT_ID, USER_ID, None, "Toronto hospital")
            await drain_pending()

        assert result.entity_resolution.outcome == "ambiguous"
        block = next(
            m.content for m in _synthesis_messages(llm) if m.content.startswith("[Account Disambiguation]")
        )
        assert "1. Toronto General Hospital" in block
        assert "2. Toronto Western Hospital" in block


class TestFailures:
    @pytest.mark.asyncio
    async def test_synthesis_failure_persists_nothing(self):
        store = FakeStore()
        llm = FakeLLM({"synthesis": CompletionResult(ok=False, error="overloaded")})

        with _harness(store, llm):
            result = await send_message(TENANT_ID, USER_ID, None, "Toronto General Hospital")
            await drain_pending()

        assert isinstance(result, TurnFailure)
        assert result.kind == "synthesis_failed"
        assert [m.role for m in store.list_messages(TENANT_ID, result.thread_id)] == ["user"]
        assert failure_payload(result)["error"] == "I hit an issue, try again"

    @pytest.mark.asyncio
    async def test_empty_reply_persists_nothing(self):
        store = FakeStore()
        llm = FakeLLM({"synthesis": CompletionResult(ok=True, text="   ")})

        with _harness(store, llm):
            result = await send_message(TENANT_ID, USER_ID, None, "Toronto General Hospital")
            await drain_pending()

        assert result.kind == "empty_response"
        assert [m.role for m in store.list_messages(TENANT_ID, result.thread_id)] == ["user"]

    @pytest.mark.asyncio
    async def test_turn_timeout(self, override_settings):
        override_settings(TURN_TIMEOUT_SECONDS=0.1)

        async def slow(*args, **kwargs):
            await asyncio.sleep(1)
            return CompletionResult(ok=True, text="late")

        store = FakeStore()
        thread = _seed(store, ("user", "what's a good discovery call structure?"))

        with _harness(store, FakeLLM({"synthesis": slow})):
            result = await respond(TENANT_ID, thread.id)

        assert result.kind == "timeout"
        assert [m.role for m in store.list_messages(TENANT_ID, thread.id)] == ["user"]

    @pytest.mark.asyncio
    async def test_slow_touch_does_not_fail_saved_turn(self, override_settings):
        override_settings(TURN_TIMEOUT_SECONDS=0.5)
        store = FakeStore()
        thread = _seed(store, ("user", "what's a good discovery call structure?"))
        touched = []

        def slow_touch(tenant_id, thread_id):
            time.sleep(1)
            touched.append(thread_id)

        with _harness(store, FakeLLM()), patch(
            "copilot.services.turn_orchestrator.touch_thread", slow_touch
        ):
            result = await respond(TENANT_ID, thread.id)
            await drain_pending()

        assert isinstance(result, TurnResult)
        assert [m.role for m in store.list_messages(TENANT_ID, thread.id)] == ["user", "assistant"]
        assert touched == [thread.id]

    @pytest.mark.asyncio
    async def test_slow_persist_is_not_reported_as_timeout(self, override_settings):
        override_settings(TURN_TIMEOUT_SECONDS=0.5)
        store = FakeStore()
        thread = _seed(store, ("user", "what's a good discovery call structure?"))

        def slow_append(tenant_id, thread_id, role, content):
            time.sleep(1)
            return store.append_message(tenant_id, thread_id, role, content)

        with _harness(store, FakeLLM()), patch(
            "copilot.services.turn_orchestrator.append_message", slow_append
        ):
            result = await respond(TENANT_ID, thread.id)

        assert isinstance(result, TurnResult)
        assert result.message_id == store.list_messages(TENANT_ID, thread.id)[-1].id

    @pytest.mark.asyncio
    async def test_persist_failure(self):
        store = FakeStore()
        thread = _seed(store, ("user", "what's a good discovery call structure?"))

        with _harness(store, FakeLLM()), patch(
            "copilot.services.turn_orchestrator.append_message", side_effect=RuntimeError("db down")
        ):
            result = await respond(TENANT_ID, thread.id)

        assert result.kind == "persist_failed"

    @pytest.mark.asyncio
    async def test_unknown_thread(self):
        store = FakeStore()
        with _harness(store, FakeLLM()):
            via_respond = await respond(TENANT_ID, "missing")
            via_send = await send_message(TENANT_ID, USER_ID, "missing", "hello")

        assert via_respond.kind == "not_found"
        assert via_send.kind == "not_found"
        assert store.messages == []

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_read_thread(self):
        store = FakeStore()
        thread = _seed(store, ("user", "Toronto General Hospital"))
        with _harness(store, FakeLLM()):
            result = await respond("tenant-2", thread.id)

        assert result.kind == "not_found"

    @pytest.mark.asyncio
    async def test_blank_message_rejected(self):
        with pytest.raises(ValueError):
            await send_message(TENANT_ID, USER_ID, None, "   ")

    @pytest.mark.asyncio
    async def test_auto_title_failure_does_not_fail_turn(self):
        store, llm = FakeStore(), FakeLLM()

        with _harness(store, llm), patch(
            "copilot.agents.thread_title.set_thread_title", side_effect=RuntimeError("db down")
        ):
            result = await send_message(TENANT_ID, USER_ID, None, "Toronto General Hospital")
            await drain_pending()

        assert isinstance(result, TurnResult)
        assert store.threads[result.thread_id].title is None
