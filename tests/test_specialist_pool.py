"""Tests for the bounded specialist pool."""

import asyncio
from unittest.mock import patch

import pytest

from copilot.agents.specialist_pool import failure_alerts, run_specialists
from copilot.agents.specialists import registry
from copilot.agents.specialists.base import SpecialistContext
from copilot.agents.specialists.registry import SpecialistSpec
from copilot.core.schemas_chat import ChatMessage, SpecialistOutput


def _ctx():
    return SpecialistContext(
        tenant_id="tenant-1", messages=[ChatMessage(role="user", content="Toronto General Hospital")]
    )


def _ok(text, delay=0.0):
    async def run(ctx):
        await asyncio.sleep(delay)
        return SpecialistOutput(content=text)

    return run


def _boom(message):
    async def run(ctx):
        raise RuntimeError(message)

    return run


def _registry(**runners):
    return {
        agent_id: SpecialistSpec(agent_id, agent_id.replace("_", " ").title(), run)
        for agent_id, run in runners.items()
    }


class TestRunSpecialists:
    @pytest.mark.asyncio
    async def test_results_in_input_order(self):
        fake = _registry(icp_fit=_ok("icp", delay=0.05), stakeholder_map=_ok("map"))
        with patch.dict(registry.SPECIALISTS, fake, clear=True):
            results = await run_specialists(["icp_fit", "stakeholder_map"], _ctx())

        assert [r.agent_id for r in results] == ["icp_fit", "stakeholder_map"]
        assert [r.content for r in results] == ["icp", "map"]
        assert all(r.ok for r in results)

    @pytest.mark.asyncio
    async def test_timeout_is_isolated(self):
        fake = _registry(icp_fit=_ok("never", delay=1.0), stakeholder_map=_ok("map"))
        with patch.dict(registry.SPECIALISTS, fake, clear=True):
            results = await run_specialists(["icp_fit", "stakeholder_map"], _ctx(), timeout=0.05)

        icp, stakeholder = results
        assert icp.status == "rejected"
        assert "specialist icp_fit timed out" in icp.error
        assert stakeholder.status == "fulfilled"
        assert stakeholder.content == "map"

    @pytest.mark.asyncio
    async def test_error_is_isolated(self):
        fake = _registry(icp_fit=_boom("provider down"), sales_strategy=_ok("plan"))
        with patch.dict(registry.SPECIALISTS, fake, clear=True):
            results = await run_specialists(["icp_fit", "sales_strategy"], _ctx())

        assert results[0].status == "rejected"
        assert results[0].error == "provider down"
        assert results[1].ok

    @pytest.mark.asyncio
    async def test_concurrency_cap(self):
        active = 0
        peak = 0

        async def tracked(ctx):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return SpecialistOutput(content="ok")

        fake = _registry(icp_fit=tracked, stakeholder_map=tracked, sales_strategy=tracked, draft_outreach=tracked)
        with patch.dict(registry.SPECIALISTS, fake, clear=True):
            results = await run_specialists(list(fake), _ctx(), concurrency=2)

        assert len(results) == 4
        assert peak == 2

    @pytest.mark.asyncio
    async def test_chat_skipped_and_empty(self):
        assert await run_specialists(["chat"], _ctx()) == []
        assert await run_specialists([], _ctx()) == []

    @pytest.mark.asyncio
    async def test_unknown_specialist_rejected(self):
        with patch.dict(registry.SPECIALISTS, {}, clear=True):
            results = await run_specialists(["mystery"], _ctx())

        assert results[0].status == "rejected"
        assert results[0].error == "unknown specialist: mystery"


class TestFailureAlerts:
    @pytest.mark.asyncio
    async def test_alerts_name_label_and_error(self):
        fake = _registry(icp_fit=_boom("provider down"), stakeholder_map=_ok("map"))
        with patch.dict(registry.SPECIALISTS, fake, clear=True):
            results = await run_specialists(["icp_fit", "stakeholder_map"], _ctx())

        assert failure_alerts(results) == ["Agent Icp Fit failed: provider down"]

    def test_default_registry_labels(self):
        assert registry.label_for("icp_fit") == "ICP Fit"
        assert registry.label_for("stakeholder_map") == "Stakeholder Map"
        assert registry.label_for("nope") == "nope"
        assert set(registry.SPECIALISTS) == {
            "icp_fit",
            "stakeholder_map",
            "sales_strategy",
            "draft_outreach",
        }
