"""Tests for synthesis context assembly."""

import itertools
from datetime import UTC, datetime

from copilot.core.context_assembler import (
    MAX_ALERTS,
    MAX_QUESTIONS,
    SYNTHESIS_TASK,
    assemble_context,
    build_account_memory_block,
    build_council_block,
    build_perspectives_block,
    build_routing_block,
)
from copilot.core.schemas_chat import (
    Account,
    ChatMessage,
    ResearchDecision,
    RoutingDecision,
    SpecialistResult,
    Telemetry,
)

HISTORY = [
    ChatMessage(role="user", content="Toronto General Hospital"),
    ChatMessage(role="assistant", content="Tier 2."),
    ChatMessage(role="user", content="what about their TPS?"),
]

BLOCK_NAMES = [
    "knowledge_block",
    "account_memory_block",
    "research_block",
    "disambiguation_block",
    "routing_block",
    "perspectives_block",
    "council_block",
]


def _result(agent_id, ok=True, content="", telemetry=None):
    return SpecialistResult(
        agent_id=agent_id,
        label=agent_id.upper(),
        status="fulfilled" if ok else "rejected",
        content=content,
        telemetry=telemetry,
        error=None if ok else "failed",
    )


class TestAssembleContext:
    def test_every_block_combination_ends_with_user_task(self):
        for present in itertools.product([False, True], repeat=len(BLOCK_NAMES)):
            blocks = {name: f"[{name}]" for name, on in zip(BLOCK_NAMES, present) if on}
            for history in (HISTORY, []):
                messages = assemble_context(history, **blocks)

                assert messages[-1].role == "user"
                assert messages[-1].content == SYNTHESIS_TASK
                assert len(messages) == len(history) + len(blocks) + 1

    def test_knowledge_inserted_before_last_user_message(self):
        messages = assemble_context(HISTORY, knowledge_block="[Knowledge Base]\nfacts")

        assert messages[2].content == "[Knowledge Base]\nfacts"
        assert messages[2].role == "user"
        assert messages[3].content == "what about their TPS?"

    def test_knowledge_appended_without_user_message(self):
        history = [ChatMessage(role="assistant", content="Hi")]
        messages = assemble_context(history, knowledge_block="[Knowledge Base]")
        assert [m.content for m in messages] == ["Hi", "[Knowledge Base]", SYNTHESIS_TASK]

    def test_block_order_and_roles(self):
        messages = assemble_context(
            HISTORY,
            account_memory_block="A",
            research_block="R",
            disambiguation_block="D",
            routing_block="RT",
            perspectives_block="P",
            council_block="C",
        )
        tail = [(m.role, m.content) for m in messages[len(HISTORY):]]
        assert tail == [
            ("user", "A"),
            ("user", "R"),
            ("user", "D"),
            ("assistant", "RT"),
            ("assistant", "P"),
            ("assistant", "C"),
            ("user", SYNTHESIS_TASK),
        ]

    def test_history_not_mutated(self):
        history = list(HISTORY)
        assemble_context(history, knowledge_block="K")
        assert history == HISTORY


class TestBlocks:
    def test_account_memory(self):
        account = Account(
            id="a1",
            tenant_id="tenant-1",
            name="UHN",
            normalized_name="uhn",
            metadata_json={"linacs": 12},
            updated_at=datetime(2026, 3, 1, tzinfo=UTC),
        )
        block = build_account_memory_block(account)

        assert block.startswith("[Account Memory]")
        assert '"linacs": 12' in block
        assert "2026-03-01" in block
        assert block.endswith("Do not claim facts not present here.")
        assert build_account_memory_block(None) == ""

    def test_routing_block(self):
        block = build_routing_block(
            RoutingDecision(agents=["icp_fit", "stakeholder_map"], decision_mode="judgment", confidence=0.9),
            ResearchDecision(needed=True, queries=["a", "b", "c"], reason="account name"),
        )
        assert "do not render verbatim" in block
        assert "agents: icp_fit, stakeholder_map" in block
        assert "confidence: 0.90" in block
        assert "research: yes (account name)" in block

    def test_perspectives_skip_failures(self):
        block = build_perspectives_block(
            [_result("icp_fit", content="Tier 1"), _result("stakeholder_map", ok=False)]
        )
        assert "### ICP_FIT\nTier 1" in block
        assert "STAKEHOLDER_MAP" not in block
        assert build_perspectives_block([_result("icp_fit", ok=False)]) == ""

    def test_council_prefixes_and_caps(self):
        results = [
            _result(
                "icp_fit",
                telemetry=Telemetry(
                    alerts=[f"gap {i}" for i in range(8)],
                    questions=[f"q {i}" for i in range(8)],
                ),
            ),
            _result("sales_strategy", telemetry=Telemetry(alerts=[f"risk {i}" for i in range(8)])),
        ]

        block = build_council_block(results, ["Agent Stakeholder Map failed: timeout"])
        alert_lines = block.split("Alerts:\n")[1].split("\n\n")[0].splitlines()
        question_lines = block.split("Suggested questions:\n")[1].splitlines()

        assert block.startswith("[Council Findings]")
        assert len(alert_lines) == MAX_ALERTS
        assert alert_lines[0] == "- [icp_fit] gap 0"
        assert len(question_lines) == MAX_QUESTIONS

    def test_council_extra_alerts_only(self):
        block = build_council_block([], ["Agent ICP Fit failed: timeout"])
        assert "- Agent ICP Fit failed: timeout" in block

    def test_council_empty(self):
        assert build_council_block([_result("icp_fit", content="x")]) == ""
