"""
Context assembler: the ordered message sequence handed to synthesis.

Order:
1. conversation history, with the knowledge block inserted right before
   the last user message
2. account memory
3. external research
4. account disambiguation (when candidates are pending)
5. routing metadata (internal, never rendered)
6. specialist perspectives
7. council findings
8. the synthesis task, always last and always role "user"

Every injected block is ephemeral: none of it is ever persisted.
"""

import json
from collections.abc import Sequence
from datetime import datetime

from copilot.core.conversation import last_user_index
from copilot.core.schemas_chat import (
    Account,
    ChatMessage,
    ResearchDecision,
    RoutingDecision,
    SpecialistResult,
)

MAX_ALERTS = 10
MAX_RECOMMENDATIONS = 10
MAX_ASSUMPTIONS = 10
MAX_QUESTIONS = 5

SYNTHESIS_TASK = """SYNTHESIS TASK
Write the reply to my latest message above.
- Use the knowledge base, account memory and research blocks as grounding; cite research sources by title.
- Merge specialist perspectives and council findings into one answer. Do not paste them verbatim.
- Never show the routing metadata.
- If an account disambiguation block is present, ask me which account I mean first."""


def build_account_memory_block(account: Account | None) -> str:
    """Persistent facts about the linked account, or '' when unlinked."""
    if account is None:
        return ""
    updated = account.updated_at.isoformat() if isinstance(account.updated_at, datetime) else "unknown"
    facts = json.dumps(account.metadata_json, indent=2, sort_keys=True, default=str)
    return (
        "[Account Memory]\n"
        f"Account: {account.name}\n"
        f"Last updated: {updated}\n"
        f"Known facts:\n{facts}\n\n"
        "Treat as context. Do not claim facts not present here."
    )


def build_routing_block(routing: RoutingDecision, research: ResearchDecision) -> str:
    """Internal routing metadata; synthesis must not render it."""
    return (
        "[Routing] (internal metadata, do not render verbatim)\n"
        f"agents: {', '.join(routing.agents)}\n"
        f"decision_mode: {routing.decision_mode}\n"
        f"confidence: {routing.confidence:.2f}\n"
        f"reason: {routing.reason}\n"
        f"research: {'yes' if research.needed else 'no'} ({research.reason})"
    )


def build_perspectives_block(results: Sequence[SpecialistResult]) -> str:
    """Free-text output of every specialist that succeeded."""
    ok = [r for r in results if r.ok and r.content.strip()]
    if not ok:
        return ""
    sections = [f"### {r.label}\n{r.content.strip()}" for r in ok]
    return "[Specialist Perspectives]\n\n" + "\n\n".join(sections)


def _take(items: list[str], limit: int) -> list[str]:
    out: list[str] = []
    for item in items:
        if item not in out:
            out.append(item)
        if len(out) >= limit:
            break
    return out


def build_council_block(
    results: Sequence[SpecialistResult], extra_alerts: Sequence[str] = ()
) -> str:
    """
    Aggregate telemetry across specialists.

    Items are prefixed with the agent id. Caps: 10 alerts, 10
    recommendations, 10 assumptions, 5 questions.
    """
    alerts: list[str] = []
    recommendations: list[str] = []
    assumptions: list[str] = []
    questions: list[str] = []

    for r in results:
        if not r.telemetry:
            continue
        alerts.extend(f"[{r.agent_id}] {a}" for a in r.telemetry.alerts)
        recommendations.extend(f"[{r.agent_id}] {a}" for a in r.telemetry.recommendations)
        assumptions.extend(f"[{r.agent_id}] {a}" for a in r.telemetry.assumptions)
        questions.extend(f"[{r.agent_id}] {a}" for a in r.telemetry.questions)
    alerts.extend(extra_alerts)

    sections = [
        ("Alerts", _take(alerts, MAX_ALERTS)),
        ("Recommendations", _take(recommendations, MAX_RECOMMENDATIONS)),
        ("Assumptions", _take(assumptions, MAX_ASSUMPTIONS)),
        ("Suggested questions", _take(questions, MAX_QUESTIONS)),
    ]
    body = [f"{title}:\n" + "\n".join(f"- {i}" for i in items) for title, items in sections if items]
    if not body:
        return ""
    return "[Council Findings]\n" + "\n\n".join(body)


def assemble_context(
    history: Sequence[ChatMessage],
    knowledge_block: str = "",
    account_memory_block: str = "",
    research_block: str = "",
    disambiguation_block: str = "",
    routing_block: str = "",
    perspectives_block: str = "",
    council_block: str = "",
) -> list[ChatMessage]:
    """
    Build the synthesis input. Empty blocks are skipped.

    The returned list always ends with the user-role synthesis task,
    whatever combination of blocks is present.
    """
    messages = list(history)

    if knowledge_block:
        idx = last_user_index(messages)
        block = ChatMessage(role="user", content=knowledge_block)
        if idx == -1:
            messages.append(block)
        else:
            messages.insert(idx, block)

    for block in (account_memory_block, research_block, disambiguation_block):
        if block:
            messages.append(ChatMessage(role="user", content=block))

    if routing_block:
        messages.append(ChatMessage(role="assistant", content=routing_block))

    for block in (perspectives_block, council_block):
        if block:
            messages.append(ChatMessage(role="assistant", content=block))

    messages.append(ChatMessage(role="user", content=SYNTHESIS_TASK))
    return messages
