"""
Decision router: which specialists run this turn, and whether to research.

Evaluated fresh every turn from message history alone. Routing walks the
deterministic rule cascade in ``routing_rules`` and only falls back to an
LLM when no rule fires; every decision then passes through
``enforce_decision_mode`` so fan-out stays inside the mode's bounds.
"""

import asyncio
import json
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from copilot.agents.research_router import decide_research
from copilot.agents.routing_rules import RouteInput, match_rules
from copilot.core.config import get_settings
from copilot.core.conversation import last_user_text, render_transcript
from copilot.core.llm import clamp01, complete, parse_llm_json
from copilot.core.logging import get_logger
from copilot.core.prompts import load_prompt
from copilot.core.schemas_chat import ChatMessage, RoutingDecision, TurnDecision
from copilot.core.timeouts import with_timeout

logger = get_logger(__name__)

AGENT_IDS = ("icp_fit", "sales_strategy", "stakeholder_map", "draft_outreach", "chat")

AGENT_ALIASES = {
    "icpfit": "icp_fit",
    "icp": "icp_fit",
    "salesstrategy": "sales_strategy",
    "strategy": "sales_strategy",
    "stakeholdermap": "stakeholder_map",
    "stakeholdermapping": "stakeholder_map",
    "stakeholders": "stakeholder_map",
    "draftoutreach": "draft_outreach",
    "outreach": "draft_outreach",
    "general": "chat",
}

DECISION_MODES = ("rules", "judgment", "council", "escalation")

ROUTER_TRANSCRIPT_MESSAGES = 8


def normalize_agent_id(raw: Any) -> str | None:
    """Map a raw agent id (any casing, camelCase, dashes) onto the allow-list."""
    if not isinstance(raw, str):
        return None
    s = raw.strip()
    if not s:
        return None

    snake = "".join(f"_{ch.lower()}" if ch.isupper() else ch for ch in s).lstrip("_")
    snake = snake.replace("-", "_").replace(" ", "_").lower()
    if snake in AGENT_IDS:
        return snake

    return AGENT_ALIASES.get(snake.replace("_", ""))


def normalize_agent_ids(raw: Any) -> list[str]:
    """Normalize, filter to the allow-list and dedupe, keeping order."""
    if not isinstance(raw, list):
        return []
    out: list[str] = []
    for item in raw:
        agent = normalize_agent_id(item)
        if agent and agent not in out:
            out.append(agent)
    return out


def mode_bounds(mode: str, council_max: int = 3, escalation_max: int = 4) -> tuple[int, int]:
    """(min, max) specialist count for a decision mode."""
    return {
        "rules": (1, 1),
        "judgment": (2, 2),
        "council": (2, max(2, council_max)),
        "escalation": (2, max(2, escalation_max)),
    }.get(mode, (1, 1))


def enforce_decision_mode(
    decision: RoutingDecision,
    council_max: int | None = None,
    escalation_max: int | None = None,
) -> RoutingDecision:
    """
    Bound the specialist count by decision mode.

    Only truncates or downgrades; never adds specialists. A route with no
    specialists left becomes chat-only under "rules". Idempotent.

    Args:
        decision: Routing decision from any layer
        council_max: Upper bound for council (defaults to COUNCIL_MAX_AGENTS)
        escalation_max: Upper bound for escalation (defaults to ESCALATION_MAX_AGENTS)

    Returns:
        A new, bounded RoutingDecision
    """
    settings = get_settings()
    council_max = council_max or settings.COUNCIL_MAX_AGENTS
    escalation_max = escalation_max or settings.ESCALATION_MAX_AGENTS

    specialists = [a for a in normalize_agent_ids(decision.agents) if a != "chat"]
    if not specialists:
        return decision.model_copy(update={"agents": ["chat"], "decision_mode": "rules"})

    mode = decision.decision_mode
    notes: list[str] = []

    low, high = mode_bounds(mode, council_max, escalation_max)
    if len(specialists) < low:
        notes.append(f"{mode}->rules: {len(specialists)} specialist(s) proposed")
        mode = "rules"
        low, high = mode_bounds(mode)

    if len(specialists) > high:
        notes.append(f"truncated {len(specialists)}->{high} for {mode}")
        specialists = specialists[:high]

    reason = decision.reason
    if notes:
        reason = f"{reason} (enforced: {'; '.join(notes)})".strip()

    return decision.model_copy(
        update={"agents": specialists, "decision_mode": mode, "reason": reason}
    )


# ============================================================================
# LLM fallback
# ============================================================================


class RouterPayload(BaseModel):
    """Loosely-typed router JSON, coerced to safe values."""
    agents_to_call: list[Any] = Field(default_factory=list)
    decision_mode: str = "rules"
    priority_order: list[Any] = Field(default_factory=list)
    confidence: float = 0.0
    reason: str = ""

    @field_validator("agents_to_call", "priority_order", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> list[Any]:
        return v if isinstance(v, list) else []

    @field_validator("decision_mode", mode="before")
    @classmethod
    def coerce_mode(cls, v: Any) -> str:
        mode = str(v or "").strip().lower()
        return mode if mode in DECISION_MODES else "rules"

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> float:
        return clamp01(v)

    @field_validator("reason", mode="before")
    @classmethod
    def coerce_reason(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""


def _router_messages(
    messages: Sequence[ChatMessage],
    decision_context: dict[str, Any] | None,
    entity_context: dict[str, Any] | None,
) -> list[ChatMessage]:
    transcript = render_transcript(messages, limit=ROUTER_TRANSCRIPT_MESSAGES)
    body = (
        f"RECENT TRANSCRIPT:\n{transcript}\n\n"
        f"LATEST USER MESSAGE:\n{last_user_text(messages)}\n\n"
        f"DECISION CONTEXT:\n{json.dumps(decision_context or {}, default=str)}\n\n"
        f"ENTITY CONTEXT:\n{json.dumps(entity_context or {}, default=str)}"
    )
    return [ChatMessage(role="user", content=body)]


def route_from_payload(payload: RouterPayload, min_confidence: float) -> RoutingDecision:
    """Turn a validated router payload into a routing decision (pre-enforcement)."""
    ordered = normalize_agent_ids(payload.priority_order) or normalize_agent_ids(
        payload.agents_to_call
    )
    reason = payload.reason or "LLM router"

    if not ordered:
        return RoutingDecision(
            agents=["chat"],
            decision_mode="rules",
            confidence=payload.confidence,
            reason=f"{reason} (no valid agents returned)",
            layer="llm",
        )

    specialists = [a for a in ordered if a != "chat"]
    if specialists and payload.confidence < min_confidence:
        return RoutingDecision(
            agents=["chat"],
            decision_mode="rules",
            confidence=payload.confidence,
            reason=f"{reason} (downgraded: confidence < {min_confidence:.2f})",
            layer="llm",
        )

    return RoutingDecision(
        agents=ordered,
        decision_mode=payload.decision_mode,
        confidence=payload.confidence,
        reason=reason,
        layer="llm",
    )


def router_failure(reason: str) -> RoutingDecision:
    """Safe default route when the LLM router cannot be used."""
    return RoutingDecision(
        agents=["chat"],
        decision_mode="rules",
        confidence=0.0,
        reason=f"LLM router failed: {reason}",
        layer="fallback",
    )


async def llm_route(
    messages: Sequence[ChatMessage],
    decision_context: dict[str, Any] | None = None,
    entity_context: dict[str, Any] | None = None,
) -> RoutingDecision:
    """
    Ask the router model for a route. Never raises.

    Timeouts, provider errors and malformed JSON all produce the chat-only
    fallback with the failure named in ``reason``.
    """
    settings = get_settings()

    try:
        result = await with_timeout(
            complete(
                load_prompt("router.md"),
                _router_messages(messages, decision_context, entity_context),
                max_tokens=300,
                wants_json=True,
                model=settings.ROUTER_MODEL,
                temperature=0,
            ),
            settings.ROUTER_TIMEOUT_SECONDS,
            "router",
        )
    except Exception as e:
        logger.warning(f"Router call failed: {e}")
        return router_failure(str(e))

    if not result.ok:
        logger.warning(f"Router call failed: {result.error}")
        return router_failure(result.error or "unknown error")

    try:
        payload = parse_llm_json(result.text, RouterPayload)
    except (json.JSONDecodeError, ValueError, ValidationError) as e:
        logger.warning(f"Router returned unparseable JSON: {e}")
        return router_failure(f"invalid JSON ({e.__class__.__name__})")

    return route_from_payload(payload, settings.ROUTER_MIN_CONFIDENCE)


# ============================================================================
# Entry points
# ============================================================================


async def decide_route(
    messages: Sequence[ChatMessage],
    decision_context: dict[str, Any] | None = None,
    entity_context: dict[str, Any] | None = None,
) -> RoutingDecision:
    """
    Routing sub-decision: rule cascade first, LLM fallback second, then
    decision-mode enforcement. Never raises.
    """
    settings = get_settings()

    decision = match_rules(RouteInput(messages=messages, evaluation_agents=settings.EVALUATION_AGENTS))
    if decision is None:
        decision = await llm_route(messages, decision_context, entity_context)

    return enforce_decision_mode(decision)


async def decide_turn(
    messages: Sequence[ChatMessage],
    knowledge_rich: bool = False,
    decision_context: dict[str, Any] | None = None,
    entity_context: dict[str, Any] | None = None,
) -> TurnDecision:
    """
    Resolve routing and research for one turn.

    The two sub-decisions are independent and run concurrently.

    Args:
        messages: Conversation history (last user message is the subject)
        knowledge_rich: Whether the knowledge base already answered richly
        decision_context: Free-form context for the LLM router
        entity_context: Linked-account context for the LLM router

    Returns:
        TurnDecision with a bounded route and a query-complete research decision
    """
    routing, research = await asyncio.gather(
        decide_route(messages, decision_context, entity_context),
        decide_research(messages, knowledge_rich=knowledge_rich),
    )

    logger.info(
        f"Routed turn via {routing.layer}: agents={routing.agents} mode={routing.decision_mode} "
        f"confidence={routing.confidence:.2f} research={research.needed}",
        extra={"route_layer": routing.layer, "decision_mode": routing.decision_mode},
    )
    return TurnDecision(routing=routing, research=research)
