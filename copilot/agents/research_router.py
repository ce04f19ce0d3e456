"""
Research sub-decision: would live external facts materially improve the answer?

Heuristics fire first (account name, active evaluation, contact intent);
otherwise a small LLM call decides. Whatever the source, the result goes
through ``enforce_research_queries``: research that is needed always
carries at least 3 distinct queries, and research that is not needed
carries none.
"""

import json
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from copilot.agents.routing_rules import (
    RESEARCH_CONTEXT_CUES,
    is_drafting_request,
    is_in_evaluation_context,
    looks_like_account_name,
    looks_like_contact_intent,
)
from copilot.core.config import get_settings
from copilot.core.conversation import last_user_text, render_transcript
from copilot.core.llm import complete, parse_llm_json
from copilot.core.logging import get_logger
from copilot.core.prompts import load_prompt
from copilot.core.schemas_chat import ChatMessage, ResearchDecision
from copilot.core.timeouts import with_timeout

logger = get_logger(__name__)

MIN_QUERIES = 3
MAX_QUERIES = 8
MAX_SUBJECT_CHARS = 120


def uniq_non_empty(values: Sequence[Any], max_items: int = MAX_QUERIES) -> list[str]:
    """Trim, drop blanks, dedupe case-insensitively, keep order."""
    out: list[str] = []
    seen: set[str] = set()
    for v in values:
        s = str(v).strip() if isinstance(v, str) else ""
        key = s.lower()
        if not s or key in seen:
            continue
        seen.add(key)
        out.append(s)
        if len(out) >= max_items:
            break
    return out


def _subject(text: str) -> str:
    return " ".join((text or "").split())[:MAX_SUBJECT_CHARS]


def evaluation_queries(subject: str) -> list[str]:
    """Default queries for qualifying an organization."""
    s = _subject(subject)
    if not s:
        return []
    return [
        f"{s} organization overview size locations",
        f"{s} recent news expansion investments",
        f"{s} technology vendors equipment procurement",
        f"{s} leadership team key decision makers",
    ]


def contact_queries(subject: str) -> list[str]:
    """Default queries for finding people and roles."""
    s = _subject(subject)
    if not s:
        return []
    return [
        f"{s} leadership team names titles",
        f"{s} department heads directors",
        f"{s} procurement purchasing contacts",
        f"{s} LinkedIn profiles decision makers",
    ]


def synthesize_queries(subject: str) -> list[str]:
    """Generic queries derived from the last user text."""
    s = _subject(subject)
    if not s:
        return []
    return [
        s,
        f"{s} latest news",
        f"{s} overview key facts",
        f"{s} official website",
    ]


def enforce_research_queries(
    needed: bool,
    queries: Sequence[Any],
    reason: str,
    subject: str,
    fallback_queries: Sequence[str] | None = None,
) -> ResearchDecision:
    """
    Make a research decision query-complete.

    - needed=False: queries are emptied.
    - needed=True with < 3 distinct queries: fill from ``fallback_queries``,
      then from generic queries built from ``subject``.
    - Still < 3: research is disabled rather than under-specified.

    Args:
        needed: Upstream research verdict
        queries: Upstream queries (any shape; non-strings are dropped)
        reason: Upstream reason
        subject: Last user text
        fallback_queries: Preferred fill-in queries

    Returns:
        ResearchDecision honoring the query-count invariant
    """
    if not needed:
        return ResearchDecision(needed=False, queries=[], reason=reason)

    base = uniq_non_empty(list(queries) if isinstance(queries, (list, tuple)) else [])
    if len(base) < MIN_QUERIES:
        base = uniq_non_empty(
            [*base, *(fallback_queries or []), *synthesize_queries(subject)]
        )

    if len(base) < MIN_QUERIES:
        return ResearchDecision(
            needed=False,
            queries=[],
            reason=f"{reason} (disabled: insufficient queries)".strip(),
        )

    return ResearchDecision(needed=True, queries=base, reason=reason)


# ============================================================================
# LLM fallback
# ============================================================================


class ResearchPayload(BaseModel):
    """Loosely-typed research-router JSON."""
    needs_research: bool = False
    queries: list[Any] = Field(default_factory=list)
    reason: str = ""

    @field_validator("needs_research", mode="before")
    @classmethod
    def coerce_needed(cls, v: Any) -> bool:
        return v is True

    @field_validator("queries", mode="before")
    @classmethod
    def coerce_queries(cls, v: Any) -> list[Any]:
        return v if isinstance(v, list) else []

    @field_validator("reason", mode="before")
    @classmethod
    def coerce_reason(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""


def _research_router_messages(messages: Sequence[ChatMessage], knowledge_rich: bool) -> list[ChatMessage]:
    body = (
        f"RECENT TRANSCRIPT:\n{render_transcript(messages, limit=8)}\n\n"
        f"LATEST USER MESSAGE:\n{last_user_text(messages)}"
    )
    if knowledge_rich:
        body += (
            "\n\nNOTE: The internal knowledge base already returned several relevant "
            "items for this message. Only request research for current external facts "
            "the knowledge base cannot contain."
        )
    return [ChatMessage(role="user", content=body)]


def research_router_failure(reason: str) -> ResearchDecision:
    return ResearchDecision(needed=False, queries=[], reason=f"research router failed: {reason}")


async def llm_decide_research(
    messages: Sequence[ChatMessage], knowledge_rich: bool = False
) -> ResearchDecision:
    """Ask the router model whether research is needed. Never raises."""
    settings = get_settings()
    last = last_user_text(messages)

    try:
        result = await with_timeout(
            complete(
                load_prompt("research_router.md"),
                _research_router_messages(messages, knowledge_rich),
                max_tokens=350,
                wants_json=True,
                model=settings.ROUTER_MODEL,
                temperature=0,
            ),
            settings.RESEARCH_DECISION_TIMEOUT_SECONDS,
            "research router",
        )
    except Exception as e:
        logger.warning(f"Research router call failed: {e}")
        return research_router_failure(str(e))

    if not result.ok:
        logger.warning(f"Research router call failed: {result.error}")
        return research_router_failure(result.error or "unknown error")

    try:
        payload = parse_llm_json(result.text, ResearchPayload)
    except (json.JSONDecodeError, ValueError, ValidationError) as e:
        logger.warning(f"Research router returned unparseable JSON: {e}")
        return research_router_failure(f"invalid JSON ({e.__class__.__name__})")

    fallback = contact_queries(last) if looks_like_contact_intent(last) else []
    return enforce_research_queries(
        payload.needs_research,
        payload.queries,
        payload.reason or "LLM research router",
        last,
        fallback_queries=fallback,
    )


# ============================================================================
# Entry point
# ============================================================================


async def decide_research(
    messages: Sequence[ChatMessage], knowledge_rich: bool = False
) -> ResearchDecision:
    """
    Decide whether this turn needs external research.

    Order: research disabled by config -> drafting guard -> heuristics ->
    LLM. A rich knowledge base suppresses the evaluation-context heuristic
    and is passed to the LLM as a signal.

    Args:
        messages: Conversation history
        knowledge_rich: Knowledge base already returned enough hits

    Returns:
        ResearchDecision (queries >= 3 when needed, empty otherwise)
    """
    settings = get_settings()
    if not settings.RESEARCH_ENABLED:
        return ResearchDecision(needed=False, reason="research disabled by configuration")

    last = last_user_text(messages)
    if not last.strip():
        return ResearchDecision(needed=False, reason="no user message")

    contact_hint = looks_like_contact_intent(last)

    if is_drafting_request(last) and not contact_hint:
        return ResearchDecision(
            needed=False, reason="Heuristic: drafting request without factual lookup."
        )

    if looks_like_account_name(last, max_punctuation=2, punctuation=".;:"):
        return enforce_research_queries(
            True,
            evaluation_queries(last),
            "Heuristic: message looks like an organization name.",
            last,
        )

    if contact_hint:
        return enforce_research_queries(
            True,
            contact_queries(last),
            "Heuristic: user is asking for names, contacts or roles.",
            last,
        )

    if not knowledge_rich and is_in_evaluation_context(
        messages, window=12, cues=RESEARCH_CONTEXT_CUES
    ):
        return enforce_research_queries(
            True,
            evaluation_queries(last),
            "Heuristic: conversation is in an evaluation context.",
            last,
        )

    return await llm_decide_research(messages, knowledge_rich=knowledge_rich)
