"""External research: cache-first lookup with a bounded live fallback."""

import time

from pydantic import BaseModel, Field

from copilot.core.background import fire_and_forget
from copilot.core.config import get_settings
from copilot.core.logging import get_logger
from copilot.core.prompts import load_prompt
from copilot.core.research_cache import get_cached, make_cache_key, put_cached
from copilot.core.research_client import research
from copilot.core.schemas_chat import ChatMessage, Citation, ResearchDecision
from copilot.core.timeouts import with_timeout

logger = get_logger(__name__)

MAX_EXTRA_QUERIES = 5
MAX_BLOCK_CITATIONS = 8


class ResearchOutcome(BaseModel):
    """Research that made it into the turn."""
    answer: str
    citations: list[Citation] = Field(default_factory=list)
    from_cache: bool = False
    cache_key: str


def build_research_prompt(
    target: str, extra_queries: list[str] | None = None
) -> tuple[str, list[ChatMessage]]:
    """Protocol system prompt, plus the subject report schema with query hints."""
    system = load_prompt("research_protocol.md")
    schema = load_prompt("research_report.md").replace("{target}", target)

    extra = [q for q in (extra_queries or []) if q][:MAX_EXTRA_QUERIES]
    if extra:
        schema += "\n\nADDITIONAL SEARCH QUERIES (use to guide your search):\n- " + "\n- ".join(extra)

    return system, [ChatMessage(role="user", content=schema)]


def format_research_block(answer: str, citations: list[Citation]) -> str:
    """Render research as a context block."""
    lines = ["[External Research]"]
    if answer:
        lines.append(answer.strip())

    if citations:
        lines.append("\nCitations:")
        for c in citations[:MAX_BLOCK_CITATIONS]:
            lines.append(f"- {c.title or 'Source'}: {c.url}".rstrip())

    return "\n".join(lines)


async def fetch_research(
    tenant_id: str,
    route: str,
    decision: ResearchDecision,
    subject: str,
) -> ResearchOutcome | None:
    """
    Serve research for a turn, cache first.

    A cache hit inside the TTL is returned as-is. A miss issues one live
    call bounded by RESEARCH_TIMEOUT_SECONDS; a successful answer is written
    back to the cache in the background. Any failure yields None.

    Args:
        tenant_id: Tenant scope
        route: Route label used in the cache key
        decision: Research decision (must be needed, with >= 3 queries)
        subject: Last user text

    Returns:
        ResearchOutcome or None
    """
    if not decision.needed or not decision.queries:
        return None

    settings = get_settings()
    cache_key = make_cache_key(route, decision.queries, subject)

    cached = await get_cached(tenant_id, cache_key)
    if cached:
        logger.info(f"Research cache hit for route={route}")
        return ResearchOutcome(
            answer=cached.answer,
            citations=cached.citations,
            from_cache=True,
            cache_key=cache_key,
        )

    system_prompt, messages = build_research_prompt(
        subject or "the target account", decision.queries
    )

    started = time.monotonic()
    try:
        result = await with_timeout(
            research(
                messages,
                max_tokens=settings.RESEARCH_MAX_TOKENS,
                system_prompt=system_prompt,
            ),
            settings.RESEARCH_TIMEOUT_SECONDS,
            "external research",
        )
    except Exception as e:
        logger.warning(f"External research failed (continuing without research): {e}")
        return None

    elapsed_ms = int((time.monotonic() - started) * 1000)
    if not result.ok or not result.answer.strip():
        logger.warning(
            f"External research returned no answer after {elapsed_ms}ms: {result.error}"
        )
        return None

    logger.info(
        f"External research completed in {elapsed_ms}ms with {len(result.citations)} citations"
    )
    fire_and_forget(
        put_cached(tenant_id, cache_key, result.answer, result.citations),
        "research cache write",
    )
    return ResearchOutcome(
        answer=result.answer,
        citations=result.citations,
        from_cache=False,
        cache_key=cache_key,
    )
