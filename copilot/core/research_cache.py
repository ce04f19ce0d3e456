"""Research cache: TTL-bounded reuse of external research answers."""

import asyncio
from datetime import UTC, datetime, timedelta

from dateutil import parser as dateutil_parser

from copilot.core.config import get_settings
from copilot.core.logging import get_logger
from copilot.core.research_client import normalize_citations
from copilot.core.schemas_chat import Citation, ResearchCacheEntry
from copilot.core.timeouts import with_timeout
from copilot.db.research_cache import get_cached_research, insert_cached_research

logger = get_logger(__name__)

MAX_KEY_QUERIES = 4
MAX_KEY_SUBJECT_CHARS = 200


def make_cache_key(route: str, queries: list[str], subject: str) -> str:
    """Composite key: route + up to 4 queries + truncated subject text."""
    q = "|".join(queries[:MAX_KEY_QUERIES])
    u = (subject or "")[:MAX_KEY_SUBJECT_CHARS]
    return f"route={route}::q={q}::u={u}"


def _is_fresh(created_at: object, ttl_days: int) -> bool:
    """True if created_at falls inside the TTL window (unknown age is fresh)."""
    if created_at is None:
        return True
    try:
        if isinstance(created_at, datetime):
            ts = created_at
        else:
            ts = dateutil_parser.isoparse(str(created_at))
    except (ValueError, OverflowError):
        return False
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return datetime.now(UTC) - ts <= timedelta(days=ttl_days)


async def get_cached(tenant_id: str, cache_key: str) -> ResearchCacheEntry | None:
    """
    Serve a cache hit within the TTL window.

    Read failures and timeouts are treated as a miss.
    """
    settings = get_settings()
    ttl_days = settings.RESEARCH_CACHE_TTL_DAYS

    try:
        row = await with_timeout(
            asyncio.to_thread(get_cached_research, tenant_id, cache_key, ttl_days),
            settings.RESEARCH_CACHE_TIMEOUT_SECONDS,
            "research cache read",
        )
    except Exception as e:
        logger.warning(f"Research cache read failed (treating as miss): {e}")
        return None

    if not row or not (row.get("answer") or "").strip():
        return None
    if not _is_fresh(row.get("created_at"), ttl_days):
        return None

    return ResearchCacheEntry(
        answer=row["answer"],
        citations=normalize_citations(row.get("citations")),
        created_at=row.get("created_at"),
    )


async def put_cached(
    tenant_id: str, cache_key: str, answer: str, citations: list[Citation]
) -> None:
    """
    Append an entry. Raises on failure; callers run this best-effort.
    """
    normalized = normalize_citations([c.model_dump() for c in citations])
    await asyncio.to_thread(
        insert_cached_research,
        tenant_id,
        cache_key,
        answer,
        [c.model_dump() for c in normalized],
    )
