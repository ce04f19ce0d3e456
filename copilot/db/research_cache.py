"""Database operations for research_cache (append-only, TTL on read)."""

from datetime import UTC, datetime, timedelta
from typing import Any

from copilot.db.supabase_client import get_supabase


def get_cached_research(tenant_id: str, cache_key: str, ttl_days: int) -> dict[str, Any] | None:
    """Newest entry for the key created within the TTL window, or None."""
    since = (datetime.now(UTC) - timedelta(days=ttl_days)).isoformat()

    supabase = get_supabase()

    response = (
        supabase.table("research_cache")
        .select("answer, citations, created_at")
        .eq("tenant_id", tenant_id)
        .eq("cache_key", cache_key)
        .gte("created_at", since)
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    rows = response.data or []
    return rows[0] if rows else None


def insert_cached_research(
    tenant_id: str,
    cache_key: str,
    answer: str,
    citations: list[dict[str, str]],
    provider: str = "perplexity",
) -> None:
    """Append one cache entry."""
    supabase = get_supabase()

    supabase.table("research_cache").insert(
        {
            "tenant_id": tenant_id,
            "cache_key": cache_key,
            "provider": provider,
            "answer": answer,
            "citations": citations,
        }
    ).execute()
