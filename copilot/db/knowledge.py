"""Database operations for kb_items (keyword search)."""

from copilot.core.schemas_chat import KnowledgeHit
from copilot.db.supabase_client import get_supabase


def _escape_for_ilike(q: str) -> str:
    """Make user text safe inside a PostgREST or() filter."""
    out = q.replace("%", "\\%").replace("_", "\\_")
    for ch in ",()\"'":
        out = out.replace(ch, " ")
    return " ".join(out.split())


def search_knowledge(tenant_id: str, query_text: str, limit: int = 6) -> list[KnowledgeHit]:
    """
    Keyword lookup over the tenant's knowledge items, newest first.

    Raises:
        Exception: If the query fails (callers decide whether that matters)
    """
    q = _escape_for_ilike((query_text or "").strip())
    if not q:
        return []

    supabase = get_supabase()

    response = (
        supabase.table("kb_items")
        .select("id, title, content_md, updated_at")
        .eq("tenant_id", tenant_id)
        .or_(f"title.ilike.%{q}%,content_md.ilike.%{q}%")
        .order("updated_at", desc=True)
        .limit(limit)
        .execute()
    )

    return [
        KnowledgeHit(
            id=str(row.get("id")) if row.get("id") else None,
            title=row.get("title"),
            content=row.get("content_md") or "",
            updated_at=row.get("updated_at"),
        )
        for row in (response.data or [])
    ]
