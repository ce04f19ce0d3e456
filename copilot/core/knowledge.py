"""Knowledge retriever: bounded keyword lookup into the tenant's knowledge base.

Retrieval never fails a turn. Errors and timeouts are logged and treated
as "no knowledge found".
"""

import asyncio
import time

from copilot.core.config import get_settings
from copilot.core.logging import get_logger
from copilot.core.schemas_chat import KnowledgeHit
from copilot.core.timeouts import with_timeout
from copilot.db.knowledge import search_knowledge

logger = get_logger(__name__)

MAX_SNIPPET_CHARS = 1600


async def retrieve_knowledge(
    tenant_id: str,
    query: str,
    limit: int | None = None,
    timeout: float | None = None,
) -> list[KnowledgeHit]:
    """
    Look up knowledge snippets for a query.

    Args:
        tenant_id: Tenant scope
        query: Free text (usually the latest user message)
        limit: Max hits (defaults to KNOWLEDGE_RESULT_LIMIT)
        timeout: Seconds (defaults to KNOWLEDGE_TIMEOUT_SECONDS)

    Returns:
        Up to ``limit`` hits; empty on blank query or any failure
    """
    if not (query or "").strip():
        return []

    settings = get_settings()
    limit = limit or settings.KNOWLEDGE_RESULT_LIMIT
    timeout = timeout or settings.KNOWLEDGE_TIMEOUT_SECONDS

    started = time.monotonic()
    try:
        hits = await with_timeout(
            asyncio.to_thread(search_knowledge, tenant_id, query, limit),
            timeout,
            "knowledge lookup",
        )
    except Exception as e:
        logger.warning(f"Knowledge lookup failed (continuing without knowledge): {e}")
        return []

    logger.debug(
        f"Knowledge lookup returned {len(hits)} hits in "
        f"{int((time.monotonic() - started) * 1000)}ms"
    )
    return hits[:limit]


def _truncate(text: str, max_chars: int = MAX_SNIPPET_CHARS) -> str:
    t = (text or "").strip()
    if len(t) <= max_chars:
        return t
    return t[:max_chars].rstrip() + "\n…(truncated)"


def format_knowledge_block(hits: list[KnowledgeHit]) -> str:
    """Render hits as a grounding block, or '' when there are none."""
    if not hits:
        return ""

    chunks = [
        f"## {(h.title or 'Untitled').strip()}\n{_truncate(h.content)}" for h in hits
    ]
    return ("[Knowledge Base]\n" + "\n\n".join(chunks)).strip()
