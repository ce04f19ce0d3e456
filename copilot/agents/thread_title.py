"""Best-effort thread auto-title from the first user message."""

import asyncio

from copilot.core.config import get_settings
from copilot.core.llm import complete
from copilot.core.prompts import load_prompt
from copilot.core.schemas_chat import ChatMessage
from copilot.db.threads import set_thread_title

MAX_TITLE_WORDS = 8
MAX_FALLBACK_CHARS = 60


def fallback_title(first_message: str) -> str:
    """Truncated first message, used when the model gives nothing usable."""
    text = " ".join((first_message or "").split())
    if len(text) <= MAX_FALLBACK_CHARS:
        return text or "New conversation"
    return text[:MAX_FALLBACK_CHARS].rsplit(" ", 1)[0] + "…"


def clean_title(raw: str) -> str:
    """First line, unquoted, no trailing punctuation, at most 8 words."""
    line = (raw or "").strip().splitlines()[0] if (raw or "").strip() else ""
    line = line.strip().strip("\"'`").rstrip(".!?:;")
    return " ".join(line.split()[:MAX_TITLE_WORDS])


async def generate_title(first_message: str) -> str:
    settings = get_settings()
    result = await complete(
        load_prompt("thread_title.md"),
        [ChatMessage(role="user", content=first_message)],
        max_tokens=30,
        model=settings.ROUTER_MODEL,
    )
    title = clean_title(result.text) if result.ok else ""
    return title or fallback_title(first_message)


async def auto_title_thread(tenant_id: str, thread_id: str, first_message: str) -> None:
    """
    Title an untitled thread. Raises on storage failure; callers schedule
    this with ``fire_and_forget``.
    """
    title = await generate_title(first_message)
    await asyncio.to_thread(set_thread_title, tenant_id, thread_id, title)
