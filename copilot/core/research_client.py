"""External research provider (Perplexity, OpenAI-compatible API)."""

from collections.abc import Sequence
from typing import Any

from openai import APIError, APITimeoutError, AsyncOpenAI

from copilot.core.config import get_settings
from copilot.core.logging import get_logger
from copilot.core.schemas_chat import ChatMessage, Citation, ResearchResult

logger = get_logger(__name__)


_TITLE_KEYS = ("title", "name", "text", "value")
_URL_KEYS = ("url", "href", "link", "value")


def _first_string(value: Any, keys: tuple[str, ...]) -> str:
    """Coerce a provider field that may be str, list or dict to a string."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        for item in value:
            if isinstance(item, str) and item.strip():
                return item.strip()
        return ""
    if isinstance(value, dict):
        for key in keys:
            if isinstance(value.get(key), str) and value[key].strip():
                return value[key].strip()
        return ""
    if value is None:
        return ""
    return str(value).strip()


def normalize_citations(raw: Any) -> list[Citation]:
    """
    Coerce provider citations to flat ``{title, url}`` pairs.

    Entries may arrive as bare URL strings or as objects whose title/url
    fields are strings, arrays or nested objects. Entries with neither a
    title nor a url are dropped.
    """
    if not isinstance(raw, list):
        return []

    citations: list[Citation] = []
    for item in raw:
        if isinstance(item, str):
            title, url = "", item.strip()
        elif isinstance(item, dict):
            title = _first_string(item.get("title"), _TITLE_KEYS)
            url = _first_string(item.get("url"), _URL_KEYS)
        else:
            continue
        if not title and not url:
            continue
        citations.append(Citation(title=title, url=url))
    return citations


def _extract_citations(payload: dict[str, Any]) -> list[Citation]:
    """Prefer titled search results, fall back to the bare citations list."""
    titled = normalize_citations(payload.get("search_results"))
    if titled:
        return titled
    return normalize_citations(payload.get("citations"))


async def research(
    messages: Sequence[ChatMessage],
    max_tokens: int = 900,
    system_prompt: str | None = None,
) -> ResearchResult:
    """
    Run one research call against the answer engine.

    Never raises: failures come back as ``ResearchResult(ok=False, error=...)``.

    Args:
        messages: Research request messages
        max_tokens: Output budget
        system_prompt: Optional system prompt sent ahead of the messages

    Returns:
        ResearchResult with answer text and normalized citations
    """
    settings = get_settings()
    if not settings.PERPLEXITY_API_KEY:
        return ResearchResult(ok=False, error="PERPLEXITY_API_KEY not configured")

    client = AsyncOpenAI(
        api_key=settings.PERPLEXITY_API_KEY,
        base_url=settings.PERPLEXITY_BASE_URL,
        timeout=settings.RESEARCH_TIMEOUT_SECONDS,
    )

    payload = [{"role": m.role, "content": m.content} for m in messages]
    if system_prompt:
        payload.insert(0, {"role": "system", "content": system_prompt})

    try:
        response = await client.chat.completions.create(
            model=settings.PERPLEXITY_MODEL,
            messages=payload,
            temperature=0.2,
            max_tokens=max_tokens,
        )
    except APITimeoutError:
        return ResearchResult(ok=False, error="Perplexity request timed out")
    except APIError as e:
        logger.warning(f"Perplexity API error: {e}")
        return ResearchResult(ok=False, error=f"Perplexity error: {e}")
    except Exception as e:
        logger.warning(f"Perplexity call failed: {e}")
        return ResearchResult(ok=False, error=str(e) or "Perplexity unknown error")

    answer = ""
    if response.choices:
        answer = response.choices[0].message.content or ""

    return ResearchResult(
        ok=True,
        answer=answer,
        citations=_extract_citations(response.model_dump()),
    )
