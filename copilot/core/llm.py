"""LLM completion provider and JSON parsing utilities."""

import json
import re
from collections.abc import Sequence
from typing import Any, TypeVar

from anthropic import APIError, APITimeoutError, AsyncAnthropic
from pydantic import BaseModel

from copilot.core.config import get_settings
from copilot.core.logging import get_logger
from copilot.core.schemas_chat import ChatMessage, CompletionResult

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

JSON_ONLY_INSTRUCTION = """

IMPORTANT: Output MUST be valid JSON only.
- Do NOT wrap in ``` fences.
- Do NOT include any commentary, headers, markdown, or trailing text.
- The first character of your response must be "{" and the last must be "}".
"""


def get_client() -> AsyncAnthropic:
    """Build an Anthropic client from settings."""
    settings = get_settings()
    if not settings.ANTHROPIC_API_KEY:
        raise ValueError("ANTHROPIC_API_KEY not configured")
    return AsyncAnthropic(
        api_key=settings.ANTHROPIC_API_KEY,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )


async def complete(
    system_prompt: str,
    messages: Sequence[ChatMessage],
    max_tokens: int = 900,
    wants_json: bool = False,
    model: str | None = None,
    temperature: float | None = None,
) -> CompletionResult:
    """
    Run one completion call.

    Never raises: provider errors, timeouts and missing credentials are
    returned as ``CompletionResult(ok=False, error=...)``.

    Args:
        system_prompt: System prompt text
        messages: Ordered user/assistant messages
        max_tokens: Output budget
        wants_json: Append a strict JSON-only instruction to the system prompt
        model: Model override (defaults to CLAUDE_MODEL)
        temperature: Optional sampling temperature

    Returns:
        CompletionResult with the concatenated text blocks
    """
    settings = get_settings()
    system = system_prompt + (JSON_ONLY_INSTRUCTION if wants_json else "")

    kwargs: dict[str, Any] = {
        "model": model or settings.CLAUDE_MODEL,
        "max_tokens": max_tokens,
        "system": system,
        "messages": [{"role": m.role, "content": m.content} for m in messages],
    }
    if temperature is not None:
        kwargs["temperature"] = temperature

    try:
        client = get_client()
        response = await client.messages.create(**kwargs)
    except APITimeoutError:
        return CompletionResult(ok=False, error="Claude request timed out")
    except APIError as e:
        logger.warning(f"Claude API error: {e}")
        return CompletionResult(ok=False, error=f"Claude error: {e}")
    except Exception as e:
        logger.warning(f"Claude call failed: {e}")
        return CompletionResult(ok=False, error=str(e) or "Claude unknown error")

    text = "\n".join(
        block.text for block in (response.content or []) if getattr(block, "type", None) == "text"
    )
    return CompletionResult(ok=True, text=text)


def _strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_llm_json_dict(raw_output: str) -> dict:
    """
    Parse LLM output as a JSON object.

    Tries the fence-stripped text first, then the outermost ``{...}`` span
    (models sometimes wrap JSON in stray prose).

    Raises:
        json.JSONDecodeError: If no JSON object can be recovered
        ValueError: If the JSON is not an object
    """
    cleaned = _strip_llm_fences(raw_output or "")
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise
        parsed = json.loads(cleaned[start : end + 1])

    if not isinstance(parsed, dict):
        raise ValueError(f"Expected JSON object, got {type(parsed).__name__}")
    return parsed


def parse_llm_json(raw_output: str, model: type[T]) -> T:
    """
    Parse LLM output as JSON and validate against a Pydantic model.

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
        pydantic.ValidationError: If parsed JSON doesn't match schema
    """
    return model.model_validate(parse_llm_json_dict(raw_output))


def clamp01(value: Any) -> float:
    """Coerce to a float in [0, 1]; non-numeric values become 0."""
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0.0
    if n != n:  # NaN
        return 0.0
    return max(0.0, min(1.0, n))
