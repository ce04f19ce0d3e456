"""Synthesis caller: the one LLM call that produces the user-visible reply."""

from collections.abc import Sequence

from copilot.core.config import get_settings
from copilot.core.llm import complete
from copilot.core.logging import get_logger
from copilot.core.prompts import load_prompt
from copilot.core.schemas_chat import ChatMessage
from copilot.core.timeouts import StageTimeoutError, with_timeout

logger = get_logger(__name__)


class SynthesisError(Exception):
    """The final call failed or produced nothing to persist."""

    def __init__(self, kind: str, message: str):
        self.kind = kind
        super().__init__(message)


async def synthesize(messages: Sequence[ChatMessage]) -> str:
    """
    Produce the final reply from the assembled context.

    Args:
        messages: Assembled context, ending with the user-role synthesis task

    Returns:
        Non-empty reply text

    Raises:
        SynthesisError: kind "timeout", "synthesis_failed" or "empty_response"
    """
    settings = get_settings()

    try:
        result = await with_timeout(
            complete(
                load_prompt("main_agent.md"),
                messages,
                max_tokens=settings.SYNTHESIS_MAX_TOKENS,
            ),
            settings.SYNTHESIS_TIMEOUT_SECONDS,
            "synthesis",
        )
    except StageTimeoutError as e:
        raise SynthesisError("timeout", str(e)) from e
    except Exception as e:
        raise SynthesisError("synthesis_failed", str(e) or e.__class__.__name__) from e

    if not result.ok:
        logger.warning(f"Synthesis call failed: {result.error}")
        raise SynthesisError("synthesis_failed", result.error or "synthesis call failed")

    reply = result.text.strip()
    if not reply:
        raise SynthesisError("empty_response", "synthesis returned an empty reply")
    return reply
