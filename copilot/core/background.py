"""Best-effort side effects (cache writes, auto-title)."""

import asyncio
from collections.abc import Coroutine
from typing import Any

from copilot.core.logging import get_logger

logger = get_logger(__name__)

# Strong references so pending tasks are not garbage collected mid-flight
_pending: set[asyncio.Task] = set()


async def run_best_effort(coro: Coroutine[Any, Any, Any], label: str) -> bool:
    """Await a side effect, logging and discarding any failure.

    Returns:
        True if the side effect completed, False if it failed
    """
    try:
        await coro
        return True
    except Exception as e:
        logger.warning(f"Best-effort task '{label}' failed: {e}")
        return False


def fire_and_forget(coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
    """Schedule a best-effort side effect without awaiting it."""
    task = asyncio.create_task(run_best_effort(coro, label), name=f"best-effort:{label}")
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def drain_pending() -> None:
    """Wait for scheduled side effects (shutdown hook)."""
    if _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
