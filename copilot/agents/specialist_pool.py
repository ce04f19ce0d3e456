"""
Specialist runner pool.

Runs the routed specialists as a fixed set of workers pulling from a
shared index, each task under its own timeout. Results are settled: one
specialist failing or timing out never aborts the others, and the result
list always has one entry per requested agent, in request order.
"""

import asyncio
import time
from collections.abc import Sequence

from copilot.agents.specialists.base import SpecialistContext
from copilot.agents.specialists.registry import get_specialist, label_for
from copilot.core.config import get_settings
from copilot.core.logging import get_logger
from copilot.core.schemas_chat import SpecialistResult
from copilot.core.timeouts import with_timeout

logger = get_logger(__name__)


async def _run_one(agent_id: str, ctx: SpecialistContext, timeout: float) -> SpecialistResult:
    """Run a single specialist and settle it. Never raises."""
    label = label_for(agent_id)
    started = time.monotonic()

    def _elapsed() -> int:
        return int((time.monotonic() - started) * 1000)

    spec = get_specialist(agent_id)
    if spec is None:
        return SpecialistResult(
            agent_id=agent_id,
            label=label,
            status="rejected",
            error=f"unknown specialist: {agent_id}",
        )

    try:
        output = await with_timeout(spec.run(ctx), timeout, f"specialist {agent_id}")
    except Exception as e:
        error = str(e) or e.__class__.__name__
        logger.warning(
            f"Specialist {agent_id} failed after {_elapsed()}ms: {error}",
            extra={"agent_id": agent_id},
        )
        return SpecialistResult(
            agent_id=agent_id,
            label=label,
            status="rejected",
            error=error,
            elapsed_ms=_elapsed(),
        )

    logger.info(f"Specialist {agent_id} completed in {_elapsed()}ms", extra={"agent_id": agent_id})
    return SpecialistResult(
        agent_id=agent_id,
        label=label,
        status="fulfilled",
        content=output.content,
        telemetry=output.telemetry,
        elapsed_ms=_elapsed(),
    )


async def run_specialists(
    agent_ids: Sequence[str],
    ctx: SpecialistContext,
    concurrency: int | None = None,
    timeout: float | None = None,
) -> list[SpecialistResult]:
    """
    Run specialists under a concurrency cap.

    Args:
        agent_ids: Ordered specialist ids (already allow-listed; "chat" is skipped)
        ctx: Shared, already-augmented context
        concurrency: Worker count (defaults to SPECIALIST_CONCURRENCY)
        timeout: Per-specialist timeout (defaults to SPECIALIST_TIMEOUT_SECONDS)

    Returns:
        One settled SpecialistResult per specialist, in input order
    """
    settings = get_settings()
    concurrency = concurrency or settings.SPECIALIST_CONCURRENCY
    timeout = timeout or settings.SPECIALIST_TIMEOUT_SECONDS

    ids = [a for a in agent_ids if a != "chat"]
    if not ids:
        return []

    results: list[SpecialistResult | None] = [None] * len(ids)
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(ids):
            i = next_index
            next_index += 1
            results[i] = await _run_one(ids[i], ctx, timeout)

    await asyncio.gather(*(worker() for _ in range(min(concurrency, len(ids)))))
    return [r for r in results if r is not None]


def failure_alerts(results: Sequence[SpecialistResult]) -> list[str]:
    """Synthetic alerts so failed specialists stay visible downstream."""
    return [
        f"Agent {r.label} failed: {r.error or 'unknown error'}" for r in results if not r.ok
    ]
