"""Per-call timeout wrapping."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class StageTimeoutError(Exception):
    """A single suspending call exceeded its timeout."""

    def __init__(self, label: str, timeout_ms: int):
        self.label = label
        self.timeout_ms = timeout_ms
        super().__init__(f"{label} timed out after {timeout_ms}ms")


async def with_timeout(awaitable: Awaitable[T], seconds: float, label: str) -> T:
    """
    Await a call with an explicit timeout.

    On expiry the call is cancelled and a StageTimeoutError naming the
    label is raised. Only this call fails; callers decide whether the
    stage is fatal.

    Args:
        awaitable: Coroutine or future to await
        seconds: Timeout in seconds
        label: Human-readable stage name used in the error message

    Returns:
        The awaited result

    Raises:
        StageTimeoutError: If the timeout elapses first
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except TimeoutError as e:
        raise StageTimeoutError(label, int(seconds * 1000)) from e
