"""Key=value logging with per-turn correlation.

Every line emitted while a turn is running carries its ``turn_id``, including
lines from specialists and background tasks spawned by that turn, because
asyncio tasks copy the current context when they are created.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

_current_turn: ContextVar[str | None] = ContextVar("copilot_turn_id", default=None)

# Plain ``extra={...}`` attributes that are promoted into the line
CORRELATION_FIELDS = (
    "thread_id",
    "tenant_id",
    "account_id",
    "agent_id",
    "route_layer",
    "decision_mode",
)


class StructuredFormatter(logging.Formatter):
    """Renders records as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        turn_id = getattr(record, "turn_id", None) or _current_turn.get()
        if turn_id:
            fields["turn_id"] = turn_id

        for name in CORRELATION_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                fields[name] = value

        fields.update(getattr(record, "extra_data", {}) or {})

        line = " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


@contextmanager
def bind_turn(turn_id: str) -> Iterator[None]:
    """Attach ``turn_id`` to every log line emitted inside the block."""
    token = _current_turn.set(turn_id)
    try:
        yield
    finally:
        _current_turn.reset(token)


def _level_for_env() -> int:
    try:
        from copilot.core.config import get_settings

        return logging.DEBUG if get_settings().COPILOT_ENV == "dev" else logging.INFO
    except Exception:
        # Settings unavailable (missing env); fall back to INFO
        return logging.INFO


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger writing structured lines to stdout.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger with a StructuredFormatter handler; DEBUG in dev, INFO elsewhere
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_for_env())
    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **fields: Any) -> None:
    """Log ``msg`` with arbitrary structured fields (e.g. elapsed_ms, kind)."""
    turn_id = fields.pop("turn_id", None)
    extra: dict[str, Any] = {"extra_data": fields}
    if turn_id:
        extra["turn_id"] = turn_id
    logger.log(level, msg, extra=extra)
