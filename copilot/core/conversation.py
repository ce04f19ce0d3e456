"""Helpers over conversation history."""

import re
from collections.abc import Sequence

from copilot.core.schemas_chat import ChatMessage, Message

_WS = re.compile(r"\s+")


def last_user_text(messages: Sequence[ChatMessage]) -> str:
    """Return the content of the most recent user message, or ''."""
    for m in reversed(messages):
        if m.role == "user":
            return m.content or ""
    return ""


def last_user_index(messages: Sequence[ChatMessage]) -> int:
    """Index of the most recent user message, or -1."""
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].role == "user":
            return i
    return -1


def to_chat_messages(rows: Sequence[Message]) -> list[ChatMessage]:
    """Convert persisted rows into provider messages."""
    return [ChatMessage(role=r.role, content=r.content) for r in rows]


def normalize_name(name: str) -> str:
    """Dedup key for account names: lowercased, whitespace collapsed."""
    return _WS.sub(" ", (name or "").strip()).lower()


def render_transcript(messages: Sequence[ChatMessage], limit: int = 10) -> str:
    """Render the last ``limit`` messages as 'role: content' lines."""
    recent = list(messages)[-limit:] if limit else list(messages)
    return "\n".join(f"{m.role}: {m.content}" for m in recent)
