"""Specialist telemetry: the ``<!--QB_JSON {...}-->`` side channel.

Specialists append one HTML-comment block with structured fields after
their prose. The block is stripped from the perspective text and folded
into four council lists (alerts, recommendations, assumptions, questions).
"""

import json
import re
from typing import Any

from copilot.core.schemas_chat import Telemetry

_QB_JSON = re.compile(r"<!--\s*QB_JSON\s*(.*?)-->", re.IGNORECASE | re.DOTALL)

MAX_ITEMS_PER_LIST = 8

# type-specific field -> (council list, prefix)
_FOLDED_FIELDS: dict[str, tuple[str, str]] = {
    "critical_gaps": ("alerts", "Data gap: "),
    "risks": ("alerts", "Risk: "),
    "avoid_stakeholders": ("alerts", "Avoid early: "),
    "key_moves": ("recommendations", ""),
    "suggested_questions": ("questions", ""),
}

_LIST_FIELDS = ("alerts", "recommendations", "assumptions", "questions")


def extract_telemetry_block(text: str) -> tuple[str, dict[str, Any] | None]:
    """
    Split specialist output into clean text and the parsed telemetry object.

    Malformed JSON inside the block still strips the block and yields None.
    """
    raw = text or ""
    match = _QB_JSON.search(raw)
    if not match:
        return raw.strip(), None

    cleaned = _QB_JSON.sub("", raw, count=1).strip()
    try:
        parsed = json.loads(match.group(1).strip())
    except json.JSONDecodeError:
        return cleaned, None

    return cleaned, parsed if isinstance(parsed, dict) else None


def _strings(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]
    return []


def _append_unique(target: list[str], items: list[str]) -> None:
    for item in items:
        if item not in target and len(target) < MAX_ITEMS_PER_LIST:
            target.append(item)


def normalize_telemetry(raw: dict[str, Any] | None, agent_type: str) -> Telemetry | None:
    """Fold a raw telemetry object into the four council lists."""
    if not raw:
        return None

    lists: dict[str, list[str]] = {name: [] for name in _LIST_FIELDS}
    for name in _LIST_FIELDS:
        _append_unique(lists[name], _strings(raw.get(name)))

    for field, (target, prefix) in _FOLDED_FIELDS.items():
        _append_unique(lists[target], [f"{prefix}{s}" for s in _strings(raw.get(field))])

    if isinstance(raw.get("next_milestone"), str) and raw["next_milestone"].strip():
        _append_unique(lists["recommendations"], [f"Next milestone: {raw['next_milestone'].strip()}"])

    if raw.get("disqualified") is True:
        reason = raw.get("disqualifier_reason") or "disqualifier hit"
        _append_unique(lists["alerts"], [f"Disqualified: {reason}"])

    consumed = {"type", *_LIST_FIELDS, *_FOLDED_FIELDS, "next_milestone"}
    extra = {k: v for k, v in raw.items() if k not in consumed}

    return Telemetry(
        type=raw.get("type") if isinstance(raw.get("type"), str) else agent_type,
        extra=extra,
        **lists,
    )
