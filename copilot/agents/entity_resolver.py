"""
Entity resolver: link a new thread to the account it is about.

Runs on the first user message of an unlinked thread, and on the reply
that follows a disambiguation prompt. Never blocks sending: every failure
is logged and reported as ``outcome="failed"``.

Resolution ladder:
1. Known-account search. A clear winner (score and margin over the
   runner-up both above threshold) is auto-linked.
2. Plausible but unclear matches are stored on the user message as
   candidates; the next reply can pick one by name or ordinal.
3. Otherwise an LLM extracts an organization name; a confident extraction
   is upserted by normalized name and linked.

Automatic resolution never overwrites an existing thread link.
"""

import asyncio
import json
import re
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ValidationError, field_validator

from copilot.core.config import get_settings
from copilot.core.conversation import normalize_name
from copilot.core.llm import clamp01, complete, parse_llm_json
from copilot.core.logging import get_logger
from copilot.core.prompts import load_prompt
from copilot.core.schemas_chat import (
    Account,
    AccountCandidate,
    ChatMessage,
    EntityResolution,
    Message,
    Thread,
)
from copilot.core.timeouts import with_timeout
from copilot.db.accounts import search_accounts, upsert_account_by_normalized_name
from copilot.db.messages import set_resolved_candidates
from copilot.db.threads import link_thread_to_account

logger = get_logger(__name__)

SEARCH_LIMIT = 5
MAX_ORG_NAME_CHARS = 80
MAX_ORG_NAME_WORDS = 10

_ORDINALS = {
    "first": 1,
    "1st": 1,
    "second": 2,
    "2nd": 2,
    "third": 3,
    "3rd": 3,
    "fourth": 4,
    "4th": 4,
    "fifth": 5,
    "5th": 5,
}
_NUMBER_REPLY = re.compile(r"^\s*(?:#|no\.?|number|option)?\s*(\d{1,2})\s*[.)]?\s*$", re.IGNORECASE)


class OrgExtraction(BaseModel):
    """Validated org-extractor output."""
    org_name: str | None = None
    confidence: float = 0.0
    rationale: str = ""

    @field_validator("org_name", mode="before")
    @classmethod
    def guard_name(cls, v: Any) -> str | None:
        if not isinstance(v, str):
            return None
        name = " ".join(v.split())
        if not name or len(name) > MAX_ORG_NAME_CHARS or len(name.split()) > MAX_ORG_NAME_WORDS:
            return None
        return name

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> float:
        return clamp01(v)

    @field_validator("rationale", mode="before")
    @classmethod
    def coerce_rationale(cls, v: Any) -> str:
        return v[:140] if isinstance(v, str) else ""


# ============================================================================
# Candidate handling
# ============================================================================


def parse_candidates(raw: Any) -> list[AccountCandidate]:
    """Stored candidates back into models, skipping malformed entries."""
    if not isinstance(raw, list):
        return []
    out: list[AccountCandidate] = []
    for item in raw:
        try:
            out.append(AccountCandidate.model_validate(item))
        except ValidationError:
            continue
    return out


def pending_candidates(rows: Sequence[Message]) -> tuple[Message, list[AccountCandidate]] | None:
    """
    Candidates offered on the user message before the latest one, if any.

    Only the most recent earlier user message is considered; older offers
    have been superseded.
    """
    user_rows = [r for r in rows if r.role == "user"]
    if len(user_rows) < 2:
        return None
    previous = user_rows[-2]
    candidates = parse_candidates(previous.resolved_candidates)
    return (previous, candidates) if candidates else None


def match_candidate_reply(
    text: str, candidates: Sequence[AccountCandidate]
) -> AccountCandidate | None:
    """Candidate chosen by a reply naming it or giving its position."""
    reply = normalize_name(text)
    if not reply or not candidates:
        return None

    number = _NUMBER_REPLY.match(reply)
    if number:
        position = int(number.group(1))
        return candidates[position - 1] if 1 <= position <= len(candidates) else None

    exact = [c for c in candidates if reply == normalize_name(c.name)]
    if exact:
        return exact[0]

    named = [c for c in candidates if normalize_name(c.name) in reply]
    if len(named) == 1:
        return named[0]

    for word, position in _ORDINALS.items():
        if re.search(rf"\b{word}\b", reply) and position <= len(candidates):
            return candidates[position - 1]
    return None


def format_disambiguation_block(candidates: Sequence[AccountCandidate]) -> str:
    """Context block asking synthesis to let the user pick an account."""
    if not candidates:
        return ""
    lines = [
        "[Account Disambiguation]",
        "Several known accounts match this conversation. Ask the user which one they mean "
        "(they can reply with the name or the number) before going deep on any one of them.",
    ]
    lines.extend(f"{i}. {c.name}" for i, c in enumerate(candidates, start=1))
    return "\n".join(lines)


def entity_data_for(account: Account | None) -> dict[str, Any]:
    """Account facts handed to specialists."""
    if account is None:
        return {}
    return {**account.metadata_json, "name": account.name}


# ============================================================================
# Resolution steps
# ============================================================================


async def extract_org_name(user_text: str, recent: Sequence[ChatMessage]) -> OrgExtraction | None:
    """LLM org-name extraction. Returns None on any failure."""
    settings = get_settings()

    prompt: list[ChatMessage] = []
    context = "\n".join(f"{m.role.upper()}: {m.content}" for m in list(recent)[-6:])
    if context:
        prompt.append(ChatMessage(role="user", content=f"Recent chat context:\n{context}"))
        prompt.append(ChatMessage(role="assistant", content="Understood."))
    prompt.append(ChatMessage(role="user", content=f"User text:\n{user_text}"))

    result = await complete(
        load_prompt("org_extractor.md"),
        prompt,
        max_tokens=300,
        wants_json=True,
        model=settings.ROUTER_MODEL,
        temperature=0,
    )
    if not result.ok:
        logger.warning(f"Org extraction failed: {result.error}")
        return None

    try:
        return parse_llm_json(result.text, OrgExtraction)
    except (json.JSONDecodeError, ValueError, ValidationError) as e:
        logger.warning(f"Org extraction returned unparseable JSON: {e}")
        return None


async def _link(tenant_id: str, thread: Thread, account_id: str) -> bool:
    return await asyncio.to_thread(link_thread_to_account, tenant_id, thread.id, account_id)


async def _resolve_pending(
    tenant_id: str,
    thread: Thread,
    user_message: Message,
    previous: Message,
    candidates: list[AccountCandidate],
) -> EntityResolution | None:
    chosen = match_candidate_reply(user_message.content, candidates)
    await asyncio.to_thread(set_resolved_candidates, tenant_id, previous.id, None)

    if chosen is None:
        return None

    if not await _link(tenant_id, thread, chosen.id):
        return EntityResolution(outcome="skipped", reason="thread already linked")
    return EntityResolution(
        outcome="linked",
        account_id=chosen.id,
        account_name=chosen.name,
        reason="user picked a candidate",
    )


async def _resolve_new(
    tenant_id: str,
    thread: Thread,
    user_message: Message,
    recent: Sequence[ChatMessage],
) -> EntityResolution:
    settings = get_settings()
    text = user_message.content.strip()

    candidates = await asyncio.to_thread(search_accounts, tenant_id, text, SEARCH_LIMIT)
    if candidates:
        top = candidates[0]
        runner_up = candidates[1].score if len(candidates) > 1 else 0.0
        margin = top.score - runner_up

        if top.score >= settings.ENTITY_AUTO_LINK_SCORE and margin >= settings.ENTITY_MIN_MARGIN:
            if not await _link(tenant_id, thread, top.id):
                return EntityResolution(outcome="skipped", reason="thread already linked")
            return EntityResolution(
                outcome="linked",
                account_id=top.id,
                account_name=top.name,
                reason=f"auto-linked: score={top.score:.2f} margin={margin:.2f}",
            )

        plausible = [c for c in candidates if c.score >= settings.ENTITY_PLAUSIBLE_SCORE]
        plausible = plausible[: settings.ENTITY_CANDIDATE_LIMIT]
        if plausible:
            await asyncio.to_thread(
                set_resolved_candidates,
                tenant_id,
                user_message.id,
                [c.model_dump() for c in plausible],
            )
            return EntityResolution(
                outcome="ambiguous",
                candidates=plausible,
                reason=f"{len(plausible)} plausible candidate(s), top score={top.score:.2f}",
            )

    extraction = await extract_org_name(text, recent)
    if extraction is None:
        return EntityResolution(outcome="none", reason="org extraction failed")
    if not extraction.org_name or extraction.confidence < settings.ENTITY_EXTRACT_MIN_CONFIDENCE:
        return EntityResolution(
            outcome="none",
            reason=f"no confident organization (confidence={extraction.confidence:.2f})",
        )

    account = await asyncio.to_thread(
        upsert_account_by_normalized_name, tenant_id, extraction.org_name
    )
    if not await _link(tenant_id, thread, account.id):
        return EntityResolution(outcome="skipped", reason="thread already linked")
    return EntityResolution(
        outcome="created",
        account_id=account.id,
        account_name=account.name,
        reason=f"extracted with confidence={extraction.confidence:.2f}",
    )


def needs_resolution(thread: Thread, rows: Sequence[Message]) -> bool:
    """Unlinked thread on its first user message, or answering a disambiguation."""
    if thread.account_id:
        return False
    user_rows = [r for r in rows if r.role == "user"]
    return len(user_rows) == 1 or pending_candidates(rows) is not None


async def _resolve(tenant_id: str, thread: Thread, rows: Sequence[Message]) -> EntityResolution:
    user_rows = [r for r in rows if r.role == "user"]
    if not user_rows:
        return EntityResolution(outcome="skipped", reason="no user message")
    user_message = user_rows[-1]

    pending = pending_candidates(rows)
    if pending:
        previous, candidates = pending
        resolved = await _resolve_pending(tenant_id, thread, user_message, previous, candidates)
        if resolved:
            return resolved
        # Offer is consumed; do not re-ask on every later turn
        return EntityResolution(outcome="skipped", reason="reply did not pick a candidate")

    recent = [ChatMessage(role=r.role, content=r.content) for r in rows[:-1]]
    return await _resolve_new(tenant_id, thread, user_message, recent)


async def resolve_entity(
    tenant_id: str, thread: Thread, rows: Sequence[Message]
) -> EntityResolution:
    """
    Try to link the thread to an account. Never raises.

    Args:
        tenant_id: Tenant scope
        thread: Thread being resolved
        rows: Persisted messages, oldest first, ending with the new user message

    Returns:
        EntityResolution describing what happened
    """
    if not needs_resolution(thread, rows):
        return EntityResolution(outcome="skipped", reason="resolution not needed")

    settings = get_settings()
    try:
        resolution = await with_timeout(
            _resolve(tenant_id, thread, rows),
            settings.ENTITY_RESOLUTION_TIMEOUT_SECONDS,
            "entity resolution",
        )
    except Exception as e:
        logger.warning(
            f"Entity resolution failed (continuing): {e}",
            extra={"thread_id": thread.id},
        )
        return EntityResolution(outcome="failed", reason=str(e) or e.__class__.__name__)

    logger.info(
        f"Entity resolution for thread {thread.id}: {resolution.outcome} ({resolution.reason})",
        extra={"thread_id": thread.id},
    )
    return resolution
