"""
Turn orchestrator: one user message in, one persisted assistant reply out.

Per turn:
1. load thread history and, concurrently, knowledge hits and the linked account
2. decide routing and research (knowledge richness feeds the research call)
3. fetch research (cache first)
4. run routed specialists in a bounded pool
5. assemble context and synthesize
6. persist exactly one assistant message

Stateless between turns: all continuity is re-read from message history.
Only a synthesis failure fails the turn; every other stage degrades.
"""

import asyncio
import logging
import time
import uuid
from typing import Any

from copilot.agents.decision_router import decide_turn
from copilot.agents.entity_resolver import (
    entity_data_for,
    format_disambiguation_block,
    parse_candidates,
    resolve_entity,
)
from copilot.agents.specialist_pool import failure_alerts, run_specialists
from copilot.agents.specialists.base import SpecialistContext
from copilot.agents.synthesis import SynthesisError, synthesize
from copilot.agents.thread_title import auto_title_thread
from copilot.core.background import fire_and_forget
from copilot.core.config import get_settings
from copilot.core.context_assembler import (
    assemble_context,
    build_account_memory_block,
    build_council_block,
    build_perspectives_block,
    build_routing_block,
)
from copilot.core.conversation import last_user_text, to_chat_messages
from copilot.core.knowledge import format_knowledge_block, retrieve_knowledge
from copilot.core.logging import bind_turn, get_logger, log_with_context
from copilot.core.research import fetch_research, format_research_block
from copilot.core.schemas_chat import (
    Account,
    EntityResolution,
    Message,
    SpecialistSummary,
    Thread,
    TurnFailure,
    TurnResult,
)
from copilot.core.timeouts import StageTimeoutError, with_timeout
from copilot.db.accounts import get_account
from copilot.db.messages import append_message, list_messages
from copilot.db.threads import create_thread, get_thread, touch_thread

logger = get_logger(__name__)


async def _load_account(tenant_id: str, thread: Thread) -> Account | None:
    """Linked account, or None when unlinked or unreadable."""
    if not thread.account_id:
        return None
    try:
        return await asyncio.to_thread(get_account, tenant_id, thread.account_id)
    except Exception as e:
        logger.warning(f"Account load failed (continuing without account memory): {e}")
        return None


def _disambiguation_block(thread: Thread, rows: list[Message]) -> str:
    if thread.account_id:
        return ""
    user_rows = [r for r in rows if r.role == "user"]
    if not user_rows:
        return ""
    return format_disambiguation_block(parse_candidates(user_rows[-1].resolved_candidates))


async def _compose_turn(
    tenant_id: str,
    thread_id: str,
    entity_resolution: EntityResolution | None,
) -> TurnResult | TurnFailure:
    """Every stage up to the synthesized reply. Persists nothing."""
    settings = get_settings()

    thread = await asyncio.to_thread(get_thread, tenant_id, thread_id)
    if thread is None:
        return TurnFailure(kind="not_found", message="thread not found", thread_id=thread_id)

    rows = await asyncio.to_thread(list_messages, tenant_id, thread_id)
    history = to_chat_messages(rows)
    subject = last_user_text(history)
    if not subject.strip():
        return TurnFailure(
            kind="not_found", message="thread has no user message", thread_id=thread_id
        )

    # Knowledge runs before routing so richness can inform the research decision
    hits, account = await asyncio.gather(
        retrieve_knowledge(tenant_id, subject),
        _load_account(tenant_id, thread),
    )
    knowledge_block = format_knowledge_block(hits)
    account_block = build_account_memory_block(account)

    decision = await decide_turn(
        history,
        knowledge_rich=len(hits) >= settings.KNOWLEDGE_RICH_THRESHOLD,
        decision_context={"knowledge_hits": len(hits)},
        entity_context={"account": account.name, "facts": account.metadata_json} if account else None,
    )
    routing, research_decision = decision.routing, decision.research
    route = "+".join(routing.agents)

    research = None
    if research_decision.needed:
        research = await fetch_research(tenant_id, route, research_decision, subject)
    research_block = format_research_block(research.answer, research.citations) if research else ""

    specialist_results = await run_specialists(
        routing.specialists,
        SpecialistContext(
            tenant_id=tenant_id,
            messages=history,
            context_blocks=[knowledge_block, account_block, research_block],
            entity_data=entity_data_for(account),
        ),
    )

    context = assemble_context(
        history,
        knowledge_block=knowledge_block,
        account_memory_block=account_block,
        research_block=research_block,
        disambiguation_block=_disambiguation_block(thread, rows),
        routing_block=build_routing_block(routing, research_decision),
        perspectives_block=build_perspectives_block(specialist_results),
        council_block=build_council_block(specialist_results, failure_alerts(specialist_results)),
    )

    try:
        reply = await synthesize(context)
    except SynthesisError as e:
        log_with_context(logger, logging.WARNING, f"Synthesis failed: {e}", kind=e.kind)
        return TurnFailure(kind=e.kind, message=str(e), thread_id=thread_id)

    return TurnResult(
        thread_id=thread_id,
        message_id=None,
        reply=reply,
        route=route,
        decision_mode=routing.decision_mode,
        confidence=routing.confidence,
        reason=routing.reason,
        used_research=research is not None,
        used_knowledge=bool(hits),
        executed_agents=[r.agent_id for r in specialist_results],
        specialist_results=[
            SpecialistSummary(agent=r.agent_id, ok=r.ok, error=r.error, elapsed_ms=r.elapsed_ms)
            for r in specialist_results
        ],
        research=research_decision,
        entity_resolution=entity_resolution,
    )


async def respond(
    tenant_id: str,
    thread_id: str,
    entity_resolution: EntityResolution | None = None,
) -> TurnResult | TurnFailure:
    """
    Run one turn over the stored history of a thread.

    Args:
        tenant_id: Tenant scope
        thread_id: Thread whose last message is the user's
        entity_resolution: Outcome of resolution on this send, reported back

    Returns:
        TurnResult on success, TurnFailure (nothing persisted) otherwise
    """
    settings = get_settings()
    turn_id = str(uuid.uuid4())
    started = time.monotonic()

    with bind_turn(turn_id):
        # The ceiling stops before persistence so a timeout never leaves a saved reply
        try:
            outcome = await with_timeout(
                _compose_turn(tenant_id, thread_id, entity_resolution),
                settings.TURN_TIMEOUT_SECONDS,
                "turn",
            )
        except StageTimeoutError as e:
            log_with_context(logger, logging.WARNING, str(e), thread_id=thread_id)
            return TurnFailure(kind="timeout", message=str(e), thread_id=thread_id)

        if isinstance(outcome, TurnFailure):
            return outcome
        return await _persist_reply(tenant_id, outcome, started)


async def _persist_reply(
    tenant_id: str, result: TurnResult, started: float
) -> TurnResult | TurnFailure:
    thread_id = result.thread_id
    try:
        saved = await asyncio.to_thread(append_message, tenant_id, thread_id, "assistant", result.reply)
    except Exception as e:
        logger.error(f"Failed to persist assistant reply: {e}")
        return TurnFailure(kind="persist_failed", message=str(e), thread_id=thread_id)

    fire_and_forget(asyncio.to_thread(touch_thread, tenant_id, thread_id), "touch thread")

    elapsed_ms = int((time.monotonic() - started) * 1000)
    log_with_context(
        logger,
        logging.INFO,
        f"Turn completed in {elapsed_ms}ms via {result.route}",
        thread_id=thread_id,
        decision_mode=result.decision_mode,
        used_research=result.used_research,
        elapsed_ms=elapsed_ms,
    )
    return result.model_copy(update={"message_id": saved.id})


async def create_thread_for_user(tenant_id: str, user_id: str | None) -> Thread:
    return await asyncio.to_thread(create_thread, tenant_id, user_id)


async def send_message(
    tenant_id: str,
    user_id: str | None,
    thread_id: str | None,
    content: str,
) -> TurnResult | TurnFailure:
    """
    Persist a user message and run the turn.

    Creates the thread when ``thread_id`` is None, schedules auto-title on
    the first message, and resolves the thread's account before routing.

    Raises:
        ValueError: If content is blank
    """
    text = (content or "").strip()
    if not text:
        raise ValueError("message must not be blank")

    settings = get_settings()

    if thread_id:
        thread = await asyncio.to_thread(get_thread, tenant_id, thread_id)
        if thread is None:
            return TurnFailure(kind="not_found", message="thread not found", thread_id=thread_id)
    else:
        thread = await create_thread_for_user(tenant_id, user_id)

    try:
        await asyncio.to_thread(append_message, tenant_id, thread.id, "user", text)
    except Exception as e:
        logger.error(f"Failed to persist user message: {e}")
        return TurnFailure(kind="persist_failed", message=str(e), thread_id=thread.id)

    rows = await asyncio.to_thread(list_messages, tenant_id, thread.id)
    is_first = sum(1 for r in rows if r.role == "user") == 1

    if is_first and settings.AUTO_TITLE_ENABLED and not thread.title:
        fire_and_forget(auto_title_thread(tenant_id, thread.id, text), "auto-title")

    resolution = await resolve_entity(tenant_id, thread, rows)
    return await respond(tenant_id, thread.id, entity_resolution=resolution)


def failure_payload(failure: TurnFailure) -> dict[str, Any]:
    """User-facing error body; details stay in the logs."""
    return {
        "ok": False,
        "kind": failure.kind,
        "error": "I hit an issue, try again",
        "thread_id": failure.thread_id,
    }
