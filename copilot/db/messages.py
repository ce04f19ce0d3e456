"""Database operations for chat_messages."""

from typing import Any

from copilot.core.logging import get_logger
from copilot.core.schemas_chat import Message
from copilot.db.supabase_client import get_supabase

logger = get_logger(__name__)

_COLUMNS = "id, thread_id, tenant_id, role, content, created_at, resolved_candidates"


def list_messages(tenant_id: str, thread_id: str) -> list[Message]:
    """List a thread's messages in creation order."""
    supabase = get_supabase()

    response = (
        supabase.table("chat_messages")
        .select(_COLUMNS)
        .eq("tenant_id", tenant_id)
        .eq("thread_id", thread_id)
        .order("created_at", desc=False)
        .execute()
    )
    return [Message(**row) for row in (response.data or [])]


def append_message(tenant_id: str, thread_id: str, role: str, content: str) -> Message:
    """
    Insert one message.

    Raises:
        ValueError: If the insert returned no row
    """
    supabase = get_supabase()

    response = (
        supabase.table("chat_messages")
        .insert(
            {
                "tenant_id": tenant_id,
                "thread_id": thread_id,
                "role": role,
                "content": content,
            }
        )
        .execute()
    )
    if not response.data:
        raise ValueError("No data returned from append_message")
    return Message(**response.data[0])


def set_resolved_candidates(
    tenant_id: str, message_id: str, candidates: list[dict[str, Any]] | None
) -> None:
    """Remember (or clear) ambiguous account matches on a message."""
    supabase = get_supabase()

    supabase.table("chat_messages").update({"resolved_candidates": candidates}).eq(
        "tenant_id", tenant_id
    ).eq("id", message_id).execute()
