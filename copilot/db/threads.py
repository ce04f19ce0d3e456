"""Database operations for chat_threads."""

from datetime import UTC, datetime

from copilot.core.logging import get_logger
from copilot.core.schemas_chat import Thread
from copilot.db.supabase_client import get_supabase

logger = get_logger(__name__)


def create_thread(tenant_id: str, owner_user_id: str | None = None) -> Thread:
    """
    Create an empty thread owned by a user.

    Raises:
        ValueError: If the insert returned no row
    """
    supabase = get_supabase()

    response = (
        supabase.table("chat_threads")
        .insert({"tenant_id": tenant_id, "owner_user_id": owner_user_id, "title": None})
        .execute()
    )
    if not response.data:
        raise ValueError("No data returned from create_thread")

    thread = Thread(**response.data[0])
    logger.info(
        f"Created thread {thread.id}",
        extra={"thread_id": thread.id, "tenant_id": tenant_id},
    )
    return thread


def get_thread(tenant_id: str, thread_id: str) -> Thread | None:
    """Get a thread by ID, scoped to the tenant."""
    supabase = get_supabase()

    response = (
        supabase.table("chat_threads")
        .select("id, tenant_id, owner_user_id, account_id, title, created_at, updated_at")
        .eq("tenant_id", tenant_id)
        .eq("id", thread_id)
        .maybe_single()
        .execute()
    )
    if not response or not response.data:
        return None
    return Thread(**response.data)


def touch_thread(tenant_id: str, thread_id: str) -> None:
    """Bump updated_at after a new message."""
    supabase = get_supabase()

    supabase.table("chat_threads").update(
        {"updated_at": datetime.now(UTC).isoformat()}
    ).eq("tenant_id", tenant_id).eq("id", thread_id).execute()


def set_thread_title(tenant_id: str, thread_id: str, title: str) -> bool:
    """Set the title only if the thread has none yet.

    Returns:
        True if a row was updated
    """
    supabase = get_supabase()

    response = (
        supabase.table("chat_threads")
        .update({"title": title})
        .eq("tenant_id", tenant_id)
        .eq("id", thread_id)
        .is_("title", "null")
        .execute()
    )
    return bool(response.data)


def link_thread_to_account(tenant_id: str, thread_id: str, account_id: str) -> bool:
    """
    Link a thread to an account unless it is already linked.

    Automatic resolution never overwrites an existing link.

    Returns:
        True if the link was written
    """
    supabase = get_supabase()

    response = (
        supabase.table("chat_threads")
        .update({"account_id": account_id})
        .eq("tenant_id", tenant_id)
        .eq("id", thread_id)
        .is_("account_id", "null")
        .execute()
    )
    linked = bool(response.data)
    if linked:
        logger.info(
            f"Linked thread {thread_id} to account {account_id}",
            extra={"thread_id": thread_id, "account_id": account_id},
        )
    return linked
