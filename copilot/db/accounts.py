"""Database operations for accounts."""

from datetime import UTC, datetime

from copilot.core.conversation import normalize_name
from copilot.core.logging import get_logger
from copilot.core.schemas_chat import Account, AccountCandidate
from copilot.db.supabase_client import get_supabase

logger = get_logger(__name__)


def search_accounts(tenant_id: str, query_text: str, limit: int = 5) -> list[AccountCandidate]:
    """
    Fuzzy/full-text search over a tenant's accounts.

    Backed by the ``search_accounts`` RPC (trigram similarity on
    normalized_name), returning candidates ranked by score descending.
    """
    q = (query_text or "").strip()
    if not q:
        return []

    supabase = get_supabase()

    response = supabase.rpc(
        "search_accounts",
        {"p_tenant_id": tenant_id, "p_query": q, "p_limit": limit},
    ).execute()

    candidates = [
        AccountCandidate(id=str(row["id"]), name=row["name"], score=float(row.get("score") or 0))
        for row in (response.data or [])
    ]
    candidates.sort(key=lambda c: c.score, reverse=True)
    return candidates[:limit]


def get_account(tenant_id: str, account_id: str) -> Account | None:
    """Get an account by ID, scoped to the tenant."""
    supabase = get_supabase()

    response = (
        supabase.table("accounts")
        .select("id, tenant_id, name, normalized_name, metadata_json, updated_at")
        .eq("tenant_id", tenant_id)
        .eq("id", account_id)
        .maybe_single()
        .execute()
    )
    if not response or not response.data:
        return None
    return Account(**response.data)


def upsert_account_by_normalized_name(tenant_id: str, name: str) -> Account:
    """
    Create an account, or return the existing one with the same normalized name.

    Raises:
        ValueError: If the name is blank or the upsert returned no row
    """
    clean = " ".join((name or "").split())
    if not clean:
        raise ValueError("Account name must not be blank")

    supabase = get_supabase()

    response = (
        supabase.table("accounts")
        .upsert(
            {
                "tenant_id": tenant_id,
                "name": clean,
                "normalized_name": normalize_name(clean),
                "updated_at": datetime.now(UTC).isoformat(),
            },
            on_conflict="tenant_id,normalized_name",
        )
        .execute()
    )
    if not response.data:
        raise ValueError(f"No data returned from upsert_account for {clean}")

    account = Account(**response.data[0])
    logger.info(
        f"Upserted account {account.id}: {account.name}",
        extra={"account_id": account.id, "tenant_id": tenant_id},
    )
    return account
