"""Shared Supabase client for the copilot stores."""

from functools import lru_cache

from supabase import Client, create_client

from copilot.core.config import get_settings


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Service-role client shared by every store module.

    The client is synchronous; async callers go through ``asyncio.to_thread``.
    Tenant scoping is applied per query, never by the client.

    Raises:
        RuntimeError: If credentials are missing or the client cannot be built
    """
    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Supabase client for {settings.SUPABASE_URL} failed: {e}") from e
