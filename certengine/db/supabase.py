"""Supabase client singleton.

Provides ``get_supabase()`` which returns a lazily-initialized, process-wide
Supabase client using credentials from ``settings``.
"""

from supabase import Client, ClientOptions, create_client

from certengine.core.config import settings

_client: Client | None = None


def get_supabase() -> Client:
    """Return the singleton Supabase client, creating it on first call.

    Raises ``RuntimeError`` if ``SUPABASE_URL`` / ``SUPABASE_KEY`` are unset.
    """
    global _client
    if _client is None:
        if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
            raise RuntimeError("Supabase is not configured (SUPABASE_URL / SUPABASE_KEY)")
        _client = create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_KEY,
            options=ClientOptions(
                postgrest_client_timeout=settings.SUPABASE_TIMEOUT_SECONDS,
            ),
        )
    return _client
