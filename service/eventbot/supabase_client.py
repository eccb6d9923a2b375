from functools import lru_cache

from supabase import create_client, Client
from eventbot.config import get_settings


@lru_cache()
def get_supabase_admin() -> Client:
    """Service role client for the EventApp database (bypasses RLS)."""
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key
    )
