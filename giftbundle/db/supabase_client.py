"""
Supabase Client

Provides the service-role Supabase client used by the bundle store.
Bundles are written by the backend only, so there is no anon-key client.
"""

from typing import Optional

from supabase import Client, create_client

from giftbundle.core.config import Settings

# Module-level client — initialized lazily
_service_client: Optional[Client] = None


def get_service_client(settings: Settings) -> Client:
    """
    Get the Supabase client using the service_role (admin) key.

    Raises:
        EnvironmentError: when SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is missing.
    """
    global _service_client
    if _service_client is None:
        if not settings.is_supabase_configured:
            raise EnvironmentError(
                "Missing required Supabase environment variables: "
                "SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY"
            )
        _service_client = create_client(settings.supabase_url, settings.supabase_service_role_key)
    return _service_client


def _reset_client() -> None:
    """Drop the cached client. Used by tests."""
    global _service_client
    _service_client = None
