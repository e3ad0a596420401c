"""Service-role Supabase client shared by the job, history and storage backends."""

from typing import Optional

from supabase import create_client, Client
from tryon.config import Settings, settings as default_settings

_client: Client | None = None


def get_supabase(config: Optional[Settings] = None) -> Client:
    """Get or create the service-role client.

    The first call fixes the credentials; later calls return the same client.
    """
    global _client
    if _client is None:
        config = config or default_settings
        if not config.supabase_url or not config.supabase_service_role_key:
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set "
                "when job_store_backend or storage_backend is 'supabase'"
            )
        _client = create_client(config.supabase_url, config.supabase_service_role_key)
    return _client
