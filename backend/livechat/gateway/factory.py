"""
Gateway Factory - Creates the configured persistence gateway instance.
"""

from typing import Any, Optional

from ..storage import LocalStorage, StorageInterface
from .interface import PersistenceGateway
from .local_gateway import LocalGateway
from .supabase_gateway import SupabaseGateway


def create_gateway(config: Any, storage: Optional[StorageInterface] = None) -> PersistenceGateway:
    """
    Create a persistence gateway based on configuration.

    Args:
        config: Settings object (gateway_backend, storage and supabase fields)
        storage: Blob storage for the local backend (created from config if omitted)

    Returns:
        PersistenceGateway instance

    Raises:
        ValueError: Unknown backend or missing platform credentials
    """
    backend = config.gateway_backend.lower()

    if backend == "local":
        return LocalGateway(
            storage or LocalStorage(config.local_storage_path),
            public_base_url=config.public_base_url,
            bucket=config.attachments_bucket,
        )

    elif backend == "supabase":
        if not config.supabase_url or not config.supabase_key:
            raise ValueError("supabase_url and supabase_key are required for the supabase gateway")
        return SupabaseGateway(
            url=config.supabase_url,
            api_key=config.supabase_key,
            bucket=config.attachments_bucket,
            schema=config.supabase_schema,
            cache_control=config.attachment_cache_control,
            heartbeat_interval=config.realtime_heartbeat_interval,
            join_timeout=config.realtime_join_timeout,
        )

    else:
        raise ValueError(f"Unsupported gateway backend: {config.gateway_backend}")
