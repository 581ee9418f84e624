"""Supabase client connection."""

import logging
from typing import Optional

from supabase import AsyncClient, create_async_client

from app.config import get_settings

logger = logging.getLogger(__name__)

# Singleton instance
_async_client: AsyncClient | None = None


async def get_async_supabase_client() -> Optional[AsyncClient]:
    """Get async Supabase client, or ``None`` when persistence is not configured."""
    global _async_client
    if _async_client is None:
        settings = get_settings()
        if not settings.supabase_enabled:
            return None
        _async_client = await create_async_client(
            settings.supabase_url,
            settings.supabase_service_key,
        )
        logger.info("Supabase async client initialized")
    return _async_client


def reset_clients() -> None:
    """Reset clients for testing."""
    global _async_client
    _async_client = None
