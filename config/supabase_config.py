"""
Supabase client management with retry logic.
"""
from __future__ import annotations

from supabase import AsyncClient, AsyncClientOptions, acreate_client
from tenacity import retry, stop_after_attempt, wait_exponential

from config.settings import settings
from config.logging_config import logger


@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10))
async def get_supabase_client() -> AsyncClient:
    """Create a new async Supabase client (with retry on transient failures)."""
    client = await acreate_client(
        settings.supabase_url,
        settings.supabase_key,
        options=AsyncClientOptions(schema=settings.supabase_schema),
    )
    logger.info(f"Supabase client established → {settings.supabase_url} (schema={settings.supabase_schema})")
    return client
