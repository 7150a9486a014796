"""Supabase client shared by the context and outcome repositories"""
from typing import Optional
from supabase import create_client, Client
from config.settings import settings
import logging

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None


def get_supabase() -> Client:
    """Return the process-wide Supabase client, creating it on first use.

    Only called when USER_CONTEXT_BACKEND=supabase; the in-memory backend never
    touches the network.
    """
    global _supabase_client

    if _supabase_client is not None:
        return _supabase_client

    if not (settings.SUPABASE_URL and settings.SUPABASE_KEY):
        raise RuntimeError("Supabase is not configured: set SUPABASE_URL and SUPABASE_KEY")

    logger.info(f"Connecting context storage to Supabase at {settings.SUPABASE_URL}")
    _supabase_client = create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    logger.info("✓ Supabase client initialized")
    return _supabase_client
