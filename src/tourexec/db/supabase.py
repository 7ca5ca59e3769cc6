"""Cached Supabase client shared by the intent sink and the health check."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from supabase import Client, create_client

from ..config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_supabase_client() -> Optional[Client]:
    """Return the project client, or None when Supabase is not set up.

    Creating the client does not contact the server; connectivity problems
    surface on the first query.
    """
    url, key = settings.supabase_url, settings.supabase_key
    if not url or not key:
        logger.info(f"Supabase not configured; intents are written to the '{settings.intent_sink}' sink")
        return None
    try:
        return create_client(url, key)
    except Exception as exc:
        logger.error(f"Invalid Supabase configuration for {url}: {exc}")
        return None
