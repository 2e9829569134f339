"""Supabase client construction for auth operations.

SECURITY NOTICE:
- SB_SECRET_KEY is server-only (NEVER exposed to clients)
- Session validation uses the publishable key
- Account deletion (auth.admin) uses the secret key

Clients are built from injected Settings and cached per (url, key); nothing
is created at import time.
"""

import logging
from functools import lru_cache

from fastapi import Depends
from supabase import Client, create_client

from linket_api.config.settings import Settings, get_settings
from linket_api.errors import UnconfiguredError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def build_supabase_client(url: str, key: str) -> Client:
    """Create a Supabase client (cached per url/key pair)."""
    logger.info("Creating Supabase client", extra={"event": "supabase.client_created"})
    return create_client(url, key)


def get_supabase_client(settings: Settings = Depends(get_settings)) -> Client:
    """Supabase client for validating user sessions.

    Raises:
        UnconfiguredError: If SUPABASE_URL or the publishable key is missing
    """
    if not settings.auth_configured:
        raise UnconfiguredError("Authentication is not configured.")
    return build_supabase_client(settings.supabase_url, settings.supabase_publishable_key)


def get_supabase_admin_client(settings: Settings = Depends(get_settings)) -> Client:
    """Supabase client with the secret key, for auth.admin operations.

    Raises:
        UnconfiguredError: If SUPABASE_URL or the secret key is missing
    """
    if not settings.admin_auth_configured:
        raise UnconfiguredError("Account deletion is not configured.")
    return build_supabase_client(settings.supabase_url, settings.supabase_secret_key)
