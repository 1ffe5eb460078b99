"""Supabase client configuration.

SECURITY NOTICE:
- SB_SECRET_KEY is server-only (NEVER exposed to clients)
- SB_PUBLISHABLE_KEY is the browser-safe key; the server uses it for
  sign_up / sign_in so those calls go through the normal auth flow
- Admin operations (user listing, deletion, password reset, token
  revocation) use SB_SECRET_KEY, which bypasses RLS

KEY NAMING:
- Current Supabase dashboard: SB_PUBLISHABLE_KEY / SB_SECRET_KEY
- Legacy: SUPABASE_ANON_KEY / SUPABASE_SERVICE_ROLE_KEY (still accepted)
"""

import logging
import os
from functools import lru_cache

from supabase import Client, create_client

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_supabase_url() -> str:
    """Get Supabase project URL from environment.

    Raises:
        RuntimeError: If SUPABASE_URL not set
    """
    url = os.getenv("SUPABASE_URL")
    if not url:
        raise RuntimeError(
            "SUPABASE_URL environment variable not set. "
            "Required for sign-up, sign-in and session validation."
        )
    return url


@lru_cache(maxsize=1)
def get_supabase_api_key() -> str:
    """Get Supabase publishable (anon) key.

    Priority:
    1. SB_PUBLISHABLE_KEY
    2. SUPABASE_ANON_KEY (legacy)

    Raises:
        RuntimeError: If neither key is set
    """
    key = os.getenv("SB_PUBLISHABLE_KEY")
    if key:
        return key

    key = os.getenv("SUPABASE_ANON_KEY")
    if key:
        logger.info(
            "Using legacy SUPABASE_ANON_KEY (consider migrating to SB_PUBLISHABLE_KEY)"
        )
        return key

    raise RuntimeError(
        "Neither SB_PUBLISHABLE_KEY nor SUPABASE_ANON_KEY environment variable is set. "
        "Set SB_PUBLISHABLE_KEY (recommended) or SUPABASE_ANON_KEY (legacy)."
    )


@lru_cache(maxsize=1)
def get_supabase_secret_key() -> str:
    """Get Supabase secret (service role) key.

    Priority:
    1. SB_SECRET_KEY
    2. SUPABASE_SERVICE_ROLE_KEY (legacy)

    Raises:
        RuntimeError: If neither key is set
    """
    key = os.getenv("SB_SECRET_KEY")
    if key:
        return key

    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if key:
        logger.info(
            "Using legacy SUPABASE_SERVICE_ROLE_KEY (consider migrating to SB_SECRET_KEY)"
        )
        return key

    raise RuntimeError(
        "Neither SB_SECRET_KEY nor SUPABASE_SERVICE_ROLE_KEY environment variable is set. "
        "Required for server-side admin operations (account deletion, member lookup). "
        "Set SB_SECRET_KEY (recommended) or SUPABASE_SERVICE_ROLE_KEY (legacy)."
    )


@lru_cache(maxsize=1)
def get_supabase_admin_client() -> Client:
    """Get the process-wide Supabase admin client.

    The admin client holds no user session; it only carries the secret key,
    so sharing it across requests leaks no caller identity.

    Raises:
        RuntimeError: If environment variables not set
    """
    url = get_supabase_url()
    secret_key = get_supabase_secret_key()

    logger.info(
        "Initializing Supabase admin client",
        extra={
            "supabase_url": url,
            "key_type": "secret",
        },
    )

    return create_client(url, secret_key)
