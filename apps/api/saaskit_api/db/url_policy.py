"""Supabase URL policy helpers: host detection and sslmode injection.

Shared by:
  - saaskit_api.db.engine   (API runtime, via connect_args)
  - alembic/env.py          (offline SQL generation, via ensure_sslmode)

URL-embedded sslmode always wins; a Supabase URL without one gets the
default injected.
"""

from typing import Optional
from urllib.parse import parse_qs, urlparse

# SSL modes that provide wire encryption.
SAFE_SSL_MODES: frozenset = frozenset({"require", "verify-ca", "verify-full"})


def is_supabase_host(url: str) -> bool:
    """Return True if the URL points to a Supabase-managed host.

    Matches:
      - *.supabase.co             (direct / session pooler)
      - *.pooler.supabase.com     (transaction pooler, port 6543)
    """
    return ".supabase.co" in url or ".pooler.supabase.com" in url


def get_sslmode_from_url(url: str) -> Optional[str]:
    """Extract sslmode value from URL query string (None if absent).

    Examples:
        >>> get_sslmode_from_url("postgresql://host/db?sslmode=require")
        'require'
    """
    qs = parse_qs(urlparse(url).query)
    modes = qs.get("sslmode", [])
    return modes[0] if modes else None


def ensure_sslmode(url: str, default_mode: str = "require") -> str:
    """Ensure sslmode is present in the URL for Supabase hosts.

    - Non-Supabase host                     -> URL returned unchanged.
    - Supabase host, sslmode already in URL -> URL returned unchanged.
    - Supabase host, no sslmode in URL      -> append ?sslmode=<default_mode>.

    Examples:
        >>> ensure_sslmode("postgresql://host.pooler.supabase.com:6543/db")
        'postgresql://host.pooler.supabase.com:6543/db?sslmode=require'
        >>> ensure_sslmode("postgresql://localhost:5432/db")
        'postgresql://localhost:5432/db'
    """
    if not is_supabase_host(url):
        return url

    if get_sslmode_from_url(url):
        return url

    sep = "&" if "?" in url else "?"
    return f"{url}{sep}sslmode={default_mode}"
