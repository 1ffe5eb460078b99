"""Session authentication: builds the per-request RequestContext.

FLOW:
1. Token is taken from the sb-access-token cookie, or Authorization: Bearer
2. The identity provider resolves it (Supabase verifies signature + expiry)
3. A RequestContext carrying db, provider, identity and caller IP is returned

An unresolvable token is treated as anonymous, not as an error; handlers
decide what an anonymous caller may do. Read endpoints that need a caller
use require_session_context(), which answers 401 (rendered as a Problem
Detail by the global handler).
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from saaskit_api.auth.identity import IdentityProvider, SupabaseIdentityProvider
from saaskit_api.billing.stripe_client import StripeClient, get_stripe_client
from saaskit_api.context import RequestContext, user_id_var
from saaskit_api.db.session import get_db

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "sb-access-token"
REFRESH_TOKEN_COOKIE = "sb-refresh-token"

# HTTPBearer scheme for API clients that do not use cookies
session_security = HTTPBearer(auto_error=False, description="Supabase JWT Session Token")


@lru_cache(maxsize=1)
def _default_identity_provider() -> SupabaseIdentityProvider:
    return SupabaseIdentityProvider()


def get_identity_provider() -> IdentityProvider:
    """Identity provider dependency (overridden in tests)."""
    return _default_identity_provider()


def get_billing() -> Optional[StripeClient]:
    """Stripe client dependency; None when billing is not configured."""
    try:
        return get_stripe_client()
    except ValueError:
        return None


def client_ip(request: Request) -> Optional[str]:
    """Caller address: first X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first[:45]
    return request.client.host if request.client else None


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or None


async def get_request_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(session_security),
    db: Session = Depends(get_db),
    provider: IdentityProvider = Depends(get_identity_provider),
    billing: Optional[StripeClient] = Depends(get_billing),
) -> RequestContext:
    """Resolve the caller (if any) into an explicit RequestContext."""
    ctx = RequestContext(
        db=db,
        identity_provider=provider,
        ip_address=client_ip(request),
        billing=billing,
    )

    token = _extract_token(request, credentials)
    if not token:
        return ctx

    identity = provider.get_identity(token)
    if identity is None:
        logger.info("session.token.rejected")
        return ctx

    ctx.identity = identity
    ctx.access_token = token
    user_id_var.set(identity.id)
    return ctx


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_session_context(
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """Like get_request_context, but 401 for anonymous callers."""
    if ctx.identity is None:
        raise _unauthorized("User not authenticated.")
    return ctx
