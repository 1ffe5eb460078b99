"""Identity provider adapter.

Wraps Supabase Auth behind a small protocol so handlers never touch the SDK
directly and tests can substitute an in-memory provider.

SECURITY:
- Passwords are passed through to Supabase and never logged
- sign_up / sign_in use a throwaway publishable-key client per call
  (persist_session=False): no auth session is ever held process-wide
- Admin calls (listing, deletion, password update, revocation) use the
  secret-key client and are only reachable from server-side handlers
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from supabase import Client, ClientOptions, create_client

from saaskit_api.supabase_client import (
    get_supabase_admin_client,
    get_supabase_api_key,
    get_supabase_url,
)

logger = logging.getLogger(__name__)

# Page size for the admin user listing.
LIST_PAGE_SIZE = 1000


class AuthError(Exception):
    """Identity provider rejected or failed an operation.

    The message is safe to log; it is never shown to end users verbatim.
    """


@dataclass(frozen=True)
class Identity:
    """Provider-owned account record (id + email)."""

    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class AuthSession:
    """Tokens issued by the provider on sign-in / sign-up."""

    access_token: str
    refresh_token: Optional[str]
    user: Identity


class IdentityProvider(Protocol):
    def sign_up(self, email: str, password: str) -> tuple[Identity, Optional[AuthSession]]:
        ...

    def sign_in(self, email: str, password: str) -> AuthSession:
        ...

    def sign_out(self, access_token: str) -> None:
        ...

    def get_identity(self, access_token: str) -> Optional[Identity]:
        ...

    def update_password(self, user_id: str, new_password: str) -> None:
        ...

    def delete_identity(self, user_id: str) -> None:
        ...

    def list_identities(self) -> list[Identity]:
        ...


def _to_identity(user) -> Identity:
    return Identity(id=str(user.id), email=user.email)


def _to_session(session, user) -> AuthSession:
    return AuthSession(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        user=_to_identity(user),
    )


class SupabaseIdentityProvider:
    """IdentityProvider backed by supabase-py.

    Nothing is retried: a failed remote call surfaces as AuthError and the
    calling handler turns it into a user-facing message.
    """

    def __init__(self, admin_client: Optional[Client] = None):
        self._admin_client = admin_client

    @property
    def admin(self) -> Client:
        if self._admin_client is None:
            self._admin_client = get_supabase_admin_client()
        return self._admin_client

    def _public_client(self) -> Client:
        return create_client(
            get_supabase_url(),
            get_supabase_api_key(),
            options=ClientOptions(persist_session=False, auto_refresh_token=False),
        )

    def sign_up(self, email: str, password: str) -> tuple[Identity, Optional[AuthSession]]:
        try:
            response = self._public_client().auth.sign_up({"email": email, "password": password})
        except Exception as e:
            logger.warning(
                "identity.sign_up.failed",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            raise AuthError("sign_up failed") from e

        if not response.user:
            raise AuthError("sign_up returned no user")

        identity = _to_identity(response.user)
        session = _to_session(response.session, response.user) if response.session else None
        logger.info(
            "identity.sign_up.success",
            extra={"user_id": identity.id, "session_issued": session is not None},
        )
        return identity, session

    def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            response = self._public_client().auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            logger.info(
                "identity.sign_in.rejected",
                extra={"error_type": type(e).__name__},
            )
            raise AuthError("sign_in failed") from e

        if not response.session or not response.user:
            raise AuthError("sign_in returned no session")
        return _to_session(response.session, response.user)

    def sign_out(self, access_token: str) -> None:
        try:
            self.admin.auth.admin.sign_out(access_token)
        except Exception as e:
            logger.warning(
                "identity.sign_out.failed",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            raise AuthError("sign_out failed") from e

    def get_identity(self, access_token: str) -> Optional[Identity]:
        """Resolve an access token to its identity; invalid/expired → None."""
        try:
            response = self.admin.auth.get_user(access_token)
        except Exception as e:
            logger.info(
                "identity.token.rejected",
                extra={"error_type": type(e).__name__},
            )
            return None

        if not response or not response.user:
            return None
        return _to_identity(response.user)

    def update_password(self, user_id: str, new_password: str) -> None:
        try:
            self.admin.auth.admin.update_user_by_id(user_id, {"password": new_password})
        except Exception as e:
            logger.error(
                "identity.update_password.failed",
                extra={"user_id": user_id, "error_type": type(e).__name__, "error": str(e)},
            )
            raise AuthError("update_password failed") from e

    def delete_identity(self, user_id: str) -> None:
        try:
            self.admin.auth.admin.delete_user(user_id)
        except Exception as e:
            logger.error(
                "identity.delete.failed",
                extra={"user_id": user_id, "error_type": type(e).__name__, "error": str(e)},
            )
            raise AuthError("delete_identity failed") from e

    def list_identities(self) -> list[Identity]:
        """Every identity, walking the admin listing until a short page."""
        identities: list[Identity] = []
        page = 1
        while True:
            try:
                users = self.admin.auth.admin.list_users(page=page, per_page=LIST_PAGE_SIZE)
            except Exception as e:
                logger.error(
                    "identity.list.failed",
                    extra={"page": page, "error_type": type(e).__name__, "error": str(e)},
                )
                raise AuthError("list_identities failed") from e
            identities.extend(_to_identity(user) for user in users)
            if len(users) < LIST_PAGE_SIZE:
                return identities
            page += 1


def find_identity_by_email(provider: IdentityProvider, email: str) -> Optional[Identity]:
    """Look up an identity by exact email via the admin listing."""
    for identity in provider.list_identities():
        if identity.email == email:
            return identity
    return None
