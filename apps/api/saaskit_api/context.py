"""Request context.

Two things live here:

- ContextVars used only to decorate log records (request_id, user_id,
  team_id). Nothing reads them for authorization.
- RequestContext: the explicit per-request value every handler and store
  call receives. It carries the resolved caller identity and the session
  changes a handler wants applied to the response. There is no ambient
  "current user" anywhere else in the process.
"""

from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from saaskit_api.auth.identity import AuthSession, Identity, IdentityProvider
    from saaskit_api.billing.stripe_client import StripeClient

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Caller identity id, once resolved
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

# Acting team id, once resolved from the caller's membership
team_id_var: ContextVar[str] = ContextVar("team_id", default="")


@dataclass
class RequestContext:
    """Everything a mutation handler or query may depend on for one request."""

    db: "Session"
    identity_provider: "IdentityProvider"
    identity: Optional["Identity"] = None
    access_token: Optional[str] = None
    ip_address: Optional[str] = None
    billing: Optional["StripeClient"] = None

    # Set by sign_in / sign_up; consumed by the HTTP layer to write cookies.
    session: Optional["AuthSession"] = None
    session_cleared: bool = False

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.id if self.identity else None

    def establish_session(self, session: "AuthSession") -> None:
        """Adopt a freshly issued session for the rest of this request."""
        self.session = session
        self.identity = session.user
        self.access_token = session.access_token
        self.session_cleared = False
        user_id_var.set(session.user.id)

    def clear_session(self) -> None:
        self.session = None
        self.identity = None
        self.access_token = None
        self.session_cleared = True
        user_id_var.set("")
