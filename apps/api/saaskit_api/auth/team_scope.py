"""Application-level team scoping.

The database policies are permissive for team tables, so this module is
where tenant isolation actually happens: the acting team is always taken
from the caller's own membership row, never from request input.
"""

import logging
from typing import Iterable, Optional

from saaskit_api.auth.identity import Identity
from saaskit_api.context import RequestContext, team_id_var
from saaskit_api.db.models import MANAGER_ROLES, TeamMember
from saaskit_api.db.repo_teams import TeamRepository

logger = logging.getLogger(__name__)


class TeamScopeError(Exception):
    """Caller cannot act on a team; the message is safe to show."""


class NotAuthenticated(TeamScopeError):
    def __init__(self, message: str = "User not authenticated."):
        super().__init__(message)


class NoTeam(TeamScopeError):
    def __init__(self, message: str = "User is not part of a team"):
        super().__init__(message)


class InsufficientRole(TeamScopeError):
    def __init__(self, message: str = "Only team owners and admins can perform this action."):
        super().__init__(message)


def require_identity(ctx: RequestContext) -> Identity:
    if ctx.identity is None:
        raise NotAuthenticated()
    return ctx.identity


def resolve_team_membership(ctx: RequestContext) -> Optional[TeamMember]:
    """Caller's membership (earliest joined), or None without identity/team."""
    if ctx.identity is None:
        return None
    membership = TeamRepository(ctx.db).membership_for_user(ctx.identity.id)
    if membership is not None:
        team_id_var.set(str(membership.team_id))
    return membership


def require_team_membership(ctx: RequestContext) -> TeamMember:
    """
    Raises:
        NotAuthenticated: no identity on the context
        NoTeam: identity has no membership row
    """
    require_identity(ctx)
    membership = resolve_team_membership(ctx)
    if membership is None:
        raise NoTeam()
    return membership


def require_team_role(
    membership: TeamMember,
    roles: Iterable[str] = MANAGER_ROLES,
    message: Optional[str] = None,
) -> TeamMember:
    allowed = frozenset(roles)
    if membership.role not in allowed:
        logger.warning(
            "auth.insufficient_role",
            extra={
                "user_id": membership.user_id,
                "team_id": membership.team_id,
                "role": membership.role,
                "required": sorted(allowed),
            },
        )
        raise InsufficientRole(message) if message else InsufficientRole()
    return membership
