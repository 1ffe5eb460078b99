"""Caller-scoped store operations.

Each function takes the explicit RequestContext (or a bare Session for
system paths such as the Stripe webhook) and returns plain data. Missing
identity or team yields None / [] where the caller is merely anonymous or
teamless; get_activity_logs() is the one read that insists on a caller.
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.orm import Session

from saaskit_api.auth.identity import AuthError
from saaskit_api.auth.team_scope import require_identity, resolve_team_membership
from saaskit_api.context import RequestContext
from saaskit_api.db.models import Profile, Team, TeamMember
from saaskit_api.db.repo_activity import ActivityLogRepository
from saaskit_api.db.repo_invitations import InvitationRepository
from saaskit_api.db.repo_profiles import ProfileRepository
from saaskit_api.db.repo_teams import TeamRepository

logger = logging.getLogger(__name__)

ACTIVITY_PAGE_SIZE = 10


def get_user(ctx: RequestContext) -> Optional[Profile]:
    """Current caller's profile; None when anonymous, deleted or missing."""
    if ctx.identity is None:
        return None
    return ProfileRepository(ctx.db).get_active(ctx.identity.id)


def get_user_with_team(ctx: RequestContext) -> Optional[dict[str, Any]]:
    """Caller's profile plus the team id they act on (None if teamless)."""
    profile = get_user(ctx)
    if profile is None:
        return None
    membership = resolve_team_membership(ctx)
    return {
        "user": profile,
        "team_id": membership.team_id if membership else None,
    }


def create_team(ctx: RequestContext, name: str) -> tuple[Team, TeamMember]:
    """Create a team owned by the caller, team + owner membership in one commit."""
    identity = require_identity(ctx)
    try:
        team, owner = TeamRepository(ctx.db).create_with_owner(name, identity.id)
        ctx.db.commit()
    except Exception:
        ctx.db.rollback()
        raise
    logger.info("team.created", extra={"team_id": team.id, "user_id": identity.id})
    return team, owner


def get_team_members(ctx: RequestContext) -> list[TeamMember]:
    """Members of the caller's team, earliest joined first; [] when teamless."""
    membership = resolve_team_membership(ctx)
    if membership is None:
        return []
    return TeamRepository(ctx.db).list_members(membership.team_id)


def get_team_for_user(ctx: RequestContext) -> Optional[dict[str, Any]]:
    """Caller's team with every member's profile and email.

    Emails live only in the identity provider, so they are joined in from
    its user listing by id. A listing failure degrades to email=None rather
    than hiding the team.
    """
    membership = resolve_team_membership(ctx)
    if membership is None:
        return None

    team = membership.team
    members = TeamRepository(ctx.db).list_members(team.id)

    emails: dict[str, Optional[str]] = {}
    try:
        emails = {identity.id: identity.email for identity in ctx.identity_provider.list_identities()}
    except AuthError:
        logger.warning("team.member_emails.unavailable", extra={"team_id": team.id})

    return {
        "id": team.id,
        "name": team.name,
        "plan_name": team.plan_name,
        "subscription_status": team.subscription_status,
        "stripe_customer_id": team.stripe_customer_id,
        "invite_code": team.invite_code,
        "created_at": team.created_at,
        "team_members": [
            {
                "id": member.id,
                "role": member.role,
                "joined_at": member.joined_at,
                "user": {
                    "id": member.user_id,
                    "name": member.profile.name if member.profile else None,
                    "email": emails.get(member.user_id),
                },
            }
            for member in members
        ],
    }


def get_activity_logs(ctx: RequestContext) -> list[dict[str, Any]]:
    """Newest ACTIVITY_PAGE_SIZE entries for the caller's team.

    Raises:
        NotAuthenticated: no caller identity
    """
    require_identity(ctx)
    membership = resolve_team_membership(ctx)
    if membership is None:
        return []
    return ActivityLogRepository(ctx.db).latest_for_team(membership.team_id, ACTIVITY_PAGE_SIZE)


def delete_team(db: Session, team_id: int) -> bool:
    deleted = TeamRepository(db).delete(team_id)
    db.commit()
    if deleted:
        logger.info("team.deleted", extra={"team_id": team_id})
    return deleted


def get_team_by_stripe_customer_id(db: Session, customer_id: str) -> Optional[Team]:
    return TeamRepository(db).get_by_stripe_customer_id(customer_id)


def update_team_subscription(db: Session, team_id: int, subscription: dict[str, Any]) -> Optional[Team]:
    team = TeamRepository(db).update_subscription(team_id, subscription)
    db.commit()
    return team


def get_pending_invitations(db: Session, email: str) -> list[dict[str, Any]]:
    return InvitationRepository(db).pending_for_email(email)


def normalize_invite_code(invite_code: str) -> Optional[str]:
    """Canonical UUID string, or None if the code is not a UUID."""
    try:
        return str(uuid.UUID(str(invite_code).strip()))
    except ValueError:
        return None


def get_team_by_invite_code(db: Session, invite_code: str) -> Optional[dict[str, Any]]:
    code = normalize_invite_code(invite_code)
    if code is None:
        return None
    repo = TeamRepository(db)
    team = repo.get_by_invite_code(code)
    if team is None:
        return None
    return {
        "team_id": team.id,
        "team_name": team.name,
        "member_count": repo.member_count(team.id),
    }
