"""Sign-in, sign-up and sign-out handlers.

SECURITY:
- Passwords are never logged (the sanitizer redacts them anyway)
- Sign-up validates an invitation BEFORE creating the identity, and deletes
  the identity again if the profile/team transaction fails, so a failed
  sign-up never leaves an orphaned account behind
"""

import logging
from typing import Mapping, Optional

from saaskit_api.actions.base import ActionResult, ActionState, Redirect, error, form_value, parse_form
from saaskit_api.audit.activity import record, record_for_caller_team
from saaskit_api.auth.identity import AuthError
from saaskit_api.auth.team_scope import resolve_team_membership
from saaskit_api.billing.checkout import create_checkout_session
from saaskit_api.billing.stripe_client import ExternalServiceError
from saaskit_api.context import RequestContext, team_id_var
from saaskit_api.db.models import ActivityType, Invitation, InvitationStatus, Team, TeamRole
from saaskit_api.db.repo_invitations import InvitationRepository
from saaskit_api.db.repo_profiles import ProfileRepository
from saaskit_api.db.repo_teams import TeamRepository
from saaskit_api.schemas import SignInForm, SignUpForm

logger = logging.getLogger(__name__)

DASHBOARD_PATH = "/dashboard"
SIGN_IN_PATH = "/sign-in"


async def _after_auth_redirect(ctx: RequestContext, form: Mapping[str, str], team: Optional[Team]) -> ActionResult:
    if form_value(form, "redirect") != "checkout":
        return Redirect(DASHBOARD_PATH)
    try:
        return await create_checkout_session(ctx, team, form_value(form, "priceId"))
    except ExternalServiceError as e:
        logger.error(
            "billing.checkout.failed",
            extra={"team_id": team.id if team else None, "error": str(e)},
        )
        return error("Failed to start checkout. Please try again.")


async def sign_in(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    email = form_value(form, "email")
    password = form_value(form, "password")

    data = parse_form(SignInForm, form, ("email", "password"))
    if data is None:
        return error("Invalid email or password format.", email=email, password=password)

    logger.info("auth.sign_in.attempt", extra={"email": data.email})

    try:
        session = ctx.identity_provider.sign_in(data.email, data.password)
    except AuthError:
        logger.info("auth.sign_in.rejected")
        return error("Invalid email or password. Please try again.", email=email, password=password)

    ctx.establish_session(session)
    record_for_caller_team(ctx, ActivityType.SIGN_IN)

    logger.info("auth.sign_in.success", extra={"user_id": session.user.id})

    membership = resolve_team_membership(ctx)
    return await _after_auth_redirect(ctx, form, membership.team if membership else None)


async def sign_up(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    email = form_value(form, "email")
    password = form_value(form, "password")

    data = parse_form(SignUpForm, form, ("email", "password", "inviteId"))
    if data is None:
        return error("Invalid input data.", email=email, password=password)

    if ctx.identity is not None:
        return error("User already exists. Please sign in instead.", email=email, password=password)

    invitations = InvitationRepository(ctx.db)
    invitation: Optional[Invitation] = None
    if data.invite_id is not None:
        invitation = invitations.find_pending_for_email(data.invite_id, data.email)
        if invitation is None:
            logger.info("auth.sign_up.invalid_invitation", extra={"invitation_id": data.invite_id})
            return error("Invalid or expired invitation.", email=email, password=password)

    logger.info(
        "auth.sign_up.attempt",
        extra={"email": data.email, "invited": invitation is not None},
    )

    try:
        identity, session = ctx.identity_provider.sign_up(data.email, data.password)
    except AuthError:
        return error("Failed to create account. Please try again.", email=email, password=password)

    teams = TeamRepository(ctx.db)
    try:
        if invitation is not None:
            ProfileRepository(ctx.db).create(identity.id, role=invitation.role)
            teams.add_member(invitation.team_id, identity.id, invitation.role)
            invitations.mark(invitation, InvitationStatus.ACCEPTED)
            team = teams.get_by_id(invitation.team_id)
            team_action = ActivityType.ACCEPT_INVITATION
        else:
            ProfileRepository(ctx.db).create(identity.id, role=TeamRole.OWNER.value)
            team, _ = teams.create_with_owner(f"{data.email}'s Team", identity.id)
            team_action = ActivityType.CREATE_TEAM
        ctx.db.commit()
    except Exception as e:
        ctx.db.rollback()
        logger.error(
            "auth.sign_up.store_failed",
            extra={"user_id": identity.id, "error_type": type(e).__name__, "error": str(e)},
        )
        try:
            ctx.identity_provider.delete_identity(identity.id)
        except AuthError:
            logger.error("auth.sign_up.orphaned_identity", extra={"user_id": identity.id})
        return error("Failed to create account. Please try again.", email=email, password=password)

    if session is not None:
        ctx.establish_session(session)
    else:
        # Email confirmation pending: no session yet, but the log still needs an actor.
        ctx.identity = identity

    team_id_var.set(str(team.id))
    record(ctx, team.id, team_action)
    record(ctx, team.id, ActivityType.SIGN_UP)

    logger.info(
        "auth.sign_up.success",
        extra={"user_id": identity.id, "team_id": team.id, "joined_by_invitation": invitation is not None},
    )

    return await _after_auth_redirect(ctx, form, team)


async def sign_out(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    record_for_caller_team(ctx, ActivityType.SIGN_OUT)

    if ctx.access_token:
        try:
            ctx.identity_provider.sign_out(ctx.access_token)
        except AuthError:
            logger.warning("auth.sign_out.revoke_failed", extra={"user_id": ctx.user_id})

    ctx.clear_session()
    return Redirect(SIGN_IN_PATH)
