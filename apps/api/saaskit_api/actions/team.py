"""Team handlers: members, invitations, join requests, activity log.

The acting team is always the caller's own membership team
(require_team_membership); ids coming from the form are only ever used
together with that team id in the same filter.
"""

import logging
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError

from saaskit_api.actions.base import ActionResult, ActionState, error, form_value, parse_form, success
from saaskit_api.audit.activity import delete_team_activity, record
from saaskit_api.auth.identity import AuthError, find_identity_by_email
from saaskit_api.auth.team_scope import (
    TeamScopeError,
    require_identity,
    require_team_membership,
    require_team_role,
)
from saaskit_api.context import RequestContext
from saaskit_api.db.models import ActivityType, InvitationStatus, TeamRole
from saaskit_api.db.repo_invitations import InvitationRepository
from saaskit_api.db.repo_teams import TeamRepository
from saaskit_api.queries import normalize_invite_code
from saaskit_api.schemas import (
    InvitationActionForm,
    InviteTeamMemberForm,
    RemoveTeamMemberForm,
    RequestToJoinForm,
)

logger = logging.getLogger(__name__)


async def remove_team_member(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    data = parse_form(RemoveTeamMemberForm, form, ("memberId",))
    if data is None:
        return error("Invalid member ID.")

    try:
        membership = require_team_membership(ctx)
        require_team_role(membership)
    except TeamScopeError as e:
        return error(str(e))

    team_id = membership.team_id
    teams = TeamRepository(ctx.db)
    target = teams.get_member_in_team(data.member_id, team_id)
    if target is None:
        logger.info("actions.remove_member.not_found", extra={"team_id": team_id, "member_id": data.member_id})
        return error("Team member not found.")

    if target.role == TeamRole.OWNER.value:
        try:
            require_team_role(
                membership,
                (TeamRole.OWNER.value,),
                message="Only team owners can remove an owner.",
            )
        except TeamScopeError as e:
            return error(str(e))
        if teams.count_with_role(team_id, TeamRole.OWNER.value) <= 1:
            logger.info("actions.remove_member.last_owner", extra={"team_id": team_id, "member_id": data.member_id})
            return error("A team must keep at least one owner.")

    try:
        removed = teams.remove_member(data.member_id, team_id)
        ctx.db.commit()
    except Exception as e:
        ctx.db.rollback()
        logger.error(
            "actions.remove_member.failed",
            extra={"team_id": team_id, "member_id": data.member_id, "error_type": type(e).__name__},
        )
        return error("Failed to remove team member.")

    if removed == 0:
        logger.info("actions.remove_member.not_found", extra={"team_id": team_id, "member_id": data.member_id})
        return error("Team member not found.")

    record(ctx, team_id, ActivityType.REMOVE_TEAM_MEMBER)
    logger.info("actions.remove_member.success", extra={"team_id": team_id, "member_id": data.member_id})
    return success("Team member removed successfully")


async def invite_team_member(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    email = form_value(form, "email")
    role = form_value(form, "role")

    data = parse_form(InviteTeamMemberForm, form, ("email", "role"))
    if data is None:
        return error("Invalid input data.", email=email, role=role)

    try:
        membership = require_team_membership(ctx)
        require_team_role(membership)
        if data.role == TeamRole.OWNER.value:
            require_team_role(
                membership,
                (TeamRole.OWNER.value,),
                message="Only team owners can invite another owner.",
            )
    except TeamScopeError as e:
        return error(str(e), email=email, role=role)

    team_id = membership.team_id
    teams = TeamRepository(ctx.db)
    invitations = InvitationRepository(ctx.db)

    try:
        existing = find_identity_by_email(ctx.identity_provider, data.email)
    except AuthError:
        return error("Failed to send invitation.", email=email, role=role)

    if existing is not None and teams.get_membership(team_id, existing.id) is not None:
        return error("User is already a member of this team", email=email, role=role)

    if invitations.has_pending(team_id, data.email):
        logger.info("actions.invite.duplicate", extra={"team_id": team_id})
        return error("An invitation has already been sent to this email", email=email, role=role)

    try:
        invitation = invitations.create(
            team_id=team_id,
            email=data.email,
            invited_by=membership.user_id,
            role=data.role,
        )
        ctx.db.commit()
    except Exception as e:
        ctx.db.rollback()
        logger.error(
            "actions.invite.failed",
            extra={"team_id": team_id, "error_type": type(e).__name__, "error": str(e)},
        )
        return error("Failed to send invitation.", email=email, role=role)

    record(ctx, team_id, ActivityType.INVITE_TEAM_MEMBER)
    logger.info(
        "actions.invite.sent",
        extra={"team_id": team_id, "invitation_id": invitation.id, "role": data.role},
    )
    return success("Invitation sent successfully")


async def request_to_join(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    """Signed-in caller asks to join the team behind an invite code."""
    invite_code = form_value(form, "inviteCode")

    data = parse_form(RequestToJoinForm, form, ("inviteCode",))
    code = normalize_invite_code(data.invite_code) if data else None
    if code is None:
        return error("Invalid invite code.", inviteCode=invite_code)

    try:
        identity = require_identity(ctx)
    except TeamScopeError as e:
        return error(str(e), inviteCode=invite_code)
    if not identity.email:
        return error("User not authenticated.", inviteCode=invite_code)

    teams = TeamRepository(ctx.db)
    invitations = InvitationRepository(ctx.db)

    team = teams.get_by_invite_code(code)
    if team is None:
        return error("Invalid invite code.", inviteCode=invite_code)

    if teams.get_membership(team.id, identity.id) is not None:
        return error("You are already a member of this team", inviteCode=invite_code)

    if invitations.has_open(team.id, identity.email):
        return error("A request to join this team is already pending", inviteCode=invite_code)

    try:
        invitations.create(
            team_id=team.id,
            email=identity.email,
            invited_by=identity.id,
            role=TeamRole.MEMBER.value,
            status=InvitationStatus.REQUESTED,
        )
        ctx.db.commit()
    except Exception as e:
        ctx.db.rollback()
        logger.error(
            "actions.join_request.failed",
            extra={"team_id": team.id, "error_type": type(e).__name__, "error": str(e)},
        )
        return error("Failed to send join request.", inviteCode=invite_code)

    record(ctx, team.id, ActivityType.REQUEST_TO_JOIN)
    logger.info("actions.join_request.sent", extra={"team_id": team.id})
    return success("Join request sent successfully", teamName=team.name)


async def accept_invitation(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    """Signed-in caller accepts a pending invitation addressed to their email."""
    data = parse_form(InvitationActionForm, form, ("invitationId",))
    if data is None:
        return error("Invalid invitation ID.")

    try:
        identity = require_identity(ctx)
    except TeamScopeError as e:
        return error(str(e))

    invitations = InvitationRepository(ctx.db)
    invitation = invitations.find_pending_for_email(data.invitation_id, identity.email or "")
    if invitation is None:
        return error("Invalid or expired invitation.")

    team_id = invitation.team_id
    try:
        TeamRepository(ctx.db).add_member(team_id, identity.id, invitation.role)
        invitations.mark(invitation, InvitationStatus.ACCEPTED)
        ctx.db.commit()
    except IntegrityError:
        ctx.db.rollback()
        return error("You are already a member of this team")
    except Exception as e:
        ctx.db.rollback()
        logger.error(
            "actions.accept_invitation.failed",
            extra={"invitation_id": data.invitation_id, "error_type": type(e).__name__, "error": str(e)},
        )
        return error("Failed to accept invitation.")

    record(ctx, team_id, ActivityType.ACCEPT_INVITATION)
    logger.info("actions.accept_invitation.success", extra={"team_id": team_id, "invitation_id": data.invitation_id})
    return success("Invitation accepted successfully", teamId=team_id)


async def approve_join_request(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    """Owner/admin turns a join request in their own team into a membership."""
    data = parse_form(InvitationActionForm, form, ("invitationId",))
    if data is None:
        return error("Invalid invitation ID.")

    try:
        membership = require_team_membership(ctx)
        require_team_role(membership)
    except TeamScopeError as e:
        return error(str(e))

    team_id = membership.team_id
    invitations = InvitationRepository(ctx.db)
    invitation = invitations.get_in_team(data.invitation_id, team_id)
    if invitation is None or invitation.status != InvitationStatus.REQUESTED.value:
        return error("Join request not found.")

    # Join requests record the requester in invited_by.
    requester_id = invitation.invited_by
    try:
        TeamRepository(ctx.db).add_member(team_id, requester_id, invitation.role)
        invitations.mark(invitation, InvitationStatus.ACCEPTED)
        ctx.db.commit()
    except IntegrityError:
        ctx.db.rollback()
        return error("User is already a member of this team")
    except Exception as e:
        ctx.db.rollback()
        logger.error(
            "actions.approve_join_request.failed",
            extra={"team_id": team_id, "invitation_id": data.invitation_id, "error_type": type(e).__name__},
        )
        return error("Failed to approve join request.")

    record(ctx, team_id, ActivityType.APPROVE_JOIN_REQUEST)
    logger.info("actions.approve_join_request.success", extra={"team_id": team_id, "invitation_id": data.invitation_id})
    return success("Join request approved")


async def cancel_invitation(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    data = parse_form(InvitationActionForm, form, ("invitationId",))
    if data is None:
        return error("Invalid invitation ID.")

    try:
        membership = require_team_membership(ctx)
        require_team_role(membership)
    except TeamScopeError as e:
        return error(str(e))

    team_id = membership.team_id
    invitations = InvitationRepository(ctx.db)
    invitation = invitations.get_in_team(data.invitation_id, team_id)
    if invitation is None or not invitation.is_open:
        return error("Invitation not found.")

    try:
        invitations.mark(invitation, InvitationStatus.CANCELLED)
        ctx.db.commit()
    except Exception as e:
        ctx.db.rollback()
        logger.error(
            "actions.cancel_invitation.failed",
            extra={"team_id": team_id, "invitation_id": data.invitation_id, "error_type": type(e).__name__},
        )
        return error("Failed to cancel invitation.")

    record(ctx, team_id, ActivityType.CANCEL_INVITATION)
    logger.info("actions.cancel_invitation.success", extra={"team_id": team_id, "invitation_id": data.invitation_id})
    return success("Invitation cancelled")


async def delete_activity_log(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    try:
        deleted = delete_team_activity(ctx)
    except TeamScopeError as e:
        return error(str(e))
    except Exception as e:
        ctx.db.rollback()
        logger.error(
            "actions.activity_log.clear_failed",
            extra={"user_id": ctx.user_id, "error_type": type(e).__name__, "error": str(e)},
        )
        return error("Failed to clear activity log.")
    return success("Activity log cleared", deleted=deleted)
