"""Team handler tests: members, invitations, join requests, activity log.

Every handler acts on the caller's own team; ids in the form that belong
to another team must behave exactly like ids that do not exist.
"""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from saaskit_api.actions.team import (
    accept_invitation,
    approve_join_request,
    cancel_invitation,
    delete_activity_log,
    invite_team_member,
    remove_team_member,
    request_to_join,
)
from saaskit_api.audit.activity import record
from saaskit_api.db.models import ActivityLog, ActivityType, Invitation, InvitationStatus, TeamMember, TeamRole
from saaskit_api.db.repo_activity import ActivityLogRepository
from saaskit_api.db.repo_invitations import InvitationRepository


@pytest.fixture
def acme(make_team, make_member):
    """Acme team with owner, admin and plain member."""
    team, owner = make_team()
    admin = make_member("admin@example.com", team_id=team.id, role=TeamRole.ADMIN.value, name="Ada Admin")
    member = make_member("member@example.com", team_id=team.id, name="Mo Member")
    return team, owner, admin, member


def _membership(db_session, team_id, user_id):
    return (
        db_session.query(TeamMember)
        .filter(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
        .first()
    )


class TestRemoveTeamMember:
    def test_owner_removes_member(self, db_session, make_ctx, acme):
        team, owner, _, member = acme
        target = _membership(db_session, team.id, member.id)

        result = asyncio.run(remove_team_member(make_ctx(owner), None, {"memberId": str(target.id)}))

        assert result == {"success": "Team member removed successfully"}
        assert _membership(db_session, team.id, member.id) is None
        actions = [row.action for row in db_session.query(ActivityLog).filter(ActivityLog.team_id == team.id)]
        assert actions == ["REMOVE_TEAM_MEMBER"]

    def test_plain_member_cannot_remove(self, db_session, make_ctx, acme):
        team, _, admin, member = acme
        target = _membership(db_session, team.id, admin.id)

        result = asyncio.run(remove_team_member(make_ctx(member), None, {"memberId": str(target.id)}))

        assert result == {"error": "Only team owners and admins can perform this action."}
        assert _membership(db_session, team.id, admin.id) is not None

    def test_member_of_other_team_is_not_found(self, db_session, make_ctx, make_team, acme):
        _, owner, _, _ = acme
        other_team, other_owner = make_team(email="rival@example.com", name="Rival")
        target = _membership(db_session, other_team.id, other_owner.id)

        result = asyncio.run(remove_team_member(make_ctx(owner), None, {"memberId": str(target.id)}))

        assert result == {"error": "Team member not found."}
        assert _membership(db_session, other_team.id, other_owner.id) is not None

    def test_invalid_member_id(self, make_ctx, acme):
        _, owner, _, _ = acme

        result = asyncio.run(remove_team_member(make_ctx(owner), None, {"memberId": "abc"}))

        assert result == {"error": "Invalid member ID."}

    def test_teamless_caller(self, make_ctx, make_member):
        loner = make_member("loner@example.com")

        result = asyncio.run(remove_team_member(make_ctx(loner), None, {"memberId": "1"}))

        assert result == {"error": "User is not part of a team"}

    def test_anonymous(self, make_ctx):
        result = asyncio.run(remove_team_member(make_ctx(), None, {"memberId": "1"}))

        assert result == {"error": "User not authenticated."}

    def test_admin_cannot_remove_owner(self, db_session, make_ctx, acme):
        team, owner, admin, _ = acme
        target = _membership(db_session, team.id, owner.id)

        result = asyncio.run(remove_team_member(make_ctx(admin), None, {"memberId": str(target.id)}))

        assert result == {"error": "Only team owners can remove an owner."}
        assert _membership(db_session, team.id, owner.id) is not None

    def test_last_owner_is_kept(self, db_session, make_ctx, acme):
        team, owner, _, _ = acme
        target = _membership(db_session, team.id, owner.id)

        result = asyncio.run(remove_team_member(make_ctx(owner), None, {"memberId": str(target.id)}))

        assert result == {"error": "A team must keep at least one owner."}
        assert _membership(db_session, team.id, owner.id) is not None

    def test_owner_removes_co_owner(self, db_session, make_ctx, make_member, acme):
        team, owner, _, _ = acme
        co_owner = make_member("co-owner@example.com", team_id=team.id, role=TeamRole.OWNER.value)
        target = _membership(db_session, team.id, co_owner.id)

        result = asyncio.run(remove_team_member(make_ctx(owner), None, {"memberId": str(target.id)}))

        assert result == {"success": "Team member removed successfully"}
        assert _membership(db_session, team.id, co_owner.id) is None


class TestInviteTeamMember:
    def test_admin_invites_member(self, db_session, make_ctx, acme):
        team, _, admin, _ = acme

        result = asyncio.run(invite_team_member(make_ctx(admin), None, {"email": "new@example.com", "role": "member"}))

        assert result == {"success": "Invitation sent successfully"}
        invitation = db_session.query(Invitation).filter(Invitation.email == "new@example.com").one()
        assert invitation.team_id == team.id
        assert invitation.invited_by == admin.id
        assert invitation.status == InvitationStatus.PENDING.value

    def test_duplicate_pending_invitation(self, db_session, make_ctx, acme):
        team, owner, _, _ = acme
        form = {"email": "new@example.com", "role": "member"}
        asyncio.run(invite_team_member(make_ctx(owner), None, form))

        result = asyncio.run(invite_team_member(make_ctx(owner), None, form))

        assert result == {"error": "An invitation has already been sent to this email", **form}
        rows = db_session.query(Invitation).filter(Invitation.team_id == team.id, Invitation.email == "new@example.com")
        assert rows.count() == 1

    def test_existing_member(self, make_ctx, acme):
        _, owner, _, member = acme

        result = asyncio.run(invite_team_member(make_ctx(owner), None, {"email": member.email, "role": "admin"}))

        assert result["error"] == "User is already a member of this team"

    def test_plain_member_cannot_invite(self, make_ctx, acme):
        _, _, _, member = acme

        result = asyncio.run(invite_team_member(make_ctx(member), None, {"email": "new@example.com", "role": "member"}))

        assert result["error"] == "Only team owners and admins can perform this action."

    def test_only_owner_invites_owner(self, make_ctx, acme):
        _, owner, admin, _ = acme
        form = {"email": "co-owner@example.com", "role": "owner"}

        denied = asyncio.run(invite_team_member(make_ctx(admin), None, form))
        allowed = asyncio.run(invite_team_member(make_ctx(owner), None, form))

        assert denied["error"] == "Only team owners can invite another owner."
        assert allowed == {"success": "Invitation sent successfully"}

    def test_unknown_role_rejected(self, make_ctx, acme):
        _, owner, _, _ = acme

        result = asyncio.run(invite_team_member(make_ctx(owner), None, {"email": "new@example.com", "role": "superuser"}))

        assert result == {"error": "Invalid input data.", "email": "new@example.com", "role": "superuser"}

    def test_teamless_caller(self, db_session, make_ctx, make_member):
        loner = make_member("loner@example.com")
        form = {"email": "new@example.com", "role": "member"}

        result = asyncio.run(invite_team_member(make_ctx(loner), None, form))

        assert result == {"error": "User is not part of a team", **form}
        assert db_session.query(Invitation).count() == 0

    def test_identity_lookup_failure(self, provider, make_ctx, acme):
        _, owner, _, _ = acme
        provider.fail.add("list_identities")

        result = asyncio.run(invite_team_member(make_ctx(owner), None, {"email": "new@example.com", "role": "member"}))

        assert result["error"] == "Failed to send invitation."


class TestJoinRequests:
    def test_request_then_approve(self, db_session, make_ctx, make_member, acme):
        team, owner, _, _ = acme
        outsider = make_member("outsider@example.com")

        requested = asyncio.run(request_to_join(make_ctx(outsider), None, {"inviteCode": team.invite_code}))
        assert requested == {"success": "Join request sent successfully", "teamName": "Acme"}

        invitation = db_session.query(Invitation).filter(Invitation.email == outsider.email).one()
        assert invitation.status == InvitationStatus.REQUESTED.value
        assert invitation.invited_by == outsider.id

        approved = asyncio.run(approve_join_request(make_ctx(owner), None, {"invitationId": str(invitation.id)}))
        assert approved == {"success": "Join request approved"}

        membership = _membership(db_session, team.id, outsider.id)
        assert membership.role == TeamRole.MEMBER.value
        db_session.refresh(invitation)
        assert invitation.status == InvitationStatus.ACCEPTED.value

    def test_invalid_code(self, make_ctx, make_member):
        outsider = make_member("outsider@example.com")

        result = asyncio.run(request_to_join(make_ctx(outsider), None, {"inviteCode": "not-a-uuid"}))

        assert result == {"error": "Invalid invite code.", "inviteCode": "not-a-uuid"}

    def test_unknown_code(self, make_ctx, make_member):
        outsider = make_member("outsider@example.com")
        code = "00000000-0000-4000-8000-000000000000"

        result = asyncio.run(request_to_join(make_ctx(outsider), None, {"inviteCode": code}))

        assert result["error"] == "Invalid invite code."

    def test_already_member(self, make_ctx, acme):
        team, _, _, member = acme

        result = asyncio.run(request_to_join(make_ctx(member), None, {"inviteCode": team.invite_code}))

        assert result["error"] == "You are already a member of this team"

    def test_duplicate_request(self, make_ctx, make_member, acme):
        team, _, _, _ = acme
        outsider = make_member("outsider@example.com")
        asyncio.run(request_to_join(make_ctx(outsider), None, {"inviteCode": team.invite_code}))

        result = asyncio.run(request_to_join(make_ctx(outsider), None, {"inviteCode": team.invite_code}))

        assert result["error"] == "A request to join this team is already pending"

    def test_anonymous_request(self, make_ctx, acme):
        team, _, _, _ = acme

        result = asyncio.run(request_to_join(make_ctx(), None, {"inviteCode": team.invite_code}))

        assert result["error"] == "User not authenticated."

    def test_approve_request_of_other_team(self, db_session, make_ctx, make_team, make_member, acme):
        _, owner, _, _ = acme
        rival, _ = make_team(email="rival@example.com", name="Rival")
        outsider = make_member("outsider@example.com")
        asyncio.run(request_to_join(make_ctx(outsider), None, {"inviteCode": rival.invite_code}))
        invitation = db_session.query(Invitation).filter(Invitation.team_id == rival.id).one()

        result = asyncio.run(approve_join_request(make_ctx(owner), None, {"invitationId": str(invitation.id)}))

        assert result == {"error": "Join request not found."}
        assert _membership(db_session, rival.id, outsider.id) is None

    def test_approve_plain_invitation_is_not_a_join_request(self, db_session, make_ctx, acme):
        team, owner, _, _ = acme
        invitation = InvitationRepository(db_session).create(team_id=team.id, email="x@example.com", invited_by=owner.id)
        db_session.commit()

        result = asyncio.run(approve_join_request(make_ctx(owner), None, {"invitationId": str(invitation.id)}))

        assert result == {"error": "Join request not found."}


class TestAcceptInvitation:
    def test_accept_adds_membership(self, db_session, make_ctx, make_member, acme):
        team, owner, _, _ = acme
        invitee = make_member("invitee@example.com")
        invitation = InvitationRepository(db_session).create(
            team_id=team.id, email=invitee.email, invited_by=owner.id, role="admin"
        )
        db_session.commit()

        result = asyncio.run(accept_invitation(make_ctx(invitee), None, {"invitationId": str(invitation.id)}))

        assert result == {"success": "Invitation accepted successfully", "teamId": team.id}
        assert _membership(db_session, team.id, invitee.id).role == "admin"
        db_session.refresh(invitation)
        assert invitation.status == InvitationStatus.ACCEPTED.value

    def test_invitation_for_someone_else(self, db_session, make_ctx, make_member, acme):
        team, owner, _, _ = acme
        invitee = make_member("invitee@example.com")
        intruder = make_member("intruder@example.com")
        invitation = InvitationRepository(db_session).create(team_id=team.id, email=invitee.email, invited_by=owner.id)
        db_session.commit()

        result = asyncio.run(accept_invitation(make_ctx(intruder), None, {"invitationId": str(invitation.id)}))

        assert result == {"error": "Invalid or expired invitation."}
        assert _membership(db_session, team.id, intruder.id) is None

    def test_already_member(self, db_session, make_ctx, acme):
        team, owner, _, member = acme
        invitation = InvitationRepository(db_session).create(team_id=team.id, email=member.email, invited_by=owner.id)
        db_session.commit()

        result = asyncio.run(accept_invitation(make_ctx(member), None, {"invitationId": str(invitation.id)}))

        assert result == {"error": "You are already a member of this team"}
        db_session.refresh(invitation)
        assert invitation.status == InvitationStatus.PENDING.value

    def test_accepted_invitation_cannot_be_reused(self, db_session, make_ctx, make_member, acme):
        team, owner, _, _ = acme
        invitee = make_member("invitee@example.com")
        invitation = InvitationRepository(db_session).create(team_id=team.id, email=invitee.email, invited_by=owner.id)
        db_session.commit()
        asyncio.run(accept_invitation(make_ctx(invitee), None, {"invitationId": str(invitation.id)}))

        result = asyncio.run(accept_invitation(make_ctx(invitee), None, {"invitationId": str(invitation.id)}))

        assert result == {"error": "Invalid or expired invitation."}


class TestCancelInvitation:
    def test_admin_cancels(self, db_session, make_ctx, acme):
        team, owner, admin, _ = acme
        invitation = InvitationRepository(db_session).create(team_id=team.id, email="x@example.com", invited_by=owner.id)
        db_session.commit()

        result = asyncio.run(cancel_invitation(make_ctx(admin), None, {"invitationId": str(invitation.id)}))

        assert result == {"success": "Invitation cancelled"}
        db_session.refresh(invitation)
        assert invitation.status == InvitationStatus.CANCELLED.value

    def test_cancelled_is_terminal(self, db_session, make_ctx, acme):
        team, owner, _, _ = acme
        invitation = InvitationRepository(db_session).create(team_id=team.id, email="x@example.com", invited_by=owner.id)
        db_session.commit()
        asyncio.run(cancel_invitation(make_ctx(owner), None, {"invitationId": str(invitation.id)}))

        result = asyncio.run(cancel_invitation(make_ctx(owner), None, {"invitationId": str(invitation.id)}))

        assert result == {"error": "Invitation not found."}

    def test_other_team_invitation(self, db_session, make_ctx, make_team, acme):
        _, owner, _, _ = acme
        rival, rival_owner = make_team(email="rival@example.com", name="Rival")
        invitation = InvitationRepository(db_session).create(team_id=rival.id, email="x@example.com", invited_by=rival_owner.id)
        db_session.commit()

        result = asyncio.run(cancel_invitation(make_ctx(owner), None, {"invitationId": str(invitation.id)}))

        assert result == {"error": "Invitation not found."}
        db_session.refresh(invitation)
        assert invitation.status == InvitationStatus.PENDING.value


class TestDeleteActivityLog:
    def test_owner_clears_own_team_only(self, db_session, make_ctx, make_team, acme):
        team, owner, _, _ = acme
        rival, rival_owner = make_team(email="rival@example.com", name="Rival")
        record(make_ctx(owner), team.id, ActivityType.SIGN_IN)
        record(make_ctx(owner), team.id, ActivityType.SIGN_OUT)
        record(make_ctx(rival_owner), rival.id, ActivityType.SIGN_IN)

        result = asyncio.run(delete_activity_log(make_ctx(owner), None, {}))

        assert result == {"success": "Activity log cleared", "deleted": 2}
        assert db_session.query(ActivityLog).filter(ActivityLog.team_id == team.id).count() == 0
        assert db_session.query(ActivityLog).filter(ActivityLog.team_id == rival.id).count() == 1

    def test_admin_cannot_clear(self, db_session, make_ctx, acme):
        team, owner, admin, _ = acme
        record(make_ctx(owner), team.id, ActivityType.SIGN_IN)

        result = asyncio.run(delete_activity_log(make_ctx(admin), None, {}))

        assert result == {"error": "Only team owners can clear the activity log."}
        assert db_session.query(ActivityLog).filter(ActivityLog.team_id == team.id).count() == 1

    def test_store_failure_is_reported(self, db_session, make_ctx, acme):
        team, owner, _, _ = acme
        record(make_ctx(owner), team.id, ActivityType.SIGN_IN)

        with patch.object(
            ActivityLogRepository, "delete_for_team", side_effect=OperationalError("DELETE", {}, Exception("db down"))
        ):
            result = asyncio.run(delete_activity_log(make_ctx(owner), None, {}))

        assert result == {"error": "Failed to clear activity log."}
        assert db_session.query(ActivityLog).filter(ActivityLog.team_id == team.id).count() == 1
