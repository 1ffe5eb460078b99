"""Sign-in / sign-up / sign-out handler tests."""

import asyncio
from unittest.mock import AsyncMock, patch

from saaskit_api.actions.auth import sign_in, sign_out, sign_up
from saaskit_api.actions.base import Redirect
from saaskit_api.billing.stripe_client import ExternalServiceError
from saaskit_api.db.models import ActivityLog, Invitation, InvitationStatus, Profile, Team, TeamMember, TeamRole
from saaskit_api.db.repo_invitations import InvitationRepository

from conftest import DEFAULT_PASSWORD


def _actions(db_session, team_id):
    return [
        row.action
        for row in db_session.query(ActivityLog).filter(ActivityLog.team_id == team_id).order_by(ActivityLog.id)
    ]


class TestSignIn:
    def test_success_redirects_to_dashboard(self, db_session, provider, make_ctx, make_team):
        team, owner = make_team()
        ctx = make_ctx()

        result = asyncio.run(sign_in(ctx, None, {"email": owner.email, "password": DEFAULT_PASSWORD}))

        assert result == Redirect("/dashboard")
        assert ctx.session is not None
        assert ctx.identity.id == owner.id
        assert _actions(db_session, team.id) == ["SIGN_IN"]

    def test_activity_carries_caller_ip(self, db_session, make_ctx, make_team):
        team, owner = make_team()
        ctx = make_ctx(ip_address="198.51.100.23")

        asyncio.run(sign_in(ctx, None, {"email": owner.email, "password": DEFAULT_PASSWORD}))

        entry = db_session.query(ActivityLog).filter(ActivityLog.team_id == team.id).one()
        assert entry.ip_address == "198.51.100.23"
        assert entry.user_id == owner.id

    def test_wrong_password_echoes_input(self, make_ctx, make_team):
        _, owner = make_team()
        ctx = make_ctx()

        result = asyncio.run(sign_in(ctx, None, {"email": owner.email, "password": "wrong-password"}))

        assert result == {
            "error": "Invalid email or password. Please try again.",
            "email": owner.email,
            "password": "wrong-password",
        }
        assert ctx.session is None

    def test_invalid_format(self, make_ctx):
        result = asyncio.run(sign_in(make_ctx(), None, {"email": "not-an-email", "password": "short"}))

        assert result["error"] == "Invalid email or password format."
        assert result["email"] == "not-an-email"

    def test_teamless_identity_can_still_sign_in(self, provider, make_ctx, make_member):
        member = make_member("loner@example.com")
        ctx = make_ctx()

        result = asyncio.run(sign_in(ctx, None, {"email": member.email, "password": DEFAULT_PASSWORD}))

        assert result == Redirect("/dashboard")

    def test_checkout_redirect_creates_customer(self, db_session, make_ctx, make_team, billing):
        team, owner = make_team()
        ctx = make_ctx(billing=billing)
        form = {"email": owner.email, "password": DEFAULT_PASSWORD, "redirect": "checkout", "priceId": "price_123"}

        result = asyncio.run(sign_in(ctx, None, form))

        assert result == Redirect("https://checkout.stripe.test/c/pay_123")
        db_session.refresh(team)
        assert team.stripe_customer_id == "cus_test_123"
        kwargs = billing.create_checkout_session.call_args.kwargs
        assert kwargs["price_id"] == "price_123"
        assert kwargs["client_reference_id"] == str(team.id)

    def test_checkout_without_price_goes_to_pricing(self, make_ctx, make_team, billing):
        _, owner = make_team()
        form = {"email": owner.email, "password": DEFAULT_PASSWORD, "redirect": "checkout"}

        result = asyncio.run(sign_in(make_ctx(billing=billing), None, form))

        assert result == Redirect("/pricing")
        billing.create_checkout_session.assert_not_called()

    def test_checkout_failure_is_reported(self, make_ctx, make_team, billing):
        _, owner = make_team()
        billing.create_checkout_session = AsyncMock(side_effect=ExternalServiceError("Stripe", "boom"))
        form = {"email": owner.email, "password": DEFAULT_PASSWORD, "redirect": "checkout", "priceId": "price_123"}

        result = asyncio.run(sign_in(make_ctx(billing=billing), None, form))

        assert result == {"error": "Failed to start checkout. Please try again."}


class TestSignUp:
    def test_creates_profile_team_and_owner_membership(self, db_session, provider, make_ctx):
        ctx = make_ctx()

        result = asyncio.run(sign_up(ctx, None, {"email": "new@example.com", "password": "a-strong-pass"}))

        assert result == Redirect("/dashboard")
        identity = ctx.identity
        profile = db_session.get(Profile, identity.id)
        assert profile.role == TeamRole.OWNER.value

        membership = db_session.query(TeamMember).filter(TeamMember.user_id == identity.id).one()
        assert membership.role == TeamRole.OWNER.value
        team = db_session.get(Team, membership.team_id)
        assert team.name == "new@example.com's Team"
        assert _actions(db_session, team.id) == ["CREATE_TEAM", "SIGN_UP"]
        assert ctx.session is not None

    def test_joins_team_by_invitation(self, db_session, make_ctx, make_team):
        team, owner = make_team()
        invitation = InvitationRepository(db_session).create(
            team_id=team.id, email="invitee@example.com", invited_by=owner.id, role="admin"
        )
        db_session.commit()
        ctx = make_ctx()

        form = {"email": "invitee@example.com", "password": "a-strong-pass", "inviteId": str(invitation.id)}
        result = asyncio.run(sign_up(ctx, None, form))

        assert result == Redirect("/dashboard")
        membership = db_session.query(TeamMember).filter(TeamMember.user_id == ctx.identity.id).one()
        assert membership.team_id == team.id
        assert membership.role == "admin"
        db_session.refresh(invitation)
        assert invitation.status == InvitationStatus.ACCEPTED.value
        assert db_session.query(Team).count() == 1
        assert _actions(db_session, team.id) == ["ACCEPT_INVITATION", "SIGN_UP"]

    def test_invitation_for_other_email_creates_nothing(self, db_session, provider, make_ctx, make_team):
        team, owner = make_team()
        invitation = InvitationRepository(db_session).create(
            team_id=team.id, email="someone-else@example.com", invited_by=owner.id
        )
        db_session.commit()

        form = {"email": "intruder@example.com", "password": "a-strong-pass", "inviteId": str(invitation.id)}
        result = asyncio.run(sign_up(make_ctx(), None, form))

        assert result["error"] == "Invalid or expired invitation."
        assert all(user["email"] != "intruder@example.com" for user in provider.users.values())
        assert db_session.get(Invitation, invitation.id).status == InvitationStatus.PENDING.value

    def test_cancelled_invitation_rejected(self, db_session, make_ctx, make_team):
        team, owner = make_team()
        invitation = InvitationRepository(db_session).create(
            team_id=team.id, email="late@example.com", invited_by=owner.id
        )
        InvitationRepository(db_session).mark(invitation, InvitationStatus.CANCELLED)
        db_session.commit()

        form = {"email": "late@example.com", "password": "a-strong-pass", "inviteId": str(invitation.id)}
        result = asyncio.run(sign_up(make_ctx(), None, form))

        assert result["error"] == "Invalid or expired invitation."

    def test_store_failure_deletes_identity(self, db_session, provider, make_ctx):
        with patch(
            "saaskit_api.actions.auth.TeamRepository.create_with_owner",
            side_effect=RuntimeError("insert failed"),
        ):
            result = asyncio.run(sign_up(make_ctx(), None, {"email": "new@example.com", "password": "a-strong-pass"}))

        assert result["error"] == "Failed to create account. Please try again."
        assert provider.users == {}
        assert db_session.query(Profile).count() == 0

    def test_duplicate_email_rejected_by_provider(self, make_ctx, make_member):
        make_member("taken@example.com")

        result = asyncio.run(sign_up(make_ctx(), None, {"email": "taken@example.com", "password": "a-strong-pass"}))

        assert result["error"] == "Failed to create account. Please try again."

    def test_without_session_still_logs_actor(self, db_session, provider, make_ctx):
        provider.issue_session_on_sign_up = False
        ctx = make_ctx()

        result = asyncio.run(sign_up(ctx, None, {"email": "confirm@example.com", "password": "a-strong-pass"}))

        assert result == Redirect("/dashboard")
        assert ctx.session is None
        entries = db_session.query(ActivityLog).all()
        assert {entry.user_id for entry in entries} == {ctx.identity.id}

    def test_already_signed_in(self, make_ctx, make_team):
        _, owner = make_team()

        result = asyncio.run(sign_up(make_ctx(owner), None, {"email": "other@example.com", "password": "a-strong-pass"}))

        assert result["error"] == "User already exists. Please sign in instead."

    def test_short_password_rejected(self, provider, make_ctx):
        result = asyncio.run(sign_up(make_ctx(), None, {"email": "new@example.com", "password": "short"}))

        assert result == {"error": "Invalid input data.", "email": "new@example.com", "password": "short"}
        assert provider.users == {}


class TestSignOut:
    def test_revokes_token_and_clears_session(self, db_session, provider, make_ctx, make_team):
        team, owner = make_team()
        ctx = make_ctx(owner)
        token = ctx.access_token

        result = asyncio.run(sign_out(ctx, None, {}))

        assert result == Redirect("/sign-in")
        assert ctx.session_cleared
        assert ctx.identity is None
        assert token in provider.revoked
        assert _actions(db_session, team.id) == ["SIGN_OUT"]

    def test_provider_failure_still_signs_out(self, provider, make_ctx, make_team):
        _, owner = make_team()
        provider.fail.add("sign_out")
        ctx = make_ctx(owner)

        result = asyncio.run(sign_out(ctx, None, {}))

        assert result == Redirect("/sign-in")
        assert ctx.session_cleared

    def test_anonymous_sign_out(self, make_ctx):
        ctx = make_ctx()

        result = asyncio.run(sign_out(ctx, None, {}))

        assert result == Redirect("/sign-in")
