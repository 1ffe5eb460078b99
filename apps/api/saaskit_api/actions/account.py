"""Account handlers: password change, profile update, account deletion."""

import logging
from typing import Mapping, Optional

from saaskit_api.actions.base import ActionResult, ActionState, Redirect, error, form_value, parse_form, success
from saaskit_api.audit.activity import record, record_for_caller_team
from saaskit_api.auth.identity import AuthError
from saaskit_api.auth.team_scope import resolve_team_membership
from saaskit_api.context import RequestContext
from saaskit_api.db.models import ActivityType
from saaskit_api.db.repo_profiles import ProfileRepository
from saaskit_api.schemas import DeleteAccountForm, UpdateAccountForm, UpdatePasswordForm

logger = logging.getLogger(__name__)

SIGN_IN_PATH = "/sign-in"


def _verify_password(ctx: RequestContext, password: str) -> bool:
    """Re-authenticate the caller with a sign-in attempt."""
    email = ctx.identity.email if ctx.identity else None
    if not email:
        return False
    try:
        session = ctx.identity_provider.sign_in(email, password)
    except AuthError:
        return False
    return session.user.id == ctx.identity.id


async def update_password(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    echoed = {
        "currentPassword": form_value(form, "currentPassword"),
        "newPassword": form_value(form, "newPassword"),
        "confirmPassword": form_value(form, "confirmPassword"),
    }

    data = parse_form(UpdatePasswordForm, form, ("currentPassword", "newPassword", "confirmPassword"))
    if data is None:
        return error("Invalid input data.", **echoed)

    if ctx.identity is None:
        return error("User not authenticated.", **echoed)

    if data.current_password == data.new_password:
        return error("New password must be different from the current password.", **echoed)

    if data.confirm_password != data.new_password:
        return error("New password and confirmation password do not match.", **echoed)

    if not _verify_password(ctx, data.current_password):
        logger.info("account.update_password.wrong_current", extra={"user_id": ctx.user_id})
        return error("Current password is incorrect.", **echoed)

    try:
        ctx.identity_provider.update_password(ctx.identity.id, data.new_password)
    except AuthError:
        return error("Failed to update password. Please try again.", **echoed)

    record_for_caller_team(ctx, ActivityType.UPDATE_PASSWORD)
    logger.info("account.update_password.success", extra={"user_id": ctx.user_id})
    return success("Password updated successfully.")


async def update_account(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    name = form_value(form, "name")

    data = parse_form(UpdateAccountForm, form, ("name",))
    if data is None:
        return error("Invalid name format.", name=name)

    if ctx.identity is None:
        return error("User not authenticated.", name=name)

    try:
        profile = ProfileRepository(ctx.db).update_name(ctx.identity.id, data.name)
        if profile is None:
            ctx.db.rollback()
            return error("Failed to update account. Please try again.", name=name)
        ctx.db.commit()
    except Exception as e:
        ctx.db.rollback()
        logger.error(
            "account.update.failed",
            extra={"user_id": ctx.user_id, "error_type": type(e).__name__, "error": str(e)},
        )
        return error("Failed to update account. Please try again.", name=name)

    record_for_caller_team(ctx, ActivityType.UPDATE_ACCOUNT)
    logger.info("account.update.success", extra={"user_id": ctx.user_id})
    return success("Account updated successfully.", name=data.name)


async def delete_account(ctx: RequestContext, prev_state: Optional[ActionState], form: Mapping[str, str]) -> ActionResult:
    """Soft-delete the profile, then delete the identity.

    The provider's cascade removes the profile row and memberships for good.
    If the provider refuses, the soft-delete marker is cleared again so the
    account stays usable.
    """
    password = form_value(form, "password")

    data = parse_form(DeleteAccountForm, form, ("password",))
    if data is None:
        return error("Invalid password format.", password=password)

    if ctx.identity is None:
        return error("User not authenticated.", password=password)

    if not _verify_password(ctx, data.password):
        logger.info("account.delete.wrong_password", extra={"user_id": ctx.user_id})
        return error("Incorrect password. Account deletion failed.", password=password)

    user_id = ctx.identity.id
    # Resolved while the membership still exists; the provider cascade removes it.
    membership = resolve_team_membership(ctx)
    team_id = membership.team_id if membership is not None else None

    profiles = ProfileRepository(ctx.db)
    try:
        profiles.mark_deleted(user_id)
        ctx.db.commit()
    except Exception as e:
        ctx.db.rollback()
        logger.error(
            "account.delete.soft_delete_failed",
            extra={"user_id": user_id, "error_type": type(e).__name__, "error": str(e)},
        )
        return error("Failed to delete account. Please try again.", password=password)

    try:
        ctx.identity_provider.delete_identity(user_id)
    except AuthError:
        profiles.restore(user_id)
        ctx.db.commit()
        logger.error("account.delete.identity_failed", extra={"user_id": user_id})
        return error("Failed to delete account. Please try again.", password=password)

    # The provider cascade removed rows behind this session's back.
    ctx.db.expire_all()

    if ctx.access_token:
        try:
            ctx.identity_provider.sign_out(ctx.access_token)
        except AuthError:
            logger.warning("account.delete.sign_out_failed", extra={"user_id": user_id})

    ctx.clear_session()
    # The actor's profile is gone, so the entry carries no actor.
    if team_id is not None:
        record(ctx, team_id, ActivityType.DELETE_ACCOUNT)
    logger.info("account.delete.success", extra={"user_id": user_id})
    return Redirect(SIGN_IN_PATH)
