"""Mutation handler endpoints.

POST /actions/{name} with a form body runs one handler:
- state result → 200 JSON ({"error": ...} or {"success": ...})
- Redirect → 303 with Location

Session changes made by the handler (sign in / sign up / sign out / delete
account) are written to the sb-access-token / sb-refresh-token cookies here,
the only place that touches cookies.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from saaskit_api.actions import account, auth, team
from saaskit_api.actions.base import ActionHandler, Redirect
from saaskit_api.auth.session_auth import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, get_request_context
from saaskit_api.config.env import auth_cookie_secure
from saaskit_api.context import RequestContext

router = APIRouter(prefix="/actions", tags=["actions"])
logger = logging.getLogger(__name__)

ACTIONS: dict[str, ActionHandler] = {
    "sign-in": auth.sign_in,
    "sign-up": auth.sign_up,
    "sign-out": auth.sign_out,
    "update-password": account.update_password,
    "update-account": account.update_account,
    "delete-account": account.delete_account,
    "remove-team-member": team.remove_team_member,
    "invite-team-member": team.invite_team_member,
    "request-to-join": team.request_to_join,
    "accept-invitation": team.accept_invitation,
    "approve-join-request": team.approve_join_request,
    "cancel-invitation": team.cancel_invitation,
    "delete-activity-log": team.delete_activity_log,
}

SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 7


def apply_session_cookies(response: Response, ctx: RequestContext) -> None:
    secure = auth_cookie_secure()
    if ctx.session is not None:
        response.set_cookie(
            ACCESS_TOKEN_COOKIE,
            ctx.session.access_token,
            max_age=SESSION_COOKIE_MAX_AGE,
            httponly=True,
            secure=secure,
            samesite="lax",
        )
        if ctx.session.refresh_token:
            response.set_cookie(
                REFRESH_TOKEN_COOKIE,
                ctx.session.refresh_token,
                max_age=SESSION_COOKIE_MAX_AGE,
                httponly=True,
                secure=secure,
                samesite="lax",
            )
    elif ctx.session_cleared:
        response.delete_cookie(ACCESS_TOKEN_COOKIE, httponly=True, secure=secure, samesite="lax")
        response.delete_cookie(REFRESH_TOKEN_COOKIE, httponly=True, secure=secure, samesite="lax")


@router.post("/{name}")
async def run_action(
    name: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
) -> Response:
    handler = ACTIONS.get(name)
    if handler is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown action: {name}")

    form_data = await request.form()
    form = {key: value for key, value in form_data.items() if isinstance(value, str)}

    result = await handler(ctx, None, form)

    if isinstance(result, Redirect):
        response: Response = RedirectResponse(result.url, status_code=status.HTTP_303_SEE_OTHER)
        outcome = "redirect"
    else:
        response = JSONResponse(result)
        outcome = "error" if "error" in result else "success"

    apply_session_cookies(response, ctx)

    logger.info("actions.completed", extra={"action": name, "outcome": outcome})
    return response
