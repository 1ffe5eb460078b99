"""Read endpoints and Stripe redirect landings.

Endpoints:
- GET /api/user: caller profile (null when anonymous)
- GET /api/team: caller team with members (null when teamless)
- GET /api/activity: newest activity for the caller team (401 when anonymous)
- GET /api/invitations/pending: pending invitations addressed to the caller
- GET /api/invite/{code}: public team preview for a join link
- GET /api/stripe/checkout: Stripe success_url landing
- POST /api/stripe/portal: redirect to the Stripe billing portal
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from saaskit_api import queries
from saaskit_api.auth.session_auth import get_billing, get_request_context, require_session_context
from saaskit_api.auth.team_scope import resolve_team_membership
from saaskit_api.billing.checkout import PRICING_PATH, complete_checkout
from saaskit_api.billing.stripe_client import ExternalServiceError, StripeClient
from saaskit_api.config.env import get_base_url
from saaskit_api.context import RequestContext
from saaskit_api.db.session import get_db
from saaskit_api.schemas import (
    ActivityLogResponse,
    InviteCodeTeamResponse,
    PendingInvitationResponse,
    TeamResponse,
    UserResponse,
)

router = APIRouter(prefix="/api", tags=["api"])
logger = logging.getLogger(__name__)

DASHBOARD_PATH = "/dashboard"


@router.get("/user", response_model=Optional[UserResponse])
async def read_user(ctx: RequestContext = Depends(get_request_context)) -> Optional[UserResponse]:
    profile = queries.get_user(ctx)
    if profile is None:
        return None
    return UserResponse.model_validate(profile)


@router.get("/team", response_model=Optional[TeamResponse])
async def read_team(ctx: RequestContext = Depends(get_request_context)) -> Optional[TeamResponse]:
    team = queries.get_team_for_user(ctx)
    if team is None:
        return None
    return TeamResponse.model_validate(team)


@router.get("/activity", response_model=list[ActivityLogResponse])
async def read_activity(ctx: RequestContext = Depends(require_session_context)) -> list[ActivityLogResponse]:
    return [ActivityLogResponse.model_validate(row) for row in queries.get_activity_logs(ctx)]


@router.get("/invitations/pending", response_model=list[PendingInvitationResponse])
async def read_pending_invitations(
    ctx: RequestContext = Depends(require_session_context),
) -> list[PendingInvitationResponse]:
    if not ctx.identity.email:
        return []
    return [
        PendingInvitationResponse.model_validate(row)
        for row in queries.get_pending_invitations(ctx.db, ctx.identity.email)
    ]


@router.get("/invite/{code}", response_model=InviteCodeTeamResponse)
async def read_invite_code(code: str, db: Session = Depends(get_db)) -> InviteCodeTeamResponse:
    team = queries.get_team_by_invite_code(db, code)
    if team is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid invite code")
    return InviteCodeTeamResponse.model_validate(team)


@router.get("/stripe/checkout")
async def stripe_checkout_landing(
    session_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    billing: Optional[StripeClient] = Depends(get_billing),
) -> RedirectResponse:
    """Finish checkout after Stripe sends the browser back."""
    if not session_id or billing is None:
        return RedirectResponse(PRICING_PATH, status_code=status.HTTP_303_SEE_OTHER)

    try:
        team = await complete_checkout(db, billing, session_id)
    except ExternalServiceError as e:
        logger.error("billing.checkout.landing_failed", extra={"error": str(e)})
        return RedirectResponse("/error", status_code=status.HTTP_303_SEE_OTHER)

    target = DASHBOARD_PATH if team is not None else PRICING_PATH
    return RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/stripe/portal")
async def stripe_portal(ctx: RequestContext = Depends(require_session_context)) -> RedirectResponse:
    """Send the caller to the Stripe customer portal for their team."""
    membership = resolve_team_membership(ctx)
    team = membership.team if membership else None
    if team is None or not team.stripe_customer_id or not team.stripe_product_id or ctx.billing is None:
        return RedirectResponse(PRICING_PATH, status_code=status.HTTP_303_SEE_OTHER)

    try:
        portal = await ctx.billing.create_portal_session(
            customer_id=team.stripe_customer_id,
            return_url=f"{get_base_url()}{DASHBOARD_PATH}",
        )
    except ExternalServiceError as e:
        logger.error("billing.portal.failed", extra={"team_id": team.id, "error": str(e)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Billing portal unavailable")

    return RedirectResponse(portal.url, status_code=status.HTTP_303_SEE_OTHER)
