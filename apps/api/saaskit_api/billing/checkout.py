"""Checkout orchestration between teams and Stripe."""

import logging
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from saaskit_api.actions.base import Redirect
from saaskit_api.billing.stripe_client import StripeClient
from saaskit_api.config.env import get_base_url
from saaskit_api.context import RequestContext
from saaskit_api.db.models import Team
from saaskit_api.db.repo_teams import TeamRepository

logger = logging.getLogger(__name__)

PRICING_PATH = "/pricing"

ENDED_STATUSES = frozenset({"canceled", "unpaid", "incomplete_expired"})


async def create_checkout_session(ctx: RequestContext, team: Optional[Team], price_id: Optional[str]) -> Redirect:
    """Start a subscription checkout for a team.

    No team, no caller or no price → back to /pricing. The team gets a Stripe
    customer on first checkout; the session carries the team id as
    client_reference_id so the webhook can find it again.

    Raises:
        ExternalServiceError: Stripe rejected the request
    """
    if team is None or ctx.identity is None or not price_id or ctx.billing is None:
        return Redirect(PRICING_PATH)

    billing: StripeClient = ctx.billing
    base_url = get_base_url()

    if not team.stripe_customer_id:
        customer = await billing.create_customer(
            name=team.name, metadata={"team_id": str(team.id)}
        )
        TeamRepository(ctx.db).set_stripe_customer(team, customer.id)
        ctx.db.commit()
        logger.info("billing.customer.created", extra={"team_id": team.id})

    session = await billing.create_checkout_session(
        customer_id=team.stripe_customer_id,
        price_id=price_id,
        success_url=f"{base_url}/api/stripe/checkout?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}{PRICING_PATH}",
        client_reference_id=str(team.id),
        metadata={"team_id": str(team.id), "user_id": ctx.identity.id},
    )
    logger.info("billing.checkout.created", extra={"team_id": team.id, "price_id": price_id})
    return Redirect(session.url)


def stripe_field(obj: Any, key: str) -> Any:
    """Field access that works for StripeObject and plain dict payloads."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def subscription_fields(subscription: Any) -> dict[str, Any]:
    """Team columns for a Stripe subscription. Ended subscriptions clear the plan."""
    status = stripe_field(subscription, "status")
    if status in ENDED_STATUSES:
        return {
            "stripe_subscription_id": None,
            "stripe_product_id": None,
            "plan_name": None,
            "subscription_status": status,
        }

    product_id = None
    plan_name = None
    items = stripe_field(stripe_field(subscription, "items"), "data") or []
    if items:
        price = stripe_field(items[0], "price")
        product = stripe_field(price, "product")
        if isinstance(product, str):
            product_id = product
        elif product is not None:
            product_id = stripe_field(product, "id")
            plan_name = stripe_field(product, "name")
        plan_name = plan_name or stripe_field(price, "nickname")

    return {
        "stripe_subscription_id": stripe_field(subscription, "id"),
        "stripe_product_id": product_id,
        "plan_name": plan_name,
        "subscription_status": status,
    }


def apply_subscription(db: Session, customer_id: str, subscription: Any) -> Optional[Team]:
    """Write a subscription onto the team that owns customer_id (None if unknown)."""
    team = TeamRepository(db).get_by_stripe_customer_id(customer_id)
    if team is None:
        logger.warning("billing.subscription.unknown_customer", extra={"customer_id": customer_id})
        return None
    fields = subscription_fields(subscription)
    TeamRepository(db).update_subscription(team.id, fields)
    db.commit()
    logger.info(
        "billing.subscription.applied",
        extra={"team_id": team.id, "subscription_status": fields["subscription_status"]},
    )
    return team


async def complete_checkout(db: Session, billing: StripeClient, session_id: str) -> Optional[Team]:
    """Finish a checkout: link the customer and subscription to the team.

    Returns None when the session has no subscription or no known team.

    Raises:
        ExternalServiceError: Stripe lookup failed
    """
    session = await billing.retrieve_checkout_session(session_id)
    customer_id = stripe_field(session, "customer")
    if not isinstance(customer_id, str):
        customer_id = stripe_field(customer_id, "id")
    subscription = stripe_field(session, "subscription")
    team_ref = stripe_field(session, "client_reference_id")
    if not customer_id or subscription is None or not team_ref:
        logger.warning("billing.checkout.incomplete", extra={"session_id": session_id})
        return None

    if isinstance(subscription, str):
        subscription = await billing.get_subscription(subscription)

    repo = TeamRepository(db)
    team = repo.get_by_id(int(team_ref))
    if team is None:
        logger.warning("billing.checkout.unknown_team", extra={"team_ref": team_ref})
        return None
    if team.stripe_customer_id != customer_id:
        repo.set_stripe_customer(team, customer_id)
    repo.update_subscription(team.id, subscription_fields(subscription))
    db.commit()
    logger.info("billing.checkout.completed", extra={"team_id": team.id})
    return team
