"""Stripe webhook handler.

Error taxonomy (keeps Stripe from retrying what can never succeed):
  (A) Missing Stripe-Signature header → 400
  (B) Malformed payload or signature mismatch → 400
  (C) Our misconfig (no secret key / webhook secret) → 500 WEBHOOK_PROVIDER_MISCONFIG
  (D) Internal DB/processing error after verification → 500 WEBHOOK_INTERNAL_ERROR
  500 is ONLY for (C)(D). Signature mismatch is NEVER 500.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from saaskit_api.auth.session_auth import get_billing
from saaskit_api.billing.checkout import apply_subscription, stripe_field
from saaskit_api.billing.stripe_client import StripeClient
from saaskit_api.context import request_id_var
from saaskit_api.db.session import get_db
from saaskit_api.utils.sanitize import payload_hash_bytes, sanitize_str

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = frozenset({"customer.subscription.updated", "customer.subscription.deleted"})


def _webhook_problem(
    request: Request,
    status: int,
    *,
    code: str,
    title: str,
    detail: str | None,
    payload_hash: str | None,
    extra: dict | None = None,
) -> JSONResponse:
    """Log once + return RFC 9457 Problem Details response with webhook extensions.

    4xx failures → warning log.
    5xx failures → error log + Retry-After: 60 response header.
    """
    request_id = request_id_var.get()

    log_extra: dict = {
        "provider": "stripe",
        "payload_hash": payload_hash,
        "error_code": code,
    }
    if extra:
        log_extra.update(extra)

    if status >= 500:
        logger.error(f"webhook.{code.lower()}", extra=log_extra)
    else:
        logger.warning(f"webhook.{code.lower()}", extra=log_extra)

    content: dict = {
        "type": f"urn:saaskit:webhook:{code.lower()}",
        "title": title,
        "status": status,
        "provider": "stripe",
        "error_code": code,
    }
    if detail is not None:
        content["detail"] = detail
    if payload_hash is not None:
        content["payload_hash"] = payload_hash
    content["instance"] = f"urn:saaskit:trace:{request_id}" if request_id else str(request.url.path)

    response_headers = {"Content-Type": "application/problem+json"}
    if status >= 500:
        response_headers["Retry-After"] = "60"

    return JSONResponse(status_code=status, content=content, headers=response_headers)


def _customer_id(subscription: Any) -> Optional[str]:
    customer = stripe_field(subscription, "customer")
    if customer is None or isinstance(customer, str):
        return customer
    return stripe_field(customer, "id")


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    billing: Optional[StripeClient] = Depends(get_billing),
):
    """Apply subscription changes pushed by Stripe to the owning team."""
    raw_body: bytes = await request.body()
    payload_hash = payload_hash_bytes(raw_body)

    if billing is None:
        return _webhook_problem(
            request, 500,
            code="WEBHOOK_PROVIDER_MISCONFIG",
            title="Webhook Provider Misconfigured",
            detail="Stripe is not configured on this server",
            payload_hash=payload_hash,
        )

    if not stripe_signature:
        return _webhook_problem(
            request, 400,
            code="WEBHOOK_MISSING_SIGNATURE",
            title="Missing Signature",
            detail="Stripe-Signature header is required",
            payload_hash=payload_hash,
        )

    try:
        event = billing.verify_webhook_signature(raw_body, stripe_signature)
    except RuntimeError as e:
        return _webhook_problem(
            request, 500,
            code="WEBHOOK_PROVIDER_MISCONFIG",
            title="Webhook Provider Misconfigured",
            detail=None,
            payload_hash=payload_hash,
            extra={"error": sanitize_str(str(e))},
        )
    except ValueError as e:
        return _webhook_problem(
            request, 400,
            code="WEBHOOK_INVALID_SIGNATURE",
            title="Invalid Signature",
            detail="Webhook payload or signature could not be verified",
            payload_hash=payload_hash,
            extra={"error": sanitize_str(str(e))},
        )

    event_type = stripe_field(event, "type")
    event_id = stripe_field(event, "id")

    if event_type not in SUBSCRIPTION_EVENTS:
        logger.info("webhook.stripe.ignored", extra={"event_type": event_type, "event_id": event_id})
        return {"received": True}

    subscription = stripe_field(stripe_field(event, "data"), "object")
    customer_id = _customer_id(subscription)

    try:
        team = apply_subscription(db, customer_id, subscription) if customer_id else None
    except Exception as e:
        db.rollback()
        return _webhook_problem(
            request, 500,
            code="WEBHOOK_INTERNAL_ERROR",
            title="Webhook Processing Failed",
            detail=None,
            payload_hash=payload_hash,
            extra={"event_id": event_id, "error_type": type(e).__name__},
        )

    logger.info(
        "webhook.stripe.processed",
        extra={
            "event_type": event_type,
            "event_id": event_id,
            "team_id": team.id if team else None,
        },
    )
    return {"received": True}
