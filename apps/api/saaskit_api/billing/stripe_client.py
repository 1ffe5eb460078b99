"""Stripe API client for team subscriptions.

Thin wrapper over the stripe SDK: every SDK failure surfaces as
ExternalServiceError so handlers can turn it into a user-facing message.

Environment Variables:
- STRIPE_SECRET_KEY: secret API key (required)
- STRIPE_WEBHOOK_SECRET: signing secret for /webhooks/stripe
"""

import logging
from typing import Any, Optional

import stripe

from saaskit_api.config.env import get_stripe_secret_key, get_stripe_webhook_secret

logger = logging.getLogger(__name__)


class ExternalServiceError(Exception):
    """Raised when an external service call fails."""

    def __init__(self, service_name: str, message: str = "External service failed"):
        self.service_name = service_name
        self.message = message
        super().__init__(f"{service_name}: {message}")


class StripeClient:
    """Client for the Stripe operations this app needs."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key or get_stripe_secret_key()
        self.webhook_secret = webhook_secret or get_stripe_webhook_secret()

    async def create_customer(self, name: str, metadata: Optional[dict[str, str]] = None) -> Any:
        try:
            return await stripe.Customer.create_async(
                api_key=self.api_key, name=name, metadata=metadata or {}
            )
        except stripe.StripeError as e:
            raise ExternalServiceError("Stripe", f"Failed to create customer: {e}") from e

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        client_reference_id: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> Any:
        params: dict[str, Any] = {
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "allow_promotion_codes": True,
            "metadata": metadata or {},
        }
        if client_reference_id:
            params["client_reference_id"] = client_reference_id
        try:
            return await stripe.checkout.Session.create_async(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            raise ExternalServiceError("Stripe", f"Failed to create checkout session: {e}") from e

    async def retrieve_checkout_session(self, session_id: str) -> Any:
        try:
            return await stripe.checkout.Session.retrieve_async(
                session_id,
                api_key=self.api_key,
                expand=["subscription", "subscription.items.data.price.product"],
            )
        except stripe.StripeError as e:
            raise ExternalServiceError("Stripe", f"Failed to retrieve checkout session: {e}") from e

    async def create_portal_session(self, customer_id: str, return_url: str) -> Any:
        try:
            return await stripe.billing_portal.Session.create_async(
                api_key=self.api_key, customer=customer_id, return_url=return_url
            )
        except stripe.StripeError as e:
            raise ExternalServiceError("Stripe", f"Failed to create portal session: {e}") from e

    async def get_subscription(self, subscription_id: str) -> Any:
        try:
            return await stripe.Subscription.retrieve_async(
                subscription_id, api_key=self.api_key, expand=["items.data.price.product"]
            )
        except stripe.StripeError as e:
            raise ExternalServiceError("Stripe", f"Failed to retrieve subscription: {e}") from e

    def verify_webhook_signature(self, payload: bytes, signature: str) -> Any:
        """Verify and construct a webhook event.

        Raises:
            RuntimeError: STRIPE_WEBHOOK_SECRET not configured
            ValueError: malformed payload or bad signature
        """
        if not self.webhook_secret:
            raise RuntimeError("STRIPE_WEBHOOK_SECRET is not configured")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise ValueError(f"Invalid webhook payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            raise ValueError(f"Invalid webhook signature: {e}") from e


_stripe_client: Optional[StripeClient] = None


def get_stripe_client() -> StripeClient:
    """Get global StripeClient instance (singleton).

    Raises:
        ValueError: STRIPE_SECRET_KEY not set
    """
    global _stripe_client
    if _stripe_client is None:
        _stripe_client = StripeClient()
    return _stripe_client
