"""
Stripe client for checkout, billing portal and subscription management.

Wraps the stripe library so services depend on a small, mockable surface
and never see Stripe exception types.

Documentation: https://stripe.com/docs/api
"""

import json
import logging
import os
from typing import Any, Dict, Optional

import stripe

from src.services.billing_errors import (
    PaymentProcessorError,
    PaymentProcessorNotConfiguredError,
)

logger = logging.getLogger(__name__)


def stripe_object_to_dict(obj: Any) -> Dict[str, Any]:
    """Plain, recursive dict copy of a StripeObject (its str() is its JSON)."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return json.loads(str(obj))


class StripeBillingClient:
    """
    Thin synchronous client over the stripe library.

    Usage:
        client = get_stripe_client()
        url = client.create_portal_session("cus_123", "https://app/settings/subscription")
    """

    def __init__(self, api_key: Optional[str] = None):
        """
        Initialize Stripe client.

        Args:
            api_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
        """
        self.api_key = api_key or os.getenv("STRIPE_SECRET_KEY")
        if not self.api_key:
            raise PaymentProcessorNotConfiguredError("STRIPE_SECRET_KEY is not configured")

    def _fail(self, operation: str, error: "stripe.StripeError") -> PaymentProcessorError:
        logger.error(
            "Stripe API error",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "code": getattr(error, "code", None),
                "error": str(error),
            },
        )
        return PaymentProcessorError(f"Payment processor error during {operation}", code=getattr(error, "code", None))

    def create_customer(self, organization_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Create a customer tagged with the organization id; returns the customer id."""
        try:
            customer = stripe.Customer.create(
                api_key=self.api_key,
                email=email,
                name=name,
                metadata={"organization_id": organization_id},
            )
        except stripe.StripeError as e:
            raise self._fail("create_customer", e) from e
        return customer["id"]

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        organization_id: str,
        plan_slug: str,
        billing_cycle: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """Create a subscription-mode checkout session; returns its hosted URL."""
        metadata = {
            "organization_id": organization_id,
            "plan_slug": plan_slug,
            "billing_cycle": billing_cycle,
        }
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
                allow_promotion_codes=True,
            )
        except stripe.StripeError as e:
            raise self._fail("create_checkout_session", e) from e
        return session["url"]

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                api_key=self.api_key,
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as e:
            raise self._fail("create_portal_session", e) from e
        return session["url"]

    def retrieve_subscription(self, subscription_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a subscription as a plain dict.

        Returns:
            The subscription, or None if Stripe no longer knows it
        """
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                return None
            raise self._fail("retrieve_subscription", e) from e
        except stripe.StripeError as e:
            raise self._fail("retrieve_subscription", e) from e
        return stripe_object_to_dict(subscription)

    def change_subscription_price(
        self,
        subscription_id: str,
        price_id: str,
        organization_id: str,
        plan_slug: str,
        billing_cycle: str,
    ) -> Dict[str, Any]:
        """Swap the subscription's single item to a new price, prorating the difference."""
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
            item_id = subscription["items"]["data"][0]["id"]
            updated = stripe.Subscription.modify(
                subscription_id,
                api_key=self.api_key,
                items=[{"id": item_id, "price": price_id}],
                proration_behavior="create_prorations",
                metadata={
                    "organization_id": organization_id,
                    "plan_slug": plan_slug,
                    "billing_cycle": billing_cycle,
                },
            )
        except stripe.StripeError as e:
            raise self._fail("change_subscription_price", e) from e
        return stripe_object_to_dict(updated)


def get_stripe_client(api_key: Optional[str] = None) -> StripeBillingClient:
    """Factory function to create a StripeBillingClient."""
    return StripeBillingClient(api_key)
