"""
Payment processor integration module.
"""

from src.integrations.payments.stripe_client import StripeBillingClient, get_stripe_client

__all__ = ["StripeBillingClient", "get_stripe_client"]
