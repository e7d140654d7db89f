"""
Billing exception hierarchy.

Routes map these onto HTTP responses; see src.api.routes.billing.
"""

from typing import Optional


class BillingError(Exception):
    """Base exception for billing errors."""
    pass


class PlanNotFoundError(BillingError):
    """Requested plan does not exist or is not offered."""

    def __init__(self, plan_slug: str):
        self.plan_slug = plan_slug
        super().__init__(f"Plan '{plan_slug}' does not exist")


class SalesOnlyPlanError(BillingError):
    """Plan is sold through sales only (e.g. enterprise)."""

    def __init__(self, plan_slug: str):
        self.plan_slug = plan_slug
        super().__init__(
            f"The {plan_slug} plan is not available for online checkout. "
            "Please contact sales."
        )


class PriceNotConfiguredError(BillingError):
    """No processor price id is configured for the plan and billing cycle."""

    def __init__(self, plan_slug: str, billing_cycle: str):
        self.plan_slug = plan_slug
        self.billing_cycle = billing_cycle
        super().__init__(f"No price configured for {plan_slug} ({billing_cycle})")


class AlreadySubscribedError(BillingError):
    """Organization already has an active processor subscription."""

    def __init__(self, organization_id: str):
        self.organization_id = organization_id
        super().__init__(
            "Organization already has an active subscription. "
            "Use the billing portal to change plans."
        )


class NoBillingAccountError(BillingError):
    """Organization has no processor customer (or subscription) yet."""
    pass


class PlanLimitExceededError(BillingError):
    """Target plan's quota is below the organization's current usage."""

    def __init__(self, plan_slug: str, current_assets: int, max_assets: int):
        self.plan_slug = plan_slug
        self.current_assets = current_assets
        self.max_assets = max_assets
        super().__init__(
            f"Cannot downgrade: you have {current_assets} assets but the "
            f"{plan_slug} plan allows {max_assets}"
        )


class PaymentProcessorError(BillingError):
    """Error communicating with the payment processor."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class PaymentProcessorNotConfiguredError(BillingError):
    """Processor credentials are missing from the environment."""
    pass
