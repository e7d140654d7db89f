"""
User-initiated plan change for an existing Stripe subscription.

The organization row lock is taken before the subscription is read, the
same lock the billing event synchronizer takes, so the two writers never
interleave. The price swap at Stripe and the local update both happen
under that lock.
The customer.subscription.updated event that follows is applied by the
synchronizer as a normal (idempotent) update.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from src.config.stripe_prices import BILLING_CYCLES, PriceTable, get_price_table
from src.entitlements.catalog import PlanCatalog, get_plan_catalog
from src.entitlements.errors import OrganizationNotFoundError
from src.integrations.payments.stripe_client import StripeBillingClient, get_stripe_client
from src.models.organization import Organization
from src.models.plan import Plan
from src.models.subscription import BillingCycle, Subscription
from src.services.billing_errors import (
    NoBillingAccountError,
    PlanNotFoundError,
    PriceNotConfiguredError,
)
from src.services.checkout_service import (
    check_asset_quota,
    count_assets,
    validate_purchasable_plan,
)

logger = logging.getLogger(__name__)


@dataclass
class PlanChangeResult:
    """Outcome of a plan change."""
    previous_plan: Optional[str]
    plan: str
    billing_cycle: str
    is_downgrade: bool
    changed: bool = True


class PlanChangeService:
    """Swaps the price of an organization's live Stripe subscription."""

    def __init__(
        self,
        db_session: Session,
        catalog: Optional[PlanCatalog] = None,
        prices: Optional[PriceTable] = None,
        client_factory: Callable[[], StripeBillingClient] = get_stripe_client,
    ):
        self.db = db_session
        self.catalog = catalog or get_plan_catalog()
        self.prices = prices or get_price_table()
        self._client_factory = client_factory

    def change_plan(self, organization_id: str, plan_slug: str, billing_cycle: str) -> PlanChangeResult:
        """
        Move the organization to another plan and/or billing cycle.

        Raises:
            PlanNotFoundError, SalesOnlyPlanError, PriceNotConfiguredError,
            OrganizationNotFoundError, NoBillingAccountError (no live subscription - use checkout),
            PlanLimitExceededError, PaymentProcessorError
        """
        if billing_cycle not in BILLING_CYCLES:
            raise ValueError(f"Unknown billing cycle: {billing_cycle}")

        target = validate_purchasable_plan(self.catalog, plan_slug)
        price_id = self.prices.price_for(target.slug, billing_cycle)
        if not price_id:
            raise PriceNotConfiguredError(target.slug, billing_cycle)

        org = self.db.query(Organization).filter(
            Organization.id == organization_id
        ).with_for_update().first()
        if org is None:
            raise OrganizationNotFoundError(organization_id)

        # Re-read under the lock
        subscription = self.db.query(Subscription).filter(
            Subscription.organization_id == organization_id
        ).populate_existing().first()
        if subscription is None or not subscription.has_live_processor_subscription:
            raise NoBillingAccountError(
                "No active subscription to change. Start a checkout instead."
            )
        stripe_subscription_id = subscription.stripe_subscription_id

        current_slug = subscription.plan.slug if subscription.plan else None
        current_cycle = subscription.billing_cycle.value if subscription.billing_cycle else None
        if current_slug == target.slug and current_cycle == billing_cycle:
            return PlanChangeResult(current_slug, target.slug, billing_cycle, False, changed=False)

        current = self.catalog.get_plan(current_slug) if current_slug else None
        is_downgrade = current is not None and target.tier < current.tier
        check_asset_quota(self.catalog, target, count_assets(self.db, organization_id))

        plan_row = self.db.query(Plan).filter(Plan.slug == target.slug).first()
        if plan_row is None:
            raise PlanNotFoundError(target.slug)

        self._client_factory().change_subscription_price(
            stripe_subscription_id,
            price_id,
            organization_id=organization_id,
            plan_slug=target.slug,
            billing_cycle=billing_cycle,
        )

        subscription.plan_id = plan_row.id
        subscription.plan = plan_row
        subscription.billing_cycle = BillingCycle(billing_cycle)
        subscription.stripe_price_id = price_id
        self.db.commit()

        logger.info("Plan changed", extra={
            "organization_id": organization_id,
            "previous_plan": current_slug,
            "plan": target.slug,
            "billing_cycle": billing_cycle,
            "is_downgrade": is_downgrade,
        })
        return PlanChangeResult(current_slug, target.slug, billing_cycle, is_downgrade)
