"""
Checkout and billing-portal session initiation.

Thin, stateless wrappers around the Stripe client. Every request is
validated against the plan catalog and price table before Stripe is
called; the only local write is binding a newly created customer.

CRITICAL: All operations are scoped to the caller's organization id.
"""

import logging
import os
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.config.stripe_prices import BILLING_CYCLES, PriceTable, get_price_table
from src.entitlements.catalog import CatalogPlan, PlanCatalog, get_plan_catalog
from src.entitlements.errors import OrganizationNotFoundError
from src.integrations.payments.stripe_client import StripeBillingClient, get_stripe_client
from src.models.asset import Asset
from src.models.organization import Organization
from src.models.subscription import Subscription
from src.services.billing_errors import (
    AlreadySubscribedError,
    NoBillingAccountError,
    PlanLimitExceededError,
    PlanNotFoundError,
    PriceNotConfiguredError,
    SalesOnlyPlanError,
)

logger = logging.getLogger(__name__)

SUBSCRIPTION_SETTINGS_PATH = "/settings/subscription"
DEFAULT_BILLING_CYCLE = "yearly"


def resolve_origin(origin: Optional[str]) -> str:
    """Request origin, falling back to APP_BASE_URL."""
    base = origin or os.getenv("APP_BASE_URL") or "http://localhost:3000"
    return base.rstrip("/")


def validate_purchasable_plan(catalog: PlanCatalog, plan_slug: str) -> CatalogPlan:
    """
    Look up a plan that can be bought online.

    Raises:
        PlanNotFoundError: Unknown or inactive plan
        SalesOnlyPlanError: Plan is sold through sales only
    """
    plan = catalog.get_plan(plan_slug)
    if plan is None or not plan.is_active:
        raise PlanNotFoundError(plan_slug)
    if not plan.purchasable:
        raise SalesOnlyPlanError(plan_slug)
    return plan


def count_assets(db: Session, organization_id: str) -> int:
    return int(
        db.query(func.count(Asset.id)).filter(Asset.organization_id == organization_id).scalar() or 0
    )


def check_asset_quota(catalog: PlanCatalog, plan: CatalogPlan, current_assets: int) -> None:
    """Raise PlanLimitExceededError if the plan cannot hold the current assets."""
    if catalog.is_unlimited(plan.max_assets):
        return
    if current_assets > plan.max_assets:
        raise PlanLimitExceededError(plan.slug, current_assets, plan.max_assets)


class CheckoutService:
    """
    Creates Stripe checkout and billing-portal sessions for an organization.

    Usage:
        service = CheckoutService(db)
        url = service.create_checkout_session(org_id, "professional", origin="https://app.example.com")
    """

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

    def _get_organization(self, organization_id: str) -> Organization:
        org = self.db.query(Organization).filter(
            Organization.id == organization_id,
            Organization.archived_at.is_(None),
        ).first()
        if org is None:
            raise OrganizationNotFoundError(organization_id)
        return org

    def create_checkout_session(
        self,
        organization_id: str,
        plan_slug: str,
        billing_cycle: str = DEFAULT_BILLING_CYCLE,
        origin: Optional[str] = None,
        email: Optional[str] = None,
    ) -> str:
        """
        Create a subscription checkout session.

        Returns:
            Hosted checkout URL

        Raises:
            PlanNotFoundError, SalesOnlyPlanError, PriceNotConfiguredError,
            AlreadySubscribedError, PlanLimitExceededError,
            PaymentProcessorError, PaymentProcessorNotConfiguredError
        """
        if billing_cycle not in BILLING_CYCLES:
            raise ValueError(f"Unknown billing cycle: {billing_cycle}")

        plan = validate_purchasable_plan(self.catalog, plan_slug)
        price_id = self.prices.price_for(plan.slug, billing_cycle)
        if not price_id:
            raise PriceNotConfiguredError(plan.slug, billing_cycle)

        org = self._get_organization(organization_id)
        subscription = self.db.query(Subscription).filter(
            Subscription.organization_id == org.id
        ).first()
        if subscription is not None and subscription.has_live_processor_subscription:
            raise AlreadySubscribedError(org.id)

        check_asset_quota(self.catalog, plan, count_assets(self.db, org.id))

        client = self._client_factory()
        customer_id = org.stripe_customer_id
        if not customer_id:
            customer_id = client.create_customer(org.id, email=email, name=org.name)
            org.stripe_customer_id = customer_id
            self.db.commit()
            logger.info("Stripe customer created", extra={"organization_id": org.id})

        base = resolve_origin(origin)
        url = client.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            organization_id=org.id,
            plan_slug=plan.slug,
            billing_cycle=billing_cycle,
            success_url=(
                f"{base}{SUBSCRIPTION_SETTINGS_PATH}"
                "?checkout=success&session_id={CHECKOUT_SESSION_ID}"
            ),
            cancel_url=f"{base}{SUBSCRIPTION_SETTINGS_PATH}?checkout=cancelled",
        )

        logger.info("Checkout session created", extra={
            "organization_id": org.id,
            "plan": plan.slug,
            "billing_cycle": billing_cycle,
        })
        return url

    def create_portal_session(self, organization_id: str, origin: Optional[str] = None) -> str:
        """
        Create a billing-portal session.

        Raises:
            NoBillingAccountError: Organization has no Stripe customer yet
        """
        org = self._get_organization(organization_id)
        if not org.stripe_customer_id:
            raise NoBillingAccountError("No billing account found. Subscribe to a plan first.")

        url = self._client_factory().create_portal_session(
            org.stripe_customer_id,
            return_url=f"{resolve_origin(origin)}{SUBSCRIPTION_SETTINGS_PATH}",
        )
        logger.info("Billing portal session created", extra={"organization_id": org.id})
        return url
