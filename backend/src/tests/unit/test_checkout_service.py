"""
Unit tests for CheckoutService and PlanChangeService.

Stripe is replaced by a MagicMock client; the database is SQLite.

Tests cover:
- Checkout validation order (plan, price, organization, live subscription, quota)
- Customer creation and binding
- Success/cancel URLs
- Billing portal sessions
- Plan changes (no-op, upgrade, downgrade, quota, state read under the lock)
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import update

from src.entitlements.errors import OrganizationNotFoundError
from src.models.asset import Asset
from src.models.base import utcnow
from src.models.subscription import BillingCycle, Subscription, SubscriptionStatus
from src.services.billing_errors import (
    AlreadySubscribedError,
    NoBillingAccountError,
    PlanLimitExceededError,
    PlanNotFoundError,
    PriceNotConfiguredError,
    SalesOnlyPlanError,
)
from src.services.checkout_service import CheckoutService, resolve_origin
from src.services.plan_change import PlanChangeService

ORIGIN = "https://app.example.com"


@pytest.fixture
def stripe_client():
    client = MagicMock()
    client.create_customer.return_value = "cus_new"
    client.create_checkout_session.return_value = "https://checkout.stripe.com/c/pay/cs_test"
    client.create_portal_session.return_value = "https://billing.stripe.com/p/session/test"
    return client


@pytest.fixture
def checkout_service(db_session, catalog, price_table, stripe_client):
    return CheckoutService(db_session, catalog, price_table, client_factory=lambda: stripe_client)


@pytest.fixture
def plan_change_service(db_session, catalog, price_table, stripe_client):
    return PlanChangeService(db_session, catalog, price_table, client_factory=lambda: stripe_client)


def add_assets(db_session, organization_id, count):
    db_session.add_all(
        Asset(organization_id=organization_id, name=f"Asset {i}") for i in range(count)
    )
    db_session.commit()


class TestCreateCheckoutSession:
    """Tests for CheckoutService.create_checkout_session."""

    def test_creates_customer_and_session(self, checkout_service, stripe_client, make_organization):
        org = make_organization(status=SubscriptionStatus.TRIALING)

        url = checkout_service.create_checkout_session(
            org.id, "professional", origin=ORIGIN, email="owner@example.com"
        )

        assert url == "https://checkout.stripe.com/c/pay/cs_test"
        stripe_client.create_customer.assert_called_once_with(
            org.id, email="owner@example.com", name=org.name
        )
        assert org.stripe_customer_id == "cus_new"

        kwargs = stripe_client.create_checkout_session.call_args.kwargs
        assert kwargs["customer_id"] == "cus_new"
        assert kwargs["price_id"] == "price_professional_annual"
        assert kwargs["organization_id"] == org.id
        assert kwargs["plan_slug"] == "professional"
        assert kwargs["billing_cycle"] == "yearly"
        assert kwargs["success_url"] == (
            f"{ORIGIN}/settings/subscription?checkout=success&session_id={{CHECKOUT_SESSION_ID}}"
        )
        assert kwargs["cancel_url"] == f"{ORIGIN}/settings/subscription?checkout=cancelled"

    def test_reuses_existing_customer(self, checkout_service, stripe_client, make_organization):
        org = make_organization(customer_id="cus_existing", status=SubscriptionStatus.CANCELLED)

        checkout_service.create_checkout_session(org.id, "business", "monthly", origin=ORIGIN)

        stripe_client.create_customer.assert_not_called()
        kwargs = stripe_client.create_checkout_session.call_args.kwargs
        assert kwargs["customer_id"] == "cus_existing"
        assert kwargs["price_id"] == "price_business_monthly"

    def test_sales_only_plan(self, checkout_service, stripe_client, make_organization):
        org = make_organization()

        with pytest.raises(SalesOnlyPlanError):
            checkout_service.create_checkout_session(org.id, "enterprise")

        stripe_client.create_checkout_session.assert_not_called()

    def test_unknown_plan(self, checkout_service, make_organization):
        org = make_organization()

        with pytest.raises(PlanNotFoundError):
            checkout_service.create_checkout_session(org.id, "platinum")

    def test_unknown_billing_cycle(self, checkout_service, make_organization):
        org = make_organization()

        with pytest.raises(ValueError):
            checkout_service.create_checkout_session(org.id, "starter", "weekly")

    def test_price_not_configured(self, db_session, catalog, stripe_client, make_organization):
        prices = MagicMock()
        prices.price_for.return_value = None
        service = CheckoutService(db_session, catalog, prices, client_factory=lambda: stripe_client)
        org = make_organization()

        with pytest.raises(PriceNotConfiguredError):
            service.create_checkout_session(org.id, "starter")

    def test_archived_organization(self, checkout_service, db_session, make_organization):
        org = make_organization()
        org.archived_at = utcnow()
        db_session.commit()

        with pytest.raises(OrganizationNotFoundError):
            checkout_service.create_checkout_session(org.id, "starter")

    def test_live_subscription_is_refused(self, checkout_service, stripe_client, make_organization):
        org = make_organization(customer_id="cus_1", stripe_subscription_id="sub_1")

        with pytest.raises(AlreadySubscribedError):
            checkout_service.create_checkout_session(org.id, "business")

        stripe_client.create_checkout_session.assert_not_called()

    def test_cancelled_subscription_can_check_out_again(self, checkout_service, db_session, make_organization):
        org = make_organization(customer_id="cus_1", stripe_subscription_id="sub_old")
        subscription = db_session.query(Subscription).filter_by(organization_id=org.id).one()
        subscription.status = SubscriptionStatus.CANCELLED
        db_session.commit()

        assert checkout_service.create_checkout_session(org.id, "starter", origin=ORIGIN)

    def test_assets_above_plan_quota(self, checkout_service, db_session, stripe_client, make_organization):
        org = make_organization(status=SubscriptionStatus.CANCELLED)
        add_assets(db_session, org.id, 101)

        with pytest.raises(PlanLimitExceededError) as exc_info:
            checkout_service.create_checkout_session(org.id, "starter")

        assert exc_info.value.current_assets == 101
        assert exc_info.value.max_assets == 100
        stripe_client.create_customer.assert_not_called()

    def test_assets_at_plan_quota(self, checkout_service, db_session, make_organization):
        org = make_organization(status=SubscriptionStatus.CANCELLED)
        add_assets(db_session, org.id, 100)

        assert checkout_service.create_checkout_session(org.id, "starter", origin=ORIGIN)


class TestPortalSession:
    """Tests for CheckoutService.create_portal_session."""

    def test_portal_session(self, checkout_service, stripe_client, make_organization):
        org = make_organization(customer_id="cus_1")

        url = checkout_service.create_portal_session(org.id, ORIGIN + "/")

        assert url == "https://billing.stripe.com/p/session/test"
        stripe_client.create_portal_session.assert_called_once_with(
            "cus_1", return_url=f"{ORIGIN}/settings/subscription"
        )

    def test_portal_requires_customer(self, checkout_service, stripe_client, make_organization):
        org = make_organization()

        with pytest.raises(NoBillingAccountError):
            checkout_service.create_portal_session(org.id, ORIGIN)

        stripe_client.create_portal_session.assert_not_called()

    def test_unknown_organization(self, checkout_service, seeded_plans):
        with pytest.raises(OrganizationNotFoundError):
            checkout_service.create_portal_session("missing-org", ORIGIN)


class TestResolveOrigin:
    """Tests for resolve_origin."""

    def test_request_origin_wins(self, monkeypatch):
        monkeypatch.setenv("APP_BASE_URL", "https://configured.example.com")

        assert resolve_origin("https://request.example.com/") == "https://request.example.com"

    def test_configured_fallback(self, monkeypatch):
        monkeypatch.setenv("APP_BASE_URL", "https://configured.example.com")

        assert resolve_origin(None) == "https://configured.example.com"

    def test_local_default(self, monkeypatch):
        monkeypatch.delenv("APP_BASE_URL", raising=False)

        assert resolve_origin(None) == "http://localhost:3000"


class TestPlanChange:
    """Tests for PlanChangeService.change_plan."""

    def test_requires_live_subscription(self, plan_change_service, make_organization):
        org = make_organization()

        with pytest.raises(NoBillingAccountError):
            plan_change_service.change_plan(org.id, "business", "monthly")

    def test_same_plan_is_a_no_op(self, plan_change_service, stripe_client, make_organization):
        org = make_organization(customer_id="cus_1", stripe_subscription_id="sub_1")

        result = plan_change_service.change_plan(org.id, "starter", "monthly")

        assert result.changed is False
        stripe_client.change_subscription_price.assert_not_called()

    def test_upgrade(self, plan_change_service, stripe_client, db_session, make_organization):
        org = make_organization(customer_id="cus_1", stripe_subscription_id="sub_1")

        result = plan_change_service.change_plan(org.id, "business", "yearly")

        assert result.changed is True
        assert result.previous_plan == "starter"
        assert result.plan == "business"
        assert result.is_downgrade is False
        stripe_client.change_subscription_price.assert_called_once_with(
            "sub_1",
            "price_business_annual",
            organization_id=org.id,
            plan_slug="business",
            billing_cycle="yearly",
        )
        subscription = db_session.query(Subscription).filter_by(organization_id=org.id).one()
        assert subscription.plan.slug == "business"
        assert subscription.billing_cycle is BillingCycle.YEARLY
        assert subscription.stripe_price_id == "price_business_annual"

    def test_downgrade(self, plan_change_service, make_organization):
        org = make_organization(
            plan_slug="business", customer_id="cus_1", stripe_subscription_id="sub_1"
        )

        result = plan_change_service.change_plan(org.id, "professional", "monthly")

        assert result.is_downgrade is True

    def test_downgrade_blocked_by_assets(self, plan_change_service, stripe_client, db_session, make_organization):
        org = make_organization(
            plan_slug="business", customer_id="cus_1", stripe_subscription_id="sub_1"
        )
        add_assets(db_session, org.id, 150)

        with pytest.raises(PlanLimitExceededError):
            plan_change_service.change_plan(org.id, "starter", "monthly")

        stripe_client.change_subscription_price.assert_not_called()

    def test_sales_only_target(self, plan_change_service, make_organization):
        org = make_organization(customer_id="cus_1", stripe_subscription_id="sub_1")

        with pytest.raises(SalesOnlyPlanError):
            plan_change_service.change_plan(org.id, "enterprise", "yearly")

    def test_unknown_organization(self, plan_change_service, stripe_client, seeded_plans):
        with pytest.raises(OrganizationNotFoundError):
            plan_change_service.change_plan("missing", "business", "monthly")

        stripe_client.change_subscription_price.assert_not_called()

    def test_cancellation_committed_elsewhere_is_seen(
        self, plan_change_service, stripe_client, db_session, make_organization
    ):
        org = make_organization(customer_id="cus_1", stripe_subscription_id="sub_1")
        loaded = db_session.query(Subscription).filter_by(organization_id=org.id).one()
        assert loaded.status is SubscriptionStatus.ACTIVE
        db_session.execute(
            update(Subscription)
            .where(Subscription.organization_id == org.id)
            .values(status=SubscriptionStatus.CANCELLED, stripe_subscription_id=None)
            .execution_options(synchronize_session=False)
        )
        db_session.commit()

        with pytest.raises(NoBillingAccountError):
            plan_change_service.change_plan(org.id, "business", "monthly")

        stripe_client.change_subscription_price.assert_not_called()
