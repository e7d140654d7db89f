"""
Integration tests for the subscription reconciliation job.

Tests cover:
- Drifted subscriptions are corrected from Stripe
- Subscriptions Stripe no longer knows are cancelled to the default plan
- Stripe errors are counted and do not stop the run
- Only live, Stripe-backed subscriptions are candidates
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from src.jobs.reconcile_subscriptions import run_reconciliation
from src.models.billing_event import BillingEvent
from src.models.subscription import Subscription, SubscriptionStatus
from src.services.billing_errors import PaymentProcessorError
from src.services.billing_sync import BillingEventSynchronizer

pytestmark = pytest.mark.integration

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
FEB_1 = 1769904000
MAR_1 = 1772323200


def remote_subscription(subscription_id, price, status="active", customer="cus_1"):
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "metadata": {},
        "items": {"data": [{"id": "si_1", "price": {"id": price}}]},
        "current_period_start": FEB_1,
        "current_period_end": MAR_1,
        "cancel_at_period_end": False,
    }


@pytest.fixture
def synchronizer(db_session, catalog, price_table):
    return BillingEventSynchronizer(db_session, catalog, price_table, clock=lambda: NOW)


def subscription_of(db_session, org):
    return db_session.query(Subscription).filter_by(organization_id=org.id).one()


class TestRunReconciliation:
    """Tests for run_reconciliation."""

    def test_reconciles_each_candidate(self, db_session, synchronizer, make_organization):
        drifted = make_organization(customer_id="cus_1", stripe_subscription_id="sub_1")
        vanished = make_organization(customer_id="cus_2", stripe_subscription_id="sub_2")
        failing = make_organization(customer_id="cus_3", stripe_subscription_id="sub_3")
        make_organization(status=SubscriptionStatus.TRIALING)

        def retrieve(subscription_id):
            if subscription_id == "sub_1":
                return remote_subscription("sub_1", "price_business_monthly")
            if subscription_id == "sub_2":
                return None
            raise PaymentProcessorError("Stripe retrieve_subscription failed")

        client = MagicMock()
        client.retrieve_subscription.side_effect = retrieve

        stats = run_reconciliation(db_session, client=client, synchronizer=synchronizer, sleep=lambda s: None)

        assert stats["subscriptions_checked"] == 3
        assert stats["subscriptions_updated"] == 2
        assert stats["subscriptions_missing"] == 1
        assert stats["errors"] == 1
        assert "duration_seconds" in stats

        assert subscription_of(db_session, drifted).plan.slug == "business"

        cancelled = subscription_of(db_session, vanished)
        assert cancelled.status is SubscriptionStatus.CANCELLED
        assert cancelled.plan.slug == "starter"
        assert cancelled.stripe_subscription_id is None
        assert vanished.subscription_status == "cancelled"

        assert subscription_of(db_session, failing).plan.slug == "starter"
        assert subscription_of(db_session, failing).status is SubscriptionStatus.ACTIVE

    def test_reconciliation_writes_no_ledger_rows(self, db_session, synchronizer, make_organization):
        make_organization(customer_id="cus_1", stripe_subscription_id="sub_1")
        client = MagicMock()
        client.retrieve_subscription.return_value = remote_subscription("sub_1", "price_professional_monthly")

        run_reconciliation(db_session, client=client, synchronizer=synchronizer, sleep=lambda s: None)

        assert db_session.query(BillingEvent).count() == 0

    def test_cancelled_subscriptions_are_not_checked(self, db_session, synchronizer, make_organization):
        org = make_organization(customer_id="cus_1", stripe_subscription_id="sub_1")
        subscription = subscription_of(db_session, org)
        subscription.status = SubscriptionStatus.CANCELLED
        db_session.commit()
        client = MagicMock()

        stats = run_reconciliation(db_session, client=client, synchronizer=synchronizer, sleep=lambda s: None)

        assert stats["subscriptions_checked"] == 0
        client.retrieve_subscription.assert_not_called()

    def test_remote_metadata_organization_is_filled_in(self, db_session, synchronizer, make_organization):
        org = make_organization(customer_id="cus_1", stripe_subscription_id="sub_1")
        client = MagicMock()
        client.retrieve_subscription.return_value = remote_subscription(
            "sub_1", "price_professional_monthly", status="past_due"
        )

        stats = run_reconciliation(db_session, client=client, synchronizer=synchronizer, sleep=lambda s: None)

        assert stats["subscriptions_updated"] == 1
        assert subscription_of(db_session, org).status is SubscriptionStatus.PAST_DUE
