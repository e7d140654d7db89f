"""
End-to-end pilot journey: signup, active pilot, grace, lock, conversion.

Each step reloads the organization's context through the loader with an
advanced clock, the way a request on that day would see it.
"""

from datetime import datetime, timezone

import pytest

from src.entitlements.context_loader import EntitlementContextLoader
from src.entitlements.guard import DenialReason, require_feature, require_write_access
from src.entitlements.lifecycle import PilotState
from src.entitlements.models import AccessLevel
from src.entitlements.resolver import resolve
from src.models.organization import Organization
from src.repositories.plans_repo import PlansRepository
from src.services.billing_events import ProcessorEvent
from src.services.billing_sync import BillingEventSynchronizer, SyncOutcome
from src.services.organization_service import OrganizationService

pytestmark = pytest.mark.integration

SIGNUP = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
WARNING_DAY = datetime(2026, 3, 12, 9, 0, tzinfo=timezone.utc)
GRACE_DAY = datetime(2026, 3, 20, 9, 0, tzinfo=timezone.utc)
LOCK_DAY = datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)
APR_1 = 1775001600
MAY_1 = 1777593600


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(SIGNUP)


@pytest.fixture
def journey(file_session, session_factory, catalog, price_table, clock):
    PlansRepository(file_session).sync_catalog(catalog)
    org = OrganizationService(file_session, catalog, clock=clock).create_organization(
        "Hire Co", owner_auth_user_id="auth-owner", owner_email="owner@hire.test"
    )
    loader = EntitlementContextLoader(session_factory, catalog=catalog, clock=clock)

    async def entitlements():
        context = await loader.load(org.id)
        return resolve(context, policy=catalog.pilot_policy, unlimited_quota=catalog.unlimited_quota)

    return org, entitlements


class TestPilotJourney:
    """A pilot organization from signup to paid conversion."""

    @pytest.mark.asyncio
    async def test_full_journey(self, journey, clock, file_session, catalog, price_table):
        org, entitlements = journey

        # Day 0: everything unlocked, pilot quotas
        view = await entitlements()
        assert view.pilot_state is PilotState.PILOT_ACTIVE
        assert view.has_feature("custom_integrations") is True
        assert view.effective_max_assets == 50
        assert view.pilot_days_remaining == 15

        # Day 11: still active, inside the warning window
        clock.now = WARNING_DAY
        view = await entitlements()
        assert view.pilot_active is True
        assert view.pilot_days_remaining == 4
        assert view.pilot_days_remaining <= view.policy.warning_days

        # Day 19: pilot ended, plan features stay, the rest is read-only
        clock.now = GRACE_DAY
        view = await entitlements()
        assert view.pilot_state is PilotState.PILOT_GRACE
        assert view.access_level("qr_tracking") is AccessLevel.FULL
        assert view.access_level("vgp_compliance") is AccessLevel.READ_ONLY
        assert require_feature(view, "vgp_compliance").allowed is True
        denied = require_write_access(view, "vgp_compliance")
        assert denied.allowed is False
        assert denied.reason is DenialReason.READ_ONLY
        assert view.effective_max_assets == 100

        # Day 31: locked, nothing is usable
        clock.now = LOCK_DAY
        view = await entitlements()
        assert view.is_locked is True
        denied = require_feature(view, "qr_tracking")
        assert denied.reason is DenialReason.ACCOUNT_LOCKED
        assert view.can_create_asset() is False

        # Paid subscription arrives through the webhook
        synchronizer = BillingEventSynchronizer(file_session, catalog, price_table, clock=clock)
        result = synchronizer.apply(ProcessorEvent.from_payload({
            "id": "evt_paid",
            "type": "customer.subscription.created",
            "created": APR_1,
            "data": {"object": {
                "id": "sub_paid",
                "customer": "cus_hire",
                "status": "active",
                "metadata": {"organization_id": org.id},
                "items": {"data": [{"id": "si_1", "price": {"id": "price_professional_annual"}}]},
                "current_period_start": APR_1,
                "current_period_end": MAY_1,
            }},
        }))
        assert result.outcome is SyncOutcome.APPLIED

        stored = file_session.query(Organization).filter_by(id=org.id).one()
        assert stored.converted_to_paid is True
        assert stored.stripe_customer_id == "cus_hire"
        assert stored.subscription_status == "active"

        view = await entitlements()
        assert view.is_locked is False
        assert view.plan_slug == "professional"
        assert require_write_access(view, "vgp_compliance").allowed is True
        assert view.effective_max_assets == 500
        assert view.can_create_asset() is True
