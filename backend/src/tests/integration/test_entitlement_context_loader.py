"""
Integration tests for EntitlementContextLoader and OrganizationService.

The loader opens one session per concurrent sub-read, so these tests use
the file-backed database.

Tests cover:
- Snapshot contents (plan, status, pilot fields, overrides, usage counts)
- Archived and unknown organizations
- Lowest-privilege fallback when no plan resolves
- Organization signup and archiving
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.entitlements.context_loader import EntitlementContextLoader
from src.entitlements.errors import OrganizationNotFoundError
from src.entitlements.resolver import resolve
from src.models.asset import Asset
from src.models.entitlement_override import EntitlementOverride
from src.models.subscription import Subscription, SubscriptionStatus
from src.models.user import User
from src.services.billing_errors import PlanNotFoundError
from src.services.organization_service import OrganizationService

pytestmark = pytest.mark.integration

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def loader(session_factory, catalog):
    return EntitlementContextLoader(session_factory, catalog=catalog, clock=lambda: NOW)


class TestContextLoader:
    """Tests for EntitlementContextLoader.load."""

    @pytest.mark.asyncio
    async def test_loads_complete_snapshot(self, loader, file_session, make_file_organization):
        org = make_file_organization(
            plan_slug="professional",
            is_pilot=True,
            pilot_start=date(2026, 1, 1),
            pilot_end=date(2026, 1, 16),
            converted=True,
            customer_id="cus_1",
        )
        file_session.add_all([
            Asset(organization_id=org.id, name="Excavator"),
            Asset(organization_id=org.id, name="Crane"),
            User(organization_id=org.id, auth_user_id="u1", email="a@example.com"),
            User(organization_id=org.id, auth_user_id="u2", email="b@example.com", is_active=False),
            EntitlementOverride(
                organization_id=org.id, feature_key="api_access", granted=True,
                expires_at=NOW + timedelta(days=7),
            ),
        ])
        file_session.commit()

        context = await loader.load(org.id)

        assert context.organization_id == org.id
        assert context.subscription_status == "active"
        assert context.plan_slug == "professional"
        assert context.plan_features["vgp_compliance"] is True
        assert context.max_assets == 500
        assert context.current_assets == 2
        assert context.current_users == 1
        assert context.pilot.is_pilot is True
        assert context.pilot.end_date == date(2026, 1, 16)
        assert context.pilot.converted_to_paid is True
        assert context.evaluated_at == NOW
        assert context.plan_resolved is True

        override = context.find_override("api_access")
        assert override.granted is True
        assert override.expires_at == NOW + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_counts_only_own_organization(self, loader, file_session, make_file_organization):
        org = make_file_organization()
        other = make_file_organization()
        file_session.add_all(Asset(organization_id=other.id, name=f"A{i}") for i in range(3))
        file_session.commit()

        context = await loader.load(org.id)

        assert context.current_assets == 0

    @pytest.mark.asyncio
    async def test_unknown_organization(self, loader, make_file_organization):
        make_file_organization()

        assert await loader.load("missing-org") is None

    @pytest.mark.asyncio
    async def test_archived_organization(self, loader, file_session, make_file_organization):
        org = make_file_organization()
        org.archived_at = NOW
        file_session.commit()

        assert await loader.load(org.id) is None

    @pytest.mark.asyncio
    async def test_missing_subscription_trials_lowest_privilege_plan(self, loader, catalog, make_file_organization):
        org = make_file_organization(status=None)

        context = await loader.load(org.id)

        assert context.subscription_status == "trialing"
        assert context.plan_slug == catalog.default_plan_slug
        assert context.plan_resolved is False
        entitlements = resolve(context, policy=catalog.pilot_policy)
        assert entitlements.has_feature("qr_tracking") is True
        assert entitlements.has_feature("vgp_compliance") is False

    @pytest.mark.asyncio
    async def test_subscription_without_plan_uses_lowest_privilege(self, loader, make_file_organization):
        org = make_file_organization(plan_slug=None, status=SubscriptionStatus.CANCELLED)

        context = await loader.load(org.id)

        assert context.subscription_status == "cancelled"
        assert context.plan_slug == "starter"
        assert context.plan_resolved is False

    @pytest.mark.asyncio
    async def test_snapshot_is_independent_of_later_writes(self, loader, file_session, make_file_organization):
        org = make_file_organization()
        context = await loader.load(org.id)

        file_session.add(Asset(organization_id=org.id, name="Late"))
        file_session.commit()

        assert context.current_assets == 0
        assert (await loader.load(org.id)).current_assets == 1


class TestOrganizationService:
    """Tests for signup and archiving."""

    def test_signup_starts_pilot_on_default_plan(self, db_session, seeded_plans, catalog):
        service = OrganizationService(db_session, catalog, clock=lambda: NOW)

        org = service.create_organization(
            "Acme Rentals", owner_auth_user_id="auth-1", owner_email="owner@acme.test"
        )

        assert org.is_pilot is True
        assert org.pilot_start_date == date(2026, 3, 1)
        assert org.pilot_end_date == date(2026, 3, 16)
        assert org.subscription_status == "trialing"
        subscription = db_session.query(Subscription).filter_by(organization_id=org.id).one()
        assert subscription.status is SubscriptionStatus.TRIALING
        assert subscription.plan.slug == "starter"
        owner = db_session.query(User).filter_by(auth_user_id="auth-1").one()
        assert owner.organization_id == org.id

    def test_signup_without_pilot(self, db_session, seeded_plans, catalog):
        org = OrganizationService(db_session, catalog).create_organization("Plain", pilot=False)

        assert org.is_pilot is False
        assert org.pilot_end_date is None

    def test_signup_requires_seeded_plans(self, db_session, catalog):
        with pytest.raises(PlanNotFoundError):
            OrganizationService(db_session, catalog).create_organization("Acme")

    def test_archive(self, db_session, seeded_plans, catalog):
        service = OrganizationService(db_session, catalog, clock=lambda: NOW)
        org = service.create_organization("Acme")

        archived = service.archive_organization(org.id)

        assert archived.is_archived is True
        assert archived.archived_at == NOW

    def test_archive_unknown(self, db_session, catalog):
        with pytest.raises(OrganizationNotFoundError):
            OrganizationService(db_session, catalog).archive_organization("missing")
