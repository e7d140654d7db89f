"""
Organization lifecycle: signup and soft-archive.

Signup creates the organization, its owner membership and its
subscription row in one transaction. The subscription starts on the
catalog's default plan with status trialing; new organizations start a
pilot unless told otherwise.
"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from src.entitlements.catalog import PlanCatalog, get_plan_catalog
from src.entitlements.errors import OrganizationNotFoundError
from src.entitlements.lifecycle import start_pilot
from src.models.base import generate_uuid, utcnow
from src.models.organization import Organization
from src.models.subscription import Subscription, SubscriptionStatus
from src.models.user import User
from src.repositories.plans_repo import PlansRepository
from src.services.billing_errors import PlanNotFoundError

logger = logging.getLogger(__name__)


class OrganizationService:
    """Creates and archives organizations."""

    def __init__(
        self,
        db_session: Session,
        catalog: Optional[PlanCatalog] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db_session
        self.catalog = catalog or get_plan_catalog()
        self._clock = clock

    def create_organization(
        self,
        name: str,
        owner_auth_user_id: Optional[str] = None,
        owner_email: Optional[str] = None,
        pilot: bool = True,
        today: Optional[date] = None,
    ) -> Organization:
        """
        Sign up a new organization.

        Raises:
            PlanNotFoundError: Default plan row is not seeded
        """
        default_slug = self.catalog.default_plan_slug
        plan = PlansRepository(self.db).get_by_slug(default_slug)
        if plan is None:
            raise PlanNotFoundError(default_slug)

        org = Organization(id=generate_uuid(), name=name)
        if pilot:
            start_pilot(org, today or self._clock().date(), self.catalog.pilot_policy)

        subscription = Subscription(
            organization_id=org.id,
            plan_id=plan.id,
            status=SubscriptionStatus.TRIALING,
        )
        org.subscription_status = SubscriptionStatus.TRIALING.value

        self.db.add(org)
        self.db.add(subscription)
        if owner_auth_user_id:
            self.db.add(User(
                organization_id=org.id,
                auth_user_id=owner_auth_user_id,
                email=owner_email or "",
            ))
        self.db.commit()

        logger.info("Organization created", extra={
            "organization_id": org.id,
            "plan": plan.slug,
            "is_pilot": pilot,
        })
        return org

    def archive_organization(self, organization_id: str) -> Organization:
        """Soft-archive; entitlement loads for the organization return not-found afterwards."""
        org = self.db.query(Organization).filter(Organization.id == organization_id).first()
        if org is None:
            raise OrganizationNotFoundError(organization_id)
        if org.archived_at is None:
            org.archived_at = self._clock()
            self.db.commit()
            logger.info("Organization archived", extra={"organization_id": org.id})
        return org
