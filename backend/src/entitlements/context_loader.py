"""
Entitlement context loader.

Reads everything the resolver needs for one organization as independent,
concurrent reads (organization pilot fields, subscription + plan,
overrides, asset count, user count) and folds them into one immutable
EntitlementContext.

Each sub-read runs in the threadpool with its own short-lived session,
because a SQLAlchemy Session must not be shared across threads. Usage
counters are recomputed on every load and never cached.
"""

import asyncio
import logging
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from src.entitlements.catalog import PlanCatalog, get_plan_catalog
from src.entitlements.models import EntitlementContext, OverrideGrant, PilotFields
from src.models.asset import Asset
from src.models.base import as_utc, utcnow
from src.models.entitlement_override import EntitlementOverride
from src.models.organization import Organization
from src.models.subscription import Subscription, SubscriptionStatus
from src.models.user import User

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass(frozen=True)
class _SubscriptionSnapshot:
    status: Optional[str]
    plan_slug: Optional[str]
    plan_name: Optional[str]
    features: Optional[Dict[str, Any]]
    max_assets: Optional[int]
    max_users: Optional[int]


class EntitlementContextLoader:
    """
    Builds EntitlementContext snapshots.

    Usage:
        loader = EntitlementContextLoader(get_session_factory())
        context = await loader.load(organization_id)
        if context is None:
            # caller has no resolvable organization
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        catalog: Optional[PlanCatalog] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.catalog = catalog or get_plan_catalog()
        self._clock = clock

    async def load(self, organization_id: str, now: Optional[datetime] = None) -> Optional[EntitlementContext]:
        """
        Load the entitlement snapshot for an organization.

        Returns:
            EntitlementContext, or None if the organization does not exist
            or is archived. An organization without a subscription is a
            valid, lowest-privilege context.
        """
        evaluated_at = now or self._clock()

        pilot, subscription, overrides, asset_count, user_count = await asyncio.gather(
            run_in_threadpool(self._read_organization, organization_id),
            run_in_threadpool(self._read_subscription, organization_id),
            run_in_threadpool(self._read_overrides, organization_id),
            run_in_threadpool(self._count_rows, Asset, organization_id),
            run_in_threadpool(self._count_rows, User, organization_id),
        )

        if pilot is None:
            logger.info("Entitlement context not found", extra={"organization_id": organization_id})
            return None

        return self._build_context(
            organization_id,
            pilot,
            subscription,
            overrides,
            asset_count,
            user_count,
            evaluated_at,
        )

    # ------------------------------------------------------------------
    # Sub-reads; each opens and closes its own session
    # ------------------------------------------------------------------

    def _read_organization(self, organization_id: str) -> Optional[PilotFields]:
        with self._session_factory() as session:
            org = session.query(Organization).filter(
                Organization.id == organization_id,
                Organization.archived_at.is_(None),
            ).first()
            if org is None:
                return None
            return PilotFields(
                is_pilot=bool(org.is_pilot),
                start_date=org.pilot_start_date,
                end_date=org.pilot_end_date,
                converted_to_paid=bool(org.converted_to_paid),
            )

    def _read_subscription(self, organization_id: str) -> Optional[_SubscriptionSnapshot]:
        with self._session_factory() as session:
            subscription = session.query(Subscription).filter(
                Subscription.organization_id == organization_id
            ).first()
            if subscription is None:
                return None
            plan = subscription.plan
            status = subscription.status.value if subscription.status is not None else None
            if plan is None:
                return _SubscriptionSnapshot(status, None, None, None, None, None)
            return _SubscriptionSnapshot(
                status,
                plan.slug,
                plan.name,
                dict(plan.features or {}),
                plan.max_assets,
                plan.max_users,
            )

    def _read_overrides(self, organization_id: str) -> List[OverrideGrant]:
        with self._session_factory() as session:
            rows = session.query(EntitlementOverride).filter(
                EntitlementOverride.organization_id == organization_id
            ).all()
            return [
                OverrideGrant(
                    feature_key=row.feature_key,
                    granted=bool(row.granted),
                    expires_at=as_utc(row.expires_at),
                )
                for row in rows
            ]

    def _count_rows(self, model, organization_id: str) -> int:
        with self._session_factory() as session:
            query = session.query(func.count(model.id)).filter(
                model.organization_id == organization_id
            )
            if model is User:
                query = query.filter(User.is_active.is_(True))
            return int(query.scalar() or 0)

    # ------------------------------------------------------------------

    def _build_context(
        self,
        organization_id: str,
        pilot: PilotFields,
        subscription: Optional[_SubscriptionSnapshot],
        overrides: List[OverrideGrant],
        asset_count: int,
        user_count: int,
        evaluated_at: datetime,
    ) -> EntitlementContext:
        # No subscription row: the organization is treated as trialing the lowest-privilege plan
        status = subscription.status if subscription else SubscriptionStatus.TRIALING.value

        if subscription is not None and subscription.plan_slug is not None:
            plan_slug = subscription.plan_slug
            plan_name = subscription.plan_name
            features = subscription.features
            max_assets = subscription.max_assets
            max_users = subscription.max_users
            plan_resolved = True
        else:
            fallback = self.catalog.get_default_plan()
            logger.debug(
                "No resolvable plan, using lowest-privilege plan",
                extra={"organization_id": organization_id, "plan": fallback.slug},
            )
            plan_slug = fallback.slug
            plan_name = fallback.name
            features = dict(fallback.features)
            max_assets = fallback.max_assets
            max_users = fallback.max_users
            plan_resolved = False

        return EntitlementContext(
            organization_id=organization_id,
            subscription_status=status,
            plan_slug=plan_slug,
            plan_name=plan_name,
            plan_features=features,
            max_assets=max_assets,
            max_users=max_users,
            current_assets=asset_count,
            current_users=user_count,
            pilot=pilot,
            overrides=tuple(overrides),
            evaluated_at=evaluated_at,
            plan_resolved=plan_resolved,
        )
