"""
Plans repository.

Plans are global (not organization-scoped). Rows mirror the plan catalog
(config/plans.json); subscriptions reference them by id.
"""

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from src.entitlements.catalog import CatalogPlan, PlanCatalog
from src.models.plan import Plan

logger = logging.getLogger(__name__)


class PlansRepository:
    """Repository for Plan rows."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_by_slug(self, slug: str) -> Optional[Plan]:
        return self.db.query(Plan).filter(Plan.slug == slug).first()

    def get_all(self, include_inactive: bool = False) -> List[Plan]:
        query = self.db.query(Plan)
        if not include_inactive:
            query = query.filter(Plan.is_active.is_(True))
        return query.order_by(Plan.tier).all()

    def upsert_from_catalog(self, catalog_plan: CatalogPlan) -> Tuple[Plan, bool]:
        """
        Insert or update the row for a catalog plan (not committed).

        Returns:
            (plan, created)
        """
        plan = self.get_by_slug(catalog_plan.slug)
        created = plan is None
        if created:
            plan = Plan(slug=catalog_plan.slug)
            self.db.add(plan)

        plan.name = catalog_plan.name
        plan.description = catalog_plan.description
        plan.tier = catalog_plan.tier
        plan.price_monthly_cents = catalog_plan.price_monthly_cents
        plan.price_yearly_cents = catalog_plan.price_yearly_cents
        plan.max_assets = catalog_plan.max_assets
        plan.max_users = catalog_plan.max_users
        plan.features = dict(catalog_plan.features)
        plan.is_active = catalog_plan.is_active
        plan.is_purchasable = catalog_plan.purchasable
        return plan, created

    def sync_catalog(self, catalog: PlanCatalog, dry_run: bool = False) -> Dict[str, int]:
        """Upsert every catalog plan; commits unless dry_run."""
        counts = {"created": 0, "updated": 0}
        for catalog_plan in catalog.get_all_plans():
            _, created = self.upsert_from_catalog(catalog_plan)
            counts["created" if created else "updated"] += 1

        if dry_run:
            self.db.rollback()
        else:
            self.db.commit()

        logger.info("Plan catalog synced", extra={
            "catalog_version": catalog.version,
            "dry_run": dry_run,
            **counts,
        })
        return counts
