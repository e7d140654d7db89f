"""
Subscription summary for the settings page.

Combines the stored subscription row with the resolved entitlements, so
usage, pilot and lock fields are computed by the same resolver that
gates features.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from src.entitlements.catalog import PlanCatalog, get_plan_catalog
from src.entitlements.models import AccessLevel
from src.entitlements.resolver import Entitlements
from src.models.base import as_utc
from src.models.subscription import Subscription


@dataclass
class SubscriptionDetails:
    plan_slug: str
    plan_name: str
    status: Optional[str]
    billing_cycle: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool


@dataclass
class UsageSummary:
    assets: int
    max_assets: Optional[int]
    limit_reached: bool


@dataclass
class SubscriptionSummary:
    subscription: SubscriptionDetails
    usage: UsageSummary
    is_pilot: bool
    pilot_active: bool
    days_remaining: Optional[int]
    pilot_end_date: Optional[date]
    access_level_for_compliance: AccessLevel
    account_locked: bool
    pilot_warning: bool


def build_subscription_summary(
    db: Session,
    entitlements: Entitlements,
    catalog: Optional[PlanCatalog] = None,
) -> SubscriptionSummary:
    catalog = catalog or get_plan_catalog()
    context = entitlements.context

    row = db.query(Subscription).filter(
        Subscription.organization_id == context.organization_id
    ).first()

    details = SubscriptionDetails(
        plan_slug=context.plan_slug,
        plan_name=context.plan_name,
        status=context.subscription_status,
        billing_cycle=row.billing_cycle.value if row is not None and row.billing_cycle else None,
        current_period_start=as_utc(row.current_period_start) if row is not None else None,
        current_period_end=as_utc(row.current_period_end) if row is not None else None,
        cancel_at_period_end=bool(row.cancel_at_period_end) if row is not None else False,
    )

    # None means unlimited
    max_assets = entitlements.effective_max_assets
    usage = UsageSummary(
        assets=context.current_assets,
        max_assets=None if entitlements.is_unlimited(max_assets) else max_assets,
        limit_reached=entitlements.asset_limit_reached(),
    )

    days_left = entitlements.pilot_days_remaining
    pilot_warning = (
        entitlements.pilot_active
        and days_left is not None
        and days_left <= entitlements.policy.warning_days
    )

    return SubscriptionSummary(
        subscription=details,
        usage=usage,
        is_pilot=context.pilot.is_pilot,
        pilot_active=entitlements.pilot_active,
        days_remaining=days_left,
        pilot_end_date=context.pilot.end_date,
        access_level_for_compliance=entitlements.access_level(catalog.compliance_feature),
        account_locked=entitlements.is_locked,
        pilot_warning=pilot_warning,
    )
