"""
Database models for organizations, plans, subscriptions and entitlements.

Organization-scoped models inherit from OrganizationScopedMixin.
Importing this package registers every table on Base.metadata.
"""

from src.models.base import TimestampMixin, OrganizationScopedMixin
from src.models.organization import Organization
from src.models.plan import Plan
from src.models.subscription import (
    Subscription,
    SubscriptionStatus,
    BillingCycle,
    ENTITLING_STATUSES,
)
from src.models.entitlement_override import EntitlementOverride
from src.models.billing_event import BillingEvent, BillingEventOutcome
from src.models.user import User
from src.models.asset import Asset

__all__ = [
    "TimestampMixin",
    "OrganizationScopedMixin",
    "Organization",
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "BillingCycle",
    "ENTITLING_STATUSES",
    "EntitlementOverride",
    "BillingEvent",
    "BillingEventOutcome",
    "User",
    "Asset",
]
