"""
Subscription model - one row per organization.

Written only by the billing event synchronizer and the plan-change
service, both of which lock the owning organization row first.
"""

import enum

from sqlalchemy import (
    Column, String, DateTime, Boolean, Enum, ForeignKey, Index, CheckConstraint
)
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin, OrganizationScopedMixin, generate_uuid


class SubscriptionStatus(str, enum.Enum):
    """Internal subscription status."""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Statuses under which plan features are granted
ENTITLING_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})

# Statuses that require a plan reference
PLAN_BOUND_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.TRIALING,
})


class BillingCycle(str, enum.Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Subscription(Base, TimestampMixin, OrganizationScopedMixin):
    """
    Current subscription state of an organization.

    CRITICAL DESIGN:
    - ONE subscription per organization (unique organization_id)
    - status is re-derived from each processor event, last write wins
    - last_event_at orders events that carry the same billing period
    """

    __tablename__ = "subscriptions"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    plan_id = Column(
        String(36),
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Current plan; required for trialing/active/past_due"
    )

    status = Column(
        Enum(
            SubscriptionStatus,
            name="subscription_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=SubscriptionStatus.TRIALING,
        index=True,
    )
    billing_cycle = Column(
        Enum(
            BillingCycle,
            name="billing_cycle",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=BillingCycle.MONTHLY,
    )

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Payment processor references
    stripe_subscription_id = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Stripe subscription reference; cleared on deletion"
    )
    stripe_price_id = Column(
        String(255),
        nullable=True,
        comment="Stripe price reference of the current item"
    )

    last_event_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Creation time of the last processor event applied"
    )

    organization = relationship("Organization", back_populates="subscription")
    plan = relationship("Plan", lazy="joined")

    __table_args__ = (
        Index("ux_subscriptions_organization", "organization_id", unique=True),
        CheckConstraint(
            "status NOT IN ('trialing', 'active', 'past_due') OR plan_id IS NOT NULL",
            name="ck_subscriptions_live_status_requires_plan",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, organization_id={self.organization_id}, "
            f"status={self.status})>"
        )

    @property
    def has_live_processor_subscription(self) -> bool:
        """True when a processor subscription is bound and still billing."""
        return bool(self.stripe_subscription_id) and self.status in (
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.TRIALING,
        )
