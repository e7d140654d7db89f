"""
Plan model - catalog entry for a subscription tier.

Plans are GLOBAL (not organization-scoped). They are seeded from
config/plans.json and only change through administrative catalog edits.
"""

from sqlalchemy import Column, String, Text, Integer, Boolean, JSON

from src.db_base import Base
from src.models.base import TimestampMixin, generate_uuid


class Plan(Base, TimestampMixin):
    """
    Pricing tier with quotas and a feature map.

    features maps a feature key to True, False or "on_demand";
    only True grants the feature.
    """

    __tablename__ = "plans"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    slug = Column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
        comment="Catalog identifier (starter, professional, business, enterprise)"
    )
    name = Column(
        String(100),
        nullable=False,
        comment="Display name"
    )
    description = Column(
        Text,
        nullable=True,
        comment="Plan description for the pricing page"
    )
    tier = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Ordering of plans from lowest to highest privilege"
    )

    # Pricing in cents; NULL for sales-only plans
    price_monthly_cents = Column(Integer, nullable=True)
    price_yearly_cents = Column(Integer, nullable=True)

    # Quotas; values at or above the unlimited sentinel mean unlimited
    max_assets = Column(
        Integer,
        nullable=False,
        default=100,
        comment="Maximum assets (999999 = unlimited)"
    )
    max_users = Column(
        Integer,
        nullable=False,
        default=5,
        comment="Maximum users (999999 = unlimited)"
    )

    features = Column(
        JSON,
        nullable=False,
        default=dict,
        comment="Feature key -> true | false | 'on_demand'"
    )

    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        comment="Whether the plan is offered"
    )
    is_purchasable = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="False for sales-only tiers (checkout is refused)"
    )

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, slug={self.slug}, tier={self.tier})>"

    def grants(self, feature_key: str) -> bool:
        return (self.features or {}).get(feature_key) is True
