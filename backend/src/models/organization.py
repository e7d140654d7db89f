"""
Organization model - the tenant root.

Every asset, user, subscription and override belongs to exactly one
organization. Organizations are never deleted; they are soft-archived.

Pilot fields (is_pilot, pilot_start_date, pilot_end_date, converted_to_paid)
are the only inputs of the pilot lifecycle. There is deliberately no stored
"pilot state" column: the state is derived on every evaluation.
"""

from sqlalchemy import (
    Column, String, Boolean, Date, DateTime, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin, generate_uuid


class Organization(Base, TimestampMixin):
    """Tenant root with pilot and payment-processor bindings."""

    __tablename__ = "organizations"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    name = Column(
        String(255),
        nullable=False,
        comment="Organization display name"
    )

    # Pilot (time-boxed full-access trial); date-only precision
    is_pilot = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Organization was onboarded through a pilot"
    )
    pilot_start_date = Column(
        Date,
        nullable=True,
        comment="First day of the pilot (inclusive)"
    )
    pilot_end_date = Column(
        Date,
        nullable=True,
        comment="Last day of the pilot (inclusive)"
    )
    converted_to_paid = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Pilot converted to a paid subscription; never locked once set"
    )

    # Payment processor binding
    stripe_customer_id = Column(
        String(255),
        nullable=True,
        unique=True,
        index=True,
        comment="Stripe customer reference; bound once, never overwritten"
    )

    # Mirror of Subscription.status, written in the same transaction
    subscription_status = Column(
        String(20),
        nullable=True,
        comment="Mirror of subscriptions.status for list views"
    )

    archived_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Soft-archive timestamp"
    )

    subscription = relationship(
        "Subscription",
        back_populates="organization",
        uselist=False,
    )

    __table_args__ = (
        CheckConstraint(
            "converted_to_paid = false OR stripe_customer_id IS NOT NULL",
            name="ck_organizations_converted_requires_customer",
        ),
        Index("ix_organizations_pilot", "is_pilot", "pilot_end_date"),
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name}, is_pilot={self.is_pilot})>"

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None
