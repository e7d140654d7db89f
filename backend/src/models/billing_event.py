"""
BillingEvent model - idempotency ledger for payment processor events.

CRITICAL: This table is APPEND-ONLY.
Never update or delete billing events - only insert new ones. A row with a
given stripe_event_id means that event has been handled and must not be
applied again.
"""

import enum

from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Index

from src.db_base import Base
from src.models.base import generate_uuid, utcnow


class BillingEventOutcome(str, enum.Enum):
    """How a ledger entry was resolved."""
    APPLIED = "applied"      # Side effects written
    IGNORED = "ignored"      # Unknown type, stale or superseded; acknowledged
    FAILED = "failed"        # Verified but unusable (poison); acknowledged


class BillingEvent(Base):
    """
    Append-only record of processed Stripe events.

    NOTE: organization_id is nullable because a poison event may not
    resolve to any organization and is still recorded.
    """

    __tablename__ = "billing_events"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    stripe_event_id = Column(
        String(255),
        nullable=False,
        unique=True,
        comment="Stripe event id; unique idempotency key"
    )
    event_type = Column(
        String(100),
        nullable=False,
        index=True,
        comment="Raw Stripe event type"
    )
    organization_id = Column(
        String(36),
        nullable=True,
        index=True,
        comment="Resolved organization (NULL if unresolvable)"
    )
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    stripe_invoice_id = Column(String(255), nullable=True)

    amount_cents = Column(Integer, nullable=True)
    currency = Column(String(10), nullable=True)

    outcome = Column(
        String(20),
        nullable=False,
        default=BillingEventOutcome.APPLIED.value,
        comment="applied | ignored | failed"
    )
    detail = Column(Text, nullable=True, comment="Reason for ignored/failed outcomes")
    payload_hash = Column(String(64), nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=True)

    occurred_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Stripe event creation time"
    )
    processed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("ix_billing_events_org_processed", "organization_id", "processed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<BillingEvent(stripe_event_id={self.stripe_event_id}, "
            f"type={self.event_type}, outcome={self.outcome})>"
        )
