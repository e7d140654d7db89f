"""
EntitlementOverride model - per-organization feature exceptions.

Written by administrative tooling (comps, demos, revocations); read-only
for the entitlement resolver.
"""

from sqlalchemy import Column, String, Boolean, DateTime, Text, UniqueConstraint

from src.db_base import Base
from src.models.base import TimestampMixin, OrganizationScopedMixin, generate_uuid


class EntitlementOverride(Base, TimestampMixin, OrganizationScopedMixin):
    """Grant or revoke one feature for one organization, optionally until expires_at."""

    __tablename__ = "entitlement_overrides"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    feature_key = Column(String(100), nullable=False)
    granted = Column(Boolean, nullable=False)
    expires_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="NULL = never expires"
    )
    reason = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "feature_key",
            name="uq_entitlement_overrides_org_feature",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<EntitlementOverride(organization_id={self.organization_id}, "
            f"feature_key={self.feature_key}, granted={self.granted})>"
        )
