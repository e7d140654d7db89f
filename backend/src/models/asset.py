"""
Asset model.

The asset domain itself lives elsewhere; billing only needs to count
assets per organization for the asset quota.
"""

from sqlalchemy import Column, String

from src.db_base import Base
from src.models.base import TimestampMixin, OrganizationScopedMixin, generate_uuid


class Asset(Base, TimestampMixin, OrganizationScopedMixin):
    """Tracked piece of equipment."""

    __tablename__ = "assets"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    name = Column(String(255), nullable=False)
    serial_number = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Asset(id={self.id}, organization_id={self.organization_id})>"
