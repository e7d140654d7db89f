"""
User model.

Only the columns the billing engine needs: the link from an authenticated
principal (auth_user_id, the token subject) to its organization, and the
per-organization user count used for seat quotas.
"""

from sqlalchemy import Column, String, Boolean

from src.db_base import Base
from src.models.base import TimestampMixin, OrganizationScopedMixin, generate_uuid


class User(Base, TimestampMixin, OrganizationScopedMixin):
    """Member of an organization."""

    __tablename__ = "users"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    auth_user_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Subject claim of the identity provider token"
    )
    email = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, organization_id={self.organization_id})>"
