"""Organization membership (join between a profile and an organization)."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class OrganizationMember(UUIDMixin, SQLModel, table=True):
    __tablename__ = "organization_members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),
    )

    organization_id: uuid.UUID = Field(
        foreign_key="organizations.id", ondelete="CASCADE", nullable=False, index=True
    )
    user_id: uuid.UUID = Field(foreign_key="profiles.id", nullable=False, index=True)
    role: str = Field(nullable=False, default="member")  # owner | admin | member
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
