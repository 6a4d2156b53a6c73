"""Organization invitation model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class OrganizationInvitation(UUIDMixin, SQLModel, table=True):
    """A pending or resolved offer of membership.

    The token is a bearer credential: anyone holding it while the invitation
    is pending and unexpired can accept it.
    """

    __tablename__ = "organization_invitations"

    organization_id: uuid.UUID = Field(
        foreign_key="organizations.id", ondelete="CASCADE", nullable=False, index=True
    )
    email: str = Field(nullable=False, index=True)
    role: str = Field(nullable=False, default="member")  # owner | admin | member
    token: str = Field(unique=True, nullable=False, index=True)
    status: str = Field(nullable=False, default="pending", index=True)  # pending | accepted | revoked
    invited_by: uuid.UUID = Field(foreign_key="profiles.id", nullable=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    accepted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    revoked_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
