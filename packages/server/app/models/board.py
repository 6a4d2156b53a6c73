"""Board model."""

import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Board(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "boards"

    organization_id: uuid.UUID = Field(
        foreign_key="organizations.id", ondelete="CASCADE", nullable=False, index=True
    )
    title: str = Field(nullable=False)
