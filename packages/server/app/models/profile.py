"""Profile model: the local user record mirrored from each authenticated session."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Profile(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "profiles"

    email: Optional[str] = Field(default=None, unique=True, index=True)
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    password_hash: Optional[str] = Field(default=None)  # bcrypt hash for email/password login
    oauth_provider: Optional[str] = None  # github | google
    oauth_subject: Optional[str] = Field(default=None, index=True)
