"""
Organization-related Pydantic schemas shared between server and client.

Covers: Org CRUD request/response, memberships, slug rules.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .common import OrgRole


# ---------------------------------------------------------------------------
# Slug rules
# ---------------------------------------------------------------------------

SLUG_PATTERN = r"^[a-z0-9-]+$"
SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 50

_slug_re = re.compile(SLUG_PATTERN)


def is_valid_slug(slug: Optional[str]) -> bool:
    """Lowercase letters, digits and hyphens only, at least three characters."""
    if not slug:
        return False
    return (
        SLUG_MIN_LENGTH <= len(slug) <= SLUG_MAX_LENGTH
        and _slug_re.match(slug) is not None
    )


def slugify(name: str) -> str:
    """Suggest a slug from a display name ("Acme Inc." -> "acme-inc")."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH]


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OrgCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Organization display name")
    slug: str = Field(
        ...,
        min_length=SLUG_MIN_LENGTH,
        max_length=SLUG_MAX_LENGTH,
        pattern=SLUG_PATTERN,
        description="URL-safe org identifier",
    )


class OrgUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(
        None,
        min_length=SLUG_MIN_LENGTH,
        max_length=SLUG_MAX_LENGTH,
        pattern=SLUG_PATTERN,
    )
    logo_url: Optional[str] = Field(None, max_length=2048)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class OrgResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    logo_url: Optional[str] = None
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MembershipResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    user_id: uuid.UUID
    role: OrgRole
    created_at: datetime

    model_config = {"from_attributes": True}


class OrgListResponse(BaseModel):
    """Organizations visible to the user, newest first, plus their memberships."""
    data: list[OrgResponse]
    memberships: list[MembershipResponse]


class MemberResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    role: OrgRole
    email: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime


class MemberListResponse(BaseModel):
    data: list[MemberResponse]


class SlugAvailabilityResponse(BaseModel):
    slug: str
    available: bool
