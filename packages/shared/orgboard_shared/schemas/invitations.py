"""Organization invitation schemas and lifecycle states."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from .common import OrgRole


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"


# Resend keeps a pending invitation pending; accepted and revoked are terminal.
INVITATION_TRANSITIONS: dict[InvitationStatus, list[InvitationStatus]] = {
    InvitationStatus.PENDING: [
        InvitationStatus.PENDING,
        InvitationStatus.ACCEPTED,
        InvitationStatus.REVOKED,
    ],
    InvitationStatus.ACCEPTED: [],
    InvitationStatus.REVOKED: [],
}


def can_transition(current: InvitationStatus | str, target: InvitationStatus | str) -> bool:
    return InvitationStatus(target) in INVITATION_TRANSITIONS[InvitationStatus(current)]


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class InvitationCreateRequest(BaseModel):
    email: EmailStr
    role: OrgRole = OrgRole.MEMBER


class InvitationAcceptRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class InvitationResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    email: str
    role: OrgRole
    token: str
    status: InvitationStatus
    invited_by: uuid.UUID
    created_at: datetime
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class InvitationListResponse(BaseModel):
    data: list[InvitationResponse]


class InvitationAcceptResponse(BaseModel):
    invitation: InvitationResponse
    organization_id: uuid.UUID
    role: OrgRole
