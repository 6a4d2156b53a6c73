"""
Invitation API endpoints.

GET  /api/v1/orgs/{org_id}/invitations                        — List (member), newest first
POST /api/v1/orgs/{org_id}/invitations                        — Invite by email (member)
POST /api/v1/orgs/{org_id}/invitations/{invitation_id}/resend — Rotate token (inviter or admin)
POST /api/v1/orgs/{org_id}/invitations/{invitation_id}/revoke — Revoke (inviter or admin)
POST /api/v1/invitations/accept                               — Redeem a token
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user_id
from app.core.database import get_session
from app.services import invitations as invitation_service
from orgboard_shared.schemas.common import OrgRole
from orgboard_shared.schemas.invitations import (
    InvitationAcceptRequest,
    InvitationAcceptResponse,
    InvitationCreateRequest,
    InvitationListResponse,
    InvitationResponse,
    InvitationStatus,
)

# Mounted under /orgs/{org_id}/invitations
router = APIRouter()

# Mounted under /invitations
accept_router = APIRouter()


@router.get("", response_model=InvitationListResponse)
async def list_invitations(
    org_id: uuid.UUID,
    status: Optional[InvitationStatus] = Query(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    invitations = await invitation_service.list_invitations(
        org_id, user_id, session, status=status
    )
    return InvitationListResponse(
        data=[InvitationResponse.model_validate(inv) for inv in invitations]
    )


@router.post("", response_model=InvitationResponse, status_code=201)
async def invite_member(
    org_id: uuid.UUID,
    body: InvitationCreateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Invite someone by email. The token is returned for out-of-band delivery."""
    invitation = await invitation_service.invite_member(org_id, body, user_id, session)
    return InvitationResponse.model_validate(invitation)


@router.post("/{invitation_id}/resend", response_model=InvitationResponse)
async def resend_invitation(
    org_id: uuid.UUID,
    invitation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    invitation = await invitation_service.resend_invitation(
        invitation_id, user_id, session, organization_id=org_id
    )
    return InvitationResponse.model_validate(invitation)


@router.post("/{invitation_id}/revoke", response_model=InvitationResponse)
async def revoke_invitation(
    org_id: uuid.UUID,
    invitation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    invitation = await invitation_service.revoke_invitation(
        invitation_id, user_id, session, organization_id=org_id
    )
    return InvitationResponse.model_validate(invitation)


@accept_router.post("/accept", response_model=InvitationAcceptResponse)
async def accept_invitation(
    body: InvitationAcceptRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Join the invitation's organization with the invitation's role."""
    invitation = await invitation_service.accept_invitation(body.token, user_id, session)
    return InvitationAcceptResponse(
        invitation=InvitationResponse.model_validate(invitation),
        organization_id=invitation.organization_id,
        role=OrgRole(invitation.role),
    )
