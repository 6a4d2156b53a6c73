"""
Invitation service — issuing, resending, revoking and accepting invitations.

Lifecycle: pending -> accepted | revoked (both terminal); resend keeps a
pending invitation pending with a fresh token and expiry. Tokens are bearer
credentials and are never logged.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import atomic
from app.core.errors import (
    AlreadyMember,
    Conflict,
    InvitationNotFound,
    NotFound,
    PermissionDenied,
    ValidationFailed,
    classify_storage_error,
)
from app.core.permissions import check_permission, get_membership, require_permission
from app.models.base import utcnow
from app.models.organization import Organization
from app.models.organization_invitation import OrganizationInvitation
from app.models.organization_member import OrganizationMember

from orgboard_shared.schemas.common import OrgRole, role_satisfies
from orgboard_shared.schemas.invitations import (
    InvitationCreateRequest,
    InvitationStatus,
    can_transition,
)

log = structlog.get_logger()


def generate_invitation_token() -> str:
    """256 bits from the OS CSPRNG, URL-safe."""
    return secrets.token_urlsafe(32)


def _expiry():
    return utcnow() + timedelta(days=get_settings().invitation_ttl_days)


async def get_invitation(
    invitation_id: uuid.UUID,
    session: AsyncSession,
    *,
    organization_id: Optional[uuid.UUID] = None,
) -> OrganizationInvitation:
    """Load an invitation by id, optionally scoped to one organization."""
    stmt = select(OrganizationInvitation).where(OrganizationInvitation.id == invitation_id)
    if organization_id is not None:
        stmt = stmt.where(OrganizationInvitation.organization_id == organization_id)
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="invitation.load") from exc
    invitation = result.scalar_one_or_none()
    if not invitation:
        raise NotFound("Invitation not found")
    return invitation


async def _require_inviter_or_admin(
    invitation: OrganizationInvitation, requester_id: uuid.UUID, session: AsyncSession
) -> None:
    if invitation.invited_by == requester_id:
        # The inviter must still belong to the organization
        if await check_permission(
            invitation.organization_id, requester_id, OrgRole.MEMBER, session
        ):
            return
    await require_permission(invitation.organization_id, requester_id, OrgRole.ADMIN, session)


async def invite_member(
    organization_id: uuid.UUID,
    req: InvitationCreateRequest,
    inviter_id: uuid.UUID,
    session: AsyncSession,
) -> OrganizationInvitation:
    """Issue a pending invitation. Any member may invite, up to their own role."""
    try:
        org_exists = await session.execute(
            select(Organization.id).where(Organization.id == organization_id)
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="invitation.create") from exc
    if org_exists.first() is None:
        raise NotFound("Organization not found")

    membership = await get_membership(organization_id, inviter_id, session)
    if membership is None:
        log.info("permission.denied", org_id=str(organization_id), user_id=str(inviter_id), action="invitation.create")
        raise PermissionDenied()
    try:
        allowed = role_satisfies(membership.role, req.role)
    except ValueError:
        allowed = False
    if not allowed:
        raise PermissionDenied("You cannot invite someone with a role senior to your own")

    email = str(req.email).strip().lower()
    if not email:
        raise ValidationFailed("Email is required")

    invitation = OrganizationInvitation(
        organization_id=organization_id,
        email=email,
        role=OrgRole(req.role).value,
        token=generate_invitation_token(),
        status=InvitationStatus.PENDING.value,
        invited_by=inviter_id,
        expires_at=_expiry(),
    )
    session.add(invitation)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="invitation.create") from exc

    log.info(
        "invitation.created",
        invitation_id=str(invitation.id),
        org_id=str(organization_id),
        role=invitation.role,
        invited_by=str(inviter_id),
    )
    return invitation


async def list_invitations(
    organization_id: uuid.UUID,
    requester_id: uuid.UUID,
    session: AsyncSession,
    *,
    status: Optional[InvitationStatus] = None,
) -> list[OrganizationInvitation]:
    """Invitations of an organization, newest first."""
    await require_permission(organization_id, requester_id, OrgRole.MEMBER, session)

    stmt = select(OrganizationInvitation).where(
        OrganizationInvitation.organization_id == organization_id
    )
    if status is not None:
        stmt = stmt.where(OrganizationInvitation.status == InvitationStatus(status).value)
    stmt = stmt.order_by(OrganizationInvitation.created_at.desc(), OrganizationInvitation.id)
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="invitation.list") from exc
    return list(result.scalars().all())


async def resend_invitation(
    invitation_id: uuid.UUID,
    requester_id: uuid.UUID,
    session: AsyncSession,
    *,
    organization_id: Optional[uuid.UUID] = None,
) -> OrganizationInvitation:
    """Rotate the token of a pending invitation and restart its expiry window."""
    invitation = await get_invitation(invitation_id, session, organization_id=organization_id)
    await _require_inviter_or_admin(invitation, requester_id, session)

    if not can_transition(invitation.status, InvitationStatus.PENDING):
        raise Conflict(f"Cannot resend an invitation that is {invitation.status}")

    token = generate_invitation_token()
    expires_at = _expiry()
    try:
        result = await session.execute(
            update(OrganizationInvitation)
            .where(
                OrganizationInvitation.id == invitation.id,
                OrganizationInvitation.status == InvitationStatus.PENDING.value,
            )
            .values(token=token, expires_at=expires_at)
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="invitation.resend") from exc
    if result.rowcount != 1:
        # Accepted or revoked between the read and the write
        raise Conflict("Invitation is no longer pending")

    invitation.token = token
    invitation.expires_at = expires_at
    log.info("invitation.resent", invitation_id=str(invitation.id), org_id=str(invitation.organization_id))
    return invitation


async def revoke_invitation(
    invitation_id: uuid.UUID,
    requester_id: uuid.UUID,
    session: AsyncSession,
    *,
    organization_id: Optional[uuid.UUID] = None,
) -> OrganizationInvitation:
    """Revoke a pending invitation.

    Revoking an already revoked invitation returns it unchanged; revoking an
    accepted one is a Conflict.
    """
    invitation = await get_invitation(invitation_id, session, organization_id=organization_id)
    await _require_inviter_or_admin(invitation, requester_id, session)

    if invitation.status == InvitationStatus.REVOKED.value:
        return invitation
    if not can_transition(invitation.status, InvitationStatus.REVOKED):
        raise Conflict(f"Cannot revoke an invitation that is {invitation.status}")

    now = utcnow()
    try:
        result = await session.execute(
            update(OrganizationInvitation)
            .where(
                OrganizationInvitation.id == invitation.id,
                OrganizationInvitation.status == InvitationStatus.PENDING.value,
            )
            .values(status=InvitationStatus.REVOKED.value, revoked_at=now)
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="invitation.revoke") from exc
    if result.rowcount != 1:
        # Accepted by someone else between the read and the write
        raise Conflict("Invitation is no longer pending")

    invitation.status = InvitationStatus.REVOKED.value
    invitation.revoked_at = now
    log.info("invitation.revoked", invitation_id=str(invitation.id), revoked_by=str(requester_id))
    return invitation


async def accept_invitation(
    token: str, user_id: uuid.UUID, session: AsyncSession
) -> OrganizationInvitation:
    """Redeem a token: add the user as a member and mark the invitation accepted.

    Unknown, consumed, revoked and expired tokens all raise InvitationNotFound.
    If the user is already a member the whole transaction is rolled back and
    the invitation stays pending.
    """
    if not token:
        raise InvitationNotFound()

    now = utcnow()
    try:
        result = await session.execute(
            select(OrganizationInvitation).where(
                OrganizationInvitation.token == token,
                OrganizationInvitation.status == InvitationStatus.PENDING.value,
                OrganizationInvitation.expires_at > now,
            )
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="invitation.accept") from exc
    invitation = result.scalar_one_or_none()
    if not invitation:
        log.info("invitation.accept_not_found", user_id=str(user_id))
        raise InvitationNotFound()

    invitation_id = invitation.id
    organization_id = invitation.organization_id
    role = invitation.role

    try:
        async with atomic(session):
            session.add(
                OrganizationMember(
                    organization_id=organization_id,
                    user_id=user_id,
                    role=role,
                )
            )
            try:
                await session.flush()
            except IntegrityError:
                log.info(
                    "invitation.accept_already_member",
                    invitation_id=str(invitation_id),
                    user_id=str(user_id),
                )
                raise AlreadyMember()

            claimed = await session.execute(
                update(OrganizationInvitation)
                .where(
                    OrganizationInvitation.id == invitation_id,
                    OrganizationInvitation.status == InvitationStatus.PENDING.value,
                )
                .values(status=InvitationStatus.ACCEPTED.value, accepted_at=now)
            )
            if claimed.rowcount != 1:
                # Another request consumed the token first
                raise InvitationNotFound()
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="invitation.accept") from exc

    invitation.status = InvitationStatus.ACCEPTED.value
    invitation.accepted_at = now
    log.info(
        "invitation.accepted",
        invitation_id=str(invitation_id),
        org_id=str(organization_id),
        user_id=str(user_id),
        role=role,
    )
    return invitation
