"""
Authorization gate: role checks against organization membership rows.

The membership row is the only authorization fact consulted. A missing row
denies; a storage failure raises StorageUnavailable and is never read as a
grant or a denial.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import PermissionDenied, ValidationFailed, classify_storage_error
from app.models.organization_member import OrganizationMember
from orgboard_shared.schemas.common import OrgRole, role_satisfies

log = structlog.get_logger()


def _coerce_role(required_role: OrgRole | str) -> OrgRole:
    try:
        return OrgRole(required_role)
    except ValueError:
        raise ValidationFailed(f"Unknown role: {required_role}")


async def get_membership(
    organization_id: uuid.UUID,
    user_id: uuid.UUID,
    session: AsyncSession,
) -> Optional[OrganizationMember]:
    """Fetch the membership row for (organization, user), or None."""
    try:
        result = await session.execute(
            select(OrganizationMember).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == user_id,
            )
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="permission.lookup") from exc
    return result.scalar_one_or_none()


async def check_permission(
    organization_id: Optional[uuid.UUID],
    user_id: Optional[uuid.UUID],
    required_role: OrgRole | str,
    session: AsyncSession,
) -> bool:
    """Can `user_id` act with at least `required_role` in the organization?"""
    if not organization_id or not user_id:
        raise ValidationFailed("Organization and user identifiers are required")
    required = _coerce_role(required_role)

    membership = await get_membership(organization_id, user_id, session)
    if membership is None:
        return False
    try:
        return role_satisfies(membership.role, required)
    except ValueError:
        # Unrecognised role strings in storage never grant access
        log.warning(
            "permission.unknown_role",
            org_id=str(organization_id),
            user_id=str(user_id),
            role=membership.role,
        )
        return False


async def require_permission(
    organization_id: uuid.UUID,
    user_id: uuid.UUID,
    required_role: OrgRole | str,
    session: AsyncSession,
) -> None:
    """Raise PermissionDenied unless check_permission grants access."""
    if not await check_permission(organization_id, user_id, required_role, session):
        log.info(
            "permission.denied",
            org_id=str(organization_id),
            user_id=str(user_id),
            required_role=OrgRole(required_role).value,
        )
        raise PermissionDenied()
