"""
Organization service — business logic for org CRUD and membership lookups.

Creation and deletion are multi-row writes and run inside `atomic()`; the
slug pre-check is only a fast path, the unique constraint on
organizations.slug is what actually rejects duplicates.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import case, delete, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import atomic
from app.core.errors import (
    NotFound,
    PermissionDenied,
    SlugConflict,
    StorageUnavailable,
    ValidationFailed,
    classify_storage_error,
)
from app.core.permissions import require_permission
from app.core.storage import FileUpload, LocalObjectStore, StorageError, logo_object_path
from app.models.board import Board
from app.models.organization import Organization
from app.models.organization_invitation import OrganizationInvitation
from app.models.organization_member import OrganizationMember
from app.models.profile import Profile

from orgboard_shared.schemas.common import OrgRole
from orgboard_shared.schemas.organizations import (
    MemberResponse,
    OrgCreateRequest,
    OrgUpdateRequest,
    is_valid_slug,
)

log = structlog.get_logger()


def _owner_membership(org: Organization, creator_id: uuid.UUID) -> OrganizationMember:
    return OrganizationMember(
        organization_id=org.id,
        user_id=creator_id,
        role=OrgRole.OWNER.value,
    )


async def _upload_logo(
    store: LocalObjectStore,
    org_slug: str,
    logo: FileUpload,
    fallback_url: Optional[str],
) -> Optional[str]:
    """Upload a logo; on failure keep `fallback_url` rather than failing the caller."""
    bucket = get_settings().logo_bucket
    try:
        return await store.upload(
            bucket,
            logo_object_path(org_slug, logo.filename),
            logo.data,
            content_type=logo.content_type,
        )
    except StorageError as exc:
        log.warning("org.logo_upload_failed", slug=org_slug, error=str(exc))
        return fallback_url


async def _load_org(org_id: uuid.UUID, session: AsyncSession) -> Organization:
    try:
        result = await session.execute(
            select(Organization).where(Organization.id == org_id)
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="org.load") from exc
    org = result.scalar_one_or_none()
    if not org:
        raise NotFound("Organization not found")
    return org


async def check_slug_availability(
    slug: str,
    session: AsyncSession,
    *,
    exclude_org_id: Optional[uuid.UUID] = None,
) -> bool:
    """True iff no organization (other than `exclude_org_id`) holds `slug`.

    A failed lookup raises instead of answering, so callers never read an
    outage as "available".
    """
    if not is_valid_slug(slug):
        raise ValidationFailed(
            "Slug must be at least 3 characters of lowercase letters, digits and hyphens"
        )
    stmt = select(Organization.id).where(Organization.slug == slug)
    if exclude_org_id is not None:
        stmt = stmt.where(Organization.id != exclude_org_id)
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="org.slug_check") from exc
    return result.first() is None


async def fetch_user_organizations(
    user_id: uuid.UUID, session: AsyncSession
) -> tuple[list[Organization], list[OrganizationMember]]:
    """Orgs the user created or belongs to (newest first), plus the user's memberships."""
    member_org_ids = select(OrganizationMember.organization_id).where(
        OrganizationMember.user_id == user_id
    )
    try:
        orgs_result = await session.execute(
            select(Organization)
            .where(
                or_(
                    Organization.created_by == user_id,
                    Organization.id.in_(member_org_ids),
                )
            )
            .order_by(Organization.created_at.desc(), Organization.id)
        )
        memberships_result = await session.execute(
            select(OrganizationMember)
            .where(OrganizationMember.user_id == user_id)
            .order_by(OrganizationMember.created_at.desc())
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="org.list") from exc

    return list(orgs_result.scalars().all()), list(memberships_result.scalars().all())


async def create_org(
    req: OrgCreateRequest,
    creator_id: uuid.UUID,
    session: AsyncSession,
    *,
    logo: Optional[FileUpload] = None,
    store: Optional[LocalObjectStore] = None,
) -> Organization:
    """Create an org and make the creator its owner, in one transaction."""
    name = req.name.strip()
    if not name:
        raise ValidationFailed("Organization name is required")

    if not await check_slug_availability(req.slug, session):
        raise SlugConflict()

    org = Organization(name=name, slug=req.slug, created_by=creator_id)
    try:
        async with atomic(session):
            session.add(org)
            try:
                await session.flush()
            except IntegrityError:
                # Lost the race for this slug to a concurrent create
                raise SlugConflict()
            session.add(_owner_membership(org, creator_id))
            await session.flush()
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="org.create") from exc

    log.info("org.created", org_id=str(org.id), slug=org.slug, creator=str(creator_id))

    # Upload only once the org exists, so a lost slug race leaves no stray object
    if logo is not None and store is not None:
        logo_url = await _upload_logo(store, org.slug, logo, None)
        if logo_url is not None:
            try:
                async with atomic(session):
                    org.logo_url = logo_url
                    session.add(org)
            except SQLAlchemyError as exc:
                raise classify_storage_error(exc, action="org.create_logo") from exc
    return org


async def get_org(
    org_id: uuid.UUID, requester_id: uuid.UUID, session: AsyncSession
) -> Organization:
    """Fetch an org the requester belongs to."""
    org = await _load_org(org_id, session)
    await require_permission(org_id, requester_id, OrgRole.MEMBER, session)
    return org


async def update_org(
    org_id: uuid.UUID,
    req: OrgUpdateRequest,
    requester_id: uuid.UUID,
    session: AsyncSession,
    *,
    logo: Optional[FileUpload] = None,
    store: Optional[LocalObjectStore] = None,
) -> Organization:
    """Update name, slug and/or logo. Requires admin."""
    org = await _load_org(org_id, session)
    await require_permission(org_id, requester_id, OrgRole.ADMIN, session)

    if req.slug is not None and req.slug != org.slug:
        if not await check_slug_availability(req.slug, session, exclude_org_id=org.id):
            raise SlugConflict()
        org.slug = req.slug

    if req.name is not None:
        name = req.name.strip()
        if not name:
            raise ValidationFailed("Organization name is required")
        org.name = name

    if req.logo_url is not None:
        org.logo_url = req.logo_url

    if logo is not None and store is not None:
        org.logo_url = await _upload_logo(store, org.slug, logo, org.logo_url)

    session.add(org)
    try:
        await session.flush()
    except IntegrityError as exc:
        log.info("org.slug_conflict", org_id=str(org.id), slug=org.slug)
        raise SlugConflict() from exc
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="org.update") from exc

    log.info("org.updated", org_id=str(org.id), slug=org.slug)
    return org


async def set_logo(
    org_id: uuid.UUID,
    requester_id: uuid.UUID,
    logo: FileUpload,
    store: LocalObjectStore,
    session: AsyncSession,
) -> Organization:
    """Replace the org logo. Requires admin.

    Unlike create/update, the upload is the whole point of this call, so an
    object store failure is reported as StorageUnavailable.
    """
    org = await _load_org(org_id, session)
    await require_permission(org_id, requester_id, OrgRole.ADMIN, session)

    try:
        url = await store.upload(
            get_settings().logo_bucket,
            logo_object_path(org.slug, logo.filename),
            logo.data,
            content_type=logo.content_type,
        )
    except StorageError as exc:
        log.warning("org.logo_upload_failed", org_id=str(org.id), error=str(exc))
        raise StorageUnavailable("Logo upload failed") from exc

    org.logo_url = url
    session.add(org)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="org.set_logo") from exc

    log.info("org.logo_updated", org_id=str(org.id))
    return org


async def delete_org(
    org_id: uuid.UUID, requester_id: uuid.UUID, session: AsyncSession
) -> None:
    """Delete an org and everything it owns. Only the creator may do this."""
    org = await _load_org(org_id, session)
    if org.created_by != requester_id:
        log.info("permission.denied", org_id=str(org_id), user_id=str(requester_id), action="org.delete")
        raise PermissionDenied("Only the organization's creator can delete it")

    try:
        async with atomic(session):
            await session.execute(
                delete(OrganizationMember).where(OrganizationMember.organization_id == org_id)
            )
            await session.execute(
                delete(OrganizationInvitation).where(
                    OrganizationInvitation.organization_id == org_id
                )
            )
            await session.execute(delete(Board).where(Board.organization_id == org_id))
            await session.delete(org)
            await session.flush()
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="org.delete") from exc

    log.info("org.deleted", org_id=str(org_id), slug=org.slug)


async def list_members(
    org_id: uuid.UUID, requester_id: uuid.UUID, session: AsyncSession
) -> list[MemberResponse]:
    """Members with their profile display fields, most senior role first."""
    await _load_org(org_id, session)
    await require_permission(org_id, requester_id, OrgRole.MEMBER, session)

    seniority = case(
        (OrganizationMember.role == OrgRole.OWNER.value, 0),
        (OrganizationMember.role == OrgRole.ADMIN.value, 1),
        else_=2,
    )
    try:
        result = await session.execute(
            select(OrganizationMember, Profile)
            .join(Profile, Profile.id == OrganizationMember.user_id)
            .where(OrganizationMember.organization_id == org_id)
            .order_by(seniority, OrganizationMember.created_at)
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="org.list_members") from exc

    return [
        MemberResponse(
            id=member.id,
            user_id=member.user_id,
            role=member.role,
            email=profile.email,
            full_name=profile.full_name,
            avatar_url=profile.avatar_url,
            created_at=member.created_at,
        )
        for member, profile in result.all()
    ]
