"""
Organization API endpoints.

GET    /api/v1/orgs                         — Orgs the user created or belongs to
POST   /api/v1/orgs                         — Create an org (multipart: name, slug, logo?)
GET    /api/v1/orgs/slug-availability?slug= — Is a slug free?
GET    /api/v1/orgs/{org_id}                — Get org details (member)
PATCH  /api/v1/orgs/{org_id}                — Update name/slug/logo_url (admin)
DELETE /api/v1/orgs/{org_id}                — Delete org and its children (creator)
PUT    /api/v1/orgs/{org_id}/logo           — Upload a new logo (admin)
GET    /api/v1/orgs/{org_id}/members        — List members (member)
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user_id
from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import ValidationFailed
from app.core.storage import FileUpload, LocalObjectStore, get_object_store
from app.services import organizations as org_service
from orgboard_shared.schemas.common import MessageResponse
from orgboard_shared.schemas.organizations import (
    MemberListResponse,
    MembershipResponse,
    OrgCreateRequest,
    OrgListResponse,
    OrgResponse,
    OrgUpdateRequest,
    SlugAvailabilityResponse,
)

log = structlog.get_logger()

router = APIRouter()


def _first_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))


async def read_logo(upload: Optional[UploadFile]) -> Optional[FileUpload]:
    """Validate an uploaded logo (image/*, size cap) and read it into memory."""
    if upload is None or not upload.filename:
        return None
    content_type = upload.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationFailed("Logo must be an image")
    max_bytes = get_settings().max_logo_bytes
    data = await upload.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationFailed(f"Logo must be at most {max_bytes // 1024} KB")
    if not data:
        raise ValidationFailed("Logo file is empty")
    return FileUpload(filename=upload.filename, content_type=content_type, data=data)


@router.get("", response_model=OrgListResponse)
async def list_orgs(
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Organizations the user created or is a member of, newest first."""
    orgs, memberships = await org_service.fetch_user_organizations(user_id, session)
    return OrgListResponse(
        data=[OrgResponse.model_validate(org) for org in orgs],
        memberships=[MembershipResponse.model_validate(m) for m in memberships],
    )


@router.post("", response_model=OrgResponse, status_code=201)
async def create_org(
    name: str = Form(...),
    slug: str = Form(...),
    logo: Optional[UploadFile] = File(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    store: LocalObjectStore = Depends(get_object_store),
):
    """Create a new organization. The creator becomes its owner."""
    try:
        req = OrgCreateRequest(name=name, slug=slug)
    except ValidationError as exc:
        raise ValidationFailed(_first_error(exc))
    logo_file = await read_logo(logo)
    org = await org_service.create_org(req, user_id, session, logo=logo_file, store=store)
    return OrgResponse.model_validate(org)


@router.get("/slug-availability", response_model=SlugAvailabilityResponse)
async def slug_availability(
    slug: str = Query(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    available = await org_service.check_slug_availability(slug, session)
    return SlugAvailabilityResponse(slug=slug, available=available)


@router.get("/{org_id}", response_model=OrgResponse)
async def get_org(
    org_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    org = await org_service.get_org(org_id, user_id, session)
    return OrgResponse.model_validate(org)


@router.patch("/{org_id}", response_model=OrgResponse)
async def update_org(
    org_id: uuid.UUID,
    body: OrgUpdateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Update org name, slug or logo URL (admin only)."""
    org = await org_service.update_org(org_id, body, user_id, session)
    return OrgResponse.model_validate(org)


@router.delete("/{org_id}", response_model=MessageResponse)
async def delete_org(
    org_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Delete the org with its members, invitations and boards (creator only)."""
    await org_service.delete_org(org_id, user_id, session)
    return MessageResponse(message="Organization deleted")


@router.put("/{org_id}/logo", response_model=OrgResponse)
async def upload_logo(
    org_id: uuid.UUID,
    logo: UploadFile = File(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    store: LocalObjectStore = Depends(get_object_store),
):
    logo_file = await read_logo(logo)
    if logo_file is None:
        raise ValidationFailed("A logo file is required")
    org = await org_service.set_logo(org_id, user_id, logo_file, store, session)
    return OrgResponse.model_validate(org)


@router.get("/{org_id}/members", response_model=MemberListResponse)
async def list_members(
    org_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    members = await org_service.list_members(org_id, user_id, session)
    return MemberListResponse(data=members)
