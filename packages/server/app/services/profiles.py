"""
Profile service — the local user record behind every session.

Profiles are synced whenever a session is established (register, login,
OAuth callback) so display fields stay current.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.auth import hash_password, verify_password
from app.core.errors import AuthenticationRequired, Conflict, NotFound, classify_storage_error
from app.models.organization import Organization
from app.models.organization_member import OrganizationMember
from app.models.profile import Profile
from orgboard_shared.schemas.profiles import ProfileUpdateRequest, RegisterRequest

log = structlog.get_logger()


async def _find_one(session: AsyncSession, stmt, action: str) -> Optional[Profile]:
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action=action) from exc
    return result.scalar_one_or_none()


async def _flush(session: AsyncSession, action: str) -> None:
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action=action) from exc


async def get_profile(user_id: uuid.UUID, session: AsyncSession) -> Profile:
    profile = await _find_one(
        session, select(Profile).where(Profile.id == user_id), "profile.load"
    )
    if not profile:
        raise NotFound("Profile not found")
    return profile


async def get_profile_by_email(email: str, session: AsyncSession) -> Optional[Profile]:
    return await _find_one(
        session,
        select(Profile).where(Profile.email == email.strip().lower()),
        "profile.load",
    )


async def sync_profile(
    session: AsyncSession,
    *,
    user_id: Optional[uuid.UUID] = None,
    email: Optional[str] = None,
    full_name: Optional[str] = None,
    avatar_url: Optional[str] = None,
    oauth_provider: Optional[str] = None,
    oauth_subject: Optional[str] = None,
) -> Profile:
    """Upsert the profile for an authenticated identity.

    Lookup order: explicit id, then OAuth (provider, subject), then email.
    Only non-empty display fields overwrite stored values.
    """
    email = email.strip().lower() if email else None
    profile: Optional[Profile] = None

    if user_id is not None:
        profile = await _find_one(
            session, select(Profile).where(Profile.id == user_id), "profile.sync"
        )
    if profile is None and oauth_provider and oauth_subject:
        profile = await _find_one(
            session,
            select(Profile).where(
                Profile.oauth_provider == oauth_provider,
                Profile.oauth_subject == oauth_subject,
            ),
            "profile.sync",
        )
    if profile is None and email:
        profile = await _find_one(
            session, select(Profile).where(Profile.email == email), "profile.sync"
        )

    created = profile is None
    if profile is None:
        profile = Profile(email=email)
        if user_id is not None:
            profile.id = user_id
    elif email and not profile.email:
        profile.email = email

    if full_name:
        profile.full_name = full_name
    if avatar_url:
        profile.avatar_url = avatar_url
    if oauth_provider and oauth_subject and not profile.oauth_subject:
        profile.oauth_provider = oauth_provider
        profile.oauth_subject = oauth_subject

    session.add(profile)
    await _flush(session, "profile.sync")

    log.info(
        "profile.synced",
        user_id=str(profile.id),
        created=created,
        provider=oauth_provider or "password",
    )
    return profile


async def register_profile(req: RegisterRequest, session: AsyncSession) -> Profile:
    """Create an email/password account."""
    email = str(req.email).strip().lower()
    if await get_profile_by_email(email, session):
        raise Conflict("An account with this email already exists")

    profile = Profile(
        email=email,
        full_name=req.full_name,
        password_hash=hash_password(req.password),
    )
    session.add(profile)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise Conflict("An account with this email already exists") from exc
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="profile.register") from exc

    log.info("profile.registered", user_id=str(profile.id))
    return profile


async def authenticate_password(
    email: str, password: str, session: AsyncSession
) -> Profile:
    """Verify email/password credentials. Failures are deliberately generic."""
    profile = await get_profile_by_email(email, session)
    if not profile or not profile.password_hash:
        log.info("auth.login_failure", reason="unknown_account")
        raise AuthenticationRequired("Invalid email or password")
    if not verify_password(password, profile.password_hash):
        log.info("auth.login_failure", reason="bad_password", user_id=str(profile.id))
        raise AuthenticationRequired("Invalid email or password")
    return profile


async def update_profile(
    user_id: uuid.UUID, req: ProfileUpdateRequest, session: AsyncSession
) -> Profile:
    profile = await get_profile(user_id, session)
    if req.full_name is not None:
        profile.full_name = req.full_name.strip()
    if req.avatar_url is not None:
        profile.avatar_url = req.avatar_url
    session.add(profile)
    await _flush(session, "profile.update")
    log.info("profile.updated", user_id=str(user_id))
    return profile


async def user_has_organizations(user_id: uuid.UUID, session: AsyncSession) -> bool:
    """Does the user belong to, or own, at least one organization?"""
    try:
        member = await session.execute(
            select(OrganizationMember.id).where(OrganizationMember.user_id == user_id).limit(1)
        )
        if member.first() is not None:
            return True
        owned = await session.execute(
            select(Organization.id).where(Organization.created_by == user_id).limit(1)
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="profile.has_orgs") from exc
    return owned.first() is not None
