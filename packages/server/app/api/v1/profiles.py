"""
Current-user profile endpoints.

GET   /api/v1/me — The authenticated user's profile
PATCH /api/v1/me — Update display name / avatar
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_profile, get_current_user_id
from app.core.database import get_session
from app.models.profile import Profile
from app.services import profiles as profile_service
from orgboard_shared.schemas.profiles import ProfileResponse, ProfileUpdateRequest

router = APIRouter()


@router.get("", response_model=ProfileResponse)
async def get_me(profile: Profile = Depends(get_current_profile)):
    return ProfileResponse.model_validate(profile)


@router.patch("", response_model=ProfileResponse)
async def update_me(
    body: ProfileUpdateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    profile = await profile_service.update_profile(user_id, body, session)
    return ProfileResponse.model_validate(profile)
