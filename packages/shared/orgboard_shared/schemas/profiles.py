"""Profile and authentication schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, UUID4


class OAuthProvider(str, Enum):
    GITHUB = "github"
    GOOGLE = "google"


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    full_name: Optional[str] = Field(default=None, max_length=200)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    avatar_url: Optional[str] = Field(default=None, max_length=2048)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class ProfileResponse(BaseModel):
    id: UUID4
    email: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    user_id: str
    email: Optional[str] = None
    has_organizations: bool = False
    message: str
    # Same JWT as the session cookie, for Bearer clients
    access_token: Optional[str] = None


class OAuthStartResponse(BaseModel):
    provider: OAuthProvider
    authorization_url: str
