"""
Authentication for Orgboard.

Supports:
- Email/Password login with bcrypt hashes
- OAuth (GitHub/Google) sign-in, see app.core.oauth
- JWT session management with Redis revocation list
- Current-user resolution from the session cookie or a Bearer token
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import AuthenticationRequired
from app.core.redis import is_revoked, mark_revoked
from app.models.profile import Profile

log = structlog.get_logger()
settings = get_settings()

SESSION_COOKIE = "ob_session"
CSRF_COOKIE = "ob_csrf"
OAUTH_STATE_COOKIE = "ob_oauth_state"

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: uuid.UUID,
    email: Optional[str] = None,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed JWT. Returns (token, jti)."""
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# JWT Revocation (Redis)
# ---------------------------------------------------------------------------

async def revoke_jwt(payload: dict) -> None:
    """Add the token's jti to the revocation list until the token expires."""
    jti = payload.get("jti")
    if not jti:
        return
    exp = payload.get("exp")
    if exp is None:
        ttl = settings.jwt_expire_minutes * 60
    else:
        ttl = int(exp - datetime.now(timezone.utc).timestamp())
    await mark_revoked(jti, ttl)


async def is_jwt_revoked(jti: str) -> bool:
    """Check if a JWT ID has been revoked."""
    return await is_revoked(jti)


# ---------------------------------------------------------------------------
# CSRF / OAuth state tokens
# ---------------------------------------------------------------------------

def generate_csrf_token() -> str:
    """Generate a random CSRF token."""
    return secrets.token_urlsafe(32)


def generate_oauth_state() -> str:
    """Generate the anti-forgery `state` value for an OAuth round trip."""
    return secrets.token_urlsafe(24)


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

def extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip()
    return request.cookies.get(SESSION_COOKIE)


async def authenticate_token(token: str) -> dict:
    """Verify signature, expiry and revocation. Returns the JWT payload."""
    try:
        payload = decode_jwt(token)
    except jwt.PyJWTError:
        raise AuthenticationRequired("Invalid or expired session")

    jti = payload.get("jti")
    if jti and await is_jwt_revoked(jti):
        raise AuthenticationRequired("Session has been revoked")
    return payload


async def get_current_user_id(
    request: Request,
    authorization: Optional[str] = Depends(authorization_header),
) -> uuid.UUID:
    """Main authentication dependency. Bearer token first, then the session cookie."""
    token = extract_token(request, authorization)
    if not token:
        raise AuthenticationRequired()

    payload = await authenticate_token(token)
    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise AuthenticationRequired("Invalid or expired session")

    request.state.user_id = user_id
    structlog.contextvars.bind_contextvars(user_id=str(user_id))
    return user_id


async def get_current_profile(
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> Profile:
    """Resolve the authenticated user's profile; a deleted profile ends the session."""
    result = await session.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise AuthenticationRequired("User not found")
    return profile
