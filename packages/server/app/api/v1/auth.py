"""
Authentication endpoints.

- Email/Password registration & login
- OAuth login (GitHub/Google): authorization URL + callback
- JWT session management (refresh, logout)
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Optional

import httpx
import jwt
import structlog
from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import (
    CSRF_COOKIE,
    OAUTH_STATE_COOKIE,
    SESSION_COOKIE,
    authenticate_token,
    authorization_header,
    create_jwt,
    decode_jwt,
    extract_token,
    generate_csrf_token,
    generate_oauth_state,
    revoke_jwt,
)
from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import AuthenticationRequired
from app.core.oauth import build_authorization_url, exchange_code, parse_provider
from app.services import profiles as profile_service
from orgboard_shared.schemas.common import MessageResponse
from orgboard_shared.schemas.profiles import (
    AuthResponse,
    LoginRequest,
    OAuthStartResponse,
    RegisterRequest,
)

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()

# Cookie config
COOKIE_KWARGS = {
    "httponly": True,
    "secure": not settings.debug,  # allow non-HTTPS in dev
    "samesite": "lax",
    "path": "/",
    "max_age": settings.jwt_expire_minutes * 60,
}

OAUTH_STATE_MAX_AGE = 10 * 60


def _set_session_cookies(response: Response, token: str, csrf: str) -> None:
    """Set the session JWT and CSRF cookies on a response."""
    response.set_cookie(key=SESSION_COOKIE, value=token, **COOKIE_KWARGS)
    response.set_cookie(
        key=CSRF_COOKIE,
        value=csrf,
        httponly=False,  # JS must read this
        secure=not settings.debug,
        samesite="lax",
        path="/",
        max_age=settings.jwt_expire_minutes * 60,
    )


def _start_session(response: Response, user_id: uuid.UUID, email: Optional[str]) -> str:
    token, _jti = create_jwt(user_id, email)
    _set_session_cookies(response, token, generate_csrf_token())
    return token


async def get_oauth_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client used to talk to OAuth providers."""
    async with httpx.AsyncClient(timeout=10.0) as client:
        yield client


# ---------------------------------------------------------------------------
# Email/Password
# ---------------------------------------------------------------------------

@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Register a new user with email/password and start a session."""
    profile = await profile_service.register_profile(body, session)
    token = _start_session(response, profile.id, profile.email)

    log.info("auth.registered", user_id=str(profile.id))
    return AuthResponse(
        user_id=str(profile.id),
        email=profile.email,
        has_organizations=False,
        message="Registration successful",
        access_token=token,
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate with email/password and receive a JWT session."""
    profile = await profile_service.authenticate_password(str(body.email), body.password, session)
    token = _start_session(response, profile.id, profile.email)
    has_orgs = await profile_service.user_has_organizations(profile.id, session)

    log.info("auth.login_success", user_id=str(profile.id))
    return AuthResponse(
        user_id=str(profile.id),
        email=profile.email,
        has_organizations=has_orgs,
        message="Login successful",
        access_token=token,
    )


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------

@router.get("/login/oauth", response_model=OAuthStartResponse)
async def oauth_login(provider: str, response: Response):
    """Return the provider's authorization URL and remember the anti-forgery state."""
    oauth_provider = parse_provider(provider)
    state = generate_oauth_state()
    response.set_cookie(
        key=OAUTH_STATE_COOKIE,
        value=state,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        path="/",
        max_age=OAUTH_STATE_MAX_AGE,
    )
    return OAuthStartResponse(
        provider=oauth_provider,
        authorization_url=build_authorization_url(oauth_provider, state, settings),
    )


@router.get("/callback")
async def oauth_callback(
    request: Request,
    provider: str,
    code: str,
    state: str = Query(...),
    session: AsyncSession = Depends(get_session),
    client: httpx.AsyncClient = Depends(get_oauth_http_client),
):
    """Exchange the code, sync the profile, start a session and redirect to the app."""
    oauth_provider = parse_provider(provider)
    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if not expected_state or expected_state != state:
        log.warning("auth.oauth_state_mismatch", provider=oauth_provider.value)
        raise AuthenticationRequired("OAuth state mismatch, please sign in again")

    identity = await exchange_code(oauth_provider, code, settings, client)
    profile = await profile_service.sync_profile(
        session,
        email=identity.email,
        full_name=identity.full_name,
        avatar_url=identity.avatar_url,
        oauth_provider=identity.provider.value,
        oauth_subject=identity.subject,
    )
    has_orgs = await profile_service.user_has_organizations(profile.id, session)
    target = "/organization" if has_orgs else "/create-organization"

    redirect = RedirectResponse(url=f"{settings.frontend_url}{target}", status_code=303)
    _start_session(redirect, profile.id, profile.email)
    redirect.delete_cookie(OAUTH_STATE_COOKIE, path="/")

    log.info("auth.oauth_login_success", user_id=str(profile.id), provider=oauth_provider.value)
    return redirect


# ---------------------------------------------------------------------------
# Session Management
# ---------------------------------------------------------------------------

@router.post("/refresh", response_model=AuthResponse)
async def refresh_session(
    request: Request,
    response: Response,
    authorization: Optional[str] = Depends(authorization_header),
):
    """Issue a new JWT and revoke the one presented."""
    token = extract_token(request, authorization)
    if not token:
        raise AuthenticationRequired("No active session")

    payload = await authenticate_token(token)
    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise AuthenticationRequired("Invalid or expired session")

    new_token = _start_session(response, user_id, payload.get("email"))
    await revoke_jwt(payload)

    return AuthResponse(
        user_id=str(user_id),
        email=payload.get("email"),
        message="Session refreshed",
        access_token=new_token,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    authorization: Optional[str] = Depends(authorization_header),
):
    """Invalidate the current session."""
    token = extract_token(request, authorization)
    if token:
        try:
            payload = decode_jwt(token)
        except jwt.PyJWTError:
            payload = None  # Token already invalid, just clear cookies
        if payload:
            await revoke_jwt(payload)
            log.info("auth.logout", user_id=payload.get("sub"))

    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")
    return MessageResponse(message="Logged out")
