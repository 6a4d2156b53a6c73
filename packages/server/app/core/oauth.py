"""
OAuth sign-in with GitHub and Google.

Authorization-code flow: build the provider URL, then on callback exchange
the code for an access token and fetch the user's identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
import structlog

from app.core.config import Settings
from app.core.errors import AuthenticationRequired, StorageUnavailable, ValidationFailed
from orgboard_shared.schemas.profiles import OAuthProvider

log = structlog.get_logger()


@dataclass(frozen=True)
class ProviderEndpoints:
    authorize_url: str
    token_url: str
    userinfo_url: str
    scope: str


PROVIDERS: dict[OAuthProvider, ProviderEndpoints] = {
    OAuthProvider.GITHUB: ProviderEndpoints(
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        userinfo_url="https://api.github.com/user",
        scope="read:user user:email",
    ),
    OAuthProvider.GOOGLE: ProviderEndpoints(
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
        scope="openid email profile",
    ),
}

GITHUB_EMAILS_URL = "https://api.github.com/user/emails"


@dataclass
class OAuthIdentity:
    provider: OAuthProvider
    subject: str
    email: Optional[str]
    full_name: Optional[str]
    avatar_url: Optional[str]


def parse_provider(provider: str) -> OAuthProvider:
    try:
        return OAuthProvider(provider)
    except ValueError:
        raise ValidationFailed("Unsupported OAuth provider")


def _client_credentials(provider: OAuthProvider, settings: Settings) -> tuple[str, str]:
    if provider == OAuthProvider.GITHUB:
        return settings.github_client_id, settings.github_client_secret
    return settings.google_client_id, settings.google_client_secret


def build_authorization_url(provider: OAuthProvider, state: str, settings: Settings) -> str:
    endpoints = PROVIDERS[provider]
    client_id, _ = _client_credentials(provider, settings)
    params = {
        "client_id": client_id,
        "redirect_uri": f"{settings.oauth_redirect_url}?provider={provider.value}",
        "scope": endpoints.scope,
        "state": state,
    }
    if provider == OAuthProvider.GOOGLE:
        params["response_type"] = "code"
    return f"{endpoints.authorize_url}?{urlencode(params)}"


async def _github_primary_email(client: httpx.AsyncClient, headers: dict) -> Optional[str]:
    resp = await client.get(GITHUB_EMAILS_URL, headers=headers)
    if resp.status_code != 200:
        return None
    for entry in resp.json():
        if entry.get("primary") and entry.get("verified"):
            return entry.get("email")
    return None


async def exchange_code(
    provider: OAuthProvider,
    code: str,
    settings: Settings,
    client: httpx.AsyncClient,
) -> OAuthIdentity:
    """Trade an authorization code for the user's identity at the provider."""
    endpoints = PROVIDERS[provider]
    client_id, client_secret = _client_credentials(provider, settings)

    try:
        token_resp = await client.post(
            endpoints.token_url,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": f"{settings.oauth_redirect_url}?provider={provider.value}",
            },
            headers={"Accept": "application/json"},
        )
        if token_resp.status_code != 200:
            log.warning("oauth.token_exchange_failed", provider=provider.value, status=token_resp.status_code)
            raise AuthenticationRequired("OAuth sign-in failed")

        access_token = token_resp.json().get("access_token")
        if not access_token:
            raise AuthenticationRequired("OAuth sign-in failed")

        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        info_resp = await client.get(endpoints.userinfo_url, headers=headers)
        if info_resp.status_code != 200:
            log.warning("oauth.userinfo_failed", provider=provider.value, status=info_resp.status_code)
            raise AuthenticationRequired("OAuth sign-in failed")
        info = info_resp.json()

        if provider == OAuthProvider.GITHUB:
            email = info.get("email") or await _github_primary_email(client, headers)
            identity = OAuthIdentity(
                provider=provider,
                subject=str(info["id"]),
                email=email,
                full_name=info.get("name") or info.get("login"),
                avatar_url=info.get("avatar_url"),
            )
        else:
            identity = OAuthIdentity(
                provider=provider,
                subject=str(info["sub"]),
                email=info.get("email") if info.get("email_verified", True) else None,
                full_name=info.get("name"),
                avatar_url=info.get("picture"),
            )
    except httpx.TransportError as exc:
        log.error("oauth.provider_unreachable", provider=provider.value, error=str(exc))
        raise StorageUnavailable("OAuth provider is unreachable") from exc
    except (KeyError, ValueError) as exc:
        log.warning("oauth.bad_response", provider=provider.value, error=str(exc))
        raise AuthenticationRequired("OAuth sign-in failed") from exc

    if identity.email:
        identity.email = identity.email.lower().strip()
    return identity
