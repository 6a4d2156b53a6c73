"""
HTTP client for the Orgboard API.

Every non-2xx response is parsed from the server's error envelope into an
ApiError carrying the same kind the server classified it as. Requests are
never retried: a failed mutation is reported, not replayed.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from orgboard_shared.schemas.boards import BoardListResponse, BoardResponse
from orgboard_shared.schemas.common import ErrorKind, ErrorResponse, OrgRole
from orgboard_shared.schemas.invitations import (
    InvitationAcceptResponse,
    InvitationListResponse,
    InvitationResponse,
    InvitationStatus,
)
from orgboard_shared.schemas.organizations import (
    MemberListResponse,
    OrgListResponse,
    OrgResponse,
    OrgUpdateRequest,
    SlugAvailabilityResponse,
)
from orgboard_shared.schemas.profiles import AuthResponse, ProfileResponse

from .config import ClientConfig

log = structlog.get_logger()

# (filename, content, content_type), as accepted by httpx `files=`
LogoFile = tuple[str, bytes, str]

_STATUS_KINDS = {
    401: ErrorKind.AUTHENTICATION_REQUIRED,
    403: ErrorKind.PERMISSION_DENIED,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    422: ErrorKind.VALIDATION_FAILED,
    503: ErrorKind.STORAGE_UNAVAILABLE,
}


class ApiError(Exception):
    """A classified failure reported by (or on the way to) the API."""

    def __init__(self, kind: ErrorKind, message: str, status: Optional[int] = None):
        self.kind = ErrorKind(kind)
        self.message = message
        self.status = status
        super().__init__(message)

    def __repr__(self) -> str:
        return f"ApiError(kind={self.kind.value!r}, message={self.message!r}, status={self.status!r})"

    @classmethod
    def from_response(cls, resp: httpx.Response) -> "ApiError":
        kind = _STATUS_KINDS.get(resp.status_code, ErrorKind.UNKNOWN)
        message = resp.reason_phrase or "Request failed"
        try:
            body = ErrorResponse.model_validate(resp.json()).error
        except ValueError:
            # Not our envelope (proxy error page, empty body)
            return cls(kind, message, resp.status_code)
        return cls(body.code, body.message, resp.status_code)


class OrgboardApi:
    """Thin async wrapper over /auth and /api/v1.

    Pass `client` to reuse an existing httpx.AsyncClient (it is then left
    open on close); otherwise one is created by `open()`.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30,
        verify_tls: bool = True,
    ):
        self._base_url = base_url.rstrip("/")
        self.token = token
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._verify_tls = verify_tls

    @classmethod
    def from_config(cls, config: ClientConfig) -> "OrgboardApi":
        return cls(
            config.api.url,
            config.api.token,
            timeout=config.api.request_timeout_seconds,
            verify_tls=config.api.verify_tls,
        )

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                verify=self._verify_tls,
            )

    async def close(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "OrgboardApi":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if self._client is None:
            raise RuntimeError("OrgboardApi is not open")
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = await self._client.request(
                method, f"{self._base_url}{path}", headers=headers, **kwargs
            )
        except httpx.TransportError as exc:
            log.error("api.unreachable", method=method, path=path, error=str(exc))
            raise ApiError(ErrorKind.STORAGE_UNAVAILABLE, "Orgboard API is unreachable") from exc

        if resp.is_error:
            error = ApiError.from_response(resp)
            log.info("api.error", method=method, path=path, status=resp.status_code, kind=error.kind.value)
            raise error
        return resp.json()

    # --- Session ---

    async def register(self, email: str, password: str, full_name: Optional[str] = None) -> AuthResponse:
        data = await self._request(
            "POST",
            "/auth/register",
            json={"email": email, "password": password, "full_name": full_name},
        )
        auth = AuthResponse.model_validate(data)
        self.token = auth.access_token
        return auth

    async def login(self, email: str, password: str) -> AuthResponse:
        data = await self._request("POST", "/auth/login", json={"email": email, "password": password})
        auth = AuthResponse.model_validate(data)
        self.token = auth.access_token
        return auth

    async def logout(self) -> None:
        await self._request("POST", "/auth/logout")
        self.token = None

    async def me(self) -> ProfileResponse:
        return ProfileResponse.model_validate(await self._request("GET", "/api/v1/me"))

    # --- Organizations ---

    async def list_organizations(self) -> OrgListResponse:
        return OrgListResponse.model_validate(await self._request("GET", "/api/v1/orgs"))

    async def create_organization(
        self, name: str, slug: str, logo: Optional[LogoFile] = None
    ) -> OrgResponse:
        files = {"logo": logo} if logo else None
        data = await self._request(
            "POST", "/api/v1/orgs", data={"name": name, "slug": slug}, files=files
        )
        return OrgResponse.model_validate(data)

    async def check_slug_availability(self, slug: str) -> bool:
        data = await self._request(
            "GET", "/api/v1/orgs/slug-availability", params={"slug": slug}
        )
        return SlugAvailabilityResponse.model_validate(data).available

    async def get_organization(self, org_id: uuid.UUID) -> OrgResponse:
        return OrgResponse.model_validate(await self._request("GET", f"/api/v1/orgs/{org_id}"))

    async def update_organization(self, org_id: uuid.UUID, **changes: Any) -> OrgResponse:
        try:
            body = OrgUpdateRequest(**changes).model_dump(exclude_none=True)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ApiError(ErrorKind.VALIDATION_FAILED, f"{field}: {first.get('msg')}") from exc
        data = await self._request("PATCH", f"/api/v1/orgs/{org_id}", json=body)
        return OrgResponse.model_validate(data)

    async def upload_logo(self, org_id: uuid.UUID, logo: LogoFile) -> OrgResponse:
        data = await self._request("PUT", f"/api/v1/orgs/{org_id}/logo", files={"logo": logo})
        return OrgResponse.model_validate(data)

    async def delete_organization(self, org_id: uuid.UUID) -> None:
        await self._request("DELETE", f"/api/v1/orgs/{org_id}")

    async def list_members(self, org_id: uuid.UUID) -> MemberListResponse:
        return MemberListResponse.model_validate(
            await self._request("GET", f"/api/v1/orgs/{org_id}/members")
        )

    # --- Invitations ---

    async def list_invitations(
        self, org_id: uuid.UUID, status: Optional[InvitationStatus] = None
    ) -> list[InvitationResponse]:
        params = {"status": InvitationStatus(status).value} if status else None
        data = await self._request("GET", f"/api/v1/orgs/{org_id}/invitations", params=params)
        return InvitationListResponse.model_validate(data).data

    async def invite_member(
        self, org_id: uuid.UUID, email: str, role: OrgRole = OrgRole.MEMBER
    ) -> InvitationResponse:
        data = await self._request(
            "POST",
            f"/api/v1/orgs/{org_id}/invitations",
            json={"email": email, "role": OrgRole(role).value},
        )
        return InvitationResponse.model_validate(data)

    async def resend_invitation(self, org_id: uuid.UUID, invitation_id: uuid.UUID) -> InvitationResponse:
        data = await self._request("POST", f"/api/v1/orgs/{org_id}/invitations/{invitation_id}/resend")
        return InvitationResponse.model_validate(data)

    async def revoke_invitation(self, org_id: uuid.UUID, invitation_id: uuid.UUID) -> InvitationResponse:
        data = await self._request("POST", f"/api/v1/orgs/{org_id}/invitations/{invitation_id}/revoke")
        return InvitationResponse.model_validate(data)

    async def accept_invitation(self, token: str) -> InvitationAcceptResponse:
        data = await self._request("POST", "/api/v1/invitations/accept", json={"token": token})
        return InvitationAcceptResponse.model_validate(data)

    # --- Boards ---

    async def list_boards(self, org_id: uuid.UUID) -> list[BoardResponse]:
        data = await self._request("GET", f"/api/v1/orgs/{org_id}/boards")
        return BoardListResponse.model_validate(data).data

    async def create_board(self, org_id: uuid.UUID, title: str) -> BoardResponse:
        data = await self._request("POST", f"/api/v1/orgs/{org_id}/boards", json={"title": title})
        return BoardResponse.model_validate(data)

    async def update_board(self, board_id: uuid.UUID, title: str) -> BoardResponse:
        data = await self._request("PATCH", f"/api/v1/boards/{board_id}", json={"title": title})
        return BoardResponse.model_validate(data)

    async def delete_board(self, board_id: uuid.UUID) -> None:
        await self._request("DELETE", f"/api/v1/boards/{board_id}")

    # --- Health ---

    async def check_health(self) -> bool:
        if not self._client:
            return False
        try:
            resp = await self._client.get(f"{self._base_url}/health")
            return resp.status_code == 200
        except httpx.TransportError:
            return False
