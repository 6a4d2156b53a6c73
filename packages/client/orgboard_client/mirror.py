"""
Per-session mirror of the organizations, memberships and invitations a user
can see.

The mirror holds the last lists fetched from the API plus loading/error
flags for UI rendering. It has no write authority: every mutating method
calls the API and then re-fetches the affected list, so the mirror is never
more than one action behind the server.

Each action follows the same contract:
- `is_loading` is true while any action is in flight and is cleared on
  every exit path, including local validation failures.
- A failed action records the ApiError in `error`, calls `notify` exactly
  once and returns None (or False / an empty list), never raising.
- A mutation the server applied still returns its result when only the
  follow-up re-fetch fails; that failure is recorded and reported once.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, ValidationError

from orgboard_shared.schemas.common import ErrorKind, OrgRole, role_satisfies
from orgboard_shared.schemas.invitations import (
    InvitationAcceptResponse,
    InvitationResponse,
    InvitationStatus,
)
from orgboard_shared.schemas.organizations import (
    MembershipResponse,
    OrgResponse,
    is_valid_slug,
)

from .api import ApiError, LogoFile, OrgboardApi
from .cache import MirrorCache

log = structlog.get_logger()

Listener = Callable[["OrganizationMirror"], None]


class OrganizationMirror:
    def __init__(
        self,
        api: OrgboardApi,
        *,
        notify: Optional[Callable[[ApiError], None]] = None,
        cache: Optional[MirrorCache] = None,
        user_id: Optional[uuid.UUID] = None,
    ):
        self._api = api
        self._notify = notify
        self._cache = cache
        self._cache_key = snapshot_key(user_id) if user_id else None
        self._listeners: list[Listener] = []
        self._pending = 0

        self.organizations: list[OrgResponse] = []
        self.memberships: list[MembershipResponse] = []
        self.invitations: list[InvitationResponse] = []
        self.current_organization: Optional[OrgResponse] = None
        self.is_loading = False
        self.is_success = False
        self.error: Optional[ApiError] = None

    # --- Subscriptions ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` after every state change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set(self, **changes: Any) -> None:
        for name, value in changes.items():
            setattr(self, name, value)
        for listener in list(self._listeners):
            listener(self)

    @asynccontextmanager
    async def _action(self, name: str):
        """Run one user action: track loading, record and report ApiErrors."""
        self._pending += 1
        self._set(is_loading=True, error=None)
        try:
            yield
        except ApiError as exc:
            log.info("mirror.action_failed", action=name, kind=exc.kind.value, status=exc.status)
            self._set(error=exc, is_success=False)
            if self._notify:
                self._notify(exc)
        finally:
            self._pending -= 1
            self._set(is_loading=self._pending > 0)

    # --- Loaders (no loading/error bookkeeping of their own) ---

    async def _load_organizations(self) -> list[OrgResponse]:
        listing = await self._api.list_organizations()
        current = self.current_organization
        if current is not None:
            current = next((o for o in listing.data if o.id == current.id), None)
        self._set(
            organizations=listing.data,
            memberships=listing.memberships,
            current_organization=current,
            is_success=True,
        )
        return listing.data

    async def _load_invitations(
        self, organization_id: uuid.UUID, status: Optional[InvitationStatus] = None
    ) -> list[InvitationResponse]:
        invitations = await self._api.list_invitations(organization_id, status)
        self._set(invitations=invitations, is_success=True)
        return invitations

    async def _refresh(self, name: str, loader: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Re-fetch after a mutation the server already applied.

        A failed re-fetch is recorded and reported once, but does not turn the
        mutation itself into a failure.
        """
        try:
            await loader(*args)
        except ApiError as exc:
            log.info("mirror.refresh_failed", action=name, kind=exc.kind.value, status=exc.status)
            self._set(error=exc)
            if self._notify:
                self._notify(exc)

    def _cached_invitation(self, invitation_id: uuid.UUID) -> InvitationResponse:
        for invitation in self.invitations:
            if invitation.id == invitation_id:
                return invitation
        raise ApiError(ErrorKind.NOT_FOUND, "Invitation not found")

    # --- Organizations ---

    async def fetch_organizations(self) -> list[OrgResponse]:
        async with self._action("fetch_organizations"):
            return await self._load_organizations()
        return []

    async def create_organization(
        self, name: str, slug: str, logo: Optional[LogoFile] = None
    ) -> Optional[OrgResponse]:
        async with self._action("create_organization"):
            if not name or not name.strip():
                raise ApiError(ErrorKind.VALIDATION_FAILED, "Organization name is required")
            if not is_valid_slug(slug):
                raise ApiError(
                    ErrorKind.VALIDATION_FAILED,
                    "Slug must be at least 3 characters of lowercase letters, digits and hyphens",
                )
            org = await self._api.create_organization(name.strip(), slug, logo)
            await self._refresh("create_organization", self._load_organizations)
            return org
        return None

    async def update_organization(self, org_id: uuid.UUID, **changes: Any) -> Optional[OrgResponse]:
        async with self._action("update_organization"):
            org = await self._api.update_organization(org_id, **changes)
            await self._refresh("update_organization", self._load_organizations)
            return org
        return None

    async def upload_logo(self, org_id: uuid.UUID, logo: LogoFile) -> Optional[OrgResponse]:
        async with self._action("upload_logo"):
            org = await self._api.upload_logo(org_id, logo)
            await self._refresh("upload_logo", self._load_organizations)
            return org
        return None

    async def delete_organization(self, org_id: uuid.UUID) -> bool:
        async with self._action("delete_organization"):
            await self._api.delete_organization(org_id)
            current = self.current_organization
            self._set(
                organizations=[o for o in self.organizations if o.id != org_id],
                memberships=[m for m in self.memberships if m.organization_id != org_id],
                invitations=[i for i in self.invitations if i.organization_id != org_id],
                current_organization=None if current and current.id == org_id else current,
            )
            await self._refresh("delete_organization", self._load_organizations)
            return True
        return False

    async def check_slug_availability(self, slug: str) -> Optional[bool]:
        """True/False, or None when the check itself failed."""
        async with self._action("check_slug_availability"):
            if not is_valid_slug(slug):
                return False
            return await self._api.check_slug_availability(slug)
        return None

    # --- Invitations ---

    async def fetch_invitations(
        self, organization_id: uuid.UUID, status: Optional[InvitationStatus] = None
    ) -> list[InvitationResponse]:
        async with self._action("fetch_invitations"):
            return await self._load_invitations(organization_id, status)
        return []

    async def invite_member(
        self, organization_id: uuid.UUID, email: str, role: OrgRole = OrgRole.MEMBER
    ) -> Optional[InvitationResponse]:
        async with self._action("invite_member"):
            invitation = await self._api.invite_member(organization_id, email, role)
            await self._refresh("invite_member", self._load_invitations, organization_id)
            return invitation
        return None

    async def resend_invitation(self, invitation_id: uuid.UUID) -> Optional[InvitationResponse]:
        async with self._action("resend_invitation"):
            cached = self._cached_invitation(invitation_id)
            invitation = await self._api.resend_invitation(cached.organization_id, invitation_id)
            await self._refresh("resend_invitation", self._load_invitations, cached.organization_id)
            return invitation
        return None

    async def revoke_invitation(self, invitation_id: uuid.UUID) -> Optional[InvitationResponse]:
        async with self._action("revoke_invitation"):
            cached = self._cached_invitation(invitation_id)
            invitation = await self._api.revoke_invitation(cached.organization_id, invitation_id)
            await self._refresh("revoke_invitation", self._load_invitations, cached.organization_id)
            return invitation
        return None

    async def accept_invitation(self, token: str) -> Optional[InvitationAcceptResponse]:
        async with self._action("accept_invitation"):
            if not token:
                raise ApiError(ErrorKind.NOT_FOUND, "Invitation not found")
            accepted = await self._api.accept_invitation(token)
            await self._refresh("accept_invitation", self._load_organizations)
            return accepted
        return None

    # --- Local queries ---

    def set_current_organization(self, slug: str) -> Optional[OrgResponse]:
        org = next((o for o in self.organizations if o.slug == slug), None)
        if org is None:
            log.warning("mirror.organization_not_found", slug=slug)
        self._set(current_organization=org)
        return org

    def membership_for(self, organization_id: uuid.UUID) -> Optional[MembershipResponse]:
        return next(
            (m for m in self.memberships if m.organization_id == organization_id), None
        )

    def has_role(self, organization_id: uuid.UUID, role: OrgRole | str) -> bool:
        """Does the cached membership hold `role` or a more senior one?"""
        membership = self.membership_for(organization_id)
        if membership is None:
            return False
        try:
            return role_satisfies(membership.role, role)
        except ValueError:
            return False

    def is_member(self, organization_id: uuid.UUID) -> bool:
        return self.membership_for(organization_id) is not None

    def clear_errors(self) -> None:
        self._set(error=None)

    def clear_state(self) -> None:
        self._set(
            organizations=[],
            memberships=[],
            invitations=[],
            current_organization=None,
            is_success=False,
            error=None,
        )

    # --- Persistence ---

    def snapshot(self) -> dict[str, Any]:
        return {
            "organizations": [o.model_dump(mode="json") for o in self.organizations],
            "memberships": [m.model_dump(mode="json") for m in self.memberships],
            "invitations": [i.model_dump(mode="json") for i in self.invitations],
            "current_organization": (
                self.current_organization.model_dump(mode="json")
                if self.current_organization
                else None
            ),
        }

    def apply_snapshot(self, snapshot: dict[str, Any]) -> None:
        """Merge a stored snapshot; anything malformed falls back to empty."""
        self._set(
            organizations=_validate_list(OrgResponse, snapshot.get("organizations")),
            memberships=_validate_list(MembershipResponse, snapshot.get("memberships")),
            invitations=_validate_list(InvitationResponse, snapshot.get("invitations")),
            current_organization=_validate_one(OrgResponse, snapshot.get("current_organization")),
        )

    async def persist(self) -> None:
        """Store the snapshot under this user's key. No-op without a cache or user."""
        if self._cache is None or self._cache_key is None:
            return
        await self._cache.save(self._cache_key, self.snapshot())

    async def restore(self) -> bool:
        """Load the stored snapshot, if any. Returns whether one was applied."""
        if self._cache is None or self._cache_key is None:
            return False
        snapshot = await self._cache.load(self._cache_key)
        if snapshot is None:
            return False
        self.apply_snapshot(snapshot)
        return True

    async def forget(self) -> None:
        """Clear the state and drop this user's stored snapshot (on sign-out)."""
        self.clear_state()
        if self._cache is not None and self._cache_key is not None:
            await self._cache.delete(self._cache_key)


def snapshot_key(user_id: uuid.UUID) -> str:
    return f"organization-mirror:{user_id}"


def _validate_one(model: type[BaseModel], raw: Any) -> Any:
    if not isinstance(raw, dict):
        return None
    try:
        return model.model_validate(raw)
    except ValidationError:
        return None


def _validate_list(model: type[BaseModel], raw: Any) -> list:
    if not isinstance(raw, list):
        return []
    try:
        return [model.model_validate(item) for item in raw]
    except ValidationError:
        return []
