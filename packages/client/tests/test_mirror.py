"""Tests for the organization mirror: refetch-after-mutation, loading and error contract."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from orgboard_client.api import ApiError
from orgboard_client.cache import MirrorCache
from orgboard_client.mirror import OrganizationMirror
from orgboard_shared.schemas.common import ErrorKind
from orgboard_shared.schemas.organizations import OrgResponse


class Recorder:
    """Collects notifications and the is_loading value seen by listeners."""

    def __init__(self):
        self.errors: list[ApiError] = []
        self.loading: list[bool] = []

    def notify(self, error: ApiError) -> None:
        self.errors.append(error)

    def listen(self, mirror: OrganizationMirror) -> None:
        self.loading.append(mirror.is_loading)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def mirror_for(recorder):
    def _mirror(api, **kwargs) -> OrganizationMirror:
        mirror = OrganizationMirror(api, notify=recorder.notify, **kwargs)
        mirror.subscribe(recorder.listen)
        return mirror

    return _mirror


class TestOrganizations:
    async def test_create_refetches(self, signed_in, mirror_for, recorder):
        mirror = mirror_for(await signed_in())

        org = await mirror.create_organization("Acme Inc", "acme-inc")
        assert org is not None
        assert [o.slug for o in mirror.organizations] == ["acme-inc"]
        assert mirror.is_member(org.id)
        assert mirror.has_role(org.id, "owner")
        assert mirror.has_role(org.id, "member")
        assert mirror.is_success is True
        assert mirror.is_loading is False
        assert recorder.loading[0] is True
        assert recorder.loading[-1] is False
        assert recorder.errors == []

    async def test_conflict_notifies_once(self, signed_in, mirror_for, recorder):
        first = mirror_for(await signed_in())
        second = mirror_for(await signed_in())
        await first.create_organization("Acme Inc", "acme-inc")

        assert await second.create_organization("Acme", "acme-inc") is None
        assert second.error.kind == ErrorKind.CONFLICT
        assert second.is_success is False
        assert second.is_loading is False
        assert len(recorder.errors) == 1

    async def test_local_validation_clears_loading(self, signed_in, mirror_for, recorder):
        mirror = mirror_for(await signed_in())
        assert await mirror.create_organization("Acme", "No Way") is None
        assert mirror.is_loading is False
        assert [e.kind for e in recorder.errors] == [ErrorKind.VALIDATION_FAILED]

    async def test_update_and_delete(self, signed_in, mirror_for):
        mirror = mirror_for(await signed_in())
        org = await mirror.create_organization("Acme Inc", "acme-inc")
        mirror.set_current_organization("acme-inc")

        await mirror.update_organization(org.id, name="Acme Corp")
        assert mirror.organizations[0].name == "Acme Corp"
        assert mirror.current_organization.name == "Acme Corp"

        assert await mirror.delete_organization(org.id) is True
        assert mirror.organizations == []
        assert mirror.memberships == []
        assert mirror.current_organization is None

    async def test_upload_logo(self, signed_in, mirror_for):
        mirror = mirror_for(await signed_in())
        org = await mirror.create_organization("Acme Inc", "acme-inc")
        updated = await mirror.upload_logo(org.id, ("logo.png", b"\x89PNG", "image/png"))
        assert updated.logo_url
        assert mirror.organizations[0].logo_url == updated.logo_url

    async def test_slug_availability(self, signed_in, mirror_for):
        mirror = mirror_for(await signed_in())
        await mirror.create_organization("Acme Inc", "acme-inc")
        assert await mirror.check_slug_availability("acme-inc") is False
        assert await mirror.check_slug_availability("beta-co") is True
        assert await mirror.check_slug_availability("x") is False

    async def test_set_current_unknown_slug(self, signed_in, mirror_for):
        mirror = mirror_for(await signed_in())
        assert mirror.set_current_organization("nope") is None
        assert mirror.current_organization is None


class TestInvitations:
    async def test_invite_resend_revoke(self, signed_in, mirror_for, recorder):
        mirror = mirror_for(await signed_in())
        org = await mirror.create_organization("Acme Inc", "acme-inc")

        invitation = await mirror.invite_member(org.id, "bob@example.com")
        assert [i.id for i in mirror.invitations] == [invitation.id]

        resent = await mirror.resend_invitation(invitation.id)
        assert mirror.invitations[0].token == resent.token != invitation.token

        await mirror.revoke_invitation(invitation.id)
        assert mirror.invitations[0].status.value == "revoked"
        assert recorder.errors == []

    async def test_resend_unknown_invitation(self, signed_in, mirror_for, recorder):
        mirror = mirror_for(await signed_in())
        assert await mirror.resend_invitation(uuid.uuid4()) is None
        assert mirror.error.kind == ErrorKind.NOT_FOUND
        assert len(recorder.errors) == 1
        assert mirror.is_loading is False

    async def test_accept_refetches_organizations(self, signed_in, mirror_for):
        owner = mirror_for(await signed_in())
        invitee = mirror_for(await signed_in())
        org = await owner.create_organization("Acme Inc", "acme-inc")
        invitation = await owner.invite_member(org.id, "bob@example.com")

        accepted = await invitee.accept_invitation(invitation.token)
        assert accepted.organization_id == org.id
        assert [o.id for o in invitee.organizations] == [org.id]
        assert invitee.has_role(org.id, "member")
        assert not invitee.has_role(org.id, "admin")

    async def test_accept_bad_token(self, signed_in, mirror_for, recorder):
        mirror = mirror_for(await signed_in())
        assert await mirror.accept_invitation("no-such-token") is None
        assert mirror.error.kind == ErrorKind.NOT_FOUND
        assert len(recorder.errors) == 1


class TestLoadingContract:
    async def test_unexpected_errors_propagate_but_clear_loading(self, recorder):
        api = AsyncMock()
        api.list_organizations.side_effect = RuntimeError("bug")
        mirror = OrganizationMirror(api, notify=recorder.notify)

        with pytest.raises(RuntimeError):
            await mirror.fetch_organizations()
        assert mirror.is_loading is False
        assert recorder.errors == []

    async def test_failed_fetch_returns_empty(self, recorder):
        api = AsyncMock()
        api.list_organizations.side_effect = ApiError(ErrorKind.STORAGE_UNAVAILABLE, "down")
        mirror = OrganizationMirror(api, notify=recorder.notify)

        assert await mirror.fetch_organizations() == []
        assert mirror.error.kind == ErrorKind.STORAGE_UNAVAILABLE
        assert len(recorder.errors) == 1

    async def test_create_survives_failed_refetch(self, recorder):
        created = OrgResponse(
            id=uuid.uuid4(),
            name="Acme Inc",
            slug="acme-inc",
            created_by=uuid.uuid4(),
            created_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc),
        )
        api = AsyncMock()
        api.create_organization.return_value = created
        api.list_organizations.side_effect = ApiError(ErrorKind.STORAGE_UNAVAILABLE, "down")
        mirror = OrganizationMirror(api, notify=recorder.notify)

        assert await mirror.create_organization("Acme Inc", "acme-inc") == created
        assert mirror.error.kind == ErrorKind.STORAGE_UNAVAILABLE
        assert len(recorder.errors) == 1
        assert mirror.is_loading is False

    async def test_delete_survives_failed_refetch(self, recorder):
        org_id = uuid.uuid4()
        api = AsyncMock()
        api.list_organizations.side_effect = ApiError(ErrorKind.STORAGE_UNAVAILABLE, "down")
        mirror = OrganizationMirror(api, notify=recorder.notify)

        assert await mirror.delete_organization(org_id) is True
        api.delete_organization.assert_awaited_once_with(org_id)
        assert len(recorder.errors) == 1

    async def test_unsubscribe(self, recorder):
        mirror = OrganizationMirror(AsyncMock())
        unsubscribe = mirror.subscribe(recorder.listen)
        mirror.clear_errors()
        unsubscribe()
        mirror.clear_errors()
        assert len(recorder.loading) == 1


class TestPersistence:
    async def test_persist_and_restore(self, signed_in, mirror_for, tmp_path):
        cache = MirrorCache(str(tmp_path / "cache.db"))
        await cache.open()
        try:
            api = await signed_in()
            me = await api.me()
            mirror = mirror_for(api, cache=cache, user_id=me.id)
            org = await mirror.create_organization("Acme Inc", "acme-inc")
            mirror.set_current_organization("acme-inc")
            await mirror.persist()

            fresh = OrganizationMirror(api, cache=cache, user_id=me.id)
            assert await fresh.restore() is True
            assert [o.id for o in fresh.organizations] == [org.id]
            assert fresh.current_organization.slug == "acme-inc"
            assert fresh.is_member(org.id)
        finally:
            await cache.close()

    async def test_snapshots_are_per_user(self, signed_in, mirror_for, tmp_path):
        cache = MirrorCache(str(tmp_path / "cache.db"))
        await cache.open()
        try:
            first_api = await signed_in()
            second_api = await signed_in()
            first_id = (await first_api.me()).id
            second_id = (await second_api.me()).id

            first = mirror_for(first_api, cache=cache, user_id=first_id)
            await first.create_organization("Acme Inc", "acme-inc")
            await first.persist()

            second = OrganizationMirror(second_api, cache=cache, user_id=second_id)
            assert await second.restore() is False
            assert second.organizations == []

            await first.forget()
            assert first.organizations == []
            again = OrganizationMirror(first_api, cache=cache, user_id=first_id)
            assert await again.restore() is False
        finally:
            await cache.close()

    async def test_persist_without_user_is_noop(self, tmp_path):
        cache = MirrorCache(str(tmp_path / "cache.db"))
        await cache.open()
        try:
            mirror = OrganizationMirror(AsyncMock(), cache=cache)
            await mirror.persist()
            assert await mirror.restore() is False
        finally:
            await cache.close()

    async def test_malformed_snapshot_falls_back_to_empty(self):
        mirror = OrganizationMirror(AsyncMock())
        mirror.apply_snapshot(
            {"organizations": "nope", "memberships": [{"id": "x"}], "current_organization": 3}
        )
        assert mirror.organizations == []
        assert mirror.memberships == []
        assert mirror.invitations == []
        assert mirror.current_organization is None

    async def test_clear_state(self, signed_in, mirror_for):
        mirror = mirror_for(await signed_in())
        await mirror.create_organization("Acme Inc", "acme-inc")
        mirror.clear_state()
        assert mirror.organizations == []
        assert mirror.memberships == []
        assert mirror.is_success is False

    async def test_restore_without_cache(self):
        assert await OrganizationMirror(AsyncMock()).restore() is False
