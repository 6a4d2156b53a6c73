"""
Tests for the invitation lifecycle: invite, resend, revoke, accept.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from app.core.errors import (
    AlreadyMember,
    Conflict,
    InvitationNotFound,
    NotFound,
    PermissionDenied,
    StorageUnavailable,
)
from app.models.organization_invitation import OrganizationInvitation
from app.models.organization_member import OrganizationMember
from app.services import invitations as invitation_service
from app.services import organizations as org_service
from orgboard_shared.schemas.invitations import (
    InvitationCreateRequest,
    InvitationStatus,
    can_transition,
)
from orgboard_shared.schemas.organizations import OrgCreateRequest


@pytest.fixture
async def org_setup(session_factory, make_user):
    """An org owned by `owner`, with an extra admin and member."""
    owner = await make_user()
    admin = await make_user()
    member = await make_user()
    async with session_factory() as s:
        org = await org_service.create_org(
            OrgCreateRequest(name="Acme Inc", slug="acme-inc"), owner, s
        )
        s.add(OrganizationMember(organization_id=org.id, user_id=admin, role="admin"))
        s.add(OrganizationMember(organization_id=org.id, user_id=member, role="member"))
        await s.commit()
    return {"org_id": org.id, "owner": owner, "admin": admin, "member": member}


async def _invite(session_factory, org_id, inviter, email="bob@example.com", role="member"):
    async with session_factory() as s:
        invitation = await invitation_service.invite_member(
            org_id, InvitationCreateRequest(email=email, role=role), inviter, s
        )
        await s.commit()
        return invitation


class TestTransitions:
    def test_pending_moves_anywhere(self):
        for target in InvitationStatus:
            assert can_transition(InvitationStatus.PENDING, target)

    def test_terminal_states(self):
        for current in (InvitationStatus.ACCEPTED, InvitationStatus.REVOKED):
            for target in InvitationStatus:
                assert not can_transition(current, target)


class TestInvite:
    @pytest.mark.asyncio
    async def test_invite_creates_pending(self, session, org_setup):
        invitation = await invitation_service.invite_member(
            org_setup["org_id"],
            InvitationCreateRequest(email="Bob@Example.com", role="admin"),
            org_setup["owner"],
            session,
        )
        assert invitation.status == "pending"
        assert invitation.email == "bob@example.com"
        assert invitation.role == "admin"
        assert invitation.invited_by == org_setup["owner"]
        assert len(invitation.token) >= 32
        assert invitation.accepted_at is None
        assert invitation.revoked_at is None

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, session_factory, org_setup):
        a = await _invite(session_factory, org_setup["org_id"], org_setup["owner"], "a@example.com")
        b = await _invite(session_factory, org_setup["org_id"], org_setup["owner"], "b@example.com")
        assert a.token != b.token

    @pytest.mark.asyncio
    async def test_member_can_invite_member(self, session, org_setup):
        invitation = await invitation_service.invite_member(
            org_setup["org_id"],
            InvitationCreateRequest(email="carol@example.com"),
            org_setup["member"],
            session,
        )
        assert invitation.role == "member"

    @pytest.mark.asyncio
    async def test_member_cannot_invite_admin(self, session, org_setup):
        with pytest.raises(PermissionDenied):
            await invitation_service.invite_member(
                org_setup["org_id"],
                InvitationCreateRequest(email="carol@example.com", role="admin"),
                org_setup["member"],
                session,
            )

    @pytest.mark.asyncio
    async def test_admin_cannot_invite_owner(self, session, org_setup):
        with pytest.raises(PermissionDenied):
            await invitation_service.invite_member(
                org_setup["org_id"],
                InvitationCreateRequest(email="carol@example.com", role="owner"),
                org_setup["admin"],
                session,
            )

    @pytest.mark.asyncio
    async def test_non_member_cannot_invite(self, session, org_setup, make_user):
        stranger = await make_user()
        with pytest.raises(PermissionDenied):
            await invitation_service.invite_member(
                org_setup["org_id"],
                InvitationCreateRequest(email="carol@example.com"),
                stranger,
                session,
            )

    @pytest.mark.asyncio
    async def test_unknown_org(self, session, org_setup):
        with pytest.raises(NotFound):
            await invitation_service.invite_member(
                uuid.uuid4(),
                InvitationCreateRequest(email="carol@example.com"),
                org_setup["owner"],
                session,
            )


class TestListInvitations:
    @pytest.mark.asyncio
    async def test_newest_first_and_status_filter(self, session_factory, org_setup):
        org_id = org_setup["org_id"]
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        async with session_factory() as s:
            for i, status in enumerate(["pending", "revoked", "pending"]):
                s.add(
                    OrganizationInvitation(
                        organization_id=org_id,
                        email=f"user{i}@example.com",
                        role="member",
                        token=f"token-{i}",
                        status=status,
                        invited_by=org_setup["owner"],
                        created_at=base + timedelta(hours=i),
                        expires_at=base + timedelta(days=7),
                    )
                )
            await s.commit()

        async with session_factory() as s:
            everything = await invitation_service.list_invitations(org_id, org_setup["member"], s)
            pending = await invitation_service.list_invitations(
                org_id, org_setup["member"], s, status=InvitationStatus.PENDING
            )

        assert [i.email for i in everything] == [
            "user2@example.com",
            "user1@example.com",
            "user0@example.com",
        ]
        assert [i.email for i in pending] == ["user2@example.com", "user0@example.com"]

    @pytest.mark.asyncio
    async def test_non_member_denied(self, session, org_setup, make_user):
        stranger = await make_user()
        with pytest.raises(PermissionDenied):
            await invitation_service.list_invitations(org_setup["org_id"], stranger, session)


class TestAccept:
    @pytest.mark.asyncio
    async def test_accept_adds_member(self, session_factory, org_setup, make_user):
        bob = await make_user(email="bob@example.com")
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"], role="admin")

        async with session_factory() as s:
            accepted = await invitation_service.accept_invitation(invitation.token, bob, s)
        assert accepted.status == "accepted"
        assert accepted.accepted_at is not None

        async with session_factory() as s:
            membership = (
                await s.execute(
                    select(OrganizationMember).where(
                        OrganizationMember.organization_id == org_setup["org_id"],
                        OrganizationMember.user_id == bob,
                    )
                )
            ).scalar_one()
            stored = await invitation_service.get_invitation(invitation.id, s)
        assert membership.role == "admin"
        assert stored.status == "accepted"

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, session_factory, org_setup, make_user):
        bob = await make_user()
        carol = await make_user()
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])

        async with session_factory() as s:
            await invitation_service.accept_invitation(invitation.token, bob, s)
        async with session_factory() as s:
            with pytest.raises(InvitationNotFound):
                await invitation_service.accept_invitation(invitation.token, carol, s)

        async with session_factory() as s:
            members = (
                await s.execute(
                    select(OrganizationMember.user_id).where(
                        OrganizationMember.organization_id == org_setup["org_id"]
                    )
                )
            ).scalars().all()
        assert members.count(bob) == 1
        assert carol not in members
        assert len(members) == 4

    @pytest.mark.asyncio
    async def test_claim_failure_leaves_no_membership(self, session_factory, org_setup, make_user):
        bob = await make_user()
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])

        async with session_factory() as s:
            real_execute = s.execute

            async def flaky_execute(statement, *args, **kwargs):
                # The membership row is already flushed when the claim fails
                if str(statement).startswith("UPDATE organization_invitations"):
                    raise OperationalError("UPDATE organization_invitations", {}, Exception("gone"))
                return await real_execute(statement, *args, **kwargs)

            with patch.object(s, "execute", new=flaky_execute):
                with pytest.raises(StorageUnavailable):
                    await invitation_service.accept_invitation(invitation.token, bob, s)

        async with session_factory() as s:
            stored = await invitation_service.get_invitation(invitation.id, s)
            members = (
                await s.execute(select(OrganizationMember).where(OrganizationMember.user_id == bob))
            ).scalars().all()
        assert stored.status == "pending"
        assert stored.accepted_at is None
        assert members == []

    @pytest.mark.asyncio
    async def test_unknown_token(self, session, make_user):
        user = await make_user()
        with pytest.raises(InvitationNotFound):
            await invitation_service.accept_invitation("no-such-token", user, session)
        with pytest.raises(InvitationNotFound):
            await invitation_service.accept_invitation("", user, session)

    @pytest.mark.asyncio
    async def test_expired_token(self, session_factory, org_setup, make_user):
        bob = await make_user()
        async with session_factory() as s:
            s.add(
                OrganizationInvitation(
                    organization_id=org_setup["org_id"],
                    email="bob@example.com",
                    role="member",
                    token="expired-token",
                    invited_by=org_setup["owner"],
                    expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
                )
            )
            await s.commit()

        async with session_factory() as s:
            with pytest.raises(InvitationNotFound):
                await invitation_service.accept_invitation("expired-token", bob, s)

    @pytest.mark.asyncio
    async def test_existing_member_keeps_invitation_pending(self, session_factory, org_setup):
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])

        async with session_factory() as s:
            with pytest.raises(AlreadyMember):
                await invitation_service.accept_invitation(invitation.token, org_setup["member"], s)

        async with session_factory() as s:
            stored = await invitation_service.get_invitation(invitation.id, s)
            members = (
                await s.execute(
                    select(OrganizationMember).where(
                        OrganizationMember.user_id == org_setup["member"]
                    )
                )
            ).scalars().all()
        assert stored.status == "pending"
        assert [m.role for m in members] == ["member"]

    @pytest.mark.asyncio
    async def test_revoked_token_cannot_be_accepted(self, session_factory, org_setup, make_user):
        bob = await make_user()
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])
        async with session_factory() as s:
            await invitation_service.revoke_invitation(invitation.id, org_setup["owner"], s)
            await s.commit()
        async with session_factory() as s:
            with pytest.raises(InvitationNotFound):
                await invitation_service.accept_invitation(invitation.token, bob, s)


class TestResend:
    @pytest.mark.asyncio
    async def test_resend_rotates_token(self, session_factory, org_setup, make_user):
        bob = await make_user()
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])
        old_token = invitation.token

        async with session_factory() as s:
            resent = await invitation_service.resend_invitation(
                invitation.id, org_setup["owner"], s, organization_id=org_setup["org_id"]
            )
            await s.commit()
        assert resent.status == "pending"
        assert resent.token != old_token

        async with session_factory() as s:
            with pytest.raises(InvitationNotFound):
                await invitation_service.accept_invitation(old_token, bob, s)
        async with session_factory() as s:
            accepted = await invitation_service.accept_invitation(resent.token, bob, s)
        assert accepted.status == "accepted"

    @pytest.mark.asyncio
    async def test_resend_accepted_conflicts(self, session_factory, org_setup, make_user):
        bob = await make_user()
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])
        async with session_factory() as s:
            await invitation_service.accept_invitation(invitation.token, bob, s)
        async with session_factory() as s:
            with pytest.raises(Conflict):
                await invitation_service.resend_invitation(invitation.id, org_setup["owner"], s)

    @pytest.mark.asyncio
    async def test_resend_revoked_conflicts(self, session_factory, org_setup):
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])
        async with session_factory() as s:
            await invitation_service.revoke_invitation(invitation.id, org_setup["owner"], s)
            await s.commit()
        async with session_factory() as s:
            with pytest.raises(Conflict):
                await invitation_service.resend_invitation(invitation.id, org_setup["owner"], s)

    @pytest.mark.asyncio
    async def test_other_member_cannot_resend(self, session_factory, org_setup):
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["admin"])
        async with session_factory() as s:
            with pytest.raises(PermissionDenied):
                await invitation_service.resend_invitation(invitation.id, org_setup["member"], s)

    @pytest.mark.asyncio
    async def test_wrong_org_scope(self, session_factory, org_setup):
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])
        async with session_factory() as s:
            with pytest.raises(NotFound):
                await invitation_service.resend_invitation(
                    invitation.id, org_setup["owner"], s, organization_id=uuid.uuid4()
                )

    @pytest.mark.asyncio
    async def test_resend_racing_accept_conflicts(self, session_factory, org_setup, make_user):
        bob = await make_user()
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])
        real_check = invitation_service._require_inviter_or_admin

        async def check_then_accept(inv, requester_id, session):
            await real_check(inv, requester_id, session)
            async with session_factory() as other:
                await invitation_service.accept_invitation(invitation.token, bob, other)

        with patch.object(invitation_service, "_require_inviter_or_admin", new=check_then_accept):
            async with session_factory() as s:
                with pytest.raises(Conflict):
                    await invitation_service.resend_invitation(invitation.id, org_setup["owner"], s)

        async with session_factory() as s:
            stored = await invitation_service.get_invitation(invitation.id, s)
        assert stored.status == "accepted"
        assert stored.token == invitation.token


class TestRevoke:
    @pytest.mark.asyncio
    async def test_inviter_revokes(self, session_factory, org_setup):
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["member"])
        async with session_factory() as s:
            revoked = await invitation_service.revoke_invitation(invitation.id, org_setup["member"], s)
            await s.commit()
        assert revoked.status == "revoked"
        assert revoked.revoked_at is not None

    @pytest.mark.asyncio
    async def test_admin_revokes_someone_elses(self, session_factory, org_setup):
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["member"])
        async with session_factory() as s:
            revoked = await invitation_service.revoke_invitation(invitation.id, org_setup["admin"], s)
        assert revoked.status == "revoked"

    @pytest.mark.asyncio
    async def test_revoke_twice_is_noop(self, session_factory, org_setup):
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])
        async with session_factory() as s:
            await invitation_service.revoke_invitation(invitation.id, org_setup["owner"], s)
            await s.commit()
        async with session_factory() as s:
            second = await invitation_service.revoke_invitation(invitation.id, org_setup["owner"], s)
        assert second.id == invitation.id
        assert second.status == "revoked"
        assert second.revoked_at is not None

    @pytest.mark.asyncio
    async def test_revoke_accepted_conflicts(self, session_factory, org_setup, make_user):
        bob = await make_user()
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])
        async with session_factory() as s:
            await invitation_service.accept_invitation(invitation.token, bob, s)
        async with session_factory() as s:
            with pytest.raises(Conflict):
                await invitation_service.revoke_invitation(invitation.id, org_setup["owner"], s)

    @pytest.mark.asyncio
    async def test_stranger_cannot_revoke(self, session_factory, org_setup, make_user):
        stranger = await make_user()
        invitation = await _invite(session_factory, org_setup["org_id"], org_setup["owner"])
        async with session_factory() as s:
            with pytest.raises(PermissionDenied):
                await invitation_service.revoke_invitation(invitation.id, stranger, s)
