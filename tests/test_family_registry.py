from datetime import timedelta

import pytest

from conftest import make_principal
from document_vault.managers.family_manager import (
    CannotChangeCreator,
    CannotRemoveCreator,
    DuplicateInvitation,
    DuplicateMember,
    EmailMismatch,
    FamilyLimitExceeded,
    FamilyNotFound,
    GroupArchived,
    InsufficientPermissions,
    InvitationExpired,
    InvitationNotFound,
    InvitationRecordNotFound,
)
from document_vault.models.family_models import FamilySettingsUpdate
from document_vault.utils.error_handling import ValidationError
from document_vault.utils.time_utils import utc_now


async def _expire(store, group_id, email):
    group = await store.get(group_id)
    for invitation in group.invitations:
        if invitation.email == email:
            invitation.expires_at = utc_now() - timedelta(seconds=1)
    assert await store.replace(group, group.version)


def _assert_group_invariants(group):
    active = group.active_members()
    assert len(active) <= group.settings.max_members
    if group.status == "active":
        assert any(m.role == "admin" for m in active)
    pending = [inv.email for inv in group.invitations if inv.status == "pending"]
    assert len(pending) == len(set(pending))


@pytest.mark.asyncio
async def test_create_group_makes_creator_admin(family, alice):
    group = await family.create_group(alice, "  Home  ", "Household paperwork")

    assert group.name == "Home"
    assert group.group_id.startswith("fam_")
    assert group.created_by == alice.user_id
    assert [(m.user_id, m.role, m.status) for m in group.members] == [(alice.user_id, "admin", "active")]
    assert group.settings.max_members == 10
    assert group.statistics.total_members == 1
    _assert_group_invariants(group)


@pytest.mark.asyncio
async def test_create_group_requires_name(family, alice):
    with pytest.raises(ValidationError) as exc_info:
        await family.create_group(alice, "   ")
    assert exc_info.value.error_code == "VALIDATION_REQUIRED_FIELD"


@pytest.mark.asyncio
async def test_create_group_rejects_member_cap_above_limit(family, alice):
    with pytest.raises(ValidationError):
        await family.create_group(alice, "Home", group_settings=FamilySettingsUpdate(max_members=51))


@pytest.mark.asyncio
async def test_happy_path_invitation(family, notifications, notifier, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, "Bob@Example.com", "member")

    assert invitation.email == "bob@example.com"
    assert invitation.status == "pending"
    assert len(invitation.invitation_token) == 64
    assert invitation.expires_at - invitation.created_at == timedelta(days=7)

    joined, member = await family.accept(bob, invitation.invitation_token)

    assert member.user_id == bob.user_id
    assert member.role == "member"
    assert member.invited_by == alice.user_id
    assert joined.active_member(bob.user_id) is not None
    stored = next(inv for inv in joined.invitations if inv.invitation_id == invitation.invitation_id)
    assert stored.status == "accepted"
    assert stored.accepted_at is not None

    bob_groups = await family.list_my_groups(bob)
    assert [g.name for g in bob_groups] == ["Home"]

    await notifications.drain()
    events = [event for event, _ in notifier.events]
    assert events == ["invitation_created", "invitation_accepted"]
    assert notifier.events[0][1]["accept_url"].endswith(invitation.invitation_token)
    _assert_group_invariants(joined)


@pytest.mark.asyncio
async def test_email_mismatch_leaves_invitation_pending(family, family_store, alice, carol):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, "bob@example.com")

    with pytest.raises(EmailMismatch) as exc_info:
        await family.accept(carol, invitation.invitation_token)
    assert exc_info.value.status_code == 400

    stored = await family_store.get(group.group_id)
    assert stored.invitations[0].status == "pending"
    assert stored.active_member(carol.user_id) is None


@pytest.mark.asyncio
async def test_expired_invitation_is_marked_then_gone(family, family_store, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email)
    await _expire(family_store, group.group_id, bob.email)

    with pytest.raises(InvitationExpired) as exc_info:
        await family.accept(bob, invitation.invitation_token)
    assert exc_info.value.status_code == 410

    stored = await family_store.get(group.group_id)
    assert stored.invitations[0].status == "expired"
    assert stored.active_member(bob.user_id) is None

    with pytest.raises(InvitationNotFound) as exc_info:
        await family.accept(bob, invitation.invitation_token)
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_duplicate_invite_rejected(family, family_store, alice, bob):
    group = await family.create_group(alice, "Home")
    await family.invite(alice, group.group_id, bob.email)

    with pytest.raises(DuplicateInvitation) as exc_info:
        await family.invite(alice, group.group_id, "BOB@example.com")
    assert exc_info.value.status_code == 409

    stored = await family_store.get(group.group_id)
    assert len([inv for inv in stored.invitations if inv.status == "pending"]) == 1


@pytest.mark.asyncio
async def test_reinvite_after_expiry_replaces_stale_invitation(family, family_store, alice, bob):
    group = await family.create_group(alice, "Home")
    await family.invite(alice, group.group_id, bob.email)
    await _expire(family_store, group.group_id, bob.email)

    fresh = await family.invite(alice, group.group_id, bob.email)

    stored = await family_store.get(group.group_id)
    assert [inv.status for inv in stored.invitations] == ["expired", "pending"]
    assert stored.invitations[1].invitation_id == fresh.invitation_id
    _assert_group_invariants(stored)


@pytest.mark.asyncio
async def test_terminal_invitations_cannot_transition(family, family_store, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email)
    await family.reject(bob, invitation.invitation_token)

    with pytest.raises(InvitationNotFound):
        await family.accept(bob, invitation.invitation_token)
    with pytest.raises(InvitationNotFound):
        await family.reject(bob, invitation.invitation_token)

    stored = await family_store.get(group.group_id)
    assert stored.invitations[0].status == "rejected"
    assert stored.active_member(bob.user_id) is None


@pytest.mark.asyncio
async def test_reject_expired_invitation(family, family_store, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email)
    await _expire(family_store, group.group_id, bob.email)

    with pytest.raises(InvitationExpired):
        await family.reject(bob, invitation.invitation_token)
    stored = await family_store.get(group.group_id)
    assert stored.invitations[0].status == "expired"


@pytest.mark.asyncio
async def test_unknown_token(family, bob):
    with pytest.raises(InvitationNotFound):
        await family.accept(bob, "0" * 64)


@pytest.mark.asyncio
async def test_member_limit_enforced_on_invite_and_accept(family, alice, bob, carol):
    group = await family.create_group(alice, "Pair", group_settings=FamilySettingsUpdate(max_members=2))
    to_bob = await family.invite(alice, group.group_id, bob.email)
    to_carol = await family.invite(alice, group.group_id, carol.email)
    await family.accept(bob, to_bob.invitation_token)

    with pytest.raises(FamilyLimitExceeded) as exc_info:
        await family.accept(carol, to_carol.invitation_token)
    assert exc_info.value.error_code == "LIMIT_EXCEEDED"

    with pytest.raises(FamilyLimitExceeded):
        await family.invite(alice, group.group_id, "dave@example.com")

    stored = await family.get_group(alice, group.group_id)
    assert len(stored.active_members()) == 2
    _assert_group_invariants(stored)


@pytest.mark.asyncio
async def test_member_invites_follow_group_settings(family, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email, "member")
    await family.accept(bob, invitation.invitation_token)

    with pytest.raises(InsufficientPermissions):
        await family.invite(bob, group.group_id, "carol@example.com")

    await family.update_settings(alice, group.group_id, group_settings=FamilySettingsUpdate(allow_member_invites=True))
    sent = await family.invite(bob, group.group_id, "carol@example.com")
    assert sent.role == "member"

    with pytest.raises(InsufficientPermissions):
        await family.invite(bob, group.group_id, "dave@example.com", "admin")


@pytest.mark.asyncio
async def test_invite_existing_member(family, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email)
    await family.accept(bob, invitation.invitation_token)

    with pytest.raises(DuplicateMember):
        await family.invite(alice, group.group_id, bob.email)


@pytest.mark.asyncio
async def test_creator_cannot_be_removed_or_reroled(family, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email, "admin")
    await family.accept(bob, invitation.invitation_token)

    with pytest.raises(CannotRemoveCreator):
        await family.remove_member(bob, group.group_id, alice.user_id)
    with pytest.raises(CannotChangeCreator):
        await family.update_role(bob, group.group_id, alice.user_id, "viewer")

    stored = await family.get_group(alice, group.group_id)
    assert stored.role_of(alice.user_id) == "admin"
    _assert_group_invariants(stored)


@pytest.mark.asyncio
async def test_member_can_leave_but_not_remove_others(family, alice, bob, carol):
    group = await family.create_group(alice, "Home")
    for person in (bob, carol):
        invitation = await family.invite(alice, group.group_id, person.email)
        await family.accept(person, invitation.invitation_token)

    with pytest.raises(InsufficientPermissions):
        await family.remove_member(bob, group.group_id, carol.user_id)

    removed = await family.remove_member(bob, group.group_id, bob.user_id)
    assert removed == 1
    assert await family.get_active_member_ids(group.group_id) == [alice.user_id, carol.user_id]

    with pytest.raises(InsufficientPermissions):
        await family.get_group(bob, group.group_id)


@pytest.mark.asyncio
async def test_removed_member_can_rejoin(family, alice, bob):
    group = await family.create_group(alice, "Home")
    first = await family.invite(alice, group.group_id, bob.email)
    await family.accept(bob, first.invitation_token)
    await family.remove_member(alice, group.group_id, bob.user_id)

    second = await family.invite(alice, group.group_id, bob.email, "viewer")
    joined, member = await family.accept(bob, second.invitation_token)

    assert member.role == "viewer"
    assert len([m for m in joined.members if m.user_id == bob.user_id]) == 1


@pytest.mark.asyncio
async def test_update_role(family, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email)
    await family.accept(bob, invitation.invitation_token)

    updated = await family.update_role(alice, group.group_id, bob.user_id, "admin")
    assert updated.role_of(bob.user_id) == "admin"

    with pytest.raises(ValidationError):
        await family.update_role(alice, group.group_id, bob.user_id, "owner")


@pytest.mark.asyncio
async def test_lowering_max_members_below_active_count(family, alice, bob, carol):
    group = await family.create_group(alice, "Home")
    for person in (bob, carol):
        invitation = await family.invite(alice, group.group_id, person.email)
        await family.accept(person, invitation.invitation_token)

    with pytest.raises(FamilyLimitExceeded):
        await family.update_settings(alice, group.group_id, group_settings=FamilySettingsUpdate(max_members=2))


@pytest.mark.asyncio
async def test_cancel_invitation_removes_all_matching_records(family, family_store, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email)

    # Simulate a duplicate record left behind by an old non-idempotent write
    stored = await family_store.get(group.group_id)
    stored.invitations.append(stored.invitations[0].model_copy())
    assert await family_store.replace(stored, stored.version)

    removed = await family.cancel_invitation(alice, group.group_id, invitation.invitation_token)

    assert removed == 2
    stored = await family_store.get(group.group_id)
    assert stored.invitations == []


@pytest.mark.asyncio
async def test_cancel_unknown_invitation_reports_key(family, alice):
    group = await family.create_group(alice, "Home")

    with pytest.raises(InvitationRecordNotFound) as exc_info:
        await family.cancel_invitation(alice, group.group_id, "inv_missing")

    assert exc_info.value.error_code == "NOT_FOUND"
    assert exc_info.value.context == {"invitation": "inv_missing"}


@pytest.mark.asyncio
async def test_resend_invitation_rotates_token(family, notifications, notifier, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email)

    resent = await family.resend_invitation(alice, group.group_id, invitation.invitation_id)

    assert resent.invitation_id == invitation.invitation_id
    assert resent.invitation_token != invitation.invitation_token
    assert resent.resent_count == 1
    with pytest.raises(InvitationNotFound):
        await family.accept(bob, invitation.invitation_token)
    await family.accept(bob, resent.invitation_token)

    await notifications.drain()
    assert "invitation_resent" in [event for event, _ in notifier.events]


@pytest.mark.asyncio
async def test_pending_inbox_lists_only_live_invitations(family, family_store, alice, bob, carol):
    home = await family.create_group(alice, "Home")
    cabin = await family.create_group(carol, "Cabin")
    await family.invite(alice, home.group_id, bob.email)
    await family.invite(carol, cabin.group_id, bob.email)
    await _expire(family_store, cabin.group_id, bob.email)

    inbox = await family.list_pending_invitations(bob)

    assert [item["group_name"] for item in inbox] == ["Home"]
    assert inbox[0]["invited_by_name"] == "Alice"


@pytest.mark.asyncio
async def test_archive_is_creator_only_and_read_only(family, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email, "admin")
    await family.accept(bob, invitation.invitation_token)

    with pytest.raises(InsufficientPermissions):
        await family.archive(bob, group.group_id)

    archived = await family.archive(alice, group.group_id)
    assert archived.status == "archived"

    with pytest.raises(GroupArchived) as exc_info:
        await family.invite(alice, group.group_id, "carol@example.com")
    assert exc_info.value.status_code == 410
    assert await family.list_my_groups(alice) == []


@pytest.mark.asyncio
async def test_get_missing_group(family, alice):
    with pytest.raises(FamilyNotFound):
        await family.get_group(alice, "fam_missing")


@pytest.mark.asyncio
async def test_projection_hides_tokens_and_limits_invitations(family, alice, bob):
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email)
    await family.accept(bob, invitation.invitation_token)
    await family.invite(alice, group.group_id, "carol@example.com")
    group = await family.get_group(alice, group.group_id)

    admin_view = family.project_group(group, alice.user_id)
    member_view = family.project_group(group, bob.user_id)

    assert len(admin_view["invitations"]) == 2
    assert all("invitation_token" not in inv for inv in admin_view["invitations"])
    assert member_view["invitations"] == []
    assert member_view["user_role"] == "member"
    assert admin_view["is_creator"] is True
    assert admin_view["member_count"] == 2


@pytest.mark.asyncio
async def test_invariants_hold_across_many_operations(family, family_store, alice):
    group = await family.create_group(alice, "Big", group_settings=FamilySettingsUpdate(max_members=4))
    people = [make_principal(f"person{i}") for i in range(5)]
    for person in people:
        try:
            invitation = await family.invite(alice, group.group_id, person.email)
            await family.accept(person, invitation.invitation_token)
        except FamilyLimitExceeded:
            pass
        _assert_group_invariants(await family_store.get(group.group_id))

    await family.remove_member(alice, group.group_id, people[0].user_id)
    _assert_group_invariants(await family_store.get(group.group_id))
    assert len((await family_store.get(group.group_id)).active_members()) == 3
