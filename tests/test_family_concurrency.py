import asyncio

import pytest

from document_vault.database.family_store import InMemoryFamilyStore
from document_vault.managers.family_manager import (
    FamilyManager,
    InvitationExpired,
    InvitationNotFound,
)
from document_vault.utils.error_handling import ConcurrentModification


class InterleavingFamilyStore(InMemoryFamilyStore):
    """Yields to the event loop after every read so racing mutations interleave."""

    async def get(self, group_id):
        group = await super().get(group_id)
        await asyncio.sleep(0)
        return group

    async def find_by_invitation_token(self, token):
        group = await super().find_by_invitation_token(token)
        await asyncio.sleep(0)
        return group


class AlwaysConflictingStore(InMemoryFamilyStore):
    async def replace(self, group, expected_version):
        return False


@pytest.mark.asyncio
async def test_racing_accepts_admit_member_once(notifications, alice, bob):
    family = FamilyManager(store=InterleavingFamilyStore(), notifications=notifications)
    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email)

    results = await asyncio.gather(
        family.accept(bob, invitation.invitation_token),
        family.accept(bob, invitation.invitation_token),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], (InvitationNotFound, InvitationExpired))

    stored = await family.store.get(group.group_id)
    assert [m.user_id for m in stored.members].count(bob.user_id) == 1
    assert len(stored.active_members()) == 2
    assert stored.statistics.total_members == 2


@pytest.mark.asyncio
async def test_racing_invites_leave_one_pending(notifications, alice):
    family = FamilyManager(store=InterleavingFamilyStore(), notifications=notifications)
    group = await family.create_group(alice, "Home")

    await asyncio.gather(
        family.invite(alice, group.group_id, "bob@example.com"),
        family.invite(alice, group.group_id, "bob@example.com"),
        return_exceptions=True,
    )

    stored = await family.store.get(group.group_id)
    assert len([inv for inv in stored.invitations if inv.status == "pending"]) == 1


@pytest.mark.asyncio
async def test_persistent_conflict_gives_up(notifications, alice):
    store = AlwaysConflictingStore()
    family = FamilyManager(store=store, notifications=notifications, max_retries=3)
    group = await family.create_group(alice, "Home")

    with pytest.raises(ConcurrentModification) as exc_info:
        await family.update_settings(alice, group.group_id, name="Renamed")
    assert exc_info.value.status_code == 409
    assert (await store.get(group.group_id)).name == "Home"
