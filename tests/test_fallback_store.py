import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from document_vault.database.family_store import FallbackFamilyStore, InMemoryFamilyStore, MongoFamilyStore
from document_vault.main import periodic_fallback_reconcile
from document_vault.managers.family_manager import FamilyManager
from document_vault.models.family_models import FamilyGroup, FamilyMember
from document_vault.utils.time_utils import utc_now


def _group(group_id, user_id="user-alice", name="Home", minutes_ago=0):
    now = utc_now() - timedelta(minutes=minutes_ago)
    return FamilyGroup(
        group_id=group_id,
        name=name,
        created_by=user_id,
        created_at=now,
        last_modified=now,
        members=[
            FamilyMember(
                member_id=f"mem_{group_id}",
                user_id=user_id,
                email="alice@example.com",
                display_name="Alice",
                role="admin",
                joined_at=now,
            )
        ],
    )


def _unreachable(primary):
    error = ServerSelectionTimeoutError("No servers available")
    for name in ("get", "find_by_invitation_token", "list_for_user", "list_with_pending_invitation", "insert", "replace"):
        setattr(primary, name, AsyncMock(side_effect=error))


@pytest.fixture
def primary():
    # An in-memory store stands in for MongoDB until a test makes it unreachable
    return InMemoryFamilyStore()


@pytest.fixture
def store(primary):
    return FallbackFamilyStore(primary)


@pytest.mark.asyncio
async def test_healthy_primary_takes_writes(store, primary):
    await store.insert(_group("fam_1"))

    assert await primary.get("fam_1") is not None
    assert store.pending_reconciliation == 0
    assert store.degraded is False


@pytest.mark.asyncio
async def test_insert_falls_back_when_primary_down(store, primary):
    _unreachable(primary)

    await store.insert(_group("fam_1"))

    assert store.degraded is True
    assert store.pending_reconciliation == 1
    assert (await store.get("fam_1")).name == "Home"
    assert [g.group_id for g in await store.list_for_user("user-alice")] == ["fam_1"]


@pytest.mark.asyncio
async def test_reads_union_with_primary_winning(store, primary):
    await primary.insert(_group("fam_shared", name="Primary copy", minutes_ago=5))
    await store.fallback.insert(_group("fam_shared", name="Stale copy"))
    await store.fallback.insert(_group("fam_memory_only", name="Memory only", minutes_ago=1))

    groups = await store.list_for_user("user-alice")

    assert [(g.group_id, g.name) for g in groups] == [
        ("fam_memory_only", "Memory only"),
        ("fam_shared", "Primary copy"),
    ]
    assert (await store.get("fam_shared")).name == "Primary copy"


@pytest.mark.asyncio
async def test_update_of_memory_only_group_stays_in_memory(store, primary):
    _unreachable(primary)
    group = _group("fam_1")
    await store.insert(group)

    primary_back = InMemoryFamilyStore()
    store.primary = primary_back

    group.name = "Renamed"
    group.version = 2
    assert await store.replace(group, 1) is True
    assert (await store.fallback.get("fam_1")).name == "Renamed"
    assert await primary_back.get("fam_1") is None


@pytest.mark.asyncio
async def test_reconcile_pushes_fallback_groups(store, primary):
    original_insert = primary.insert
    primary.insert = AsyncMock(side_effect=ServerSelectionTimeoutError("down"))
    await store.insert(_group("fam_1"))
    assert store.degraded is True

    primary.insert = original_insert
    written = await store.reconcile()

    assert written == 1
    assert store.pending_reconciliation == 0
    assert await primary.get("fam_1") is not None
    assert store.degraded is False


@pytest.mark.asyncio
async def test_reconcile_loop_survives_unexpected_errors(store, primary):
    primary.insert = AsyncMock(side_effect=ServerSelectionTimeoutError("down"))
    await store.insert(_group("fam_1"))
    assert store.pending_reconciliation == 1

    primary.insert = AsyncMock(side_effect=[ValueError("document failed to encode"), None])
    task = asyncio.create_task(periodic_fallback_reconcile(store, interval=0))
    try:
        for _ in range(100):
            if store.pending_reconciliation == 0:
                break
            await asyncio.sleep(0)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert primary.insert.await_count == 2
    assert store.pending_reconciliation == 0


@pytest.mark.asyncio
async def test_reconcile_discards_copy_when_primary_moved_on(store, primary):
    await primary.insert(_group("fam_1"))
    original_replace = primary.replace
    primary.replace = AsyncMock(side_effect=ServerSelectionTimeoutError("down"))

    offline_copy = _group("fam_1", name="Offline edit")
    offline_copy.version = 2
    assert await store.replace(offline_copy, 1) is True

    # Someone else wrote version 2 directly to the primary meanwhile
    primary.replace = original_replace
    online_copy = _group("fam_1", name="Online edit")
    online_copy.version = 2
    assert await primary.replace(online_copy, 1) is True

    assert await store.reconcile() == 0
    assert store.pending_reconciliation == 0
    assert (await store.get("fam_1")).name == "Online edit"


@pytest.mark.asyncio
async def test_registry_keeps_working_while_degraded(store, primary, notifications, alice, bob):
    _unreachable(primary)
    family = FamilyManager(store=store, notifications=notifications)

    group = await family.create_group(alice, "Home")
    invitation = await family.invite(alice, group.group_id, bob.email)
    joined, _ = await family.accept(bob, invitation.invitation_token)

    assert family.degraded is True
    assert joined.active_member(bob.user_id) is not None


@pytest.mark.asyncio
async def test_mongo_replace_filters_on_version():
    collection = MagicMock()
    collection.replace_one = AsyncMock(return_value=MagicMock(matched_count=0))
    database = MagicMock()
    database.get_collection.return_value = collection
    database.log_query_start.return_value = 0.0
    mongo = MongoFamilyStore(database=database)
    group = _group("fam_1")
    group.version = 4

    assert await mongo.replace(group, 3) is False

    query, replacement = collection.replace_one.call_args[0]
    assert query == {"group_id": "fam_1", "version": 3}
    assert replacement["version"] == 4
