"""
# Family Group Storage

Repositories for `FamilyGroup` documents.

- **MongoFamilyStore**: primary durable backend on the `family_groups` collection.
- **InMemoryFamilyStore**: process-local store guarded by one `asyncio.Lock`; used on its own
  for `memory://` deployments and as the fallback half of `FallbackFamilyStore`.
- **FallbackFamilyStore**: writes go to the primary; when the primary fails they land in
  memory and the store reports itself *degraded*. Reads union both stores with the primary
  winning on `group_id` conflicts. `reconcile()` pushes fallback copies back to the primary on a
  best-effort basis.

Every store replaces a group only when the stored `version` equals the caller's expected
version, so read-modify-write cycles in the registry are compare-and-set.
"""

import asyncio
from typing import Dict, List, Optional

from pymongo.errors import PyMongoError

from document_vault.database.manager import FAMILY_GROUPS_COLLECTION, DatabaseManager, db_manager
from document_vault.managers.logging_manager import get_logger
from document_vault.models.family_models import FamilyGroup

logger = get_logger(prefix="[FamilyStore]")

PRIMARY_ERRORS = (PyMongoError, ConnectionError)


def _from_document(document: Optional[dict]) -> Optional[FamilyGroup]:
    if not document:
        return None
    document = {k: v for k, v in document.items() if k != "_id"}
    return FamilyGroup.model_validate(document)


def _sort_recent_first(groups: List[FamilyGroup]) -> List[FamilyGroup]:
    return sorted(groups, key=lambda g: g.last_modified, reverse=True)


class MongoFamilyStore:
    """Family groups persisted in MongoDB through Motor."""

    def __init__(self, database: DatabaseManager = None):
        self.db = database or db_manager

    @property
    def collection(self):
        return self.db.get_collection(FAMILY_GROUPS_COLLECTION)

    async def get(self, group_id: str) -> Optional[FamilyGroup]:
        query = {"group_id": group_id}
        start_time = self.db.log_query_start(FAMILY_GROUPS_COLLECTION, "find_one", query)
        try:
            document = await self.collection.find_one(query)
        except PRIMARY_ERRORS as e:
            self.db.log_query_error(FAMILY_GROUPS_COLLECTION, "find_one", start_time, e, query)
            raise
        self.db.log_query_success(FAMILY_GROUPS_COLLECTION, "find_one", start_time, 1 if document else 0)
        return _from_document(document)

    async def find_by_invitation_token(self, token: str) -> Optional[FamilyGroup]:
        query = {"invitations.invitation_token": token}
        start_time = self.db.log_query_start(FAMILY_GROUPS_COLLECTION, "find_one", query)
        try:
            document = await self.collection.find_one(query)
        except PRIMARY_ERRORS as e:
            self.db.log_query_error(FAMILY_GROUPS_COLLECTION, "find_one", start_time, e, query)
            raise
        self.db.log_query_success(FAMILY_GROUPS_COLLECTION, "find_one", start_time, 1 if document else 0)
        return _from_document(document)

    async def _find_many(self, query: dict) -> List[FamilyGroup]:
        start_time = self.db.log_query_start(FAMILY_GROUPS_COLLECTION, "find", query)
        try:
            cursor = self.collection.find(query).sort("last_modified", -1)
            documents = await cursor.to_list(length=None)
        except PRIMARY_ERRORS as e:
            self.db.log_query_error(FAMILY_GROUPS_COLLECTION, "find", start_time, e, query)
            raise
        self.db.log_query_success(FAMILY_GROUPS_COLLECTION, "find", start_time, len(documents))
        return [_from_document(doc) for doc in documents]

    async def list_for_user(self, user_id: str) -> List[FamilyGroup]:
        return await self._find_many(
            {
                "status": "active",
                "$or": [
                    {"created_by": user_id},
                    {"members": {"$elemMatch": {"user_id": user_id, "status": "active"}}},
                ],
            }
        )

    async def list_with_pending_invitation(self, email: str) -> List[FamilyGroup]:
        return await self._find_many(
            {"status": "active", "invitations": {"$elemMatch": {"email": email, "status": "pending"}}}
        )

    async def insert(self, group: FamilyGroup) -> None:
        start_time = self.db.log_query_start(FAMILY_GROUPS_COLLECTION, "insert_one", {"group_id": group.group_id})
        try:
            await self.collection.insert_one(group.model_dump())
        except PRIMARY_ERRORS as e:
            self.db.log_query_error(FAMILY_GROUPS_COLLECTION, "insert_one", start_time, e, {"group_id": group.group_id})
            raise
        self.db.log_query_success(FAMILY_GROUPS_COLLECTION, "insert_one", start_time, 1)

    async def replace(self, group: FamilyGroup, expected_version: int) -> bool:
        query = {"group_id": group.group_id, "version": expected_version}
        start_time = self.db.log_query_start(FAMILY_GROUPS_COLLECTION, "replace_one", query)
        try:
            result = await self.collection.replace_one(query, group.model_dump())
        except PRIMARY_ERRORS as e:
            self.db.log_query_error(FAMILY_GROUPS_COLLECTION, "replace_one", start_time, e, query)
            raise
        self.db.log_query_success(FAMILY_GROUPS_COLLECTION, "replace_one", start_time, result.matched_count)
        return result.matched_count == 1


class InMemoryFamilyStore:
    """Process-local family store; every access holds a single coarse lock."""

    def __init__(self):
        self._groups: Dict[str, FamilyGroup] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._groups)

    async def get(self, group_id: str) -> Optional[FamilyGroup]:
        async with self._lock:
            group = self._groups.get(group_id)
            return group.model_copy(deep=True) if group else None

    async def find_by_invitation_token(self, token: str) -> Optional[FamilyGroup]:
        async with self._lock:
            for group in self._groups.values():
                if any(inv.invitation_token == token for inv in group.invitations):
                    return group.model_copy(deep=True)
        return None

    async def list_for_user(self, user_id: str) -> List[FamilyGroup]:
        async with self._lock:
            matches = [
                group.model_copy(deep=True)
                for group in self._groups.values()
                if group.status == "active" and (group.created_by == user_id or group.active_member(user_id))
            ]
        return _sort_recent_first(matches)

    async def list_with_pending_invitation(self, email: str) -> List[FamilyGroup]:
        async with self._lock:
            matches = [
                group.model_copy(deep=True)
                for group in self._groups.values()
                if group.status == "active"
                and any(inv.email == email and inv.status == "pending" for inv in group.invitations)
            ]
        return _sort_recent_first(matches)

    async def list_all(self) -> List[FamilyGroup]:
        async with self._lock:
            return [group.model_copy(deep=True) for group in self._groups.values()]

    async def insert(self, group: FamilyGroup) -> None:
        async with self._lock:
            if group.group_id in self._groups:
                raise ValueError(f"Family group {group.group_id} already exists")
            self._groups[group.group_id] = group.model_copy(deep=True)

    async def replace(self, group: FamilyGroup, expected_version: int) -> bool:
        async with self._lock:
            current = self._groups.get(group.group_id)
            if current is None or current.version != expected_version:
                return False
            self._groups[group.group_id] = group.model_copy(deep=True)
            return True

    async def remove(self, group_id: str) -> None:
        async with self._lock:
            self._groups.pop(group_id, None)


class FallbackFamilyStore:
    """
    Primary store with an in-memory fallback for writes the primary could not take.

    While any group lives only in the fallback, or the last primary call failed, the store is
    degraded. Reconciliation is best effort: a fallback copy is written back with the version it
    was based on, and if the primary has moved on since, the primary copy wins.
    """

    def __init__(self, primary: MongoFamilyStore, fallback: Optional[InMemoryFamilyStore] = None):
        self.primary = primary
        self.fallback = fallback if fallback is not None else InMemoryFamilyStore()
        self._primary_failed = False
        # group_id -> primary version the fallback copy was derived from (None for new groups)
        self._base_versions: Dict[str, Optional[int]] = {}

    @property
    def degraded(self) -> bool:
        return self._primary_failed or len(self.fallback) > 0

    @property
    def pending_reconciliation(self) -> int:
        return len(self.fallback)

    def _mark_failure(self, operation: str, error: Exception) -> None:
        if not self._primary_failed:
            logger.warning("Primary family store unavailable during %s, entering degraded mode: %s", operation, error)
        self._primary_failed = True

    def _mark_success(self) -> None:
        if self._primary_failed:
            logger.info("Primary family store reachable again")
        self._primary_failed = False

    async def _primary_has(self, group_id: str) -> Optional[bool]:
        """True/False when the primary answered, None when it is unreachable."""
        try:
            exists = await self.primary.get(group_id) is not None
        except PRIMARY_ERRORS as e:
            self._mark_failure("get", e)
            return None
        self._mark_success()
        return exists

    async def get(self, group_id: str) -> Optional[FamilyGroup]:
        try:
            group = await self.primary.get(group_id)
        except PRIMARY_ERRORS as e:
            self._mark_failure("get", e)
            return await self.fallback.get(group_id)
        self._mark_success()
        if group is not None:
            return group
        return await self.fallback.get(group_id)

    async def find_by_invitation_token(self, token: str) -> Optional[FamilyGroup]:
        try:
            group = await self.primary.find_by_invitation_token(token)
        except PRIMARY_ERRORS as e:
            self._mark_failure("find_by_invitation_token", e)
            return await self.fallback.find_by_invitation_token(token)
        self._mark_success()
        if group is not None:
            return group

        candidate = await self.fallback.find_by_invitation_token(token)
        if candidate is None:
            return None
        # Primary is the source of truth for any group it holds
        if await self._primary_has(candidate.group_id):
            return None
        return candidate

    async def _union(self, primary_groups: Optional[List[FamilyGroup]], fallback_groups: List[FamilyGroup]):
        if primary_groups is None:
            return _sort_recent_first(fallback_groups)

        seen = {group.group_id for group in primary_groups}
        merged = list(primary_groups)
        for group in fallback_groups:
            if group.group_id in seen:
                continue
            shadowed = await self._primary_has(group.group_id)
            if shadowed:
                continue
            merged.append(group)
        return _sort_recent_first(merged)

    async def list_for_user(self, user_id: str) -> List[FamilyGroup]:
        try:
            primary_groups = await self.primary.list_for_user(user_id)
            self._mark_success()
        except PRIMARY_ERRORS as e:
            self._mark_failure("list_for_user", e)
            primary_groups = None
        return await self._union(primary_groups, await self.fallback.list_for_user(user_id))

    async def list_with_pending_invitation(self, email: str) -> List[FamilyGroup]:
        try:
            primary_groups = await self.primary.list_with_pending_invitation(email)
            self._mark_success()
        except PRIMARY_ERRORS as e:
            self._mark_failure("list_with_pending_invitation", e)
            primary_groups = None
        return await self._union(primary_groups, await self.fallback.list_with_pending_invitation(email))

    async def insert(self, group: FamilyGroup) -> None:
        try:
            await self.primary.insert(group)
            self._mark_success()
        except PRIMARY_ERRORS as e:
            self._mark_failure("insert", e)
            await self.fallback.insert(group)
            self._base_versions[group.group_id] = None
            logger.warning("Family group %s stored in fallback memory", group.group_id, extra={"group_id": group.group_id})

    async def replace(self, group: FamilyGroup, expected_version: int) -> bool:
        try:
            replaced = await self.primary.replace(group, expected_version)
            self._mark_success()
        except PRIMARY_ERRORS as e:
            self._mark_failure("replace", e)
            if await self.fallback.get(group.group_id) is not None:
                return await self.fallback.replace(group, expected_version)
            await self.fallback.insert(group)
            self._base_versions[group.group_id] = expected_version
            logger.warning(
                "Family group %s update stored in fallback memory (base version %d)",
                group.group_id,
                expected_version,
                extra={"group_id": group.group_id},
            )
            return True

        if replaced:
            return True
        # Groups created during an outage exist only in the fallback until reconciled
        if await self.fallback.get(group.group_id) is not None and await self._primary_has(group.group_id) is False:
            return await self.fallback.replace(group, expected_version)
        return False

    async def reconcile(self) -> int:
        """
        Push fallback-only groups back to the primary.

        Returns the number of groups written to the primary. Stops at the first primary failure
        and leaves the remaining groups in memory for the next attempt.
        """
        pending = await self.fallback.list_all()
        if not pending:
            return 0

        written = 0
        for group in pending:
            base_version = self._base_versions.get(group.group_id)
            try:
                if base_version is None:
                    existing = await self.primary.get(group.group_id)
                    if existing is None:
                        await self.primary.insert(group)
                        written += 1
                    else:
                        logger.warning("Group %s already in primary, discarding fallback copy", group.group_id)
                elif await self.primary.replace(group, base_version):
                    written += 1
                else:
                    logger.warning(
                        "Group %s changed in primary since version %d, discarding fallback copy",
                        group.group_id,
                        base_version,
                    )
            except PRIMARY_ERRORS as e:
                self._mark_failure("reconcile", e)
                logger.warning("Reconciliation interrupted with %d groups pending: %s", len(self.fallback), e)
                return written

            await self.fallback.remove(group.group_id)
            self._base_versions.pop(group.group_id, None)

        self._mark_success()
        logger.info("Reconciled %d family groups from fallback memory", written)
        return written
