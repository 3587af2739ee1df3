"""User record repositories backing the identity directory."""

import asyncio
from datetime import datetime
from typing import Dict, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from document_vault.database.manager import USERS_COLLECTION, DatabaseManager, db_manager
from document_vault.models.auth_models import UserRecord


def _from_document(document: Optional[dict]) -> Optional[UserRecord]:
    if not document:
        return None
    return UserRecord.model_validate({k: v for k, v in document.items() if k != "_id"})


class MongoUserStore:
    def __init__(self, database: DatabaseManager = None):
        self.db = database or db_manager

    @property
    def collection(self):
        return self.db.get_collection(USERS_COLLECTION)

    async def upsert(self, user_id: str, email: str, display_name: str, seen_at: datetime) -> UserRecord:
        if email:
            holder = await self.find_by_email(email)
            if holder is not None and holder.user_id != user_id:
                raise DuplicateKeyError(f"email {email} is held by another user")

        query = {"user_id": user_id}
        start_time = self.db.log_query_start(USERS_COLLECTION, "find_one_and_update", query)
        try:
            document = await self.collection.find_one_and_update(
                query,
                {
                    "$set": {"email": email, "display_name": display_name, "last_login_at": seen_at},
                    "$setOnInsert": {"user_id": user_id, "created_at": seen_at},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            self.db.log_query_error(USERS_COLLECTION, "find_one_and_update", start_time, e, query)
            raise
        self.db.log_query_success(USERS_COLLECTION, "find_one_and_update", start_time, 1)
        return _from_document(document)

    async def get(self, user_id: str) -> Optional[UserRecord]:
        query = {"user_id": user_id}
        start_time = self.db.log_query_start(USERS_COLLECTION, "find_one", query)
        try:
            document = await self.collection.find_one(query)
        except PyMongoError as e:
            self.db.log_query_error(USERS_COLLECTION, "find_one", start_time, e, query)
            raise
        self.db.log_query_success(USERS_COLLECTION, "find_one", start_time, 1 if document else 0)
        return _from_document(document)

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        # Emails are stored lowercased, so equality is case-insensitive
        query = {"email": email.strip().lower()}
        start_time = self.db.log_query_start(USERS_COLLECTION, "find_one", query)
        try:
            document = await self.collection.find_one(query)
        except PyMongoError as e:
            self.db.log_query_error(USERS_COLLECTION, "find_one", start_time, e, query)
            raise
        self.db.log_query_success(USERS_COLLECTION, "find_one", start_time, 1 if document else 0)
        return _from_document(document)


class InMemoryUserStore:
    def __init__(self):
        self._users: Dict[str, UserRecord] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, user_id: str, email: str, display_name: str, seen_at: datetime) -> UserRecord:
        async with self._lock:
            if email and any(
                record.email == email and other_id != user_id for other_id, record in self._users.items()
            ):
                raise DuplicateKeyError(f"email {email} is held by another user")
            existing = self._users.get(user_id)
            record = UserRecord(
                user_id=user_id,
                email=email,
                display_name=display_name,
                created_at=existing.created_at if existing else seen_at,
                last_login_at=seen_at,
            )
            self._users[user_id] = record
            return record.model_copy()

    async def get(self, user_id: str) -> Optional[UserRecord]:
        async with self._lock:
            record = self._users.get(user_id)
            return record.model_copy() if record else None

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        email = email.strip().lower()
        async with self._lock:
            for record in self._users.values():
                if record.email == email:
                    return record.model_copy()
        return None
