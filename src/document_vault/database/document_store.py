"""
Document metadata repositories.

Listing always restricts to active documents the caller can read; the same filter semantics
are implemented for MongoDB queries and for the in-memory store.
"""

import asyncio
import re
from typing import Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

from document_vault.database.manager import DOCUMENTS_COLLECTION, DatabaseManager, db_manager
from document_vault.models.document_models import DocumentListQuery, DocumentRecord


def _from_document(document: Optional[dict]) -> Optional[DocumentRecord]:
    if not document:
        return None
    return DocumentRecord.model_validate({k: v for k, v in document.items() if k != "_id"})


def build_list_filter(user_id: str, query: DocumentListQuery) -> dict:
    """MongoDB filter for the documents `user_id` may see under `query`."""
    if query.scope == "owned":
        visibility = {"uploaded_by": user_id}
    elif query.scope == "shared":
        visibility = {"permissions.read": user_id, "uploaded_by": {"$ne": user_id}}
    else:
        visibility = {"$or": [{"uploaded_by": user_id}, {"permissions.read": user_id}]}

    clauses = [{"status": "active"}, visibility]
    if query.category:
        clauses.append({"category": query.category})
    if query.classification:
        clauses.append({"classification": query.classification})
    if query.tags:
        clauses.append({"tags": {"$all": query.tags}})
    if query.search:
        pattern = {"$regex": re.escape(query.search), "$options": "i"}
        clauses.append({"$or": [{"title": pattern}, {"description": pattern}, {"document_number": pattern}]})
    return {"$and": clauses}


def matches_list_query(document: DocumentRecord, user_id: str, query: DocumentListQuery) -> bool:
    if document.status != "active":
        return False

    readable = user_id in document.permissions.read
    if query.scope == "owned" and document.uploaded_by != user_id:
        return False
    if query.scope == "shared" and (not readable or document.uploaded_by == user_id):
        return False
    if query.scope == "all" and not (readable or document.uploaded_by == user_id):
        return False

    if query.category and document.category != query.category:
        return False
    if query.classification and document.classification != query.classification:
        return False
    if query.tags and not set(query.tags).issubset(document.tags):
        return False
    if query.search:
        needle = query.search.lower()
        haystacks = [document.title, document.description, document.document_number or ""]
        if not any(needle in value.lower() for value in haystacks):
            return False
    return True


class MongoDocumentStore:
    def __init__(self, database: DatabaseManager = None):
        self.db = database or db_manager

    @property
    def collection(self):
        return self.db.get_collection(DOCUMENTS_COLLECTION)

    async def insert(self, document: DocumentRecord) -> None:
        start_time = self.db.log_query_start(DOCUMENTS_COLLECTION, "insert_one", {"document_id": document.document_id})
        try:
            await self.collection.insert_one(document.model_dump())
        except PyMongoError as e:
            self.db.log_query_error(DOCUMENTS_COLLECTION, "insert_one", start_time, e)
            raise
        self.db.log_query_success(DOCUMENTS_COLLECTION, "insert_one", start_time, 1)

    async def get(self, document_id: str) -> Optional[DocumentRecord]:
        query = {"document_id": document_id}
        start_time = self.db.log_query_start(DOCUMENTS_COLLECTION, "find_one", query)
        try:
            document = await self.collection.find_one(query)
        except PyMongoError as e:
            self.db.log_query_error(DOCUMENTS_COLLECTION, "find_one", start_time, e, query)
            raise
        self.db.log_query_success(DOCUMENTS_COLLECTION, "find_one", start_time, 1 if document else 0)
        return _from_document(document)

    async def replace(self, document: DocumentRecord, expected_version: int) -> bool:
        query = {"document_id": document.document_id, "version": expected_version}
        start_time = self.db.log_query_start(DOCUMENTS_COLLECTION, "replace_one", query)
        try:
            result = await self.collection.replace_one(query, document.model_dump())
        except PyMongoError as e:
            self.db.log_query_error(DOCUMENTS_COLLECTION, "replace_one", start_time, e, query)
            raise
        self.db.log_query_success(DOCUMENTS_COLLECTION, "replace_one", start_time, result.matched_count)
        return result.matched_count == 1

    async def list(self, user_id: str, query: DocumentListQuery) -> Tuple[List[DocumentRecord], int]:
        mongo_filter = build_list_filter(user_id, query)
        direction = 1 if query.sort_order == "asc" else -1
        start_time = self.db.log_query_start(DOCUMENTS_COLLECTION, "find", mongo_filter)
        try:
            total = await self.collection.count_documents(mongo_filter)
            cursor = (
                self.collection.find(mongo_filter)
                .sort([(query.sort_by, direction), ("document_id", 1)])
                .skip((query.page - 1) * query.limit)
                .limit(query.limit)
            )
            documents = await cursor.to_list(length=query.limit)
        except PyMongoError as e:
            self.db.log_query_error(DOCUMENTS_COLLECTION, "find", start_time, e, mongo_filter)
            raise
        self.db.log_query_success(DOCUMENTS_COLLECTION, "find", start_time, len(documents))
        return [_from_document(doc) for doc in documents], total

    async def count(self, mongo_filter: dict) -> int:
        start_time = self.db.log_query_start(DOCUMENTS_COLLECTION, "count_documents", mongo_filter)
        try:
            total = await self.collection.count_documents(mongo_filter)
        except PyMongoError as e:
            self.db.log_query_error(DOCUMENTS_COLLECTION, "count_documents", start_time, e, mongo_filter)
            raise
        self.db.log_query_success(DOCUMENTS_COLLECTION, "count_documents", start_time, total)
        return total

    async def stats(self, user_id: str) -> Dict[str, int]:
        return {
            "owned": await self.count({"uploaded_by": user_id, "status": "active"}),
            "shared_by_me": await self.count(
                {"uploaded_by": user_id, "status": "active", "permissions.read.1": {"$exists": True}}
            ),
            "shared_with_me": await self.count(
                {"permissions.read": user_id, "uploaded_by": {"$ne": user_id}, "status": "active"}
            ),
        }


class InMemoryDocumentStore:
    def __init__(self):
        self._documents: Dict[str, DocumentRecord] = {}
        self._lock = asyncio.Lock()

    async def insert(self, document: DocumentRecord) -> None:
        async with self._lock:
            if document.document_id in self._documents:
                raise ValueError(f"Document {document.document_id} already exists")
            self._documents[document.document_id] = document.model_copy(deep=True)

    async def get(self, document_id: str) -> Optional[DocumentRecord]:
        async with self._lock:
            document = self._documents.get(document_id)
            return document.model_copy(deep=True) if document else None

    async def replace(self, document: DocumentRecord, expected_version: int) -> bool:
        async with self._lock:
            current = self._documents.get(document.document_id)
            if current is None or current.version != expected_version:
                return False
            self._documents[document.document_id] = document.model_copy(deep=True)
            return True

    async def list(self, user_id: str, query: DocumentListQuery) -> Tuple[List[DocumentRecord], int]:
        async with self._lock:
            matches = [d.model_copy(deep=True) for d in self._documents.values() if matches_list_query(d, user_id, query)]

        matches.sort(key=lambda d: d.document_id)
        matches.sort(key=lambda d: getattr(d, query.sort_by), reverse=query.sort_order == "desc")
        start = (query.page - 1) * query.limit
        return matches[start : start + query.limit], len(matches)

    async def stats(self, user_id: str) -> Dict[str, int]:
        async with self._lock:
            active = [d for d in self._documents.values() if d.status == "active"]
        owned = [d for d in active if d.uploaded_by == user_id]
        return {
            "owned": len(owned),
            "shared_by_me": sum(1 for d in owned if len(d.permissions.read) > 1),
            "shared_with_me": sum(1 for d in active if user_id in d.permissions.read and d.uploaded_by != user_id),
        }
