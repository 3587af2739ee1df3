from unittest.mock import AsyncMock, MagicMock

import pytest

from document_vault.database.document_store import MongoDocumentStore, build_list_filter
from document_vault.models.document_models import DocumentListQuery, DocumentRecord
from document_vault.services.permission_service import PermissionResolver
from document_vault.utils.time_utils import utc_now


def test_list_filter_for_shared_scope():
    query = DocumentListQuery(scope="shared", category="passport", tags=["id"], search="a.b")

    mongo_filter = build_list_filter("user-bob", query)

    clauses = mongo_filter["$and"]
    assert {"status": "active"} in clauses
    assert {"permissions.read": "user-bob", "uploaded_by": {"$ne": "user-bob"}} in clauses
    assert {"category": "passport"} in clauses
    assert {"tags": {"$all": ["id"]}} in clauses
    search = clauses[-1]["$or"][0]["title"]
    assert search == {"$regex": r"a\.b", "$options": "i"}


def test_list_filter_default_scope_covers_owned_and_readable():
    mongo_filter = build_list_filter("user-alice", DocumentListQuery())

    assert mongo_filter["$and"] == [
        {"status": "active"},
        {"$or": [{"uploaded_by": "user-alice"}, {"permissions.read": "user-alice"}]},
    ]


@pytest.mark.asyncio
async def test_mongo_replace_is_version_guarded():
    collection = MagicMock()
    collection.replace_one = AsyncMock(return_value=MagicMock(matched_count=1))
    database = MagicMock()
    database.get_collection.return_value = collection
    store = MongoDocumentStore(database=database)

    now = utc_now()
    document = DocumentRecord(
        document_id="doc-1",
        uploaded_by="user-alice",
        title="Passport",
        upload_date=now,
        last_modified=now,
        permissions=PermissionResolver.owner_projection("user-alice"),
        version=3,
    )

    assert await store.replace(document, 2) is True
    query, replacement = collection.replace_one.call_args[0]
    assert query == {"document_id": "doc-1", "version": 2}
    assert replacement["version"] == 3
