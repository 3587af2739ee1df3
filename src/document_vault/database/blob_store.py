"""
File byte storage behind an opaque `blob_ref`.

`GridFSBlobStore` keeps bytes in a MongoDB GridFS bucket; `InMemoryBlobStore` is used for
`memory://` deployments and tests.
"""

import asyncio
import uuid
from typing import Dict, Optional, Protocol

from bson import ObjectId
from bson.errors import InvalidId
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorGridFSBucket

from document_vault.database.manager import BLOB_BUCKET, DatabaseManager, db_manager
from document_vault.utils.error_handling import ResourceNotFound


class BlobNotFound(ResourceNotFound):
    def __init__(self, blob_ref: str):
        super().__init__("Stored file not found", "NOT_FOUND", {"blob_ref": blob_ref})


class BlobStore(Protocol):
    async def put(self, data: bytes, filename: str, content_type: Optional[str] = None) -> str:
        ...

    async def get(self, blob_ref: str) -> bytes:
        ...

    async def delete(self, blob_ref: str) -> None:
        ...


class GridFSBlobStore:
    def __init__(self, database: DatabaseManager = None, bucket_name: str = BLOB_BUCKET):
        self.db = database or db_manager
        self.bucket_name = bucket_name
        self._bucket: Optional[AsyncIOMotorGridFSBucket] = None

    @property
    def bucket(self) -> AsyncIOMotorGridFSBucket:
        if self._bucket is None:
            if self.db.database is None:
                raise ConnectionError("Database not connected. Call connect() first.")
            self._bucket = AsyncIOMotorGridFSBucket(self.db.database, bucket_name=self.bucket_name)
        return self._bucket

    @staticmethod
    def _object_id(blob_ref: str) -> ObjectId:
        try:
            return ObjectId(blob_ref)
        except (InvalidId, TypeError) as e:
            raise BlobNotFound(blob_ref) from e

    async def put(self, data: bytes, filename: str, content_type: Optional[str] = None) -> str:
        start_time = self.db.log_query_start(f"{self.bucket_name}.files", "upload_from_stream", {"filename": filename})
        file_id = await self.bucket.upload_from_stream(filename, data, metadata={"content_type": content_type})
        self.db.log_query_success(f"{self.bucket_name}.files", "upload_from_stream", start_time, 1)
        return str(file_id)

    async def get(self, blob_ref: str) -> bytes:
        try:
            stream = await self.bucket.open_download_stream(self._object_id(blob_ref))
        except NoFile as e:
            raise BlobNotFound(blob_ref) from e
        return await stream.read()

    async def delete(self, blob_ref: str) -> None:
        try:
            await self.bucket.delete(self._object_id(blob_ref))
        except NoFile as e:
            raise BlobNotFound(blob_ref) from e


class InMemoryBlobStore:
    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def put(self, data: bytes, filename: str, content_type: Optional[str] = None) -> str:
        blob_ref = uuid.uuid4().hex
        async with self._lock:
            self._blobs[blob_ref] = bytes(data)
        return blob_ref

    async def get(self, blob_ref: str) -> bytes:
        async with self._lock:
            if blob_ref not in self._blobs:
                raise BlobNotFound(blob_ref)
            return self._blobs[blob_ref]

    async def delete(self, blob_ref: str) -> None:
        async with self._lock:
            if self._blobs.pop(blob_ref, None) is None:
                raise BlobNotFound(blob_ref)
