"""
# Database Manager

Owns the Motor client for the service's MongoDB database.

- `connect()` retries with exponential backoff and verifies the connection with `ping`.
- `get_collection()` returns a Motor collection and raises `ConnectionError` before `connect()`.
- `create_indexes()` declares the indexes used by the user directory, family registry and
  document store.
- `log_query_start/log_query_success/log_query_error` give every repository the same
  timing and sanitized-query logging.

```python
from document_vault.database import db_manager

await db_manager.connect()
groups = db_manager.get_collection("family_groups")
```
"""

import asyncio
import time
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from document_vault.config import settings
from document_vault.managers.logging_manager import get_logger

logger = get_logger()
db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")

USERS_COLLECTION = "users"
FAMILY_GROUPS_COLLECTION = "family_groups"
DOCUMENTS_COLLECTION = "documents"
BLOB_BUCKET = "documents"

SENSITIVE_FIELDS = {
    "password",
    "token",
    "secret",
    "key",
    "credential",
    "access_token",
    "invitation_token",
}


class DatabaseManager:
    """MongoDB connection lifecycle, index management and query logging."""

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._connection_retries = 3

    @property
    def is_connected(self) -> bool:
        return self.database is not None

    def _connection_string(self) -> str:
        uri = settings.STORAGE_URI
        if settings.MONGODB_USERNAME and settings.MONGODB_PASSWORD and uri.startswith("mongodb://"):
            password = settings.MONGODB_PASSWORD.get_secret_value()
            return f"mongodb://{settings.MONGODB_USERNAME}:{password}@{uri.replace('mongodb://', '')}"
        return uri

    async def connect(self):
        """
        Establish the MongoDB connection, retrying with exponential backoff (1s, 2s, 4s).

        Raises:
            ServerSelectionTimeoutError: MongoDB unreachable after all attempts.
            ConnectionFailure: Authentication failed or connection refused.
        """
        start_time = time.time()
        db_logger.info("Starting MongoDB connection process")

        for attempt in range(self._connection_retries):
            attempt_start = time.time()
            try:
                db_logger.info("Connection attempt %d/%d to MongoDB", attempt + 1, self._connection_retries)
                self.client = AsyncIOMotorClient(
                    self._connection_string(),
                    serverSelectionTimeoutMS=settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    connectTimeoutMS=settings.MONGODB_CONNECTION_TIMEOUT,
                    tz_aware=True,
                    maxPoolSize=50,
                    minPoolSize=5,
                )
                self.database = self.client[settings.MONGODB_DATABASE]

                ping_start = time.time()
                await self.client.admin.command("ping")
                ping_duration = time.time() - ping_start

                perf_logger.info(
                    "MongoDB connection established in %.3fs (ping: %.3fs)", time.time() - start_time, ping_duration
                )
                db_logger.info("Connected to MongoDB database: %s", settings.MONGODB_DATABASE)
                return
            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                perf_logger.warning("Connection attempt %d failed after %.3fs", attempt + 1, time.time() - attempt_start)
                db_logger.warning(
                    "Failed to connect to MongoDB (attempt %d/%d): %s", attempt + 1, self._connection_retries, e
                )
                if attempt == self._connection_retries - 1:
                    db_logger.error("All connection attempts failed after %.3fs", time.time() - start_time)
                    raise
                backoff_time = 2**attempt
                db_logger.info("Waiting %.1fs before retry (exponential backoff)", backoff_time)
                await asyncio.sleep(backoff_time)

    async def disconnect(self):
        if self.client is not None:
            start_time = time.time()
            self.client.close()
            perf_logger.info("MongoDB disconnected in %.3fs", time.time() - start_time)
        self.client = None
        self.database = None

    async def health_check(self) -> bool:
        """Ping the server; returns False instead of raising."""
        start_time = time.time()
        try:
            if self.client is None:
                health_logger.warning("Health check failed: No database client available")
                return False
            await self.client.admin.command("ping")
            perf_logger.debug("Database health check completed in %.3fs", time.time() - start_time)
            return True
        except PyMongoError as e:
            health_logger.error("Database health check failed after %.3fs: %s", time.time() - start_time, e)
            return False

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        if self.database is None:
            db_logger.error("Attempted to get collection '%s' without database connection", collection_name)
            raise ConnectionError("Database not connected. Call connect() first.")
        return self.database[collection_name]

    async def create_indexes(self):
        start_time = time.time()
        db_logger.info("Creating database indexes")

        users = self.get_collection(USERS_COLLECTION)
        await self._create_index_if_not_exists(users, "user_id", {"unique": True})
        await self._create_index_if_not_exists(
            users, "email", {"unique": True, "partialFilterExpression": {"email": {"$gt": ""}}}
        )

        groups = self.get_collection(FAMILY_GROUPS_COLLECTION)
        await self._create_index_if_not_exists(groups, "group_id", {"unique": True})
        await self._create_index_if_not_exists(groups, "created_by", {})
        await self._create_index_if_not_exists(groups, "invitations.invitation_token", {})
        await self._create_index_if_not_exists(groups, [("invitations.email", 1), ("invitations.status", 1)], {})
        await self._create_index_if_not_exists(groups, [("members.user_id", 1), ("members.status", 1)], {})
        await self._create_index_if_not_exists(groups, [("status", 1), ("last_modified", -1)], {})

        documents = self.get_collection(DOCUMENTS_COLLECTION)
        await self._create_index_if_not_exists(documents, "document_id", {"unique": True})
        await self._create_index_if_not_exists(documents, [("uploaded_by", 1), ("status", 1)], {})
        await self._create_index_if_not_exists(documents, [("permissions.read", 1), ("status", 1)], {})
        await self._create_index_if_not_exists(documents, [("category", 1), ("upload_date", -1)], {})

        perf_logger.info("Database indexes ready in %.3fs", time.time() - start_time)

    async def _create_index_if_not_exists(
        self, collection: AsyncIOMotorCollection, field_spec: Any, options: Dict[str, Any]
    ):
        start_time = time.time()
        try:
            await collection.create_index(field_spec, **options)
            perf_logger.debug("Ensured index %s in %.3fs", field_spec, time.time() - start_time)
        except PyMongoError as e:
            db_logger.warning("Could not create index %s on '%s': %s", field_spec, collection.name, e)

    def log_query_start(
        self, collection_name: str, operation: str, query: Optional[Dict] = None, options: Optional[Dict] = None
    ) -> float:
        start_time = time.time()
        safe_query = self._sanitize_query_for_logging(query) if query else {}
        safe_options = self._sanitize_query_for_logging(options) if options else {}
        db_logger.debug(
            "Starting %s operation on collection '%s' - Query: %s, Options: %s",
            operation,
            collection_name,
            safe_query,
            safe_options,
        )
        return start_time

    def log_query_success(
        self,
        collection_name: str,
        operation: str,
        start_time: float,
        result_count: Optional[int] = None,
        result_info: Optional[str] = None,
    ):
        duration = time.time() - start_time
        if result_count is not None:
            perf_logger.info(
                "%s on '%s' completed in %.3fs - %d records", operation, collection_name, duration, result_count
            )
        else:
            perf_logger.info("%s on '%s' completed in %.3fs", operation, collection_name, duration)
        if result_info:
            db_logger.debug("Additional result info for %s on '%s': %s", operation, collection_name, result_info)

    def log_query_error(
        self, collection_name: str, operation: str, start_time: float, error: Exception, query: Optional[Dict] = None
    ):
        duration = time.time() - start_time
        safe_query = self._sanitize_query_for_logging(query) if query else {}
        perf_logger.error("%s on '%s' failed after %.3fs", operation, collection_name, duration)
        db_logger.error(
            "%s operation failed on collection '%s' after %.3fs - Error: %s, Query: %s",
            operation,
            collection_name,
            duration,
            error,
            safe_query,
        )

    def _sanitize_query_for_logging(self, query: Dict[str, Any]) -> Dict[str, Any]:
        """Redact token and credential values before they reach the log stream."""
        if not isinstance(query, dict):
            return {}

        sanitized: Dict[str, Any] = {}
        for key, value in query.items():
            if any(sensitive in key.lower() for sensitive in SENSITIVE_FIELDS):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_query_for_logging(value)
            elif isinstance(value, list):
                sanitized[key] = [
                    self._sanitize_query_for_logging(item) if isinstance(item, dict) else item for item in value
                ]
            else:
                sanitized[key] = value
        return sanitized


db_manager = DatabaseManager()
