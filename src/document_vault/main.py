"""
# Document Vault API

FastAPI application for the document vault: user directory, family groups with email
invitations, and documents shared with individuals or whole families.

## Lifecycle

The `lifespan()` context manager runs the startup and shutdown sequence:

**Startup**
1. Connect to MongoDB and create indexes (skipped when `STORAGE_URI=memory://`).
2. Start the periodic fallback reconciliation task when the family registry runs on the
   MongoDB store with its in-memory fallback.

**Shutdown**
1. Cancel background tasks and wait for them briefly.
2. Flush in-flight invitation notifications.
3. Close Redis and MongoDB connections.

## Running

```bash
uvicorn document_vault.main:app --reload --host 0.0.0.0 --port 8000
```
"""

import asyncio
from contextlib import asynccontextmanager
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from pymongo.errors import PyMongoError
import uvicorn

from document_vault import __version__
from document_vault.config import settings
from document_vault.database import db_manager
from document_vault.database.family_store import FallbackFamilyStore
from document_vault.managers.family_manager import family_manager
from document_vault.managers.logging_manager import get_logger
from document_vault.managers.notification_manager import notification_manager
from document_vault.managers.redis_manager import redis_manager
from document_vault.routes.documents.routes import router as documents_router
from document_vault.routes.family.routes import router as family_router
from document_vault.routes.health import router as health_router
from document_vault.routes.users import router as users_router
from document_vault.utils.error_handling import register_exception_handlers
from document_vault.utils.logging_utils import (
    RequestLoggingMiddleware,
    log_application_lifecycle,
    log_error_with_context,
)

logger = get_logger(prefix="[Main]")


async def periodic_fallback_reconcile(store: FallbackFamilyStore, interval: float = None) -> None:
    """
    Push family groups held in memory back to MongoDB until cancelled.

    A failed pass is logged and retried on the next tick.
    """
    if interval is None:
        interval = settings.FALLBACK_RECONCILE_INTERVAL_SECONDS
    while True:
        await asyncio.sleep(interval)
        if store.pending_reconciliation == 0:
            continue
        try:
            written = await store.reconcile()
        except Exception as e:
            log_error_with_context(
                e, {"operation": "fallback_reconcile", "pending": store.pending_reconciliation}
            )
            continue
        logger.info(
            "Fallback reconciliation wrote %d group(s), %d pending", written, store.pending_reconciliation
        )


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Args:
        _app (FastAPI): The FastAPI application instance.

    Yields:
        None: Control is yielded to the application to start serving requests.
    """
    startup_start_time = time.time()
    log_application_lifecycle(
        "startup_initiated",
        {
            "version": __version__,
            "environment": "production" if settings.is_production else "development",
            "storage": "memory" if settings.storage_is_memory else "mongodb",
        },
    )

    if not settings.storage_is_memory:
        db_connect_start = time.time()
        try:
            await db_manager.connect()
            await db_manager.create_indexes()
            log_application_lifecycle(
                "database_connected",
                {
                    "connection_duration": f"{time.time() - db_connect_start:.3f}s",
                    "database_name": settings.MONGODB_DATABASE,
                },
            )
        except (PyMongoError, ConnectionError) as e:
            # Family writes degrade to memory; other stores fail per request
            log_error_with_context(e, {"operation": "database_startup"})
            logger.error("Starting without MongoDB: %s", e)

    background_tasks = {}
    if isinstance(family_manager.store, FallbackFamilyStore):
        background_tasks["fallback_reconcile"] = asyncio.create_task(
            periodic_fallback_reconcile(family_manager.store)
        )

    log_application_lifecycle(
        "startup_completed",
        {
            "total_startup_duration": f"{time.time() - startup_start_time:.3f}s",
            "background_tasks": list(background_tasks),
        },
    )

    yield

    log_application_lifecycle("shutdown_initiated", {"active_background_tasks": len(background_tasks)})

    for task_name, task in background_tasks.items():
        task.cancel()
        try:
            await asyncio.wait_for(task, timeout=5.0)
        except asyncio.CancelledError:
            logger.info("Background task %s cancelled", task_name)
        except asyncio.TimeoutError:
            logger.warning("Background task %s cancellation timed out", task_name)

    await notification_manager.drain()
    await redis_manager.close()
    await db_manager.disconnect()

    log_application_lifecycle("shutdown_completed", {})


app = FastAPI(
    title="Document Vault API",
    description="Family groups, invitations and shared document metadata",
    version=__version__,
    lifespan=lifespan,
)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)
app.add_middleware(RequestLoggingMiddleware)

routers_config = [
    ("health", health_router, "Liveness and storage health"),
    ("users", users_router, "User directory endpoints"),
    ("family", family_router, "Family groups, members and invitations"),
    ("documents", documents_router, "Document metadata, upload and sharing"),
]

for router_name, router, description in routers_config:
    app.include_router(router)
    logger.debug("Included %s router: %s", router_name, description)

log_application_lifecycle("routers_configured", {"routers": [name for name, _, _ in routers_config]})

try:
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=False,
        should_instrument_requests_inprogress=True,
    )
    instrumentator.instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")
except ValueError as e:
    # Metric collectors already registered (module re-imported in one process)
    log_error_with_context(e, {"operation": "prometheus_setup"})
    logger.error("Failed to configure Prometheus metrics: %s", e)

if __name__ == "__main__":
    uvicorn.run("document_vault.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
