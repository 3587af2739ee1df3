"""
Liveness and storage health.

`GET /health` needs no credential. `degraded` is true while family writes are being held in
the in-memory fallback because MongoDB is unreachable.
"""

from fastapi import APIRouter, Depends

from document_vault import __version__
from document_vault.config import settings
from document_vault.database import db_manager
from document_vault.managers.family_manager import FamilyManager
from document_vault.routes.dependencies import get_family_manager
from document_vault.utils.time_utils import utc_now

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health(family: FamilyManager = Depends(get_family_manager)):
    if settings.storage_is_memory:
        database = "memory"
    else:
        database = "connected" if await db_manager.health_check() else "unavailable"

    degraded = family.degraded or database == "unavailable"
    return {
        "status": "degraded" if degraded else "ok",
        "degraded": degraded,
        "database": database,
        "pending_reconciliation": getattr(family.store, "pending_reconciliation", 0),
        "version": __version__,
        "timestamp": utc_now().isoformat(),
    }
