"""
User directory routes.

- `POST /users/sync`: upsert the caller's record, optionally supplying a display name. The
  email is taken from the verified credential only.
- `GET /users/me`: the caller's record.
- `GET /users/by-email/{email}`: resolve an email to a user for sharing and invitations.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from document_vault.managers.identity_manager import IdentityDirectory
from document_vault.models.auth_models import Principal, SyncUserRequest
from document_vault.routes.auth.dependencies import get_current_principal
from document_vault.routes.dependencies import get_identity_directory

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("/sync")
async def sync_user(
    payload: Optional[SyncUserRequest] = None,
    principal: Principal = Depends(get_current_principal),
    identity: IdentityDirectory = Depends(get_identity_directory),
):
    """
    Create or refresh the caller's directory record.

    The authentication dependency already performs a sync; this endpoint additionally applies
    the client-supplied display name. Returns 409 `DUPLICATE` when the verified email already
    belongs to another user.
    """
    record = await identity.sync(principal, payload)
    return {"success": True, "user": record.model_dump(mode="json")}


@router.get("/me")
async def get_me(
    principal: Principal = Depends(get_current_principal),
    identity: IdentityDirectory = Depends(get_identity_directory),
):
    record = await identity.get(principal.user_id)
    if record is None:
        record = await identity.sync(principal)
    return {"success": True, "user": record.model_dump(mode="json")}


@router.get("/by-email/{email}")
async def get_user_by_email(
    email: str,
    principal: Principal = Depends(get_current_principal),
    identity: IdentityDirectory = Depends(get_identity_directory),
):
    record = await identity.lookup_by_email(email)
    return {
        "success": True,
        "user": {"user_id": record.user_id, "email": record.email, "display_name": record.display_name},
    }
