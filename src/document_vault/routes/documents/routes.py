"""
# Document Routes

Document metadata, blob upload and download, and sharing, mounted under `/documents`.

Uploads are `multipart/form-data` with a `file` part plus metadata form fields. Every other
endpoint speaks JSON. Access is decided by the document's permission projection:

| Action | Needs |
|---|---|
| view, list, download | `read` |
| edit metadata | `write` |
| delete, restore, share, unshare, inspect sharing | `admin` |
"""

from datetime import datetime
from typing import Literal, Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, File, Form, Query, Response, UploadFile

from document_vault.config import settings
from document_vault.managers.logging_manager import get_logger
from document_vault.models.auth_models import Principal
from document_vault.models.document_models import (
    Classification,
    DocumentCategory,
    DocumentListQuery,
    DocumentMetadataUpdate,
    DocumentRecord,
    ShareDocumentRequest,
    UnshareDocumentRequest,
)
from document_vault.routes.auth.dependencies import get_current_principal
from document_vault.routes.dependencies import get_document_service
from document_vault.services.document_service import DocumentService
from document_vault.utils.error_handling import ValidationError

logger = get_logger(prefix="[DocumentRoutes]")

router = APIRouter(prefix="/documents", tags=["Documents"])


def _document_view(document: DocumentRecord, principal: Principal, service: DocumentService) -> dict:
    data = document.model_dump(mode="json", exclude={"blob_ref": True, "version": True})
    data["effective_permissions"] = service.permissions.effective_permissions(principal, document)
    data["is_owner"] = document.uploaded_by == principal.user_id
    return data


def _listing(result: dict, principal: Principal, service: DocumentService) -> dict:
    return {
        "success": True,
        "documents": [_document_view(doc, principal, service) for doc in result["documents"]],
        "pagination": result["pagination"],
    }


def _list_query(
    scope: Literal["all", "owned", "shared"] = Query("all"),
    category: Optional[DocumentCategory] = Query(None),
    classification: Optional[Classification] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    tags: Optional[str] = Query(None, description="Comma separated; all must match"),
    sort_by: Literal["upload_date", "last_modified", "title", "file_size"] = Query("upload_date"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    page: int = Query(1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE),
) -> DocumentListQuery:
    tag_list = [t.strip().lower() for t in (tags or "").split(",") if t.strip()]
    return DocumentListQuery(
        scope=scope,
        category=category,
        classification=classification,
        search=search or None,
        tags=tag_list,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )


@router.post("", status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: DocumentCategory = Form("general_document"),
    classification: Classification = Form("private"),
    department: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma separated"),
    expiry_date: Optional[datetime] = Form(None),
    issue_date: Optional[datetime] = Form(None),
    document_number: Optional[str] = Form(None),
    issuing_authority: Optional[str] = Form(None),
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    """
    Upload a file and create its metadata record.

    The uploader receives `read`, `write` and `admin`. Allowed types are PDF, JPEG and PNG up
    to `MAX_UPLOAD_SIZE_BYTES`.
    """
    data = await file.read(settings.MAX_UPLOAD_SIZE_BYTES + 1)
    metadata = {
        "title": title,
        "description": description,
        "category": category,
        "classification": classification,
        "department": department,
        "tags": [t for t in (tags or "").split(",") if t.strip()],
        "expiry_date": expiry_date,
        "issue_date": issue_date,
        "document_number": document_number,
        "issuing_authority": issuing_authority,
    }
    document = await service.upload(principal, data, file.filename, file.content_type, metadata)
    return {"success": True, "document": _document_view(document, principal, service)}


@router.get("")
async def list_documents(
    query: DocumentListQuery = Depends(_list_query),
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    result = await service.list(principal, query)
    return _listing(result, principal, service)


@router.get("/shared")
async def list_shared_documents(
    query: DocumentListQuery = Depends(_list_query),
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    """Documents other users have shared with the caller, most recently changed first."""
    result = await service.list_shared_with_me(principal, query)
    return _listing(result, principal, service)


@router.get("/stats")
async def get_document_stats(
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    stats = await service.get_stats(principal)
    return {"success": True, "stats": stats}


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    document = await service.get(principal, document_id)
    return {"success": True, "document": _document_view(document, principal, service)}


@router.put("/{document_id}")
async def update_document(
    document_id: str,
    payload: DocumentMetadataUpdate,
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    document = await service.update_metadata(principal, document_id, payload)
    return {"success": True, "document": _document_view(document, principal, service)}


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    document = await service.soft_delete(principal, document_id)
    return {"success": True, "document_id": document.document_id, "status": document.status}


@router.post("/{document_id}/restore")
async def restore_document(
    document_id: str,
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    document = await service.restore(principal, document_id)
    return {"success": True, "document": _document_view(document, principal, service)}


@router.get("/{document_id}/download")
async def download_document(
    document_id: str,
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    document, data = await service.open_download(principal, document_id)
    filename = document.original_name or document.file_name or document.document_id
    return Response(
        content=data,
        media_type=document.mime_type or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


@router.post("/{document_id}/share")
async def share_document(
    document_id: str,
    payload: ShareDocumentRequest,
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    """
    Share with one user (by email) or with every active member of a family group.

    Re-sharing with the same target and permission is a no-op. A family share covers the
    members at the time of sharing; people who join later need the share to be made again.
    """
    if payload.share_type == "individual":
        if not payload.email:
            raise ValidationError("email is required for individual shares", field="email",
                                  error_code="VALIDATION_REQUIRED_FIELD")
        document = await service.share_with_user(principal, document_id, str(payload.email), payload.permission)
    else:
        if not payload.family_group_id:
            raise ValidationError("familyGroupId is required for family shares", field="familyGroupId",
                                  error_code="VALIDATION_REQUIRED_FIELD")
        document = await service.share_with_group(principal, document_id, payload.family_group_id, payload.permission)
    return {"success": True, "document": _document_view(document, principal, service)}


@router.delete("/{document_id}/share")
async def unshare_document(
    document_id: str,
    payload: UnshareDocumentRequest = Body(...),
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    if payload.share_type == "individual":
        if not payload.user_id:
            raise ValidationError("userId is required for individual shares", field="userId",
                                  error_code="VALIDATION_REQUIRED_FIELD")
        document = await service.unshare_user(principal, document_id, payload.user_id)
    else:
        if not payload.family_group_id:
            raise ValidationError("familyGroupId is required for family shares", field="familyGroupId",
                                  error_code="VALIDATION_REQUIRED_FIELD")
        document = await service.unshare_group(principal, document_id, payload.family_group_id)
    return {"success": True, "document": _document_view(document, principal, service)}


@router.get("/{document_id}/sharing")
async def get_document_sharing(
    document_id: str,
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    sharing = await service.get_sharing(principal, document_id)
    return {"success": True, "sharing": sharing}
