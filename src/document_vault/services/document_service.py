"""
# Document Service

Document metadata store and sharing engine.

**Key Responsibilities:**
- **Upload**: validates the file, stores bytes in the BlobStore and creates the metadata record
  with the uploader holding `read`, `write` and `admin`.
- **Retrieval**: `get`, `list`, shared-with-me listings, stats and downloads, all gated by the
  permission projection.
- **Sharing**: individual and family shares. Family shares are materialized: the group's active
  members at share time are written into the projection and remembered in
  `family_sharing[group_id].member_user_ids`. Later membership changes do not touch documents.
- **Revocation**: unsharing a user removes that user outright. Unsharing a group removes only
  users that no remaining individual share and no remaining family share (by its group's
  current active members) still justifies.

Every mutation is a compare-and-set on the document `version`, retried on conflict.
"""

import uuid
from datetime import datetime
from pathlib import PurePath
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

from document_vault.config import settings
from document_vault.database.blob_store import GridFSBlobStore, InMemoryBlobStore
from document_vault.database.document_store import InMemoryDocumentStore, MongoDocumentStore
from document_vault.managers.family_manager import FamilyManager, GroupArchived, family_manager
from document_vault.managers.identity_manager import IdentityDirectory, identity_directory
from document_vault.managers.logging_manager import get_logger
from document_vault.models.auth_models import Principal
from document_vault.models.document_models import (
    DESCRIPTION_MAX_LENGTH,
    MAX_TAGS,
    TITLE_MAX_LENGTH,
    DocumentListQuery,
    DocumentMetadataUpdate,
    DocumentRecord,
    FamilyShare,
    IndividualShare,
)
from document_vault.services.permission_service import PermissionResolver, permission_resolver
from document_vault.utils.error_handling import AppError, ConcurrentModification, ResourceNotFound, ValidationError
from document_vault.utils.time_utils import utc_now

logger = get_logger(prefix="[DocumentService]")

# Metadata fields with a default that an explicit null must not overwrite
NON_NULLABLE_METADATA = ("category", "classification", "verification_status")


class DocumentNotFound(ResourceNotFound):
    def __init__(self, document_id: str = None):
        super().__init__("Document not found", "DOCUMENT_NOT_FOUND", {"document_id": document_id})


class DocumentNotDeleted(AppError):
    def __init__(self, document_id: str = None):
        super().__init__("Only deleted documents can be restored", "DOCUMENT_NOT_DELETED", {"document_id": document_id})


class CannotUnshareOwner(AppError):
    def __init__(self):
        super().__init__("The document owner's access cannot be removed", "CANNOT_UNSHARE_OWNER")


def default_document_store():
    return InMemoryDocumentStore() if settings.storage_is_memory else MongoDocumentStore()


def default_blob_store():
    return InMemoryBlobStore() if settings.storage_is_memory else GridFSBlobStore()


def _clean_tags(tags: Optional[List[str]]) -> List[str]:
    cleaned: List[str] = []
    for tag in tags or []:
        tag = str(tag).strip().lower()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    if len(cleaned) > MAX_TAGS:
        raise ValidationError(f"At most {MAX_TAGS} tags are allowed", field="tags")
    return cleaned


def _clean_metadata(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize and validate editable metadata fields in place."""
    for key in NON_NULLABLE_METADATA:
        if key in fields and fields[key] is None:
            raise ValidationError(f"{key} cannot be null", field=key)
    if "title" in fields:
        title = (fields["title"] or "").strip()
        if not title:
            raise ValidationError("Title is required", field="title", error_code="VALIDATION_REQUIRED_FIELD")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(f"Title must be at most {TITLE_MAX_LENGTH} characters", field="title")
        fields["title"] = title
    if "description" in fields:
        description = (fields["description"] or "").strip()
        if len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters", field="description"
            )
        fields["description"] = description
    if "tags" in fields:
        fields["tags"] = _clean_tags(fields["tags"])
    for key in ("department", "document_number", "issuing_authority"):
        if key in fields and fields[key] is not None:
            fields[key] = fields[key].strip() or None
    return fields


class DocumentService:
    """Service layer for document metadata, blobs and sharing projections."""

    def __init__(
        self,
        store=None,
        blob_store=None,
        identity: IdentityDirectory = None,
        family: FamilyManager = None,
        permissions: PermissionResolver = None,
        max_retries: int = None,
    ):
        self.store = store if store is not None else default_document_store()
        self.blob_store = blob_store if blob_store is not None else default_blob_store()
        self.identity = identity or identity_directory
        self.family = family or family_manager
        self.permissions = permissions or permission_resolver
        self.max_retries = max_retries or settings.CAS_MAX_RETRIES

    # --- helpers ---

    async def _load(self, document_id: str, include_deleted: bool = False) -> DocumentRecord:
        document = await self.store.get(document_id)
        if document is None or (document.status == "deleted" and not include_deleted):
            raise DocumentNotFound(document_id)
        return document

    async def _mutate(
        self,
        document_id: str,
        mutate: Callable[[DocumentRecord, datetime], Awaitable[Any]],
        include_deleted: bool = False,
    ) -> Tuple[DocumentRecord, Any]:
        for attempt in range(self.max_retries):
            document = await self._load(document_id, include_deleted=include_deleted)
            now = utc_now()
            expected_version = document.version
            outcome = await mutate(document, now)

            self.permissions.ensure_owner(document)
            document.version = expected_version + 1
            document.last_modified = now

            if await self.store.replace(document, expected_version):
                return document, outcome
            logger.debug("Version conflict on document %s (attempt %d)", document_id, attempt + 1)

        raise ConcurrentModification("Document was modified concurrently, please retry")

    async def _group_members(self, group_id: str, share: FamilyShare) -> List[str]:
        """Current active members of a shared group, or the materialized set if the group is gone."""
        members = await self.family.get_active_member_ids(group_id)
        return share.member_user_ids if members is None else members

    async def _justified_users(
        self,
        document: DocumentRecord,
        skip_user: Optional[str] = None,
        skip_group: Optional[str] = None,
    ) -> Tuple[Set[str], Set[str]]:
        """Users still entitled to (read, write) by the owner and the remaining shares."""
        readers = {document.uploaded_by}
        writers = {document.uploaded_by}

        for user_id, share in document.individual_sharing.items():
            if user_id == skip_user:
                continue
            readers.add(user_id)
            if share.permission == "write":
                writers.add(user_id)

        for group_id, share in document.family_sharing.items():
            if group_id == skip_group:
                continue
            members = await self._group_members(group_id, share)
            readers.update(members)
            if share.permission == "write":
                writers.update(members)

        return readers, writers

    def _revoke_unjustified(
        self, document: DocumentRecord, candidates: Set[str], readers: Set[str], writers: Set[str]
    ) -> None:
        lose_read = candidates - readers
        lose_write = candidates - writers
        self.permissions.revoke(document.permissions, lose_read, ("admin", "write", "read"))
        self.permissions.revoke(document.permissions, lose_write - {document.uploaded_by}, ("admin", "write"))

    # --- create / read ---

    async def create(
        self,
        owner: Principal,
        metadata: Dict[str, Any],
        blob_ref: Optional[str],
        file_info: Optional[Dict[str, Any]] = None,
    ) -> DocumentRecord:
        """Create the metadata record for an already stored blob."""
        fields = {k: v for k, v in metadata.items() if v is not None}
        fields = _clean_metadata(fields)
        if "title" not in fields:
            raise ValidationError("Title is required", field="title", error_code="VALIDATION_REQUIRED_FIELD")

        now = utc_now()
        try:
            document = DocumentRecord(
                document_id=uuid.uuid4().hex,
                uploaded_by=owner.user_id,
                upload_date=now,
                last_modified=now,
                permissions=self.permissions.owner_projection(owner.user_id),
                blob_ref=blob_ref,
                **(file_info or {}),
                **fields,
            )
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(f"Invalid value for {field}: {first.get('msg')}", field=field)
        await self.store.insert(document)
        logger.info(
            "Document %s created by %s",
            document.document_id,
            owner.user_id,
            extra={"document_id": document.document_id, "user_id": owner.user_id},
        )
        return document

    async def upload(
        self,
        owner: Principal,
        data: bytes,
        filename: str,
        content_type: Optional[str],
        metadata: Dict[str, Any],
    ) -> DocumentRecord:
        if not data:
            raise ValidationError("A non-empty file is required", field="file", error_code="VALIDATION_REQUIRED_FIELD")
        if len(data) > settings.MAX_UPLOAD_SIZE_BYTES:
            raise ValidationError(
                f"File exceeds the {settings.MAX_UPLOAD_SIZE_BYTES // (1024 * 1024)}MB limit",
                field="file",
                error_code="VALIDATION_FILE_TOO_LARGE",
            )
        if content_type not in settings.ALLOWED_UPLOAD_MIME_TYPES:
            raise ValidationError(
                "Only PDF, JPEG and PNG files are allowed", field="file", error_code="VALIDATION_INVALID_FILE_TYPE"
            )

        original_name = PurePath(filename or "document").name
        metadata = dict(metadata)
        if not (metadata.get("title") or "").strip():
            metadata["title"] = PurePath(original_name).stem or original_name
        stored_name = f"{uuid.uuid4().hex}{PurePath(original_name).suffix.lower()}"

        blob_ref = await self.blob_store.put(data, stored_name, content_type)
        file_info = {
            "file_name": stored_name,
            "original_name": original_name,
            "file_size": len(data),
            "mime_type": content_type,
        }
        try:
            return await self.create(owner, metadata, blob_ref, file_info)
        except (AppError, PyMongoError, ConnectionError):
            await self._discard_blob(blob_ref)
            raise

    async def get(self, caller: Principal, document_id: str) -> DocumentRecord:
        document = await self._load(document_id)
        self.permissions.require(caller, document, "read")
        return document

    async def list(self, caller: Principal, query: DocumentListQuery) -> Dict[str, Any]:
        query = query.model_copy(
            update={
                "page": max(query.page, 1),
                "limit": min(max(query.limit, 1), settings.DOCUMENT_PAGE_SIZE_CAP),
            }
        )
        documents, total = await self.store.list(caller.user_id, query)
        pages = (total + query.limit - 1) // query.limit
        return {
            "documents": documents,
            "pagination": {"page": query.page, "limit": query.limit, "total": total, "pages": pages},
        }

    async def list_shared_with_me(self, caller: Principal, query: DocumentListQuery) -> Dict[str, Any]:
        return await self.list(caller, query.model_copy(update={"scope": "shared", "sort_by": "last_modified"}))

    async def get_stats(self, caller: Principal) -> Dict[str, int]:
        return await self.store.stats(caller.user_id)

    async def open_download(self, caller: Principal, document_id: str) -> Tuple[DocumentRecord, bytes]:
        document = await self.get(caller, document_id)
        if not document.blob_ref:
            raise DocumentNotFound(document_id)
        data = await self.blob_store.get(document.blob_ref)

        async def mutate(doc: DocumentRecord, now: datetime) -> None:
            self.permissions.require(caller, doc, "read")
            doc.download_count += 1

        document, _ = await self._mutate(document_id, mutate)
        return document, data

    # --- metadata lifecycle ---

    async def update_metadata(
        self, caller: Principal, document_id: str, patch: DocumentMetadataUpdate
    ) -> DocumentRecord:
        fields = _clean_metadata(patch.model_dump(exclude_unset=True))
        if not fields:
            raise ValidationError("No updatable fields supplied", error_code="VALIDATION_REQUIRED_FIELD")

        async def mutate(document: DocumentRecord, now: datetime) -> None:
            self.permissions.require(caller, document, "write")
            for key, value in fields.items():
                setattr(document, key, value)

        document, _ = await self._mutate(document_id, mutate)
        logger.info(
            "Document %s metadata updated by %s: %s",
            document_id,
            caller.user_id,
            sorted(fields),
            extra={"document_id": document_id},
        )
        return document

    async def soft_delete(self, caller: Principal, document_id: str) -> DocumentRecord:
        async def mutate(document: DocumentRecord, now: datetime) -> None:
            self.permissions.require(caller, document, "admin")
            document.status = "deleted"
            document.deleted_by = caller.user_id
            document.deleted_at = now

        document, _ = await self._mutate(document_id, mutate)
        logger.info("Document %s deleted by %s", document_id, caller.user_id, extra={"document_id": document_id})

        if document.blob_ref:
            await self._discard_blob(document.blob_ref)
        return document

    async def restore(self, caller: Principal, document_id: str) -> DocumentRecord:
        async def mutate(document: DocumentRecord, now: datetime) -> None:
            self.permissions.require(caller, document, "admin")
            if document.status != "deleted":
                raise DocumentNotDeleted(document_id)
            document.status = "active"
            document.deleted_by = None
            document.deleted_at = None

        document, _ = await self._mutate(document_id, mutate, include_deleted=True)
        logger.info("Document %s restored by %s", document_id, caller.user_id, extra={"document_id": document_id})
        return document

    async def _discard_blob(self, blob_ref: str) -> None:
        try:
            await self.blob_store.delete(blob_ref)
        except (AppError, PyMongoError, ConnectionError) as e:
            logger.warning("Failed to remove blob %s: %s", blob_ref, e, extra={"blob_ref": blob_ref})

    # --- sharing ---

    async def share_with_user(
        self, caller: Principal, document_id: str, target_email: str, permission: str = "read"
    ) -> DocumentRecord:
        if permission not in ("read", "write"):
            raise ValidationError("Permission must be 'read' or 'write'", field="permission")
        target = await self.identity.lookup_by_email(target_email)

        async def mutate(document: DocumentRecord, now: datetime) -> None:
            self.permissions.require(caller, document, "admin")
            if target.user_id == document.uploaded_by:
                raise ValidationError("The document owner already has full access", field="email")

            existing = document.individual_sharing.get(target.user_id)
            if existing is not None and existing.permission == permission:
                self.permissions.grant(document.permissions, [target.user_id], permission)
                return

            if existing is not None and existing.permission == "write" and permission == "read":
                _, writers = await self._justified_users(document, skip_user=target.user_id)
                self._revoke_unjustified(document, {target.user_id}, {target.user_id}, writers)

            document.individual_sharing[target.user_id] = IndividualShare(
                email=target.email,
                display_name=target.display_name,
                permission=permission,
                shared_at=now,
                shared_by=caller.user_id,
            )
            self.permissions.grant(document.permissions, [target.user_id], permission)

        document, _ = await self._mutate(document_id, mutate)
        logger.info(
            "Document %s shared with user %s (%s)",
            document_id,
            target.user_id,
            permission,
            extra={"document_id": document_id, "user_id": caller.user_id},
        )
        return document

    async def share_with_group(
        self, caller: Principal, document_id: str, group_id: str, permission: str = "read"
    ) -> DocumentRecord:
        if permission not in ("read", "write"):
            raise ValidationError("Permission must be 'read' or 'write'", field="permission")
        group = await self.family.get_group(caller, group_id)
        if group.status != "active":
            raise GroupArchived(group_id)
        members = [member.user_id for member in group.active_members()]

        async def mutate(document: DocumentRecord, now: datetime) -> None:
            self.permissions.require(caller, document, "admin")

            existing = document.family_sharing.get(group_id)
            materialized = list(members)
            shared_at, shared_by = now, caller.user_id
            if existing is not None:
                materialized = existing.member_user_ids + [m for m in members if m not in existing.member_user_ids]
                if existing.permission == permission:
                    shared_at, shared_by = existing.shared_at, existing.shared_by
                elif existing.permission == "write":
                    readers, writers = await self._justified_users(document, skip_group=group_id)
                    candidates = set(existing.member_user_ids)
                    self._revoke_unjustified(document, candidates, readers | candidates, writers)

            document.family_sharing[group_id] = FamilyShare(
                group_name=group.name,
                permission=permission,
                shared_at=shared_at,
                shared_by=shared_by,
                member_user_ids=materialized,
            )
            self.permissions.grant(document.permissions, members, permission)

        document, _ = await self._mutate(document_id, mutate)
        logger.info(
            "Document %s shared with family group %s (%s, %d members)",
            document_id,
            group_id,
            permission,
            len(members),
            extra={"document_id": document_id, "group_id": group_id},
        )
        return document

    async def unshare_user(self, caller: Principal, document_id: str, target_user_id: str) -> DocumentRecord:
        async def mutate(document: DocumentRecord, now: datetime) -> None:
            self.permissions.require(caller, document, "admin")
            if target_user_id == document.uploaded_by:
                raise CannotUnshareOwner()
            document.individual_sharing.pop(target_user_id, None)
            self.permissions.revoke(document.permissions, {target_user_id}, ("admin", "write", "read"))

        document, _ = await self._mutate(document_id, mutate)
        logger.info(
            "Document %s unshared from user %s", document_id, target_user_id, extra={"document_id": document_id}
        )
        return document

    async def unshare_group(self, caller: Principal, document_id: str, group_id: str) -> DocumentRecord:
        current_members = await self.family.get_active_member_ids(group_id) or []

        async def mutate(document: DocumentRecord, now: datetime) -> int:
            self.permissions.require(caller, document, "admin")
            share = document.family_sharing.pop(group_id, None)
            if share is None:
                return 0

            candidates = set(share.member_user_ids) | set(current_members)
            candidates.discard(document.uploaded_by)
            readers, writers = await self._justified_users(document)
            before = set(document.permissions.read)
            self._revoke_unjustified(document, candidates, readers, writers)
            return len(before - set(document.permissions.read))

        document, revoked = await self._mutate(document_id, mutate)
        logger.info(
            "Document %s unshared from family group %s (%d users lost access)",
            document_id,
            group_id,
            revoked,
            extra={"document_id": document_id, "group_id": group_id},
        )
        return document

    async def get_sharing(self, caller: Principal, document_id: str) -> Dict[str, Any]:
        document = await self._load(document_id)
        self.permissions.require(caller, document, "admin")

        family_sharing = {}
        for group_id, share in document.family_sharing.items():
            entry = share.model_dump()
            group = await self.family.find_group(group_id)
            if group is None:
                entry["group"] = None
            else:
                entry["group"] = {
                    "name": group.name,
                    "status": group.status,
                    "member_count": len(group.active_members()),
                    "is_member": group.active_member(caller.user_id) is not None,
                }
            family_sharing[group_id] = entry

        return {
            "document_id": document.document_id,
            "owner": document.uploaded_by,
            "permissions": document.permissions.model_dump(),
            "individual_sharing": {uid: share.model_dump() for uid, share in document.individual_sharing.items()},
            "family_sharing": family_sharing,
            "effective_permissions": self.permissions.effective_permissions(caller, document),
        }


document_service = DocumentService()
