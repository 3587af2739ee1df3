"""
# Document Data Models

Document metadata records, their permission projection and sharing maps, and the request
bodies accepted by the document routes.

## Permission Projection

`permissions.read ⊇ permissions.write ⊇ permissions.admin` and the uploader is always in
`admin`. Family shares store the `member_user_ids` captured when the share was made; the
projection is not recomputed when group membership later changes.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from document_vault.utils.time_utils import ensure_utc

DocumentCategory = Literal[
    "pan_card",
    "aadhaar_card",
    "passport",
    "voter_id",
    "driving_license",
    "bank_statement",
    "income_tax_return",
    "salary_slip",
    "form_16",
    "property_deed",
    "rent_agreement",
    "utility_bill",
    "degree_certificate",
    "marksheet",
    "diploma",
    "medical_document",
    "legal_document",
    "general_document",
]
Classification = Literal["public", "private", "confidential", "restricted"]
VerificationStatus = Literal["pending", "verified", "rejected", "expired"]
DocumentStatus = Literal["active", "deleted"]
SharePermission = Literal["read", "write"]
PermissionAction = Literal["read", "write", "admin"]

PERMISSION_ACTIONS = ("read", "write", "admin")
TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000
MAX_TAGS = 20

# Fields an editor may change through update_metadata
UPDATABLE_FIELDS = (
    "title",
    "description",
    "category",
    "classification",
    "department",
    "tags",
    "expiry_date",
    "issue_date",
    "document_number",
    "issuing_authority",
    "verification_status",
)


class PermissionProjection(BaseModel):
    read: List[str] = Field(default_factory=list)
    write: List[str] = Field(default_factory=list)
    admin: List[str] = Field(default_factory=list)


class IndividualShare(BaseModel):
    email: str
    display_name: str = ""
    permission: SharePermission = "read"
    shared_at: datetime
    shared_by: str

    @field_validator("shared_at")
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v)


class FamilyShare(BaseModel):
    group_name: str
    permission: SharePermission = "read"
    shared_at: datetime
    shared_by: str
    member_user_ids: List[str] = Field(default_factory=list)

    @field_validator("shared_at")
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v)


class DocumentRecord(BaseModel):
    document_id: str
    uploaded_by: str
    title: str
    description: str = ""
    category: DocumentCategory = "general_document"
    classification: Classification = "private"
    department: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    upload_date: datetime
    last_modified: datetime
    status: DocumentStatus = "active"
    deleted_by: Optional[str] = None
    deleted_at: Optional[datetime] = None

    permissions: PermissionProjection = Field(default_factory=PermissionProjection)
    individual_sharing: Dict[str, IndividualShare] = Field(default_factory=dict)
    family_sharing: Dict[str, FamilyShare] = Field(default_factory=dict)

    blob_ref: Optional[str] = None
    file_name: Optional[str] = None
    original_name: Optional[str] = None
    file_size: int = 0
    mime_type: Optional[str] = None
    download_count: int = 0
    encrypted: bool = False

    expiry_date: Optional[datetime] = None
    issue_date: Optional[datetime] = None
    document_number: Optional[str] = None
    issuing_authority: Optional[str] = None
    verification_status: VerificationStatus = "pending"

    version: int = 1

    @field_validator("upload_date", "last_modified", "deleted_at", "expiry_date", "issue_date")
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v)


# --- Request models ---


class DocumentMetadataUpdate(BaseModel):
    """Editable metadata; fields outside this model are ignored."""

    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[DocumentCategory] = None
    classification: Optional[Classification] = None
    department: Optional[str] = None
    tags: Optional[List[str]] = None
    expiry_date: Optional[datetime] = None
    issue_date: Optional[datetime] = None
    document_number: Optional[str] = None
    issuing_authority: Optional[str] = None
    verification_status: Optional[VerificationStatus] = None

    class Config:
        json_schema_extra = {"example": {"title": "Passport (renewed)", "tags": ["travel", "id"]}}


class ShareDocumentRequest(BaseModel):
    """
    Request body for `POST /documents/{id}/share`.

    `individual` shares need `email`; `family` shares need `familyGroupId`.
    """

    model_config = ConfigDict(populate_by_name=True)

    share_type: Literal["individual", "family"] = Field(..., alias="shareType")
    email: Optional[EmailStr] = None
    family_group_id: Optional[str] = Field(None, alias="familyGroupId")
    permission: SharePermission = "read"


class UnshareDocumentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    share_type: Literal["individual", "family"] = Field(..., alias="shareType")
    user_id: Optional[str] = Field(None, alias="userId")
    family_group_id: Optional[str] = Field(None, alias="familyGroupId")


class DocumentListQuery(BaseModel):
    """Filter, sort and pagination options for listing documents visible to a caller."""

    scope: Literal["all", "owned", "shared"] = "all"
    category: Optional[DocumentCategory] = None
    classification: Optional[Classification] = None
    search: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    sort_by: Literal["upload_date", "last_modified", "title", "file_size"] = "upload_date"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = 1
    limit: int = 50
