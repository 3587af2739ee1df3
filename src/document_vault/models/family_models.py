"""
# Family Group Data Models

Pydantic models for family groups, their embedded members and invitations, and the request
bodies accepted by the family routes.

## Domain Model Overview

- **FamilyGroup**: owns its members and invitations by value and carries a `version` counter
  used for compare-and-set updates.
- **FamilyMember**: `role` is one of `admin`, `member`, `viewer`; removal marks a member
  `inactive` rather than deleting the record.
- **FamilyInvitation**: single-use token, `pending` until accepted, rejected or expired.

## Validation Rules

- Group names are 1-100 characters, descriptions at most 500.
- `max_members` lies between 2 and the configured cap (never above 50).
- Emails are stored lowercased.

Request models accept both snake_case and the camelCase keys used by existing clients
(`allowMemberInvites`, `defaultMemberRole`, `maxMembers`).
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from document_vault.utils.time_utils import ensure_utc

FamilyRole = Literal["admin", "member", "viewer"]
MemberStatus = Literal["active", "inactive"]
InvitationStatus = Literal["pending", "accepted", "rejected", "expired"]
GroupStatus = Literal["active", "archived"]

FAMILY_ROLES = ("admin", "member", "viewer")
GROUP_NAME_MAX_LENGTH = 100
GROUP_DESCRIPTION_MAX_LENGTH = 500


class FamilySettings(BaseModel):
    allow_member_invites: bool = False
    default_member_role: FamilyRole = "member"
    max_members: int = 10


class FamilyStatistics(BaseModel):
    total_members: int = 0
    last_activity: Optional[datetime] = None

    @field_validator("last_activity")
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v)


class FamilyMember(BaseModel):
    member_id: str
    user_id: str
    email: str
    display_name: str = ""
    role: FamilyRole = "member"
    joined_at: datetime
    invited_by: Optional[str] = None
    status: MemberStatus = "active"

    @field_validator("joined_at")
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v)


class FamilyInvitation(BaseModel):
    invitation_id: str
    invitation_token: str
    email: str
    invited_by: str
    invited_by_name: str = ""
    role: FamilyRole = "member"
    status: InvitationStatus = "pending"
    created_at: datetime
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    resent_count: int = 0

    @field_validator("created_at", "expires_at", "accepted_at", "rejected_at")
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v)

    def is_expired(self, now: datetime) -> bool:
        return self.status == "pending" and self.expires_at < now


class FamilyGroup(BaseModel):
    """
    Stored family group document.

    `version` increases by one on every successful write; stores only accept a replacement
    whose expected version matches the stored one.
    """

    group_id: str
    name: str
    description: str = ""
    created_by: str
    created_at: datetime
    last_modified: datetime
    settings: FamilySettings = Field(default_factory=FamilySettings)
    statistics: FamilyStatistics = Field(default_factory=FamilyStatistics)
    status: GroupStatus = "active"
    members: List[FamilyMember] = Field(default_factory=list)
    invitations: List[FamilyInvitation] = Field(default_factory=list)
    version: int = 1

    @field_validator("created_at", "last_modified")
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v)

    def active_members(self) -> List[FamilyMember]:
        return [m for m in self.members if m.status == "active"]

    def active_member(self, user_id: str) -> Optional[FamilyMember]:
        for member in self.members:
            if member.user_id == user_id and member.status == "active":
                return member
        return None

    def role_of(self, user_id: str) -> Optional[str]:
        member = self.active_member(user_id)
        return member.role if member else None


# --- Request models ---


class FamilySettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    allow_member_invites: Optional[bool] = Field(None, alias="allowMemberInvites")
    default_member_role: Optional[FamilyRole] = Field(None, alias="defaultMemberRole")
    max_members: Optional[int] = Field(None, alias="maxMembers")


class CreateFamilyGroupRequest(BaseModel):
    """
    Request model for creating a family group.

    The caller becomes the sole admin. Blank names are rejected by the registry with
    `VALIDATION_REQUIRED_FIELD`.
    """

    name: str = Field(..., description="Display name of the group")
    description: Optional[str] = Field(None, description="Optional description")
    settings: Optional[FamilySettingsUpdate] = None

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Home",
                "description": "Household paperwork",
                "settings": {"allowMemberInvites": False, "maxMembers": 6},
            }
        }


class UpdateFamilyGroupRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    settings: Optional[FamilySettingsUpdate] = None


class InviteMemberRequest(BaseModel):
    """
    Request model for inviting someone to a family group by email.

    **Validation:**
    *   **email**: Must be a valid address; stored lowercased.
    *   **role**: Optional; defaults to the group's `default_member_role`.
    """

    email: EmailStr = Field(..., description="Email address of the person to invite")
    role: Optional[FamilyRole] = Field(None, description="Role granted on acceptance")

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v):
        return str(v).strip().lower()

    class Config:
        json_schema_extra = {"example": {"email": "bob@example.com", "role": "member"}}


class UpdateMemberRoleRequest(BaseModel):
    role: FamilyRole
