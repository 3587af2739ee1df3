"""Authentication and identity models: the per-request Principal and the persisted UserRecord."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from document_vault.utils.time_utils import ensure_utc


class Principal(BaseModel):
    """
    Authenticated caller derived from a verified bearer credential.

    Never persisted; rebuilt on every request by the principal resolver.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str = ""
    email_verified: bool = False
    display_name: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return (v or "").strip().lower()

    @property
    def name(self) -> str:
        return self.display_name or self.email or self.user_id


class UserRecord(BaseModel):
    user_id: str
    email: str = ""
    display_name: str = ""
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return (v or "").strip().lower()

    @field_validator("created_at", "last_login_at")
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v)


class SyncUserRequest(BaseModel):
    """
    Optional profile fields supplied by the client on `POST /users/sync`.

    Only the display name is client-controlled. The directory email comes from the verified
    credential and cannot be set here.
    """

    name: Optional[str] = Field(None, max_length=200)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        if v is None:
            return None
        v = v.strip()
        return v or None
