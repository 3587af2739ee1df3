"""
Identity Directory.

Keeps a lightweight `UserRecord` per authenticated user and resolves email addresses to user
ids for invitation targeting and share resolution. Lookups are case-insensitive because emails
are always stored lowercased.

A directory email only ever comes from a verified credential, and one email belongs to at most
one user.
"""

from typing import Optional

from pymongo.errors import DuplicateKeyError

from document_vault.config import settings
from document_vault.database.user_store import InMemoryUserStore, MongoUserStore
from document_vault.managers.logging_manager import get_logger
from document_vault.models.auth_models import Principal, SyncUserRequest, UserRecord
from document_vault.utils.error_handling import AppError, ResourceNotFound
from document_vault.utils.time_utils import utc_now

logger = get_logger(prefix="[IdentityDirectory]")


class UserNotFound(ResourceNotFound):
    def __init__(self, message: str = "User not found with this email", email: str = None):
        super().__init__(message, "USER_NOT_FOUND", {"email": email} if email else {})


class EmailAlreadyRegistered(AppError):
    def __init__(self, email: str = None):
        super().__init__("This email is registered to another user", "DUPLICATE", {"email": email})


class IdentityDirectory:
    def __init__(self, store=None):
        if store is None:
            store = InMemoryUserStore() if settings.storage_is_memory else MongoUserStore()
        self.store = store

    async def sync(self, principal: Principal, profile: Optional[SyncUserRequest] = None) -> UserRecord:
        """
        Upsert the caller's record and stamp `last_login_at`.

        The email is taken from the credential only when the identity provider marked it
        verified; otherwise the previously recorded email is kept. Raises
        `EmailAlreadyRegistered` when another user already holds that email.
        """
        existing = await self.store.get(principal.user_id)

        email = principal.email if principal.email and principal.email_verified else ""
        if not email and existing:
            email = existing.email

        display_name = (
            (profile.name if profile and profile.name else None)
            or principal.display_name
            or (existing.display_name if existing else None)
            or (email.split("@")[0] if email else principal.user_id)
        )

        try:
            record = await self.store.upsert(principal.user_id, email, display_name, utc_now())
        except DuplicateKeyError as e:
            logger.warning(
                "User %s presented email %s already held by another user",
                principal.user_id,
                email,
                extra={"user_id": principal.user_id},
            )
            raise EmailAlreadyRegistered(email) from e

        if existing is None:
            logger.info("Registered user %s", principal.user_id, extra={"user_id": principal.user_id})
        return record

    async def lookup_by_email(self, email: str) -> UserRecord:
        record = await self.store.find_by_email(email)
        if record is None:
            raise UserNotFound(email=email.strip().lower())
        return record

    async def get(self, user_id: str) -> Optional[UserRecord]:
        return await self.store.get(user_id)


identity_directory = IdentityDirectory()
