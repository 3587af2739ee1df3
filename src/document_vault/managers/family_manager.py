"""
# Family Registry

Authoritative state of family groups, their members and invitations.

## Roles

| Role | Can |
|------|-----|
| `admin` | invite, cancel and resend invitations, remove members, change roles, edit settings |
| `member` | read the group; invite when `settings.allow_member_invites` is on (never as admin) |
| `viewer` | read the group |

Only the creator may archive a group. The creator's member record can be neither removed nor
re-roled, so every active group keeps at least one active admin. Archived groups are read-only.

## Invitation Lifecycle

```
(none) --invite--> pending --accept--> accepted
                      |   --reject--> rejected
                      |   --expiry observed by accept/reject/invite--> expired
                      |   --cancel--> deleted
                      +-- resend: fresh token, expires_at pushed out
```

Expiry is lazy: a pending invitation past `expires_at` is projected as `expired` on reads and
persisted as `expired` by the next accept, reject or invite that touches it.

## Concurrency

Each mutation reads the group, applies the change to the model, bumps `version` and writes it
back only if the stored version is unchanged. A lost write re-reads and re-validates, so of two
racing accepts for one token exactly one succeeds and the other observes the consumed
invitation (`INVITATION_NOT_FOUND`).
"""

import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from document_vault.config import settings
from document_vault.database.family_store import FallbackFamilyStore, InMemoryFamilyStore, MongoFamilyStore
from document_vault.managers.logging_manager import get_logger
from document_vault.managers.notification_manager import NotificationManager, notification_manager
from document_vault.models.auth_models import Principal
from document_vault.models.family_models import (
    FAMILY_ROLES,
    GROUP_DESCRIPTION_MAX_LENGTH,
    GROUP_NAME_MAX_LENGTH,
    FamilyGroup,
    FamilyInvitation,
    FamilyMember,
    FamilySettings,
    FamilySettingsUpdate,
    FamilyStatistics,
)
from document_vault.utils.error_handling import AppError, ConcurrentModification, ValidationError
from document_vault.utils.time_utils import utc_now

logger = get_logger(prefix="[FamilyManager]")

INVITATION_TOKEN_BYTES = 32
MIN_MAX_MEMBERS = 2


class FamilyError(AppError):
    """Base family registry exception."""

    def __init__(self, message: str, error_code: str = None, context: Dict[str, Any] = None):
        super().__init__(message, error_code or "FAMILY_ERROR", context)


class FamilyNotFound(FamilyError):
    def __init__(self, message: str = "Family group not found", group_id: str = None):
        super().__init__(message, "NOT_FOUND", {"group_id": group_id})


class InvitationNotFound(FamilyError):
    def __init__(self, message: str = "Invitation not found or already used"):
        super().__init__(message, "INVITATION_NOT_FOUND")


class InvitationExpired(FamilyError):
    def __init__(self, message: str = "Invitation has expired", invitation_id: str = None):
        super().__init__(message, "INVITATION_EXPIRED", {"invitation_id": invitation_id})


class DuplicateInvitation(FamilyError):
    def __init__(self, email: str):
        super().__init__("A pending invitation already exists for this email", "DUPLICATE_INVITATION", {"email": email})


class DuplicateMember(FamilyError):
    def __init__(self, message: str = "User is already a member of this group"):
        super().__init__(message, "DUPLICATE_MEMBER")


class EmailMismatch(FamilyError):
    def __init__(self):
        super().__init__("This invitation was sent to a different email address", "EMAIL_MISMATCH")


class CannotRemoveCreator(FamilyError):
    def __init__(self):
        super().__init__("The group creator cannot be removed", "CANNOT_REMOVE_CREATOR")


class CannotChangeCreator(FamilyError):
    def __init__(self):
        super().__init__("The group creator's role cannot be changed", "CANNOT_CHANGE_CREATOR")


class GroupArchived(FamilyError):
    def __init__(self, group_id: str = None):
        super().__init__("Family group is archived", "GROUP_ARCHIVED", {"group_id": group_id})


class FamilyLimitExceeded(FamilyError):
    def __init__(self, message: str, current_count: int = None, max_allowed: int = None):
        super().__init__(message, "LIMIT_EXCEEDED", {"current_count": current_count, "max_allowed": max_allowed})


class InsufficientPermissions(FamilyError):
    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message, "FORBIDDEN")


class InvitationRecordNotFound(FamilyError):
    def __init__(self, key: str = None):
        super().__init__("Invitation not found", "NOT_FOUND", {"invitation": key})


class MemberNotFound(FamilyError):
    def __init__(self, key: str = None):
        super().__init__("Member not found", "NOT_FOUND", {"member": key})


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _new_token() -> str:
    return secrets.token_hex(INVITATION_TOKEN_BYTES)


def default_family_store():
    if settings.storage_is_memory:
        return InMemoryFamilyStore()
    return FallbackFamilyStore(MongoFamilyStore())


class FamilyManager:
    """
    Family registry operations.

    Collaborators are injectable; by default the store follows `STORAGE_URI` and notifications
    go through the shared `notification_manager`.
    """

    def __init__(
        self,
        store=None,
        notifications: NotificationManager = None,
        invitation_ttl_days: int = None,
        max_members_cap: int = None,
        max_retries: int = None,
    ):
        self.store = store if store is not None else default_family_store()
        self.notifications = notifications or notification_manager
        self.invitation_ttl = timedelta(days=invitation_ttl_days or settings.INVITATION_TTL_DAYS)
        self.max_members_cap = max_members_cap or settings.MAX_GROUP_MEMBERS_CAP
        self.max_retries = max_retries or settings.CAS_MAX_RETRIES
        self.logger = logger

    # --- storage helpers ---

    @property
    def degraded(self) -> bool:
        return bool(getattr(self.store, "degraded", False))

    async def _apply(
        self,
        load: Callable[[], Awaitable[Optional[FamilyGroup]]],
        mutate: Callable[[FamilyGroup, datetime], Any],
        not_found: Callable[[], FamilyError],
    ) -> Tuple[FamilyGroup, Any]:
        """Read-modify-write loop with compare-and-set on the group version."""
        for attempt in range(self.max_retries):
            group = await load()
            if group is None:
                raise not_found()

            now = utc_now()
            expected_version = group.version
            outcome = mutate(group, now)

            group.version = expected_version + 1
            group.last_modified = now
            group.statistics.total_members = len(group.active_members())
            group.statistics.last_activity = now

            if await self.store.replace(group, expected_version):
                return group, outcome

            self.logger.debug(
                "Version conflict on group %s (attempt %d/%d)", group.group_id, attempt + 1, self.max_retries
            )

        raise ConcurrentModification("Family group was modified concurrently, please retry")

    def _load_group(self, group_id: str) -> Callable[[], Awaitable[Optional[FamilyGroup]]]:
        return lambda: self.store.get(group_id)

    # --- validation helpers ---

    @staticmethod
    def _validate_name(name: Optional[str]) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name is required", field="name", error_code="VALIDATION_REQUIRED_FIELD")
        if len(name) > GROUP_NAME_MAX_LENGTH:
            raise ValidationError(f"Group name must be at most {GROUP_NAME_MAX_LENGTH} characters", field="name")
        return name

    @staticmethod
    def _validate_description(description: Optional[str]) -> str:
        description = (description or "").strip()
        if len(description) > GROUP_DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f"Description must be at most {GROUP_DESCRIPTION_MAX_LENGTH} characters", field="description"
            )
        return description

    def _apply_settings(
        self, current: FamilySettings, patch: Optional[FamilySettingsUpdate], active_count: int
    ) -> FamilySettings:
        if patch is None:
            return current
        if isinstance(patch, dict):
            patch = FamilySettingsUpdate.model_validate(patch)

        updated = current.model_copy()
        if patch.allow_member_invites is not None:
            updated.allow_member_invites = patch.allow_member_invites
        if patch.default_member_role is not None:
            updated.default_member_role = patch.default_member_role
        if patch.max_members is not None:
            if patch.max_members < MIN_MAX_MEMBERS or patch.max_members > self.max_members_cap:
                raise ValidationError(
                    f"max_members must be between {MIN_MAX_MEMBERS} and {self.max_members_cap}", field="max_members"
                )
            if patch.max_members < active_count:
                raise FamilyLimitExceeded(
                    "max_members cannot be lower than the current number of active members",
                    current_count=active_count,
                    max_allowed=patch.max_members,
                )
            updated.max_members = patch.max_members
        return updated

    @staticmethod
    def _ensure_active(group: FamilyGroup) -> None:
        if group.status == "archived":
            raise GroupArchived(group.group_id)

    @staticmethod
    def _require_admin(group: FamilyGroup, caller: Principal) -> None:
        if group.role_of(caller.user_id) != "admin":
            raise InsufficientPermissions("Only group admins can perform this action")

    @staticmethod
    def _find_pending_by_token(group: FamilyGroup, token: str) -> Optional[FamilyInvitation]:
        for invitation in group.invitations:
            if invitation.invitation_token == token and invitation.status == "pending":
                return invitation
        return None

    def _accept_url(self, token: str) -> str:
        return f"{settings.BASE_URL}/family/accept-invitation/{token}"

    def _reject_url(self, token: str) -> str:
        return f"{settings.BASE_URL}/family/reject-invitation/{token}"

    def _invitation_payload(self, group: FamilyGroup, invitation: FamilyInvitation) -> Dict[str, Any]:
        return {
            "group_id": group.group_id,
            "group_name": group.name,
            "email": invitation.email,
            "role": invitation.role,
            "invited_by_name": invitation.invited_by_name,
            "expires_at": invitation.expires_at.isoformat(),
            "accept_url": self._accept_url(invitation.invitation_token),
            "reject_url": self._reject_url(invitation.invitation_token),
        }

    # --- groups ---

    async def create_group(
        self,
        caller: Principal,
        name: str,
        description: Optional[str] = None,
        group_settings: Optional[FamilySettingsUpdate] = None,
    ) -> FamilyGroup:
        name = self._validate_name(name)
        description = self._validate_description(description)
        base_settings = FamilySettings(max_members=min(settings.DEFAULT_MAX_MEMBERS_PER_FAMILY, self.max_members_cap))
        family_settings = self._apply_settings(base_settings, group_settings, active_count=1)

        now = utc_now()
        creator = FamilyMember(
            member_id=_new_id("mem"),
            user_id=caller.user_id,
            email=caller.email,
            display_name=caller.name,
            role="admin",
            joined_at=now,
        )
        group = FamilyGroup(
            group_id=_new_id("fam"),
            name=name,
            description=description,
            created_by=caller.user_id,
            created_at=now,
            last_modified=now,
            settings=family_settings,
            statistics=FamilyStatistics(total_members=1, last_activity=now),
            members=[creator],
        )
        await self.store.insert(group)

        self.logger.info(
            "Family group created: %s by user %s",
            group.group_id,
            caller.user_id,
            extra={"group_id": group.group_id, "user_id": caller.user_id},
        )
        return group

    async def list_my_groups(self, caller: Principal) -> List[FamilyGroup]:
        return await self.store.list_for_user(caller.user_id)

    async def get_group(self, caller: Principal, group_id: str) -> FamilyGroup:
        group = await self.store.get(group_id)
        if group is None:
            raise FamilyNotFound(group_id=group_id)
        if group.active_member(caller.user_id) is None:
            raise InsufficientPermissions("You are not a member of this group")
        return group

    async def find_group(self, group_id: str) -> Optional[FamilyGroup]:
        """Unchecked lookup for internal callers such as the sharing engine."""
        return await self.store.get(group_id)

    async def get_active_member_ids(self, group_id: str) -> Optional[List[str]]:
        """Current active member ids, or None when the group does not exist."""
        group = await self.store.get(group_id)
        if group is None:
            return None
        return [member.user_id for member in group.active_members()]

    async def update_settings(
        self,
        caller: Principal,
        group_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        group_settings: Optional[FamilySettingsUpdate] = None,
    ) -> FamilyGroup:
        def mutate(group: FamilyGroup, now: datetime) -> None:
            self._ensure_active(group)
            self._require_admin(group, caller)
            if name is not None:
                group.name = self._validate_name(name)
            if description is not None:
                group.description = self._validate_description(description)
            group.settings = self._apply_settings(group.settings, group_settings, len(group.active_members()))

        group, _ = await self._apply(self._load_group(group_id), mutate, lambda: FamilyNotFound(group_id=group_id))
        self.logger.info("Family group %s settings updated by %s", group_id, caller.user_id, extra={"group_id": group_id})
        return group

    async def archive(self, caller: Principal, group_id: str) -> FamilyGroup:
        def mutate(group: FamilyGroup, now: datetime) -> None:
            if group.created_by != caller.user_id:
                raise InsufficientPermissions("Only the group creator can archive the group")
            group.status = "archived"

        group, _ = await self._apply(self._load_group(group_id), mutate, lambda: FamilyNotFound(group_id=group_id))
        self.logger.info("Family group %s archived by %s", group_id, caller.user_id, extra={"group_id": group_id})
        return group

    # --- invitations ---

    async def invite(self, caller: Principal, group_id: str, email: str, role: Optional[str] = None) -> FamilyInvitation:
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Email is required", field="email", error_code="VALIDATION_REQUIRED_FIELD")
        if "@" not in email:
            raise ValidationError("Invalid email address", field="email")
        if role is not None and role not in FAMILY_ROLES:
            raise ValidationError(f"Role must be one of {', '.join(FAMILY_ROLES)}", field="role")

        def mutate(group: FamilyGroup, now: datetime) -> FamilyInvitation:
            self._ensure_active(group)

            caller_role = group.role_of(caller.user_id)
            may_invite = caller_role == "admin" or (caller_role == "member" and group.settings.allow_member_invites)
            if not may_invite:
                raise InsufficientPermissions("You are not allowed to invite members to this group")

            invite_role = role or group.settings.default_member_role
            if invite_role == "admin" and caller_role != "admin":
                raise InsufficientPermissions("Only admins can invite new admins")

            if any(m.email == email and m.status == "active" for m in group.members):
                raise DuplicateMember("A member with this email already belongs to the group")

            for existing in group.invitations:
                if existing.email != email or existing.status != "pending":
                    continue
                if existing.is_expired(now):
                    existing.status = "expired"
                else:
                    raise DuplicateInvitation(email)

            active_count = len(group.active_members())
            if active_count >= group.settings.max_members:
                raise FamilyLimitExceeded(
                    "Family group has reached its member limit",
                    current_count=active_count,
                    max_allowed=group.settings.max_members,
                )

            invitation = FamilyInvitation(
                invitation_id=_new_id("inv"),
                invitation_token=_new_token(),
                email=email,
                invited_by=caller.user_id,
                invited_by_name=caller.name,
                role=invite_role,
                created_at=now,
                expires_at=now + self.invitation_ttl,
            )
            group.invitations.append(invitation)
            return invitation

        group, invitation = await self._apply(
            self._load_group(group_id), mutate, lambda: FamilyNotFound(group_id=group_id)
        )

        self.logger.info(
            "Invitation %s sent to %s for group %s",
            invitation.invitation_id,
            email,
            group_id,
            extra={"group_id": group_id, "invitation_id": invitation.invitation_id},
        )
        self.notifications.dispatch("invitation_created", self._invitation_payload(group, invitation))
        return invitation

    async def accept(self, caller: Principal, token: str) -> Tuple[FamilyGroup, FamilyMember]:
        def mutate(group: FamilyGroup, now: datetime):
            invitation = self._find_pending_by_token(group, token)
            if invitation is None:
                raise InvitationNotFound()
            if invitation.is_expired(now):
                invitation.status = "expired"
                return invitation
            if caller.email != invitation.email:
                raise EmailMismatch()
            self._ensure_active(group)
            if group.active_member(caller.user_id) is not None:
                raise DuplicateMember()

            active_count = len(group.active_members())
            if active_count >= group.settings.max_members:
                raise FamilyLimitExceeded(
                    "Family group has reached its member limit",
                    current_count=active_count,
                    max_allowed=group.settings.max_members,
                )

            member = next((m for m in group.members if m.user_id == caller.user_id), None)
            if member is not None:
                # Former member rejoining
                member.status = "active"
                member.role = invitation.role
                member.email = caller.email
                member.joined_at = now
                member.invited_by = invitation.invited_by
            else:
                member = FamilyMember(
                    member_id=_new_id("mem"),
                    user_id=caller.user_id,
                    email=caller.email,
                    display_name=caller.name,
                    role=invitation.role,
                    joined_at=now,
                    invited_by=invitation.invited_by,
                )
                group.members.append(member)

            invitation.status = "accepted"
            invitation.accepted_at = now
            return member

        group, outcome = await self._apply(
            lambda: self.store.find_by_invitation_token(token), mutate, InvitationNotFound
        )

        if isinstance(outcome, FamilyInvitation):
            self.logger.info(
                "Invitation %s expired on accept attempt", outcome.invitation_id, extra={"group_id": group.group_id}
            )
            raise InvitationExpired(invitation_id=outcome.invitation_id)

        self.logger.info(
            "User %s joined family group %s",
            caller.user_id,
            group.group_id,
            extra={"group_id": group.group_id, "user_id": caller.user_id},
        )
        self.notifications.dispatch(
            "invitation_accepted",
            {"group_id": group.group_id, "group_name": group.name, "email": caller.email, "role": outcome.role},
        )
        return group, outcome

    async def reject(self, caller: Principal, token: str) -> FamilyGroup:
        def mutate(group: FamilyGroup, now: datetime):
            invitation = self._find_pending_by_token(group, token)
            if invitation is None:
                raise InvitationNotFound()
            if invitation.is_expired(now):
                invitation.status = "expired"
                return invitation
            if caller.email != invitation.email:
                raise EmailMismatch()
            invitation.status = "rejected"
            invitation.rejected_at = now
            return None

        group, expired = await self._apply(
            lambda: self.store.find_by_invitation_token(token), mutate, InvitationNotFound
        )
        if expired is not None:
            raise InvitationExpired(invitation_id=expired.invitation_id)

        self.logger.info(
            "User %s declined invitation to group %s", caller.user_id, group.group_id, extra={"group_id": group.group_id}
        )
        return group

    async def cancel_invitation(self, caller: Principal, group_id: str, invitation_key: str) -> int:
        """Delete every pending invitation whose id or token equals `invitation_key`."""

        def mutate(group: FamilyGroup, now: datetime) -> int:
            self._ensure_active(group)
            matches = [
                inv
                for inv in group.invitations
                if inv.status == "pending" and invitation_key in (inv.invitation_id, inv.invitation_token)
            ]
            if not matches:
                raise InvitationRecordNotFound(invitation_key)
            is_admin = group.role_of(caller.user_id) == "admin"
            if not is_admin and any(inv.invited_by != caller.user_id for inv in matches):
                raise InsufficientPermissions("Only admins or the inviter can cancel this invitation")

            matched = {id(inv) for inv in matches}
            group.invitations = [inv for inv in group.invitations if id(inv) not in matched]
            return len(matches)

        _, removed = await self._apply(self._load_group(group_id), mutate, lambda: FamilyNotFound(group_id=group_id))
        self.logger.info(
            "Cancelled %d invitation record(s) in group %s", removed, group_id, extra={"group_id": group_id}
        )
        return removed

    async def resend_invitation(self, caller: Principal, group_id: str, invitation_id: str) -> FamilyInvitation:
        def mutate(group: FamilyGroup, now: datetime) -> FamilyInvitation:
            self._ensure_active(group)
            self._require_admin(group, caller)
            matches = [
                inv
                for inv in group.invitations
                if inv.status == "pending" and invitation_id in (inv.invitation_id, inv.invitation_token)
            ]
            if not matches:
                raise InvitationRecordNotFound(invitation_id)

            invitation = matches[0]
            # Collapse duplicate records left by earlier retries
            duplicates = {id(inv) for inv in matches[1:]}
            group.invitations = [inv for inv in group.invitations if id(inv) not in duplicates]
            invitation.invitation_token = _new_token()
            invitation.expires_at = now + self.invitation_ttl
            invitation.resent_count += 1
            return invitation

        group, invitation = await self._apply(
            self._load_group(group_id), mutate, lambda: FamilyNotFound(group_id=group_id)
        )
        self.logger.info(
            "Invitation %s resent for group %s", invitation.invitation_id, group_id, extra={"group_id": group_id}
        )
        self.notifications.dispatch("invitation_resent", self._invitation_payload(group, invitation))
        return invitation

    async def list_pending_invitations(self, caller: Principal) -> List[Dict[str, Any]]:
        if not caller.email:
            return []

        now = utc_now()
        groups = await self.store.list_with_pending_invitation(caller.email)
        inbox = []
        for group in groups:
            for invitation in group.invitations:
                if invitation.email != caller.email or invitation.status != "pending" or invitation.is_expired(now):
                    continue
                inbox.append(
                    {
                        "invitation_id": invitation.invitation_id,
                        "invitation_token": invitation.invitation_token,
                        "group_id": group.group_id,
                        "group_name": group.name,
                        "group_description": group.description,
                        "role": invitation.role,
                        "invited_by": invitation.invited_by,
                        "invited_by_name": invitation.invited_by_name,
                        "created_at": invitation.created_at,
                        "expires_at": invitation.expires_at,
                    }
                )
        inbox.sort(key=lambda item: item["created_at"], reverse=True)
        return inbox

    # --- members ---

    async def remove_member(self, caller: Principal, group_id: str, member_key: str) -> int:
        """Mark every active member matching `member_key` (user id or member id) inactive."""

        def mutate(group: FamilyGroup, now: datetime) -> int:
            self._ensure_active(group)
            caller_role = group.role_of(caller.user_id)
            if caller_role is None:
                raise InsufficientPermissions("You are not a member of this group")

            matches = [
                m for m in group.members if m.status == "active" and member_key in (m.user_id, m.member_id)
            ]
            if not matches:
                raise MemberNotFound(member_key)

            targets = {m.user_id for m in matches}
            if group.created_by in targets:
                raise CannotRemoveCreator()
            if caller_role != "admin" and targets != {caller.user_id}:
                raise InsufficientPermissions("Only admins can remove other members")

            for member in matches:
                member.status = "inactive"
            return len(matches)

        _, removed = await self._apply(self._load_group(group_id), mutate, lambda: FamilyNotFound(group_id=group_id))
        self.logger.info(
            "Removed member %s from group %s by %s",
            member_key,
            group_id,
            caller.user_id,
            extra={"group_id": group_id, "user_id": caller.user_id},
        )
        return removed

    async def update_role(self, caller: Principal, group_id: str, member_key: str, new_role: str) -> FamilyGroup:
        if new_role not in FAMILY_ROLES:
            raise ValidationError(f"Role must be one of {', '.join(FAMILY_ROLES)}", field="role")

        def mutate(group: FamilyGroup, now: datetime) -> None:
            self._ensure_active(group)
            self._require_admin(group, caller)
            matches = [
                m for m in group.members if m.status == "active" and member_key in (m.user_id, m.member_id)
            ]
            if not matches:
                raise MemberNotFound(member_key)
            if any(m.user_id == group.created_by for m in matches):
                raise CannotChangeCreator()
            for member in matches:
                member.role = new_role

        group, _ = await self._apply(self._load_group(group_id), mutate, lambda: FamilyNotFound(group_id=group_id))
        self.logger.info(
            "Member %s in group %s is now %s", member_key, group_id, new_role, extra={"group_id": group_id}
        )
        return group

    # --- projections ---

    def project_group(self, group: FamilyGroup, viewer_id: str) -> Dict[str, Any]:
        """Public view of a group: invitation tokens never leave the registry."""
        now = utc_now()
        data = group.model_dump(mode="json", exclude={"version": True, "invitations": True})
        viewer_role = group.role_of(viewer_id)

        invitations = []
        for invitation in group.invitations:
            if viewer_role != "admin" and invitation.invited_by != viewer_id:
                continue
            item = invitation.model_dump(mode="json", exclude={"invitation_token"})
            if invitation.is_expired(now):
                item["status"] = "expired"
            invitations.append(item)

        data["invitations"] = invitations
        data["user_role"] = viewer_role
        data["is_creator"] = group.created_by == viewer_id
        data["member_count"] = len(group.active_members())
        return data

    def summarize_group(self, group: FamilyGroup, viewer_id: str) -> Dict[str, Any]:
        return {
            "group_id": group.group_id,
            "name": group.name,
            "description": group.description,
            "created_by": group.created_by,
            "created_at": group.created_at,
            "last_modified": group.last_modified,
            "status": group.status,
            "member_count": len(group.active_members()),
            "user_role": group.role_of(viewer_id),
            "is_creator": group.created_by == viewer_id,
            "settings": group.settings.model_dump(),
        }


family_manager = FamilyManager()
