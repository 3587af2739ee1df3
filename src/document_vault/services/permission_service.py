"""
Permission Resolver.

Answers whether a caller may `read`, `write` or `admin` a document from the document's
permission projection, and provides the set operations the sharing engine uses to keep
`admin ⊆ write ⊆ read` with the uploader always holding all three.
"""

from typing import Iterable, List, Set, Union

from document_vault.models.auth_models import Principal
from document_vault.models.document_models import PERMISSION_ACTIONS, DocumentRecord, PermissionProjection
from document_vault.utils.error_handling import PermissionDenied, ValidationError

# Levels implied by a grant, widest first
GRANT_LEVELS = {
    "read": ("read",),
    "write": ("write", "read"),
    "admin": ("admin", "write", "read"),
}


class DocumentAccessDenied(PermissionDenied):
    def __init__(self, action: str = None, document_id: str = None):
        super().__init__(
            "You do not have permission to access this document",
            "DOCUMENT_ACCESS_DENIED",
            {"action": action, "document_id": document_id},
        )


def _user_id(caller: Union[Principal, str]) -> str:
    return caller.user_id if isinstance(caller, Principal) else caller


def _ordered_union(current: List[str], additions: Iterable[str]) -> List[str]:
    seen = set(current)
    merged = list(current)
    for user_id in additions:
        if user_id not in seen:
            seen.add(user_id)
            merged.append(user_id)
    return merged


class PermissionResolver:
    def can(self, caller: Union[Principal, str], document: DocumentRecord, action: str) -> bool:
        if action not in PERMISSION_ACTIONS:
            raise ValidationError(f"Unknown permission action: {action}", field="action")
        return _user_id(caller) in getattr(document.permissions, action)

    def require(self, caller: Union[Principal, str], document: DocumentRecord, action: str) -> None:
        if not self.can(caller, document, action):
            raise DocumentAccessDenied(action=action, document_id=document.document_id)

    def effective_permissions(self, caller: Union[Principal, str], document: DocumentRecord) -> List[str]:
        user_id = _user_id(caller)
        return [action for action in PERMISSION_ACTIONS if user_id in getattr(document.permissions, action)]

    @staticmethod
    def owner_projection(owner_id: str) -> PermissionProjection:
        return PermissionProjection(read=[owner_id], write=[owner_id], admin=[owner_id])

    @staticmethod
    def grant(projection: PermissionProjection, user_ids: Iterable[str], permission: str) -> None:
        """Add users at `permission` and every level it implies."""
        user_ids = list(user_ids)
        for level in GRANT_LEVELS[permission]:
            setattr(projection, level, _ordered_union(getattr(projection, level), user_ids))

    @staticmethod
    def revoke(projection: PermissionProjection, user_ids: Set[str], levels: Iterable[str]) -> None:
        for level in levels:
            setattr(projection, level, [u for u in getattr(projection, level) if u not in user_ids])

    @staticmethod
    def ensure_owner(document: DocumentRecord) -> None:
        """Re-assert the uploader's full access after any projection edit."""
        PermissionResolver.grant(document.permissions, [document.uploaded_by], "admin")


permission_resolver = PermissionResolver()
