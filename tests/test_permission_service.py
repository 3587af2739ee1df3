import pytest

from document_vault.models.document_models import DocumentRecord
from document_vault.services.permission_service import DocumentAccessDenied, PermissionResolver
from document_vault.utils.error_handling import ValidationError
from document_vault.utils.time_utils import utc_now


@pytest.fixture
def resolver():
    return PermissionResolver()


@pytest.fixture
def document():
    now = utc_now()
    return DocumentRecord(
        document_id="doc-1",
        uploaded_by="user-alice",
        title="Passport",
        upload_date=now,
        last_modified=now,
        permissions=PermissionResolver.owner_projection("user-alice"),
    )


def test_owner_holds_every_level(resolver, document):
    assert resolver.effective_permissions("user-alice", document) == ["read", "write", "admin"]
    assert resolver.effective_permissions("user-bob", document) == []


def test_grant_implies_lower_levels(resolver, document):
    PermissionResolver.grant(document.permissions, ["user-bob"], "write")
    PermissionResolver.grant(document.permissions, ["user-carol", "user-bob"], "read")

    assert document.permissions.read == ["user-alice", "user-bob", "user-carol"]
    assert document.permissions.write == ["user-alice", "user-bob"]
    assert resolver.can("user-bob", document, "write")
    assert not resolver.can("user-carol", document, "write")


def test_require_raises_access_denied(resolver, document):
    resolver.require("user-alice", document, "admin")

    with pytest.raises(DocumentAccessDenied) as exc_info:
        resolver.require("user-bob", document, "read")
    assert exc_info.value.context == {"action": "read", "document_id": "doc-1"}


def test_unknown_action(resolver, document):
    with pytest.raises(ValidationError):
        resolver.can("user-alice", document, "delete")


def test_ensure_owner_restores_uploader(document):
    PermissionResolver.revoke(document.permissions, {"user-alice"}, ("read", "write", "admin"))
    assert document.permissions.read == []

    PermissionResolver.ensure_owner(document)

    assert document.permissions.admin == ["user-alice"]
    assert document.permissions.read == ["user-alice"]
