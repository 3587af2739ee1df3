import json
import os
import time

# Configure before any document_vault import builds its settings
TEST_SECRET = "test-signing-secret-not-for-production"
TEST_AUDIENCE = "document-vault"
os.environ["STORAGE_URI"] = "memory://"
os.environ["IDENTITY_VERIFIER_CONFIG"] = json.dumps(
    {"algorithm": "HS256", "secret": TEST_SECRET, "audience": TEST_AUDIENCE}
)
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["INVITATION_WEBHOOK_URL"] = ""

from jose import jwt  # noqa: E402
import pytest  # noqa: E402

from document_vault.database.blob_store import InMemoryBlobStore  # noqa: E402
from document_vault.database.document_store import InMemoryDocumentStore  # noqa: E402
from document_vault.database.family_store import InMemoryFamilyStore  # noqa: E402
from document_vault.database.user_store import InMemoryUserStore  # noqa: E402
from document_vault.managers.family_manager import FamilyManager  # noqa: E402
from document_vault.managers.identity_manager import IdentityDirectory  # noqa: E402
from document_vault.managers.notification_manager import NotificationManager  # noqa: E402
from document_vault.models.auth_models import Principal  # noqa: E402
from document_vault.services.document_service import DocumentService  # noqa: E402
from document_vault.services.permission_service import PermissionResolver  # noqa: E402


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def notify(self, event, payload):
        self.events.append((event, payload))


def make_principal(name: str) -> Principal:
    return Principal(
        user_id=f"user-{name}",
        email=f"{name}@example.com",
        email_verified=True,
        display_name=name.title(),
    )


def mint_token(user_id: str, email: str = None, expires_in: int = 3600, **claims) -> str:
    payload = {"sub": user_id, "aud": TEST_AUDIENCE, "exp": int(time.time()) + expires_in}
    if email:
        payload["email"] = email
        payload["email_verified"] = True
    payload.update(claims)
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


def auth_headers(principal: Principal) -> dict:
    return {"Authorization": f"Bearer {mint_token(principal.user_id, principal.email, name=principal.display_name)}"}


@pytest.fixture
def alice():
    return make_principal("alice")


@pytest.fixture
def bob():
    return make_principal("bob")


@pytest.fixture
def carol():
    return make_principal("carol")


@pytest.fixture
def dave():
    return make_principal("dave")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def notifications(notifier):
    return NotificationManager(notifier=notifier)


@pytest.fixture
def family_store():
    return InMemoryFamilyStore()


@pytest.fixture
def family(family_store, notifications):
    return FamilyManager(store=family_store, notifications=notifications)


@pytest.fixture
def identity():
    return IdentityDirectory(store=InMemoryUserStore())


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def documents(document_store, blob_store, identity, family):
    return DocumentService(
        store=document_store,
        blob_store=blob_store,
        identity=identity,
        family=family,
        permissions=PermissionResolver(),
    )
