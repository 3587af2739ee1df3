from unittest.mock import AsyncMock

import pytest

from conftest import TEST_AUDIENCE, mint_token
from document_vault.managers.auth_manager import JoseIdentityVerifier, PrincipalResolver
from document_vault.utils.error_handling import AuthError


@pytest.fixture
def resolver():
    return PrincipalResolver()


@pytest.mark.asyncio
async def test_resolves_verified_token(resolver):
    token = mint_token("user-1", "Alice@Example.com", name="Alice")

    principal = await resolver.resolve({"Authorization": f"Bearer {token}"})

    assert principal.user_id == "user-1"
    assert principal.email == "alice@example.com"
    assert principal.email_verified is True
    assert principal.name == "Alice"


@pytest.mark.asyncio
async def test_lowercase_header_and_scheme(resolver):
    token = mint_token("user-1")
    principal = await resolver.resolve({"authorization": f"bearer {token}"})
    assert principal.user_id == "user-1"
    assert principal.email == ""


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"Authorization": ""}, {"Authorization": "Basic abc"}, {"Authorization": "Bearer "}])
async def test_missing_credential(resolver, headers):
    with pytest.raises(AuthError) as exc_info:
        await resolver.resolve(headers)
    assert exc_info.value.error_code == "AUTH_TOKEN_MISSING"
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_expired_token(resolver):
    token = mint_token("user-1", expires_in=-60)
    with pytest.raises(AuthError) as exc_info:
        await resolver.resolve({"Authorization": f"Bearer {token}"})
    assert exc_info.value.error_code == "AUTH_TOKEN_EXPIRED"


@pytest.mark.asyncio
async def test_expiry_enforced_even_with_verifier_leeway():
    verifier = AsyncMock()
    verifier.verify.return_value = {"sub": "user-1", "exp": 1}
    resolver = PrincipalResolver(verifier=verifier)

    with pytest.raises(AuthError) as exc_info:
        await resolver.resolve({"Authorization": "Bearer opaque"})
    assert exc_info.value.error_code == "AUTH_TOKEN_EXPIRED"


@pytest.mark.asyncio
async def test_tampered_token(resolver):
    token = mint_token("user-1")
    with pytest.raises(AuthError) as exc_info:
        await resolver.resolve({"Authorization": f"Bearer {token[:-4]}abcd"})
    assert exc_info.value.error_code == "AUTH_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_wrong_audience(resolver):
    token = mint_token("user-1", aud="someone-else")
    with pytest.raises(AuthError) as exc_info:
        await resolver.resolve({"Authorization": f"Bearer {token}"})
    assert exc_info.value.error_code == "AUTH_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_token_without_subject():
    verifier = AsyncMock()
    verifier.verify.return_value = {"email": "alice@example.com"}
    resolver = PrincipalResolver(verifier=verifier)

    with pytest.raises(AuthError) as exc_info:
        await resolver.resolve({"Authorization": "Bearer opaque"})
    assert exc_info.value.error_code == "AUTH_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_no_verifier_configured():
    resolver = PrincipalResolver(verifier=None, use_default_verifier=False)
    with pytest.raises(AuthError) as exc_info:
        await resolver.resolve({"Authorization": "Bearer anything"})
    assert exc_info.value.error_code == "AUTH_SERVICE_UNAVAILABLE"
    assert exc_info.value.status_code == 503


def test_verifier_requires_key():
    with pytest.raises(ValueError):
        JoseIdentityVerifier({"algorithm": "HS256", "audience": TEST_AUDIENCE})
