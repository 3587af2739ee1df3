"""
# Principal Resolver

Turns the `Authorization: Bearer <token>` header into a `Principal`.

Cryptographic validation is delegated to an **IdentityVerifier**. The default verifier checks
JWTs with `python-jose` using the JSON in `IDENTITY_VERIFIER_CONFIG`:

```json
{"algorithm": "RS256", "public_key": "-----BEGIN PUBLIC KEY-----...", "audience": "vault", "issuer": "https://id.example.com"}
```

Failure codes:

| Code | Cause |
|------|-------|
| `AUTH_TOKEN_MISSING` | no header, wrong scheme, or empty token |
| `AUTH_TOKEN_EXPIRED` | `exp` claim in the past (checked here even if the verifier allows leeway) |
| `AUTH_TOKEN_INVALID` | any other verification failure |
| `AUTH_SERVICE_UNAVAILABLE` | no verifier configured |
"""

import time
from typing import Any, Dict, Mapping, Optional, Protocol

from jose import ExpiredSignatureError, JWTError, jwt

from document_vault.config import settings
from document_vault.managers.logging_manager import get_logger
from document_vault.models.auth_models import Principal
from document_vault.utils.error_handling import AuthError

logger = get_logger(prefix="[PrincipalResolver]")

USER_ID_CLAIMS = ("sub", "user_id", "uid")


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> Dict[str, Any]:
        """Return the verified claims or raise `AuthError`."""
        ...


class JoseIdentityVerifier:
    """Verifies signed JWTs locally with python-jose."""

    def __init__(self, options: Dict[str, Any]):
        self.algorithm = options.get("algorithm", "HS256")
        self.key = options.get("public_key") or options.get("secret")
        if not self.key:
            raise ValueError("IDENTITY_VERIFIER_CONFIG requires 'secret' or 'public_key'")
        self.audience = options.get("audience")
        self.issuer = options.get("issuer")
        self.leeway = int(options.get("leeway", 0))

    async def verify(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self.key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None, "leeway": self.leeway},
            )
        except ExpiredSignatureError as e:
            raise AuthError("Token has expired", "AUTH_TOKEN_EXPIRED") from e
        except JWTError as e:
            raise AuthError("Invalid authentication token", "AUTH_TOKEN_INVALID") from e


def build_default_verifier() -> Optional[IdentityVerifier]:
    options = settings.identity_verifier_options
    if not options:
        logger.warning("IDENTITY_VERIFIER_CONFIG not set; authenticated endpoints will return 503")
        return None
    return JoseIdentityVerifier(options)


def _authorization_header(headers: Mapping[str, str]) -> Optional[str]:
    value = headers.get("authorization")
    if value is None:
        value = headers.get("Authorization")
    return value


class PrincipalResolver:
    def __init__(self, verifier: Optional[IdentityVerifier] = None, use_default_verifier: bool = True):
        if verifier is None and use_default_verifier:
            verifier = build_default_verifier()
        self.verifier = verifier

    async def resolve(self, headers: Mapping[str, str]) -> Principal:
        authorization = _authorization_header(headers)
        if not authorization:
            raise AuthError("Authorization header missing", "AUTH_TOKEN_MISSING")

        scheme, _, token = authorization.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise AuthError("Bearer token missing", "AUTH_TOKEN_MISSING")

        if self.verifier is None:
            raise AuthError("Authentication service unavailable", "AUTH_SERVICE_UNAVAILABLE")

        claims = await self.verifier.verify(token)

        exp = claims.get("exp")
        if exp is not None:
            try:
                expired = float(exp) < time.time()
            except (TypeError, ValueError) as e:
                raise AuthError("Invalid authentication token", "AUTH_TOKEN_INVALID") from e
            if expired:
                raise AuthError("Token has expired", "AUTH_TOKEN_EXPIRED")

        user_id = next((str(claims[c]) for c in USER_ID_CLAIMS if claims.get(c)), None)
        if not user_id:
            raise AuthError("Token does not identify a user", "AUTH_TOKEN_INVALID")

        return Principal(
            user_id=user_id,
            email=claims.get("email") or "",
            email_verified=bool(claims.get("email_verified", False)),
            display_name=claims.get("name"),
        )


principal_resolver = PrincipalResolver()
