"""
# Authentication Dependencies

FastAPI dependencies that turn a request into an authenticated `Principal`.

## Layers

- **Lockout**: clients with too many recent authentication failures are rejected with
  `RATE_LIMIT_EXCEEDED` before their credential is even looked at.
- **Authentication**: the `PrincipalResolver` verifies the bearer credential. Invalid or expired
  credentials count towards the client's lockout.
- **Throttling**: a per-principal sliding window.
- **Directory sync**: the caller's `UserRecord` is refreshed so they can be found by email for
  invitations and shares. Failure here is logged and never blocks the request.

**Usage:**
```python
@router.get("/documents")
async def list_documents(principal: Principal = Depends(get_current_principal)):
    ...
```
"""

from fastapi import Depends, Request
from pymongo.errors import PyMongoError

from document_vault.managers.auth_manager import PrincipalResolver
from document_vault.managers.identity_manager import IdentityDirectory
from document_vault.managers.logging_manager import get_logger
from document_vault.managers.security_manager import SecurityManager
from document_vault.models.auth_models import Principal
from document_vault.routes.dependencies import (
    get_identity_directory,
    get_principal_resolver,
    get_security_manager,
)
from document_vault.utils.error_handling import AppError, AuthError
from document_vault.utils.logging_utils import log_security_event

logger = get_logger(prefix="[AuthDependencies]")

# Failures that count towards a client lockout
COUNTED_AUTH_FAILURES = ("AUTH_TOKEN_INVALID", "AUTH_TOKEN_EXPIRED")


async def get_current_principal(
    request: Request,
    resolver: PrincipalResolver = Depends(get_principal_resolver),
    security: SecurityManager = Depends(get_security_manager),
    identity: IdentityDirectory = Depends(get_identity_directory),
) -> Principal:
    client_ip = security.get_client_ip(request)
    await security.check_lockout(client_ip)

    try:
        principal = await resolver.resolve(request.headers)
    except AuthError as e:
        if e.error_code in COUNTED_AUTH_FAILURES:
            log_security_event(
                event_type="auth_failed",
                ip_address=client_ip,
                success=False,
                details={"reason": e.error_code, "path": request.url.path},
            )
            await security.record_failed_auth(client_ip, e.error_code)
        raise

    await security.check_rate_limit(principal.user_id)

    try:
        await identity.sync(principal)
    except (AppError, PyMongoError, ConnectionError) as e:
        logger.warning("Directory sync failed for user %s: %s", principal.user_id, e)

    request.state.user_id = principal.user_id
    return principal
