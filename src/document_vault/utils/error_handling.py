"""
Error taxonomy and HTTP envelope rendering.

Domain code raises :class:`AppError` subclasses carrying a stable ``error_code``; the handlers
registered by :func:`register_exception_handlers` turn them into the failure envelope::

    {"success": false, "error": {"id": "...", "code": "...", "message": "...", "timestamp": "..."}}
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from document_vault.managers.logging_manager import get_logger
from document_vault.utils.logging_utils import get_request_id, log_error_with_context

logger = get_logger(prefix="[ErrorHandling]")

# error_code -> HTTP status
ERROR_STATUS_CODES: Dict[str, int] = {
    # Authentication
    "AUTH_TOKEN_MISSING": 401,
    "AUTH_TOKEN_INVALID": 401,
    "AUTH_TOKEN_EXPIRED": 401,
    "AUTH_SERVICE_UNAVAILABLE": 503,
    "FORBIDDEN": 403,
    # Validation
    "VALIDATION_REQUIRED_FIELD": 400,
    "VALIDATION_INVALID_FORMAT": 400,
    "VALIDATION_FILE_TOO_LARGE": 413,
    "VALIDATION_INVALID_FILE_TYPE": 400,
    # Resources
    "NOT_FOUND": 404,
    "USER_NOT_FOUND": 404,
    "DUPLICATE": 409,
    "GONE": 410,
    "LIMIT_EXCEEDED": 400,
    "CONCURRENT_MODIFICATION": 409,
    # Family
    "INVITATION_NOT_FOUND": 404,
    "INVITATION_EXPIRED": 410,
    "DUPLICATE_INVITATION": 409,
    "DUPLICATE_MEMBER": 409,
    "EMAIL_MISMATCH": 400,
    "CANNOT_REMOVE_CREATOR": 400,
    "CANNOT_CHANGE_CREATOR": 400,
    "GROUP_ARCHIVED": 410,
    # Documents
    "DOCUMENT_NOT_FOUND": 404,
    "DOCUMENT_ACCESS_DENIED": 403,
    "DOCUMENT_NOT_DELETED": 400,
    "CANNOT_UNSHARE_OWNER": 400,
    # Backend
    "DB_OPERATION_FAILED": 500,
    "SERVICE_UNAVAILABLE": 503,
    "RATE_LIMIT_EXCEEDED": 429,
    "INTERNAL_SERVER_ERROR": 500,
}

HTTP_STATUS_CODES: Dict[int, str] = {
    400: "VALIDATION_INVALID_FORMAT",
    401: "AUTH_TOKEN_INVALID",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "DUPLICATE",
    410: "GONE",
    413: "VALIDATION_FILE_TOO_LARGE",
    429: "RATE_LIMIT_EXCEEDED",
    503: "SERVICE_UNAVAILABLE",
}


class AppError(Exception):
    """Base application exception with a stable error code and context."""

    def __init__(self, message: str, error_code: str = None, context: Dict[str, Any] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "INTERNAL_SERVER_ERROR"
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_CODES.get(self.error_code, 500)


class AuthError(AppError):
    """Bearer credential missing, invalid, expired, or the verifier is unreachable."""

    def __init__(self, message: str, error_code: str = "AUTH_TOKEN_INVALID", context: Dict[str, Any] = None):
        super().__init__(message, error_code, context)


class PermissionDenied(AppError):
    def __init__(self, message: str = "You do not have permission to perform this action", error_code: str = "FORBIDDEN", context: Dict[str, Any] = None):
        super().__init__(message, error_code, context)


class ValidationError(AppError):
    """Input failed validation."""

    def __init__(self, message: str, field: str = None, error_code: str = "VALIDATION_INVALID_FORMAT"):
        super().__init__(message, error_code, {"field": field} if field else {})


class ResourceNotFound(AppError):
    def __init__(self, message: str, error_code: str = "NOT_FOUND", context: Dict[str, Any] = None):
        super().__init__(message, error_code, context)


class ConcurrentModification(AppError):
    """Optimistic concurrency retries were exhausted."""

    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(message, "CONCURRENT_MODIFICATION", context)


class RateLimitExceeded(AppError):
    def __init__(self, message: str = "Too many requests, please try again later", retry_after: Optional[int] = None):
        super().__init__(message, "RATE_LIMIT_EXCEEDED", {"retry_after": retry_after})
        self.retry_after = retry_after


def error_envelope(code: str, message: str, error_id: str, timestamp: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {
            "id": error_id,
            "code": code,
            "message": message,
            "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
        },
    }


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    error_id = get_request_id(request)
    if exc.status_code >= 500:
        logger.error(
            "[%s] %s: %s", error_id, exc.error_code, exc.message, extra={"error_id": error_id, "context": exc.context}
        )
    else:
        logger.info("[%s] %s: %s", error_id, exc.error_code, exc.message, extra={"error_id": error_id})

    headers = None
    if isinstance(exc, RateLimitExceeded) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}

    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc.error_code, exc.message, error_id, exc.timestamp),
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    code = "VALIDATION_INVALID_FORMAT"
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "form"))
        if first.get("type") == "missing":
            code = "VALIDATION_REQUIRED_FIELD"
            message = f"Missing required field: {field}" if field else "Missing required field"
        else:
            message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))

    return JSONResponse(status_code=400, content=error_envelope(code, message, get_request_id(request)))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = HTTP_STATUS_CODES.get(exc.status_code, "INTERNAL_SERVER_ERROR" if exc.status_code >= 500 else "HTTP_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(code, str(exc.detail), get_request_id(request)),
        headers=getattr(exc, "headers", None),
    )


async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    error_id = get_request_id(request)
    log_error_with_context(exc, {"error_id": error_id, "path": request.url.path})
    return JSONResponse(
        status_code=500,
        content=error_envelope("DB_OPERATION_FAILED", "A database error occurred", error_id),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error_id = get_request_id(request)
    log_error_with_context(exc, {"error_id": error_id, "path": request.url.path})
    return JSONResponse(
        status_code=500,
        content=error_envelope("INTERNAL_SERVER_ERROR", "An unexpected error occurred", error_id),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
