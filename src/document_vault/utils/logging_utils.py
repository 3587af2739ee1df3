"""Request and lifecycle logging helpers shared by the application entry point and routers."""

import time
import uuid
from typing import Any, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from document_vault.managers.logging_manager import get_logger

logger = get_logger(prefix="[Request]")
lifecycle_logger = get_logger(prefix="[Lifecycle]")
security_logger = get_logger(prefix="[Security]")

REQUEST_ID_HEADER = "X-Request-ID"


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:12]


def get_request_id(request: Request) -> str:
    """Correlation id attached by :class:`RequestLoggingMiddleware`, or a fresh one."""
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = new_correlation_id()
        request.state.request_id = request_id
    return request_id


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns a correlation id to each request and logs method, path, status and duration."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or new_correlation_id()
        request.state.request_id = request_id
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "%s %s -> %d (%.3fs)",
            request.method,
            request.url.path,
            response.status_code,
            duration,
            extra={"request_id": request_id, "status_code": response.status_code, "duration": duration},
        )
        return response


def log_application_lifecycle(event: str, details: Optional[Dict[str, Any]] = None) -> None:
    lifecycle_logger.info("%s %s", event, details or {}, extra={"lifecycle_event": event})


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    success: bool = True,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Structured security log line (authentication failures, lockouts, denials)."""
    log = security_logger.info if success else security_logger.warning
    log(
        "event=%s user=%s ip=%s success=%s details=%s",
        event_type,
        user_id,
        ip_address,
        success,
        details or {},
        extra={"security_event": event_type},
    )


def log_error_with_context(error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    logger.error(
        "Unhandled %s: %s context=%s",
        type(error).__name__,
        error,
        context or {},
        exc_info=error,
    )
