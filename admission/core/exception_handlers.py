"""Global exception handlers for consistent error responses.

Design:
- QuotaExceededError → 429 with the public rate-limit contract (headers and
  ``{"error", "message", "retryAfter"}`` body)
- Other AppError subclasses → 400 or 500 with ``{"error": {...}}`` body
- Unexpected Exception → generic 500 (safety net)
- All non-429 responses include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from admission.core.errors import (
    AppError,
    ConfigurationAppError,
    PolicyNotFoundError,
    QuotaExceededError,
    StoreUnavailableError,
)
from admission.core.logging import get_request_id
from admission.core.rate_limit import denial_body, denial_headers

logger = logging.getLogger(__name__)

_SERVER_FAULTS = (PolicyNotFoundError, ConfigurationAppError, StoreUnavailableError)


async def quota_exceeded_handler(request: Request, exc: QuotaExceededError) -> JSONResponse:
    """Render a denial as HTTP 429.

    Denials are the system doing its job, so they are not logged here; the
    admission service already records them at info level.
    """
    if exc.decision is None:
        # Raised without a decision: fall back to a bare 429 without reset data
        return JSONResponse(
            status_code=429,
            content={"error": "Too Many Requests", "message": exc.message},
        )

    return JSONResponse(
        status_code=429,
        content=denial_body(exc.decision),
        headers=denial_headers(exc.decision),
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to HTTP status codes:
    - PolicyNotFoundError / ConfigurationAppError / StoreUnavailableError → 500
      (programming or infrastructure fault, never the caller's)
    - Everything else (ValidationAppError, ...) → 400

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 500 if isinstance(exc, _SERVER_FAULTS) else 400

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }

    # Configuration details name internal policies; keep them server-side
    if exc.details and status_code < 500:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message; no stack traces reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Starlette resolves handlers by exception MRO, so the 429 handler wins
    over the generic AppError handler for QuotaExceededError.
    """
    app.exception_handler(QuotaExceededError)(quota_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
