"""HTTP middleware for request ID propagation and access logging.

Every request/response pair carries a correlation ID so admission decisions
logged deep in the stack can be tied back to the request that caused them.

The middleware:
- Accepts the incoming X-Request-ID header or generates a UUID
- Stores request_id in contextvars for the duration of the request
- Echoes request_id and total duration in response headers
- Logs one ``request.completed`` line, flagging 429 responses

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from admission.core.config import settings
from admission.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)


async def request_id_middleware(request: Request, call_next) -> Response:
    """Generate or propagate the request ID and time the request.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with ``X-Request-ID`` and
            ``X-Request-Duration-ms`` headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request.completed",
            extra={
                "request_method": request.method,
                "request_path": request.url.path,
                "status": response.status_code,
                "throttled": response.status_code == 429,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
