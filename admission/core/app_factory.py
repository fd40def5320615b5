from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers,
lifespan) so tests can build isolated instances.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from admission.api.routes import health_router, purchase_limit_router
from admission.core.config import settings
from admission.core.exception_handlers import setup_exception_handlers
from admission.core.logging import configure_logging
from admission.core.middleware import request_id_middleware
from admission.services.admission import close_admission_service, get_admission_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the admission service on startup and close its store on shutdown."""
    get_admission_service()
    try:
        yield
    finally:
        await close_admission_service()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Storefront Admission API",
        description=(
            "Shared-state admission control for the storefront's sensitive "
            "operations: per-policy quotas with a penalty box, enforced "
            "consistently across instances through a shared counter store "
            "and failing open when that store is unavailable."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(purchase_limit_router)
    app.include_router(health_router)

    logger.info(
        "app.created",
        extra={
            "app_env": settings.app_env,
            "admission_enabled": settings.admission.enabled,
            "store_backend": settings.admission.store_backend,
        },
    )
    return app
