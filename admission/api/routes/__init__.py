from __future__ import annotations

from admission.api.routes.health import router as health_router
from admission.api.routes.purchase_limit import router as purchase_limit_router

__all__ = ["health_router", "purchase_limit_router"]
