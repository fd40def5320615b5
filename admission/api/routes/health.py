from __future__ import annotations

from fastapi import APIRouter

from admission.services.admission import get_admission_service

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Never touches the counter store, so a store outage does not make the
    service look dead to the load balancer.
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check() -> dict:
    """Readiness check with counter store status.

    Always answers 200: admission control fails open, so an unreachable
    store degrades enforcement but does not stop the service from serving.

    Returns:
        dict: ``status`` ("ok" or "degraded"), ``store`` ("up" or "down"),
            the store backend name and admission decision counters.
    """

    service = get_admission_service()
    store_up = await service.engine.store.ping()
    return {
        "status": "ok" if store_up else "degraded",
        "store": "up" if store_up else "down",
        "backend": service.engine.store.backend,
        "admission": service.stats(),
    }
