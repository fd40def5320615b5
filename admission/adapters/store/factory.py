"""Factory for creating counter store instances."""

from admission.adapters.store.base import AbstractCounterStore
from admission.adapters.store.in_memory import InMemoryCounterStore
from admission.adapters.store.redis_store import RedisCounterStore
from admission.core.config import AdmissionSettings, settings
from admission.core.errors import ConfigurationAppError


def create_counter_store(admission_settings: AdmissionSettings | None = None) -> AbstractCounterStore:
    """Instantiate the counter store selected by configuration.

    Args:
        admission_settings: Settings to read; defaults to the global settings.

    Returns:
        AbstractCounterStore: Configured store instance.

    Raises:
        ConfigurationAppError: If the backend name is not supported.
    """
    cfg = admission_settings or settings.admission
    backend = cfg.store_backend.lower()

    if backend == "redis":
        return RedisCounterStore.from_url(
            cfg.redis_url,
            operation_timeout_seconds=cfg.operation_timeout_seconds,
            connect_timeout_seconds=cfg.connect_timeout_seconds,
        )

    if backend == "memory":
        return InMemoryCounterStore()

    raise ConfigurationAppError(
        code="unknown_store_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported backends: redis, memory",
    )
