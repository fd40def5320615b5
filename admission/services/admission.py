"""Admission service: the per-request entry point of admission control.

Combines identity resolution, policy lookup and the decision engine, and
records what happened for observability. HTTP shaping lives in
``admission.core.rate_limit``.
"""

from __future__ import annotations

import logging
import threading

from starlette.requests import Request

from admission.adapters.store.factory import create_counter_store
from admission.core.config import AdmissionSettings, settings
from admission.core.logging import hash_key
from admission.services.decision_engine import AdmissionDecision, AdmissionEngine
from admission.services.identity import UNKNOWN_IDENTITY, resolve_identity
from admission.services.policies import PolicyRegistry, get_policy_registry

logger = logging.getLogger(__name__)


class AdmissionService:
    """Resolves identity and policy for a request and asks the engine to decide.

    Attributes:
        registry: Policies available to routes.
        engine: Decision engine bound to the shared counter store.
    """

    def __init__(
        self,
        registry: PolicyRegistry,
        engine: AdmissionEngine,
        *,
        trust_forwarded_headers: bool = True,
    ) -> None:
        self.registry = registry
        self.engine = engine
        self._trust_forwarded_headers = trust_forwarded_headers
        self._lock = threading.Lock()
        self._allowed = 0
        self._denied = 0
        self._degraded = 0

    async def check(
        self,
        policy_name: str,
        request: Request,
        override_key: str | None = None,
    ) -> AdmissionDecision:
        """Decide whether ``request`` may run the operation guarded by ``policy_name``.

        Args:
            policy_name: Name of a configured policy.
            request: Incoming request (used for the network origin).
            override_key: Optional key that replaces the network origin.

        Returns:
            AdmissionDecision; store failures yield an allowed, degraded one.

        Raises:
            PolicyNotFoundError: If ``policy_name`` is not configured.
        """
        policy = self.registry.get(policy_name)
        key = resolve_identity(
            request,
            override_key,
            trust_forwarded_headers=self._trust_forwarded_headers,
        )
        decision = await self.engine.decide(policy, key)
        self._record(decision, key, key_type="override" if override_key else "origin")
        return decision

    def _record(self, decision: AdmissionDecision, key: str, *, key_type: str) -> None:
        log_extra = {
            "policy": decision.policy,
            "key_type": key_type,
            "key_hash": hash_key(key),
            "unknown_identity": key == UNKNOWN_IDENTITY,
        }

        with self._lock:
            if decision.degraded:
                self._degraded += 1
            elif decision.allowed:
                self._allowed += 1
            else:
                self._denied += 1

        if decision.degraded:
            logger.warning("admission.degraded", extra=log_extra)
        elif decision.allowed:
            logger.debug(
                "admission.allowed",
                extra={**log_extra, "remaining": decision.remaining_quota},
            )
        else:
            logger.info(
                "admission.denied",
                extra={**log_extra, "retry_after_s": decision.retry_after_seconds},
            )

    def stats(self) -> dict[str, int]:
        """Return decision counters since process start."""

        with self._lock:
            return {
                "allowed": self._allowed,
                "denied": self._denied,
                "degraded": self._degraded,
            }

    async def close(self) -> None:
        await self.engine.store.close()


def build_admission_service(admission_settings: AdmissionSettings | None = None) -> AdmissionService:
    """Wire registry, store and engine from configuration."""

    cfg = admission_settings or settings.admission
    engine = AdmissionEngine(
        create_counter_store(cfg),
        key_prefix=cfg.key_prefix,
        refresh_penalty=cfg.refresh_penalty,
    )
    return AdmissionService(
        get_policy_registry(),
        engine,
        trust_forwarded_headers=cfg.trust_forwarded_headers,
    )


_service: AdmissionService | None = None


def get_admission_service() -> AdmissionService:
    """Return the process-wide admission service, building it on first use."""

    global _service

    if _service is None:
        _service = build_admission_service()
        logger.info(
            "admission.ready",
            extra={
                "backend": _service.engine.store.backend,
                "policies": _service.registry.names(),
            },
        )
    return _service


def set_admission_service(service: AdmissionService | None) -> None:
    """Replace the process-wide service (tests and custom wiring)."""

    global _service
    _service = service


async def close_admission_service() -> None:
    """Close the store connection and forget the service (shutdown)."""

    global _service

    if _service is not None:
        await _service.close()
        _service = None
