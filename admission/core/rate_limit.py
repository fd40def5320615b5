"""Admission control wiring for FastAPI routes.

This module is the HTTP face of admission control.

Design goals:
- Minimal coupling: routes depend on a dependency function only.
- Fail fast: a route naming an unknown policy breaks at import time, not on
  the first request.
- Fail open: store outages degrade to "allow" inside the engine, so the only
  way this layer stops a request is a genuine quota denial.

Usage:
    @router.post("/cart/merge", dependencies=[Depends(rate_limit("cart"))])
    async def merge_cart(...): ...

    # Quota keyed by a resource instead of the caller's address
    @router.post("/chat", dependencies=[Depends(rate_limit("chat", key_func=customer_id))])

    # Key only known after validating the body
    await enforce_admission("phoneVerify", request, response, phone_override_key(phone))
"""

from __future__ import annotations

import inspect
from typing import Awaitable, Callable, Union

from fastapi import Request, Response

from admission.core.config import settings
from admission.core.errors import QuotaExceededError
from admission.services.admission import get_admission_service
from admission.services.decision_engine import AdmissionDecision
from admission.services.policies import get_policy_registry

KeyFunc = Callable[[Request], Union[str, None, Awaitable[Union[str, None]]]]

RATE_LIMIT_ERROR = "Too Many Requests"
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


def denial_headers(decision: AdmissionDecision) -> dict[str, str]:
    """Headers attached to a 429 response."""

    return {
        "Retry-After": str(decision.retry_after_seconds),
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": str(decision.reset_at_ms),
    }


def denial_body(decision: AdmissionDecision) -> dict[str, str | int]:
    """JSON body of a 429 response."""

    return {
        "error": RATE_LIMIT_ERROR,
        "message": RATE_LIMIT_MESSAGE,
        "retryAfter": decision.retry_after_seconds,
    }


async def enforce_admission(
    policy_name: str,
    request: Request,
    response: Response,
    override_key: str | None = None,
) -> AdmissionDecision | None:
    """Check admission and shape the HTTP outcome.

    On allow, sets ``X-RateLimit-Remaining`` on ``response``. On deny,
    raises ``QuotaExceededError``, which the exception handlers turn into
    the 429 contract.

    Args:
        policy_name: Policy guarding the operation.
        request: Incoming request.
        response: Outgoing response whose headers receive quota metadata.
        override_key: Optional identity key replacing the network origin.

    Returns:
        The decision, or None when admission control is disabled.

    Raises:
        QuotaExceededError: When the caller is over quota or penalised.
        PolicyNotFoundError: If ``policy_name`` is not configured.
    """

    if not settings.admission.enabled:
        return None

    decision = await get_admission_service().check(policy_name, request, override_key)
    if decision.allowed:
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining_quota)
        return decision

    raise QuotaExceededError(
        code="rate_limit_exceeded",
        message=RATE_LIMIT_MESSAGE,
        details={"policy": decision.policy, "retry_after": decision.retry_after_seconds},
        decision=decision,
    )


def rate_limit(policy_name: str, *, key_func: KeyFunc | None = None) -> Callable[..., Awaitable[AdmissionDecision | None]]:
    """Build a FastAPI dependency enforcing ``policy_name``.

    The policy is resolved immediately so a typo fails at startup.

    Args:
        policy_name: Policy guarding the route.
        key_func: Optional callable (sync or async) deriving an override key
            from the request; returning None falls back to the network origin.

    Returns:
        Dependency callable for ``Depends``.

    Raises:
        PolicyNotFoundError: If ``policy_name`` is not configured.
    """

    get_policy_registry().get(policy_name)

    async def dependency(request: Request, response: Response) -> AdmissionDecision | None:
        if not settings.admission.enabled:
            return None

        override_key = None
        if key_func is not None:
            override_key = key_func(request)
            if inspect.isawaitable(override_key):
                override_key = await override_key

        return await enforce_admission(policy_name, request, response, override_key)

    dependency.__name__ = f"rate_limit_{policy_name}"
    return dependency
