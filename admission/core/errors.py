"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from admission.services.decision_engine import AdmissionDecision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    policy: str
    backend: str
    retry_after: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when caller input fails validation."""


class ConfigurationAppError(AppError):
    """Raised at startup when admission configuration is malformed."""


class PolicyNotFoundError(AppError):
    """Raised when a route asks for a policy that is not configured."""


class StoreUnavailableError(AppError):
    """Raised by counter stores when the backing store cannot be reached."""


@dataclass
class QuotaExceededError(AppError):
    """Raised when a caller is denied admission.

    Rendered as a 429 by the exception handlers; never logged as an error.
    """

    decision: "AdmissionDecision | None" = None
