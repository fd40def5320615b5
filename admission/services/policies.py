"""Admission policies and the process-wide policy registry.

A policy names one category of protected operation and the quota that
applies to it. The registry is built once from configuration and never
mutated afterwards; asking it for an unknown name is a programming error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

from admission.core.config import AdmissionSettings, settings
from admission.core.errors import ConfigurationAppError, PolicyNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Policy:
    """Quota parameters for one protected operation category.

    Attributes:
        name: Unique policy identifier.
        quota: Maximum operations allowed per window.
        window_seconds: Length of the accounting window.
        penalty_seconds: Denial period imposed once the quota is exceeded.
    """

    name: str
    quota: int
    window_seconds: int
    penalty_seconds: int

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("policy name must be a non-empty string")
        for field_name in ("quota", "window_seconds", "penalty_seconds"):
            if getattr(self, field_name) < 1:
                raise ValueError(f"{field_name} must be >= 1")


DEFAULT_POLICIES: tuple[Policy, ...] = (
    # Account sync, orders, push tokens
    Policy("auth", quota=20, window_seconds=60, penalty_seconds=60),
    # Account deletion
    Policy("sensitive", quota=5, window_seconds=3600, penalty_seconds=3600),
    Policy("address", quota=30, window_seconds=60, penalty_seconds=60),
    Policy("cart", quota=60, window_seconds=60, penalty_seconds=30),
    # Identity provider webhooks arrive in bursts
    Policy("webhook", quota=100, window_seconds=60, penalty_seconds=60),
    Policy("game", quota=30, window_seconds=60, penalty_seconds=60),
    Policy("chat", quota=20, window_seconds=60, penalty_seconds=60),
    # Keyed by phone number to stop SMS bombing
    Policy("phoneVerify", quota=5, window_seconds=600, penalty_seconds=600),
)


class PolicyRegistry:
    """Read-only lookup of policies by name."""

    def __init__(self, policies: Mapping[str, Policy] | Iterable[Policy]) -> None:
        if isinstance(policies, Mapping):
            table = dict(policies)
        else:
            table = {policy.name: policy for policy in policies}
        self._policies: Mapping[str, Policy] = MappingProxyType(table)

    def get(self, name: str) -> Policy:
        """Return the policy registered under ``name``.

        Raises:
            PolicyNotFoundError: If no such policy is configured.
        """
        try:
            return self._policies[name]
        except KeyError:
            raise PolicyNotFoundError(
                code="policy_not_found",
                message=f"Admission policy '{name}' is not configured",
                details={"policy": name, "hint": f"Known policies: {', '.join(self.names())}"},
            ) from None

    def names(self) -> list[str]:
        return list(self._policies)

    def __iter__(self) -> Iterator[Policy]:
        return iter(self._policies.values())

    def __contains__(self, name: object) -> bool:
        return name in self._policies

    def __len__(self) -> int:
        return len(self._policies)


def parse_policy_overrides(overrides: str | None) -> dict[str, tuple[int, int, int]]:
    """Parse comma-separated policy overrides.

    Args:
        overrides: String such as ``"cart=100/60/30, chat=10/60/120"`` where
            each entry is ``name=quota/window_seconds/penalty_seconds``.

    Returns:
        Mapping of policy name to ``(quota, window_seconds, penalty_seconds)``.

    Raises:
        ConfigurationAppError: If an entry is malformed.

    Examples:
        >>> parse_policy_overrides("cart=100/60/30")
        {'cart': (100, 60, 30)}
        >>> parse_policy_overrides(None)
        {}
    """
    if not overrides:
        return {}

    parsed: dict[str, tuple[int, int, int]] = {}
    for entry in (item.strip() for item in overrides.split(",")):
        if not entry:
            continue
        name, sep, values = entry.partition("=")
        parts = values.split("/")
        if not sep or not name.strip() or len(parts) != 3:
            raise ConfigurationAppError(
                code="invalid_policy_override",
                message=f"Malformed policy override '{entry}'",
                details={"hint": "Use name=quota/window_seconds/penalty_seconds"},
            )
        try:
            quota, window, penalty = (int(part.strip()) for part in parts)
        except ValueError:
            raise ConfigurationAppError(
                code="invalid_policy_override",
                message=f"Policy override '{entry}' must use integer values",
                details={"policy": name.strip()},
            ) from None
        parsed[name.strip()] = (quota, window, penalty)
    return parsed


def build_policy_registry(admission_settings: AdmissionSettings | None = None) -> PolicyRegistry:
    """Build the registry from defaults plus configured overrides.

    Overrides may only adjust known policies; unknown names and non-positive
    values fail at startup rather than silently leaving a route unprotected.

    Raises:
        ConfigurationAppError: If an override is malformed or unknown.
    """
    cfg = admission_settings or settings.admission
    table = {policy.name: policy for policy in DEFAULT_POLICIES}

    for name, (quota, window, penalty) in parse_policy_overrides(cfg.policy_overrides).items():
        if name not in table:
            raise ConfigurationAppError(
                code="unknown_policy_override",
                message=f"Cannot override unknown admission policy '{name}'",
                details={"policy": name},
            )
        try:
            table[name] = Policy(name, quota=quota, window_seconds=window, penalty_seconds=penalty)
        except ValueError as exc:
            raise ConfigurationAppError(
                code="invalid_policy_override",
                message=f"Invalid override for policy '{name}': {exc}",
                details={"policy": name},
            ) from exc
        logger.info(
            "policy.overridden",
            extra={
                "policy": name,
                "quota": quota,
                "window_s": window,
                "penalty_s": penalty,
            },
        )

    return PolicyRegistry(table)


_registry: PolicyRegistry | None = None


def get_policy_registry() -> PolicyRegistry:
    """Return the process-wide registry, building it on first use."""

    global _registry

    if _registry is None:
        _registry = build_policy_registry()
    return _registry
