"""Admission decision engine: fixed window with a penalty box.

For a (policy, key) pair the engine counts operations in a fixed window
that starts with the first operation. The call that takes the count to
``quota + 1`` imposes a penalty of ``penalty_seconds``; while it lasts every
call is denied without touching the counter, and the penalty is not
extended by further attempts (unless ``refresh_penalty`` is enabled).

The engine holds no state. All counters live in the injected store, whose
atomic increment is the only synchronization point between concurrent
requests and between service instances.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from admission.adapters.store.base import AbstractCounterStore
from admission.core.errors import StoreUnavailableError
from admission.core.logging import hash_key
from admission.services.policies import Policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of one admission check.

    Attributes:
        policy: Name of the policy that was applied.
        allowed: Whether the operation may proceed.
        remaining_quota: Operations left in the window (0 when denied).
        reset_after_ms: Milliseconds until the caller may usefully retry
            (window end when allowed, block end when denied).
        reset_at_ms: Epoch milliseconds matching ``reset_after_ms`` on this
            instance's clock. The remaining time itself comes from the store.
        degraded: True when the store could not be consulted.
    """

    policy: str
    allowed: bool
    remaining_quota: int
    reset_after_ms: int
    reset_at_ms: int
    degraded: bool = False

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds to wait, rounded up, for the Retry-After header.

        A denial never advertises zero, which would invite an immediate retry.
        """
        seconds = -(-self.reset_after_ms // 1000)
        return seconds if self.allowed else max(1, seconds)


class AdmissionEngine:
    """Decides admission for a policy and identity key against a counter store."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        key_prefix: str = "rl",
        refresh_penalty: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Shared counter store.
            key_prefix: Namespace for record keys in the store.
            refresh_penalty: Re-impose the full penalty on attempts made
                while blocked instead of keeping the original block.
            clock: Time source function returning UNIX time in seconds.
        """
        self._store = store
        self._key_prefix = key_prefix
        self._refresh_penalty = refresh_penalty
        self._clock = clock

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    def record_key(self, policy: Policy, key: str) -> str:
        """Build the store key for a (policy, identity) record."""
        return f"{self._key_prefix}:{policy.name}:{key}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def decide(self, policy: Policy, key: str) -> AdmissionDecision:
        """Consume one unit of ``policy`` for ``key`` and decide admission.

        Never raises for store failures: an unreachable store produces an
        allowed, degraded decision so admission control cannot take the
        protected operation down with it.

        Args:
            policy: Policy to enforce.
            key: Resolved identity key.

        Returns:
            AdmissionDecision for this call.
        """
        record_key = self.record_key(policy, key)
        try:
            return await self._decide(policy, record_key)
        except StoreUnavailableError as exc:
            logger.debug(
                "admission.store_unavailable",
                extra={
                    "policy": policy.name,
                    "key_hash": hash_key(key),
                    "error_code": exc.code,
                },
            )
            now_ms = self._now_ms()
            return AdmissionDecision(
                policy=policy.name,
                allowed=True,
                remaining_quota=policy.quota,
                reset_after_ms=0,
                reset_at_ms=now_ms,
                degraded=True,
            )

    async def _decide(self, policy: Policy, record_key: str) -> AdmissionDecision:
        block_ms = await self._store.get_block(record_key)

        if block_ms is not None:
            if self._refresh_penalty:
                block_ms = await self._store.set_block(
                    record_key, policy.penalty_seconds, replace=True
                )
            return self._denied(policy, block_ms, self._now_ms())

        snapshot = await self._store.increment_with_expiry(record_key, policy.window_seconds)
        now_ms = self._now_ms()

        if snapshot.count <= policy.quota:
            reset_after_ms = max(0, snapshot.window_remaining_ms)
            return AdmissionDecision(
                policy=policy.name,
                allowed=True,
                remaining_quota=policy.quota - snapshot.count,
                reset_after_ms=reset_after_ms,
                reset_at_ms=now_ms + reset_after_ms,
            )

        # The call producing quota + 1 imposes the block; concurrent callers
        # that also crossed get the block it already set.
        block_ms = await self._store.set_block(record_key, policy.penalty_seconds)
        if snapshot.count == policy.quota + 1:
            logger.info(
                "admission.penalty_imposed",
                extra={
                    "policy": policy.name,
                    "penalty_s": policy.penalty_seconds,
                },
            )
        return self._denied(policy, block_ms, now_ms)

    @staticmethod
    def _denied(policy: Policy, block_ms: int, now_ms: int) -> AdmissionDecision:
        reset_after_ms = max(0, block_ms)
        return AdmissionDecision(
            policy=policy.name,
            allowed=False,
            remaining_quota=0,
            reset_after_ms=reset_after_ms,
            reset_at_ms=now_ms + reset_after_ms,
        )
