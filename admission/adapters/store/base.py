"""Counter store interfaces.

The admission engine depends on this abstraction only, so the shared store
(Redis in production) and the single-process store used in tests and local
runs are interchangeable.

Every operation must be atomic against the backing store: concurrent callers
for the same key observe distinct, totally ordered results.

Durations come back as milliseconds remaining, measured by the store. Several
service instances share one store, and their own clocks need not agree.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CounterSnapshot:
    """Result of an atomic increment.

    Attributes:
        count: Counter value after the increment (1 for a fresh window).
        window_remaining_ms: Milliseconds until the counter resets.
    """

    count: int
    window_remaining_ms: int


class AbstractCounterStore(ABC):
    """Interface for shared counter stores.

    Implementations raise ``StoreUnavailableError`` when the backing store
    cannot be reached; they never let transport errors escape.
    """

    backend: str = "abstract"

    @abstractmethod
    async def increment_with_expiry(self, key: str, window_seconds: int) -> CounterSnapshot:
        """Increment the window counter for ``key``.

        The expiry is set only when the increment creates the counter, never
        on later increments.

        Args:
            key: Fully qualified record key.
            window_seconds: Window length applied to a fresh counter.

        Returns:
            CounterSnapshot with the post-increment count and the time left in its window.
        """
        raise NotImplementedError

    @abstractmethod
    async def set_block(self, key: str, penalty_seconds: int, *, replace: bool = False) -> int:
        """Impose a penalty on ``key``.

        Without ``replace`` the block is set only if none exists, so racing
        callers converge on one value. Imposing a block also makes the record
        expire together with the block.

        Args:
            key: Fully qualified record key.
            penalty_seconds: Penalty duration.
            replace: Overwrite an existing block instead of keeping it.

        Returns:
            Milliseconds left on the effective block.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_block(self, key: str) -> int | None:
        """Return the milliseconds left on the block for ``key``, or None."""
        raise NotImplementedError

    @abstractmethod
    async def increment_by(self, key: str, amount: int, ttl_seconds: int) -> int:
        """Add ``amount`` to a plain counter and refresh its TTL."""
        raise NotImplementedError

    @abstractmethod
    async def decrement_floor(self, key: str, amount: int, ttl_seconds: int) -> int:
        """Subtract ``amount`` from a plain counter without going below zero.

        The counter is deleted when it reaches zero.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_counter(self, key: str) -> int:
        """Read a plain counter (0 when absent)."""
        raise NotImplementedError

    async def ping(self) -> bool:
        """Return True when the backing store answers."""
        return True

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
