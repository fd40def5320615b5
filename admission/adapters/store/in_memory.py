"""In-memory counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective quota,
  so production deployments use the Redis store.
- Thread-safe: uses a lock around shared state, which also makes each
  operation atomic with respect to concurrent tasks.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from admission.adapters.store.base import AbstractCounterStore, CounterSnapshot


@dataclass
class _CounterRecord:
    count: int
    expires_at_ms: int
    blocked_until_ms: int | None = None


@dataclass
class _PlainCounter:
    value: int
    expires_at_ms: int


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping records in a dict with TTL semantics.

    Expired entries are dropped lazily when they are next touched, the same
    way a TTL-based remote store would stop returning them.
    """

    backend = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, _CounterRecord] = {}
        self._counters: dict[str, _PlainCounter] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _live_record(self, key: str, now_ms: int) -> _CounterRecord | None:
        record = self._records.get(key)
        if record is not None and record.expires_at_ms <= now_ms:
            del self._records[key]
            return None
        return record

    def _live_counter(self, key: str, now_ms: int) -> _PlainCounter | None:
        counter = self._counters.get(key)
        if counter is not None and counter.expires_at_ms <= now_ms:
            del self._counters[key]
            return None
        return counter

    async def increment_with_expiry(self, key: str, window_seconds: int) -> CounterSnapshot:
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        now_ms = self._now_ms()
        with self._lock:
            record = self._live_record(key, now_ms)
            if record is None:
                record = _CounterRecord(count=0, expires_at_ms=now_ms + window_seconds * 1000)
                self._records[key] = record
            record.count += 1
            return CounterSnapshot(count=record.count, window_remaining_ms=record.expires_at_ms - now_ms)

    async def set_block(self, key: str, penalty_seconds: int, *, replace: bool = False) -> int:
        if penalty_seconds < 1:
            raise ValueError("penalty_seconds must be >= 1")

        now_ms = self._now_ms()
        blocked_until_ms = now_ms + penalty_seconds * 1000
        with self._lock:
            record = self._live_record(key, now_ms)
            if record is None:
                record = _CounterRecord(count=0, expires_at_ms=blocked_until_ms)
                self._records[key] = record
            elif record.blocked_until_ms is not None and not replace:
                return record.blocked_until_ms - now_ms

            record.blocked_until_ms = blocked_until_ms
            record.expires_at_ms = blocked_until_ms
            return blocked_until_ms - now_ms

    async def get_block(self, key: str) -> int | None:
        now_ms = self._now_ms()
        with self._lock:
            record = self._live_record(key, now_ms)
            if record is None or record.blocked_until_ms is None:
                return None
            return record.blocked_until_ms - now_ms

    async def increment_by(self, key: str, amount: int, ttl_seconds: int) -> int:
        now_ms = self._now_ms()
        with self._lock:
            counter = self._live_counter(key, now_ms)
            if counter is None:
                counter = _PlainCounter(value=0, expires_at_ms=0)
                self._counters[key] = counter
            counter.value += amount
            counter.expires_at_ms = now_ms + ttl_seconds * 1000
            return counter.value

    async def decrement_floor(self, key: str, amount: int, ttl_seconds: int) -> int:
        now_ms = self._now_ms()
        with self._lock:
            counter = self._live_counter(key, now_ms)
            current = counter.value if counter else 0
            new_value = max(0, current - amount)
            if new_value > 0:
                self._counters[key] = _PlainCounter(
                    value=new_value, expires_at_ms=now_ms + ttl_seconds * 1000
                )
            else:
                self._counters.pop(key, None)
            return new_value

    async def get_counter(self, key: str) -> int:
        with self._lock:
            counter = self._live_counter(key, self._now_ms())
            return counter.value if counter else 0

