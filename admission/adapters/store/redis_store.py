"""Redis counter store adapter.

Each record lives in one Redis hash (``count`` and, while penalised, a
``blocked`` flag) whose key TTL is the window, or the penalty once one is
imposed. Remaining time is always read from the key TTL, so every instance
sharing the store sees the same deadline whatever its own clock says.

All read-modify-write steps run as Lua scripts so they are atomic on the
server; the service process holds no counter state of its own.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from admission.adapters.store.base import AbstractCounterStore, CounterSnapshot
from admission.core.errors import StoreUnavailableError
from admission.core.logging import hash_key

logger = logging.getLogger(__name__)


# Sets the window expiry only when HINCRBY created the key (no TTL yet).
_INCREMENT_LUA = """
local count = redis.call('HINCRBY', KEYS[1], 'count', 1)
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
  ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""

# ARGV: penalty_ms, replace (0/1). Returns the ms left on the effective block.
_SET_BLOCK_LUA = """
if ARGV[2] == '0' and redis.call('HEXISTS', KEYS[1], 'blocked') == 1 then
  local ttl = redis.call('PTTL', KEYS[1])
  if ttl > 0 then
    return ttl
  end
end
redis.call('HSET', KEYS[1], 'blocked', 1)
redis.call('PEXPIRE', KEYS[1], ARGV[1])
return tonumber(ARGV[1])
"""

# -1 when the record carries no block
_GET_BLOCK_LUA = """
if redis.call('HEXISTS', KEYS[1], 'blocked') == 0 then
  return -1
end
return redis.call('PTTL', KEYS[1])
"""

_DECREMENT_FLOOR_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local remaining = current - tonumber(ARGV[1])
if remaining > 0 then
  redis.call('SET', KEYS[1], remaining, 'EX', ARGV[2])
  return remaining
end
redis.call('DEL', KEYS[1])
return 0
"""


def _consume_task_result(task: asyncio.Future) -> None:
    # Shielded operations may finish after the caller gave up on them.
    if not task.cancelled() and task.exception() is not None:
        logger.debug(
            "store.late_failure",
            extra={"error_type": type(task.exception()).__name__},
        )


class RedisCounterStore(AbstractCounterStore):
    """Counter store backed by a shared Redis instance.

    Every call is bounded by ``operation_timeout_seconds`` and shielded from
    cancellation of the calling request: an increment already sent to Redis
    is allowed to land so the counter never undercounts.
    """

    backend = "redis"

    def __init__(
        self,
        client: Redis | None,
        *,
        operation_timeout_seconds: float = 0.25,
    ) -> None:
        """Initialize the adapter.

        Args:
            client: Async Redis client, or None when no store is configured
                (every call then raises StoreUnavailableError).
            operation_timeout_seconds: Upper bound for one round trip.
        """
        self._client = client
        self._timeout = operation_timeout_seconds
        if client is not None:
            self._increment_script = client.register_script(_INCREMENT_LUA)
            self._get_block_script = client.register_script(_GET_BLOCK_LUA)
            self._set_block_script = client.register_script(_SET_BLOCK_LUA)
            self._decrement_script = client.register_script(_DECREMENT_FLOOR_LUA)

    @classmethod
    def from_url(
        cls,
        url: str | None,
        *,
        operation_timeout_seconds: float = 0.25,
        connect_timeout_seconds: float = 1.0,
    ) -> "RedisCounterStore":
        """Build a store from a Redis URL.

        The client does not retry: a failed round trip fails open right away
        instead of stretching the protected request.
        """

        if not url:
            logger.warning("store.not_configured", extra={"backend": cls.backend})
            return cls(None, operation_timeout_seconds=operation_timeout_seconds)

        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=connect_timeout_seconds,
            socket_timeout=operation_timeout_seconds,
            retry_on_timeout=False,
        )
        return cls(client, operation_timeout_seconds=operation_timeout_seconds)

    async def _run(self, operation: str, key: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Execute one store call with timeout, shielding and error mapping.

        Raises:
            StoreUnavailableError: If the store is unconfigured, unreachable,
                errors out, or does not answer within the timeout.
        """
        if self._client is None:
            raise StoreUnavailableError(
                code="store_not_configured",
                message="Counter store is not configured",
                details={"backend": self.backend},
            )

        task = asyncio.ensure_future(call())
        task.add_done_callback(_consume_task_result)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "store.timeout",
                extra={
                    "operation": operation,
                    "key_hash": hash_key(key),
                    "timeout_s": self._timeout,
                },
            )
            raise StoreUnavailableError(
                code="store_timeout",
                message=f"Counter store did not answer within {self._timeout}s",
                details={"backend": self.backend},
            ) from exc
        except (RedisError, OSError) as exc:
            logger.warning(
                "store.unavailable",
                extra={
                    "operation": operation,
                    "key_hash": hash_key(key),
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Counter store is unreachable",
                details={"backend": self.backend},
            ) from exc

    async def increment_with_expiry(self, key: str, window_seconds: int) -> CounterSnapshot:
        count, ttl_ms = await self._run(
            "increment_with_expiry",
            key,
            lambda: self._increment_script(keys=[key], args=[window_seconds * 1000]),
        )
        return CounterSnapshot(count=int(count), window_remaining_ms=int(ttl_ms))

    async def set_block(self, key: str, penalty_seconds: int, *, replace: bool = False) -> int:
        remaining_ms = await self._run(
            "set_block",
            key,
            lambda: self._set_block_script(
                keys=[key],
                args=[penalty_seconds * 1000, 1 if replace else 0],
            ),
        )
        return int(remaining_ms)

    async def get_block(self, key: str) -> int | None:
        remaining_ms = int(
            await self._run(
                "get_block",
                key,
                lambda: self._get_block_script(keys=[key]),
            )
        )
        return remaining_ms if remaining_ms > 0 else None

    async def increment_by(self, key: str, amount: int, ttl_seconds: int) -> int:
        async def _incr() -> int:
            async with self._client.pipeline(transaction=True) as pipe:  # type: ignore[union-attr]
                pipe.incrby(key, amount)
                pipe.expire(key, ttl_seconds)
                new_total, _ = await pipe.execute()
            return int(new_total)

        return await self._run("increment_by", key, _incr)

    async def decrement_floor(self, key: str, amount: int, ttl_seconds: int) -> int:
        value = await self._run(
            "decrement_floor",
            key,
            lambda: self._decrement_script(keys=[key], args=[amount, ttl_seconds]),
        )
        return int(value)

    async def get_counter(self, key: str) -> int:
        value = await self._run(
            "get_counter",
            key,
            lambda: self._client.get(key),  # type: ignore[union-attr]
        )
        return int(value) if value else 0

    async def ping(self) -> bool:
        try:
            return bool(await self._run("ping", "ping", lambda: self._client.ping()))  # type: ignore[union-attr]
        except StoreUnavailableError:
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            logger.info("store.closed", extra={"backend": self.backend})
