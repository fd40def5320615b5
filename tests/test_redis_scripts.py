"""Tests for the Redis store's Lua scripts, run against an in-process Redis.

fakeredis executes the scripts through its Lua engine, so these cover the
server-side atomicity the mocked-client tests cannot see.
"""

import asyncio

import fakeredis

from admission.adapters.store.redis_store import RedisCounterStore
from admission.services.decision_engine import AdmissionEngine
from admission.services.policies import Policy


def make_store(server: fakeredis.FakeServer | None = None) -> RedisCounterStore:
    client = fakeredis.FakeAsyncRedis(server=server or fakeredis.FakeServer(), decode_responses=True)
    return RedisCounterStore(client, operation_timeout_seconds=5.0)


def test_window_expiry_set_on_first_increment_only() -> None:
    async def scenario():
        store = make_store()
        first = await store.increment_with_expiry("rl:auth:k", 60)
        await asyncio.sleep(0.05)
        second = await store.increment_with_expiry("rl:auth:k", 60)
        ttl = await store._client.pttl("rl:auth:k")
        await store.close()
        return first, second, ttl

    first, second, ttl = asyncio.run(scenario())

    assert (first.count, second.count) == (1, 2)
    assert first.window_remaining_ms == 60_000
    assert second.window_remaining_ms < 60_000
    assert 59_000 < ttl <= 60_000


def test_block_is_set_once_and_replaces_window_ttl() -> None:
    async def scenario():
        store = make_store()
        before = await store.get_block("rl:cart:k")
        await store.increment_with_expiry("rl:cart:k", 60)
        unblocked = await store.get_block("rl:cart:k")
        first = await store.set_block("rl:cart:k", 120)
        kept = await store.set_block("rl:cart:k", 30)
        key_ttl = await store._client.pttl("rl:cart:k")
        replaced = await store.set_block("rl:cart:k", 30, replace=True)
        remaining = await store.get_block("rl:cart:k")
        count = await store._client.hget("rl:cart:k", "count")
        await store.close()
        return before, unblocked, first, kept, key_ttl, replaced, remaining, count

    before, unblocked, first, kept, key_ttl, replaced, remaining, count = asyncio.run(scenario())

    assert before is None
    assert unblocked is None
    assert first == 120_000
    assert 119_000 < kept <= 120_000
    # the record now lives exactly as long as the penalty
    assert 119_000 < key_ttl <= 120_000
    assert replaced == 30_000
    assert 29_000 < remaining <= 30_000
    assert count == "1"


def test_decrement_floor_deletes_at_zero() -> None:
    async def scenario():
        store = make_store()
        added = await store.increment_by("purchase:c:v:2026-01-01", 4, 100)
        lowered = await store.decrement_floor("purchase:c:v:2026-01-01", 1, 100)
        ttl = await store._client.ttl("purchase:c:v:2026-01-01")
        floored = await store.decrement_floor("purchase:c:v:2026-01-01", 10, 100)
        exists = await store._client.exists("purchase:c:v:2026-01-01")
        missing = await store.decrement_floor("purchase:c:other:2026-01-01", 3, 100)
        await store.close()
        return added, lowered, ttl, floored, exists, missing

    added, lowered, ttl, floored, exists, missing = asyncio.run(scenario())

    assert (added, lowered) == (4, 3)
    assert 99 <= ttl <= 100
    assert floored == 0
    assert exists == 0
    assert missing == 0


def test_concurrent_burst_admits_exactly_quota() -> None:
    policy = Policy("burst", quota=5, window_seconds=60, penalty_seconds=120)

    async def scenario():
        store = make_store()
        engine = AdmissionEngine(store, clock=lambda: 1_000.0)
        decisions = await asyncio.gather(*(engine.decide(policy, "203.0.113.7") for _ in range(10)))
        ttl = await store._client.pttl(engine.record_key(policy, "203.0.113.7"))
        await store.close()
        return decisions, ttl

    decisions, ttl = asyncio.run(scenario())
    allowed = [d for d in decisions if d.allowed]
    denied = [d for d in decisions if not d.allowed]

    assert sorted(d.remaining_quota for d in allowed) == [0, 1, 2, 3, 4]
    assert len(denied) == 5
    assert all(119_000 < d.reset_after_ms <= 120_000 for d in denied)
    assert not any(d.degraded for d in decisions)
    assert 119_000 < ttl <= 120_000


def test_skewed_instances_share_one_deadline() -> None:
    policy = Policy("burst", quota=2, window_seconds=60, penalty_seconds=60)

    async def scenario():
        server = fakeredis.FakeServer()
        store_a, store_b = make_store(server), make_store(server)
        engine_a = AdmissionEngine(store_a, clock=lambda: 1_000.0)
        engine_b = AdmissionEngine(store_b, clock=lambda: 1_090.0)
        for _ in range(3):
            await engine_a.decide(policy, "k")
        decision = await engine_b.decide(policy, "k")
        await store_a.close()
        await store_b.close()
        return decision

    decision = asyncio.run(scenario())

    assert decision.allowed is False
    assert 59_000 < decision.reset_after_ms <= 60_000
    assert decision.retry_after_seconds == 60
