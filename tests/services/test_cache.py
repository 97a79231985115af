"""In-memory cache: TTL expiry and pattern invalidation."""

from __future__ import annotations

import asyncio

from prometheus_client import REGISTRY

from cohort_engine.services.cache import InMemoryCacheService, leaderboard_key


def _ops(operation: str) -> float:
    return REGISTRY.get_sample_value("cache_operations_total", {"operation": operation}) or 0.0


def test_set_then_get_is_a_hit() -> None:
    cache = InMemoryCacheService()
    before = _ops("hit")
    asyncio.run(cache.set("k", "v", ttl_seconds=60))
    assert asyncio.run(cache.get("k")) == "v"
    assert _ops("hit") - before == 1


def test_expired_entry_is_a_miss(monkeypatch) -> None:
    cache = InMemoryCacheService()
    now = [1000.0]
    monkeypatch.setattr("cohort_engine.services.cache.time.monotonic", lambda: now[0])
    asyncio.run(cache.set("k", "v", ttl_seconds=60))

    now[0] += 61
    before = _ops("miss")
    assert asyncio.run(cache.get("k")) is None
    assert _ops("miss") - before == 1


def test_delete_pattern_only_drops_matching_keys() -> None:
    cache = InMemoryCacheService()
    asyncio.run(cache.set(leaderboard_key(None, 10), "[]", ttl_seconds=60))
    asyncio.run(cache.set(leaderboard_key("c-1", 5), "[]", ttl_seconds=60))
    asyncio.run(cache.set("other:1", "x", ttl_seconds=60))

    asyncio.run(cache.delete_pattern("leaderboard:*"))

    assert asyncio.run(cache.get(leaderboard_key(None, 10))) is None
    assert asyncio.run(cache.get(leaderboard_key("c-1", 5))) is None
    assert asyncio.run(cache.get("other:1")) == "x"


def test_leaderboard_key_scopes() -> None:
    assert leaderboard_key(None, 10) == "leaderboard:global:10"
    assert leaderboard_key("c-1", 25) == "leaderboard:c-1:25"
