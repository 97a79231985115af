"""Read-through cache for leaderboard reads.

READ-THROUGH
--------------
    Client → Cache → miss → ledger → populate cache → return
    Client → Cache → hit  → return (skip the ledger scan)

Leaderboards are the only hot read that aggregates over every learner's
ledger rows, so they are the only thing we cache.  Progress and unlock
state are always read from their facts.

INVALIDATION
--------------
Two strategies cover each other:

  1. TTL (LEADERBOARD_CACHE_TTL): every entry expires on its own, so a
     missed invalidation only costs a short window of staleness.
  2. Explicit: any request that may have moved a balance deletes
     ``leaderboard:*`` once it has committed.

Balances themselves are never cached.  A learner always sees their own
coins immediately; only the ranking may trail by one request.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable

from cohort_engine.core.metrics import CACHE_OPERATIONS
from cohort_engine.db.redis import redis_pool

LEADERBOARD_PATTERN = "leaderboard:*"


def leaderboard_key(cohort_id: object | None, limit: int) -> str:
    return f"leaderboard:{cohort_id or 'global'}:{limit}"


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching a glob pattern (e.g. 'leaderboard:*')."""
        ...


class InMemoryCacheService:
    """Process-local cache with TTL.

    The autouse fixture in conftest.py clears the store between tests.
    """

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is None or entry[1] <= time.monotonic():
            self._store.pop(key, None)
            CACHE_OPERATIONS.labels(operation="miss").inc()
            return None
        CACHE_OPERATIONS.labels(operation="hit").inc()
        return entry[0]

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = (value, time.monotonic() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> None:
        prefix = pattern.rstrip("*")
        for k in [k for k in self._store if k.startswith(prefix)]:
            del self._store[k]
        CACHE_OPERATIONS.labels(operation="invalidate").inc()

    def clear(self) -> None:
        self._store.clear()


class RedisCacheService:
    """Redis-backed cache shared across all API instances."""

    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(f"{self._PREFIX}{key}")
        CACHE_OPERATIONS.labels(operation="miss" if value is None else "hit").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN, not KEYS: KEYS blocks the server for the whole keyspace
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{self._PREFIX}{pattern}", count=100
            )
            if keys:
                await self._redis.delete(*keys)
            if cursor == 0:
                break
        CACHE_OPERATIONS.labels(operation="invalidate").inc()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()


async def invalidate_leaderboards() -> None:
    """Call after any committed write that may have moved a balance."""
    await cache_service.delete_pattern(LEADERBOARD_PATTERN)
