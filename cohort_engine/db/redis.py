"""Redis connection management.

This module mirrors the pattern in engine.py for PostgreSQL:
when REDIS_URL is configured, we create a real connection pool;
when it's None (local dev, tests), the leaderboard cache falls back
to the in-memory implementation and no Redis server is needed.

WHAT LIVES IN REDIS
-------------------
PostgreSQL is the source of truth for everything a learner earns:
completions, attempts, unlocks, and the coin ledger.  Redis only
holds derived data that is expensive to recompute and cheap to lose:

  - Leaderboard pages (a SUM over the ledger grouped by user, ranked)

Entries carry a short TTL and are deleted explicitly whenever coins
are credited, so a stale ranking never outlives the next award by
more than one request.  Losing the whole cache on restart is fine:
the next read recomputes from the ledger.

CONNECTION POOLING
------------------
Redis is single-threaded; it processes one command at a time.  But
our FastAPI app handles many requests concurrently via async/await.
A connection pool lets multiple async handlers issue commands without
blocking each other on the Python side.  Each handler borrows a
connection, sends a command, and returns it to the pool.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from cohort_engine.core.config import SETTINGS

logger = logging.getLogger(__name__)

# One pool per process, created at import time when REDIS_URL is set.
# cache.py picks RedisCacheService or the in-memory cache based on this.
if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # cached leaderboard pages are JSON text
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Ping Redis on startup and close the pool on shutdown."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, leaderboard cache is in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        # The cache is derived data; leaderboard reads recompute from the
        # ledger, so an unreachable Redis degrades /health instead of startup.
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
