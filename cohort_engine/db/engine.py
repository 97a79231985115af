"""Async SQLAlchemy engine.

When DATABASE_URL is configured, provides:
- async engine for PostgreSQL via asyncpg (used by /health and Alembic)
- FastAPI lifespan hook for startup/shutdown

The engine's progress rows (completions, attempts, unlocks, the coin
ledger) are declared in db/tables.py and migrated with Alembic.  When
DATABASE_URL is None, the engine is None and the service container
runs on the in-memory store in db/memory.py.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from cohort_engine.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


# --- Engine (None when no DATABASE_URL) ---

engine: AsyncEngine | None
if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=SETTINGS.is_dev,  # log SQL in dev only
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )
else:
    engine = None


@asynccontextmanager
async def lifespan_db():
    """Startup/shutdown hook for the database engine.

    Call from FastAPI's lifespan context manager.
    """
    if engine is None:
        logger.info("No DATABASE_URL configured, progress state is in-memory")
        yield
        return

    logger.info("Database engine created: %s", engine.url)
    yield
    await engine.dispose()
    logger.info("Database engine disposed")
