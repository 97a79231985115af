"""Synchronous SQLAlchemy sessions for the Postgres-backed repos.

The services are synchronous, so the repos that persist to Postgres use
a plain (sync) engine on the psycopg driver next to the async asyncpg
engine in engine.py.  DATABASE_URL is written once, for asyncpg; the
sync URL is derived from it.

SqlDatabase extends InMemoryDatabase so the services keep calling
``with db.transaction():`` unchanged.  The outermost transaction also
opens one SQLAlchemy session: SQL rows written inside the block commit
with it or roll back with it, alongside the in-memory tables.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from cohort_engine.db.memory import InMemoryDatabase

logger = logging.getLogger(__name__)

_SYNC_DRIVERS = {
    "postgresql+asyncpg": "postgresql+psycopg",
    "postgresql": "postgresql+psycopg",
    "postgres": "postgresql+psycopg",
}


def sync_url(database_url: str) -> str:
    """Map an async (or bare) Postgres URL onto the psycopg driver."""
    url = make_url(database_url)
    driver = _SYNC_DRIVERS.get(url.drivername)
    if driver is None:
        return database_url
    return url.set(drivername=driver).render_as_string(hide_password=False)


def create_sync_engine(database_url: str, *, echo: bool = False) -> Engine:
    return create_engine(
        sync_url(database_url),
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )


class SqlDatabase(InMemoryDatabase):
    def __init__(self, sessions: sessionmaker[Session]) -> None:
        super().__init__()
        self._sessions = sessions
        self._current: Session | None = None

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self.lock:
            if self._current is not None:
                with super().transaction():
                    yield
                return

            with self._sessions.begin() as session:
                self._current = session
                try:
                    with super().transaction():
                        yield
                finally:
                    self._current = None

    @contextmanager
    def session(self) -> Iterator[Session]:
        """The open transaction's session, or a short one that commits on exit."""
        with self.lock:
            if self._current is not None:
                yield self._current
                return
            with self._sessions.begin() as session:
                yield session
