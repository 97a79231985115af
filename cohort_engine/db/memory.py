"""In-memory transactional store.

Mirrors engine.py for the case where no DATABASE_URL is configured: the
in-memory repos keep their rows here instead of in Postgres, and the
engine gets the two guarantees it leans on from a real database.

  1. Unique keys.  Each repo checks its natural key (user+topic,
     user+source+source_id, ...) under the store lock and raises
     DuplicateKeyError, the moral equivalent of an IntegrityError.
     Two threads racing to insert the same key cannot both win.

  2. All-or-nothing writes.  ``with db.transaction():`` snapshots every
     table on entry and restores the snapshot if the block raises, so a
     reward is never committed without the fact that earned it.
     Transactions nest; only the outermost one snapshots.

Rows are frozen dataclasses, so a snapshot only needs to copy the
per-table dicts, not the rows themselves.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any


class DuplicateKeyError(ValueError):
    """Unique key already present."""


class InMemoryDatabase:
    def __init__(self) -> None:
        self._tables: dict[str, dict[Any, Any]] = {}
        self._depth = 0
        self.lock = threading.RLock()

    def table(self, name: str) -> dict[Any, Any]:
        return self._tables.setdefault(name, {})

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self.lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snapshot = {name: dict(rows) for name, rows in self._tables.items()}
            self._depth = 1
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                raise
            finally:
                self._depth = 0

    def _restore(self, snapshot: dict[str, dict[Any, Any]]) -> None:
        # Restore in place: repos may hold references to the table dicts
        for name, rows in self._tables.items():
            rows.clear()
            rows.update(snapshot.get(name, {}))

    def clear(self) -> None:
        with self.lock:
            for rows in self._tables.values():
                rows.clear()
