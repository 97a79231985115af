from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from typing import Protocol

from cohort_engine.db.memory import DuplicateKeyError, InMemoryDatabase
from cohort_engine.models.ledger import CoinTransaction


class CoinLedgerRepo(Protocol):
    def add(self, txn: CoinTransaction) -> None: ...
    def get_by_key(self, user_id: str, source: str, source_id: str) -> CoinTransaction | None: ...
    def list_for_user(self, user_id: str, limit: int | None = None) -> list[CoinTransaction]: ...
    def balance(self, user_id: str) -> int: ...
    def balances(self, user_ids: Iterable[str] | None = None) -> dict[str, int]: ...


class InMemoryCoinLedgerRepo:
    """Append-only transaction log.

    Positive rows are unique on (user_id, source, source_id), the same
    partial unique index the Postgres schema declares.  Non-positive rows
    (penalties, corrections) are not keyed.
    """

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self._rows = db.table("coin_transactions")
        self._rewards = db.table("coin_reward_keys")

    def add(self, txn: CoinTransaction) -> None:
        with self._db.lock:
            if txn.amount > 0:
                if txn.key in self._rewards:
                    raise DuplicateKeyError(f"reward already issued for {txn.key}")
                self._rewards[txn.key] = txn.id
            self._rows[txn.id] = txn

    def get_by_key(self, user_id: str, source: str, source_id: str) -> CoinTransaction | None:
        txn_id = self._rewards.get((user_id, source, source_id))
        return self._rows.get(txn_id) if txn_id is not None else None

    def list_for_user(self, user_id: str, limit: int | None = None) -> list[CoinTransaction]:
        rows = [t for t in list(self._rows.values()) if t.user_id == user_id]
        # Newest first; id breaks ties within the same second deterministically
        rows.sort(key=lambda t: (t.created_at, str(t.id)), reverse=True)
        return rows if limit is None else rows[:limit]

    def balance(self, user_id: str) -> int:
        return sum(t.amount for t in list(self._rows.values()) if t.user_id == user_id)

    def balances(self, user_ids: Iterable[str] | None = None) -> dict[str, int]:
        wanted = set(user_ids) if user_ids is not None else None
        totals: dict[str, int] = defaultdict(int)
        if wanted is not None:
            for user_id in wanted:
                totals[user_id] = 0
        for txn in list(self._rows.values()):
            if wanted is None or txn.user_id in wanted:
                totals[txn.user_id] += txn.amount
        return dict(totals)
