"""PostgreSQL implementation of CoinLedgerRepo."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from cohort_engine.db.memory import DuplicateKeyError
from cohort_engine.db.sql import SqlDatabase
from cohort_engine.db.tables import CoinTransactionRow
from cohort_engine.models.ledger import CoinTransaction


class PgCoinLedgerRepo:
    """Satisfies the CoinLedgerRepo Protocol using PostgreSQL via SQLAlchemy.

    The partial unique index on (user_id, source, source_id) for positive
    rows is what keeps a reward exactly-once across processes.
    """

    def __init__(self, db: SqlDatabase) -> None:
        self._db = db

    def add(self, txn: CoinTransaction) -> None:
        with self._db.session() as session:
            try:
                # Savepoint: a lost race must not abort the caller's transaction
                with session.begin_nested():
                    session.add(_txn_to_row(txn))
            except IntegrityError as exc:
                raise DuplicateKeyError(f"reward already issued for {txn.key}") from exc

    def get_by_key(self, user_id: str, source: str, source_id: str) -> CoinTransaction | None:
        stmt = select(CoinTransactionRow).where(
            CoinTransactionRow.user_id == user_id,
            CoinTransactionRow.source == source,
            CoinTransactionRow.source_id == source_id,
            CoinTransactionRow.amount > 0,
        )
        with self._db.session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _row_to_txn(row) if row is not None else None

    def list_for_user(self, user_id: str, limit: int | None = None) -> list[CoinTransaction]:
        stmt = (
            select(CoinTransactionRow)
            .where(CoinTransactionRow.user_id == user_id)
            .order_by(CoinTransactionRow.created_at.desc(), CoinTransactionRow.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._db.session() as session:
            return [_row_to_txn(row) for row in session.execute(stmt).scalars()]

    def balance(self, user_id: str) -> int:
        stmt = select(func.coalesce(func.sum(CoinTransactionRow.amount), 0)).where(
            CoinTransactionRow.user_id == user_id
        )
        with self._db.session() as session:
            return int(session.execute(stmt).scalar_one())

    def balances(self, user_ids: Iterable[str] | None = None) -> dict[str, int]:
        stmt = select(
            CoinTransactionRow.user_id, func.sum(CoinTransactionRow.amount)
        ).group_by(CoinTransactionRow.user_id)
        wanted = set(user_ids) if user_ids is not None else None
        totals: dict[str, int] = {}
        if wanted is not None:
            if not wanted:
                return {}
            stmt = stmt.where(CoinTransactionRow.user_id.in_(wanted))
            totals = dict.fromkeys(wanted, 0)
        with self._db.session() as session:
            for user_id, total in session.execute(stmt):
                totals[user_id] = int(total or 0)
        return totals


def _txn_to_row(txn: CoinTransaction) -> CoinTransactionRow:
    return CoinTransactionRow(
        id=txn.id,
        user_id=txn.user_id,
        amount=txn.amount,
        source=txn.source,
        source_id=txn.source_id,
        reason=txn.reason,
        metadata_json=dict(txn.metadata),
        created_at=txn.created_at,
        created_by=txn.created_by,
    )


def _row_to_txn(row: CoinTransactionRow) -> CoinTransaction:
    return CoinTransaction(
        id=row.id,
        user_id=row.user_id,
        amount=row.amount,
        source=row.source,
        source_id=row.source_id,
        reason=row.reason,
        created_at=row.created_at,
        metadata=dict(row.metadata_json or {}),
        created_by=row.created_by,
    )
