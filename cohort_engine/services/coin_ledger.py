"""Coin ledger: exactly-once rewards over an append-only log.

IDEMPOTENCY KEY
-----------------
Every reward names the thing that earned it: (user, source, source_id),
e.g. ("u-1", "topic_completion", "<topic uuid>").  The store holds at
most one positive transaction per key.  award() therefore does not need
the caller to check "did I already pay for this?".  It tries the insert
and, if the key is taken, hands back the transaction that won.

This makes a retry (flaky client, double-clicked button, two workers
grading the same quiz) a harmless no-op instead of double pay.

BALANCES
----------
A balance is always Σ amount over the user's rows.  There is no
balance column to drift out of sync; corrections are new rows
(see adjust()), never edits.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from cohort_engine.core.clock import Clock
from cohort_engine.core.errors import ValidationFailed
from cohort_engine.core.metrics import COINS_AWARDED, DUPLICATE_REWARDS
from cohort_engine.db.memory import DuplicateKeyError, InMemoryDatabase
from cohort_engine.models.ledger import MANUAL_ADJUSTMENT, CoinTransaction
from cohort_engine.repos.coin_ledger_repo import CoinLedgerRepo

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AwardResult:
    transaction: CoinTransaction | None
    created: bool

    @property
    def amount(self) -> int:
        return self.transaction.amount if self.transaction and self.created else 0


class CoinLedgerService:
    def __init__(self, repo: CoinLedgerRepo, db: InMemoryDatabase, clock: Clock) -> None:
        self._repo = repo
        self._db = db
        self._clock = clock

    def award(
        self,
        user_id: str,
        amount: int,
        source: str,
        source_id: str,
        reason: str,
        metadata: dict[str, Any] | None = None,
    ) -> AwardResult:
        """Credit ``amount`` once per (user, source, source_id).

        Zero or negative amounts are not rewards and record nothing.
        Joins the caller's transaction when called inside one.
        """
        if amount <= 0:
            return AwardResult(transaction=None, created=False)

        with self._db.transaction():
            existing = self._repo.get_by_key(user_id, source, source_id)
            if existing is not None:
                return self._duplicate(existing)

            txn = CoinTransaction.new(
                user_id=user_id,
                amount=amount,
                source=source,
                source_id=source_id,
                reason=reason,
                created_at=self._clock.now(),
                metadata=metadata,
            )
            try:
                self._repo.add(txn)
            except DuplicateKeyError:
                # Lost the race to a concurrent writer; theirs is the reward
                winner = self._repo.get_by_key(user_id, source, source_id)
                return self._duplicate(winner)

        COINS_AWARDED.labels(source=source).inc(amount)
        logger.info(
            "Coins awarded user=%s amount=%d source=%s source_id=%s",
            user_id,
            amount,
            source,
            source_id,
            extra={
                "user_id": user_id,
                "amount": amount,
                "source": source,
                "source_id": source_id,
            },
        )
        return AwardResult(transaction=txn, created=True)

    def _duplicate(self, existing: CoinTransaction | None) -> AwardResult:
        if existing is not None:
            DUPLICATE_REWARDS.labels(source=existing.source).inc()
            logger.debug(
                "Duplicate reward skipped key=%s", existing.key,
                extra={"user_id": existing.user_id, "source": existing.source},
            )
        return AwardResult(transaction=existing, created=False)

    def adjust(self, user_id: str, amount: int, reason: str, actor: str) -> CoinTransaction:
        """Manual correction by staff.  May be negative; never keyed."""
        if amount == 0:
            raise ValidationFailed("Adjustment amount must be non-zero")
        if not reason.strip():
            raise ValidationFailed("Adjustment reason is required")

        now = self._clock.now()
        txn = CoinTransaction.new(
            user_id=user_id,
            amount=amount,
            source=MANUAL_ADJUSTMENT,
            # Unique per row so positive adjustments never collide on the reward key
            source_id=f"{actor}:{uuid4().hex}",
            reason=reason,
            created_at=now,
            created_by=actor,
        )
        with self._db.transaction():
            self._repo.add(txn)
        logger.warning(
            "Manual coin adjustment user=%s amount=%d actor=%s reason=%s",
            user_id,
            amount,
            actor,
            reason,
            extra={"user_id": user_id, "amount": amount, "source": MANUAL_ADJUSTMENT},
        )
        return txn

    def get_balance(self, user_id: str) -> int:
        return self._repo.balance(user_id)

    def list_transactions(self, user_id: str, limit: int = 50) -> list[CoinTransaction]:
        return self._repo.list_for_user(user_id, limit)

    def rewards_for(self, user_id: str, source: str) -> list[CoinTransaction]:
        return [t for t in self._repo.list_for_user(user_id) if t.source == source and t.amount > 0]

    def earnings_by_source(self, user_id: str) -> dict[str, int]:
        totals: dict[str, int] = defaultdict(int)
        for txn in self._repo.list_for_user(user_id):
            if txn.amount > 0:
                totals[txn.source] += txn.amount
        return dict(totals)
