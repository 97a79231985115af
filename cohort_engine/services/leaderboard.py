from __future__ import annotations

from uuid import UUID

from cohort_engine.core.config import Settings
from cohort_engine.models.ledger import LeaderboardEntry, LevelInfo
from cohort_engine.repos.coin_ledger_repo import CoinLedgerRepo
from cohort_engine.repos.progress_repo import ProgressRepo


class LeaderboardService:
    """Rank and level, derived from ledger balances on every read.

    Ranking is competition style: rank = 1 + number of users with a
    strictly higher balance, so tied users share a rank.  Within a tie
    the listing is ordered by user id to keep pages stable.

    Global scope ranks everyone who has ever had a transaction.  Cohort
    scope ranks the cohort's enrolled learners, including those still
    at zero.
    """

    def __init__(
        self, ledger: CoinLedgerRepo, progress: ProgressRepo, settings: Settings
    ) -> None:
        self._ledger = ledger
        self._progress = progress
        self._settings = settings

    def level_for(self, balance: int) -> LevelInfo:
        per_level = self._settings.coins_per_level
        earned = max(balance, 0)
        in_level = earned % per_level
        return LevelInfo(
            level=earned // per_level + 1,
            coins_in_level=in_level,
            coins_to_next_level=per_level - in_level,
            total_coins=balance,
        )

    def get_leaderboard(
        self, limit: int = 10, cohort_id: UUID | None = None
    ) -> list[LeaderboardEntry]:
        balances = self._scoped_balances(cohort_id)
        ordered = sorted(balances.items(), key=lambda item: (-item[1], item[0]))
        return [
            self._entry(user_id, balance, balances)
            for user_id, balance in ordered[: max(limit, 0)]
        ]

    def get_user_rank(
        self, user_id: str, cohort_id: UUID | None = None
    ) -> LeaderboardEntry:
        balances = self._scoped_balances(cohort_id)
        balance = balances.get(user_id, self._ledger.balance(user_id))
        return self._entry(user_id, balance, balances)

    def _scoped_balances(self, cohort_id: UUID | None) -> dict[str, int]:
        if cohort_id is None:
            return self._ledger.balances()
        members = [
            e.user_id
            for e in self._progress.list_enrollments(cohort_id)
            if e.status != "withdrawn"
        ]
        return self._ledger.balances(members)

    def _entry(
        self, user_id: str, balance: int, balances: dict[str, int]
    ) -> LeaderboardEntry:
        higher = sum(1 for other in balances.values() if other > balance)
        return LeaderboardEntry(
            rank=higher + 1,
            user_id=user_id,
            balance=balance,
            level=self.level_for(balance).level,
        )
