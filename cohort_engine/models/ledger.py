from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

# Reward sources.  (user_id, source, source_id) is the idempotency key.
TOPIC_COMPLETION = "topic_completion"
LESSON_BLOCK_COMPLETION = "lesson_block_completion"
QUIZ_ATTEMPT = "quiz_attempt"
ASSIGNMENT_APPROVAL = "assignment_approval"
LIVE_ATTENDANCE = "live_attendance"
COHORT_COMPLETION = "cohort_completion"
MANUAL_ADJUSTMENT = "manual_adjustment"


@dataclass(frozen=True, slots=True)
class CoinTransaction:
    """Append-only ledger row.  A balance is the sum of these, nothing more."""

    id: UUID
    user_id: str
    amount: int
    source: str
    source_id: str
    reason: str
    created_at: int
    metadata: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.user_id, self.source, self.source_id)

    @staticmethod
    def new(
        *,
        user_id: str,
        amount: int,
        source: str,
        source_id: str,
        reason: str,
        created_at: int,
        metadata: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> CoinTransaction:
        return CoinTransaction(
            id=uuid4(),
            user_id=user_id,
            amount=amount,
            source=source,
            source_id=source_id,
            reason=reason,
            created_at=created_at,
            metadata=dict(metadata or {}),
            created_by=created_by,
        )


@dataclass(frozen=True, slots=True)
class LevelInfo:
    level: int
    coins_in_level: int
    coins_to_next_level: int
    total_coins: int


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    balance: int
    level: int
