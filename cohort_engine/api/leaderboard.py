"""Leaderboard and coin endpoints.

GET /v1/leaderboard is read-through cached (see services/cache.py).  Only
the ranked page is cached; the caller's own rank is computed fresh on
every request so a learner sees their new coins straight away.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from cohort_engine.api.dependencies import Learner, Services, Staff
from cohort_engine.core.errors import ValidationFailed
from cohort_engine.services.cache import cache_service, invalidate_leaderboards, leaderboard_key

router = APIRouter(prefix="/v1", tags=["coins"])


class LeaderboardEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    user_id: str
    balance: int
    level: int


class LeaderboardOut(BaseModel):
    scope: str
    cohort_id: UUID | None
    entries: list[LeaderboardEntryOut]
    me: LeaderboardEntryOut


class LevelOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    coins_in_level: int
    coins_to_next_level: int
    total_coins: int


class BalanceOut(BaseModel):
    user_id: str
    balance: int
    level: LevelOut
    earnings_by_source: dict[str, int]


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: int
    source: str
    source_id: str
    reason: str
    created_at: int
    metadata: dict[str, Any]


class AdjustmentIn(BaseModel):
    user_id: str = Field(min_length=1)
    amount: int
    reason: str = Field(min_length=1)


@router.get("/leaderboard", response_model=LeaderboardOut)
async def get_leaderboard(
    principal: Learner,
    services: Services,
    scope: Literal["global", "class"] = "global",
    cohort_id: UUID | None = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> LeaderboardOut:
    if scope == "class":
        cohort_id = cohort_id or services.enrollments.active_cohort_for(principal.user_id)
        if cohort_id is None:
            raise ValidationFailed("cohort_id is required for a class leaderboard")
        services.lookup.cohort(cohort_id)
    else:
        cohort_id = None

    key = leaderboard_key(cohort_id, limit)
    cached = await cache_service.get(key)
    if cached is not None:
        entries = [LeaderboardEntryOut(**e) for e in json.loads(cached)]
    else:
        entries = [
            LeaderboardEntryOut.model_validate(e)
            for e in services.leaderboard.get_leaderboard(limit, cohort_id)
        ]
        await cache_service.set(
            key,
            json.dumps([e.model_dump() for e in entries]),
            ttl_seconds=services.settings.leaderboard_cache_ttl,
        )

    me = services.leaderboard.get_user_rank(principal.user_id, cohort_id)
    return LeaderboardOut(
        scope=scope,
        cohort_id=cohort_id,
        entries=entries,
        me=LeaderboardEntryOut.model_validate(me),
    )


@router.get("/coins/balance", response_model=BalanceOut)
def get_balance(principal: Learner, services: Services) -> BalanceOut:
    balance = services.ledger.get_balance(principal.user_id)
    return BalanceOut(
        user_id=principal.user_id,
        balance=balance,
        level=LevelOut.model_validate(services.leaderboard.level_for(balance)),
        earnings_by_source=services.ledger.earnings_by_source(principal.user_id),
    )


@router.get("/coins/transactions", response_model=list[TransactionOut])
def list_transactions(
    principal: Learner,
    services: Services,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[TransactionOut]:
    return [
        TransactionOut.model_validate(t)
        for t in services.ledger.list_transactions(principal.user_id, limit)
    ]


@router.post(
    "/coins/adjustments",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
)
async def adjust_coins(body: AdjustmentIn, principal: Staff, services: Services) -> TransactionOut:
    txn = services.ledger.adjust(body.user_id, body.amount, body.reason, principal.user_id)
    await invalidate_leaderboards()
    return TransactionOut.model_validate(txn)
