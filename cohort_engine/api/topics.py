"""Topic endpoints: start, report progress, complete.

POST /v1/topics/{id}/complete is safe to retry.  The first call answers
201 with the coins it paid; a repeat answers 200 with the stored
completion, ``already_completed=true`` and 0 coins.  Clients never need
to tell "I completed it" apart from "it was already completed".

Staff can read per-topic statistics and complete topics in bulk for a
learner (POST /v1/topics/bulk-complete), which skips the minimum time.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, ConfigDict, Field

from cohort_engine.api.dependencies import Learner, Services, Staff
from cohort_engine.core.errors import AlreadyCompleted
from cohort_engine.models.progress import TopicCompletion
from cohort_engine.services.cache import invalidate_leaderboards

router = APIRouter(prefix="/v1/topics", tags=["topics"])


class TopicProgressIn(BaseModel):
    percentage: float
    last_position_seconds: int = Field(0, ge=0)
    time_spent_seconds: int | None = Field(None, ge=0)


class TopicCompleteIn(BaseModel):
    completion_data: dict[str, Any] = Field(default_factory=dict)


class TopicStateOut(BaseModel):
    id: UUID
    topic_id: UUID
    started_at: int
    completed_at: int | None
    time_spent_seconds: int
    last_position_seconds: int
    completion_percentage: float
    eligible_for_completion: bool
    time_remaining_seconds: int


class CompletionOut(BaseModel):
    id: UUID
    completed_at: int | None
    coins_awarded: int


class UserStatsOut(BaseModel):
    new_coin_balance: int
    lesson_completion: float


class NextItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    id: UUID
    title: str


class TopicCompleteOut(BaseModel):
    completion: CompletionOut
    user_stats: UserStatsOut
    already_completed: bool
    next_item: NextItemOut | None


def _state(services: Services, completion: TopicCompletion) -> TopicStateOut:
    topic = services.lookup.topic(completion.topic_id)
    topics = services.topics
    return TopicStateOut(
        id=completion.id,
        topic_id=completion.topic_id,
        started_at=completion.started_at,
        completed_at=completion.completed_at,
        time_spent_seconds=completion.time_spent_seconds,
        last_position_seconds=completion.last_position_seconds,
        completion_percentage=completion.completion_percentage,
        eligible_for_completion=topics.is_eligible_for_completion(completion, topic),
        time_remaining_seconds=topics.get_time_remaining_for_eligibility(completion, topic),
    )


@router.post("/{topic_id}/start", response_model=TopicStateOut)
def start_topic(topic_id: UUID, principal: Learner, services: Services) -> TopicStateOut:
    completion = services.topics.start_topic(principal.user_id, topic_id)
    return _state(services, completion)


@router.post("/{topic_id}/progress", response_model=TopicStateOut)
def update_topic_progress(
    topic_id: UUID, body: TopicProgressIn, principal: Learner, services: Services
) -> TopicStateOut:
    completion = services.topics.update_topic_progress(
        principal.user_id,
        topic_id,
        body.percentage,
        body.last_position_seconds,
        body.time_spent_seconds,
    )
    return _state(services, completion)


@router.post(
    "/{topic_id}/complete",
    response_model=TopicCompleteOut,
    status_code=status.HTTP_201_CREATED,
)
async def complete_topic(
    topic_id: UUID,
    response: Response,
    principal: Learner,
    services: Services,
    body: TopicCompleteIn | None = None,
) -> TopicCompleteOut:
    user_id = principal.user_id
    try:
        result = services.topics.complete_topic(
            user_id, topic_id, body.completion_data if body else None
        )
    except AlreadyCompleted as exc:
        # Idempotent retry: report the stored completion as a success
        response.status_code = status.HTTP_200_OK
        existing: TopicCompletion = exc.existing
        topic = services.lookup.topic(topic_id)
        lesson_report = services.lessons.calculate_lesson_progress(user_id, topic.lesson_id)
        next_item = services.topics.get_next_item(topic)
        return TopicCompleteOut(
            completion=CompletionOut(
                id=existing.id, completed_at=existing.completed_at, coins_awarded=0
            ),
            user_stats=UserStatsOut(
                new_coin_balance=services.ledger.get_balance(user_id),
                lesson_completion=lesson_report.percentage,
            ),
            already_completed=True,
            next_item=NextItemOut.model_validate(next_item) if next_item else None,
        )

    if result.coins_awarded:
        await invalidate_leaderboards()
    lesson_completion = result.lesson_progress.percentage if result.lesson_progress else 0.0
    return TopicCompleteOut(
        completion=CompletionOut(
            id=result.completion.id,
            completed_at=result.completion.completed_at,
            coins_awarded=result.coins_awarded,
        ),
        user_stats=UserStatsOut(
            new_coin_balance=result.new_balance,
            lesson_completion=lesson_completion,
        ),
        already_completed=False,
        next_item=NextItemOut.model_validate(result.next_item) if result.next_item else None,
    )


class BulkCompleteIn(BaseModel):
    user_id: str = Field(min_length=1)
    topic_ids: list[UUID] = Field(min_length=1)


class BulkOutcomeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    topic_id: UUID
    success: bool
    coins_awarded: int
    already_completed: bool
    error: str | None
    message: str | None


class BulkCompleteOut(BaseModel):
    user_id: str
    results: list[BulkOutcomeOut]


class TopicStatisticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    topic_id: UUID
    total_completions: int
    total_students: int
    completion_rate: float
    average_time_spent_seconds: float | None
    coins_distributed: int


@router.post("/bulk-complete", response_model=BulkCompleteOut)
async def bulk_complete(
    body: BulkCompleteIn, principal: Staff, services: Services
) -> BulkCompleteOut:
    outcomes = services.topics.bulk_complete_topics(
        body.user_id, body.topic_ids, actor=principal.user_id
    )
    if any(o.coins_awarded for o in outcomes.values()):
        await invalidate_leaderboards()
    return BulkCompleteOut(
        user_id=body.user_id,
        results=[BulkOutcomeOut.model_validate(o) for o in outcomes.values()],
    )


@router.get("/{topic_id}/statistics", response_model=TopicStatisticsOut)
def topic_statistics(
    topic_id: UUID, principal: Staff, services: Services
) -> TopicStatisticsOut:
    return TopicStatisticsOut.model_validate(services.topics.get_topic_statistics(topic_id))
