"""Lesson and module progress endpoints."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict, Field

from cohort_engine.api.dependencies import Learner, Services
from cohort_engine.services.cache import invalidate_leaderboards
from cohort_engine.services.lesson_completion import LessonProgressReport

router = APIRouter(prefix="/v1", tags=["lessons"])


class UnitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str
    id: str
    title: str
    completed: bool


class LessonProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lesson_id: UUID
    completed: int
    total: int
    percentage: float
    time_spent: int
    min_time_required: int | None
    time_requirement_met: bool
    can_complete: bool
    units: list[UnitOut]


class ModuleProgressOut(BaseModel):
    module_id: UUID
    completed_lessons: int
    total_lessons: int
    percentage: float
    time_spent: int
    lessons: list[LessonProgressOut]


class LessonTimeIn(BaseModel):
    time_spent_seconds: int = Field(ge=0)


class LessonTimeOut(BaseModel):
    lesson_id: UUID
    time_spent_seconds: int


class BlockCompleteIn(BaseModel):
    block_type: str
    score_percentage: float | None = Field(None, ge=0, le=100)
    passed: bool | None = None
    completion_data: dict[str, Any] = Field(default_factory=dict)


class BlockAttemptOut(BaseModel):
    id: UUID
    block_id: str
    block_type: str
    attempt_number: int
    completed_at: int
    passed: bool | None
    score_percentage: float | None
    coins_awarded: int
    lesson_progress: LessonProgressOut


def _lesson_out(report: LessonProgressReport) -> LessonProgressOut:
    return LessonProgressOut.model_validate(report)


@router.get("/lessons/{lesson_id}/progress", response_model=LessonProgressOut)
def get_lesson_progress(
    lesson_id: UUID, principal: Learner, services: Services
) -> LessonProgressOut:
    lesson = services.lookup.lesson(lesson_id)
    services.weeks.ensure_week_access(
        principal.user_id, services.lookup.week_for_lesson(lesson).id
    )
    return _lesson_out(services.lessons.calculate_lesson_progress(principal.user_id, lesson.id))


@router.post("/lessons/{lesson_id}/time", response_model=LessonTimeOut)
def track_lesson_time(
    lesson_id: UUID, body: LessonTimeIn, principal: Learner, services: Services
) -> LessonTimeOut:
    lesson = services.lookup.lesson(lesson_id)
    services.weeks.ensure_week_access(
        principal.user_id, services.lookup.week_for_lesson(lesson).id
    )
    row = services.lessons.track_lesson_time(
        principal.user_id, lesson.id, body.time_spent_seconds
    )
    return LessonTimeOut(lesson_id=lesson.id, time_spent_seconds=row.time_spent_seconds)


@router.post(
    "/lessons/{lesson_id}/blocks/{block_id}/complete",
    response_model=BlockAttemptOut,
    status_code=status.HTTP_201_CREATED,
)
async def complete_block(
    lesson_id: UUID,
    block_id: str,
    body: BlockCompleteIn,
    principal: Learner,
    services: Services,
) -> BlockAttemptOut:
    lesson = services.lookup.lesson(lesson_id)
    services.weeks.ensure_week_access(
        principal.user_id, services.lookup.week_for_lesson(lesson).id
    )
    result = services.lessons.record_block_completion(
        principal.user_id,
        lesson.id,
        block_id,
        body.block_type,
        score_percentage=body.score_percentage,
        passed=body.passed,
        completion_data=body.completion_data,
    )
    cascade = services.cascade.on_lesson_changed(principal.user_id, lesson.id)
    if result.coins_awarded:
        await invalidate_leaderboards()

    attempt = result.attempt
    return BlockAttemptOut(
        id=attempt.id,
        block_id=attempt.block_id,
        block_type=attempt.block_type,
        attempt_number=attempt.attempt_number,
        completed_at=attempt.completed_at,
        passed=attempt.passed,
        score_percentage=attempt.score_percentage,
        coins_awarded=result.coins_awarded,
        lesson_progress=_lesson_out(cascade.lesson),
    )


@router.get("/modules/{module_id}/progress", response_model=ModuleProgressOut)
def get_module_progress(
    module_id: UUID, principal: Learner, services: Services
) -> ModuleProgressOut:
    module = services.lookup.module(module_id)
    services.weeks.ensure_week_access(
        principal.user_id, services.lookup.week_for_module(module).id
    )
    report = services.modules.calculate_module_progress(principal.user_id, module.id)
    return ModuleProgressOut(
        module_id=report.module_id,
        completed_lessons=report.completed_lessons,
        total_lessons=report.total_lessons,
        percentage=report.percentage,
        time_spent=report.time_spent,
        lessons=[_lesson_out(r) for r in report.lessons],
    )
