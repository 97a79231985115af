"""Week gate endpoints.

GET  /v1/weeks/{id}/evaluate-unlock   what is still blocking this week (read-only)
POST /v1/weeks/{id}/evaluate-unlock   unlock it if the gate is open (idempotent)
GET  /v1/weeks/{id}/progress          stored gate plus live completion
POST /v1/weeks/{id}/bulk-unlock       staff override for a list of learners
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from cohort_engine.api.dependencies import Learner, Services, Staff
from cohort_engine.api.lessons import UnitOut
from cohort_engine.core.errors import WeekLocked
from cohort_engine.services.week_unlock import UnlockEvaluation

router = APIRouter(prefix="/v1/weeks", tags=["weeks"])


class RequirementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rule: str
    threshold: float
    current: float
    satisfied: bool
    blocking: bool
    detail: str


class UnlockEvaluationOut(BaseModel):
    week_id: UUID
    week_number: int
    is_unlocked: bool
    can_unlock: bool
    requirements: list[RequirementOut]
    unmet: list[str]
    warnings: list[str]


class UnlockOut(BaseModel):
    week_id: UUID
    unlocked: bool
    newly_unlocked: bool
    unlocked_at: int | None
    evaluation: UnlockEvaluationOut | None = None


class ModuleSummaryOut(BaseModel):
    module_id: UUID
    percentage: float
    completed_lessons: int
    total_lessons: int


class WeekProgressOut(BaseModel):
    week_id: UUID
    is_unlocked: bool
    unlocked_at: int | None
    completed_at: int | None
    percentage: float
    completed_units: int
    total_units: int
    modules: list[ModuleSummaryOut]
    activities: list[UnitOut]


class BulkUnlockIn(BaseModel):
    user_ids: list[str] = Field(min_length=1)


class BulkUnlockOut(BaseModel):
    week_id: UUID
    results: dict[str, UnlockOut]


def _evaluation_out(evaluation: UnlockEvaluation) -> UnlockEvaluationOut:
    return UnlockEvaluationOut(
        week_id=evaluation.week_id,
        week_number=evaluation.week_number,
        is_unlocked=evaluation.is_unlocked,
        can_unlock=evaluation.can_unlock,
        requirements=[RequirementOut.model_validate(r) for r in evaluation.requirements],
        unmet=[r.rule for r in evaluation.unmet],
        warnings=[r.rule for r in evaluation.warnings],
    )


@router.get("/{week_id}/evaluate-unlock", response_model=UnlockEvaluationOut)
def get_unlock_requirements(
    week_id: UUID, principal: Learner, services: Services
) -> UnlockEvaluationOut:
    evaluation = services.weeks.get_unlock_requirements_summary(principal.user_id, week_id)
    return _evaluation_out(evaluation)


@router.post("/{week_id}/evaluate-unlock", response_model=UnlockOut)
def evaluate_unlock(week_id: UUID, principal: Learner, services: Services) -> UnlockOut:
    """Unlock the week if every blocking requirement is met.

    A locked gate answers 403 ``week_locked`` naming the unmet rules.
    """
    result = services.weeks.unlock_week(principal.user_id, week_id)
    evaluation = result.evaluation or services.weeks.evaluate_unlock(principal.user_id, week_id)
    return UnlockOut(
        week_id=result.week_id,
        unlocked=result.unlocked,
        newly_unlocked=result.newly_unlocked,
        unlocked_at=result.unlocked_at,
        evaluation=_evaluation_out(evaluation),
    )


@router.get("/{week_id}/progress", response_model=WeekProgressOut)
def get_week_progress(week_id: UUID, principal: Learner, services: Services) -> WeekProgressOut:
    week = services.lookup.week(week_id)
    row = services.weeks.get_week_progress(principal.user_id, week.id)
    if row is None or not row.is_unlocked:
        raise WeekLocked(f"Week {week.week_number} is locked for this user")
    report = services.weeks.calculate_week_progress(principal.user_id, week.id)
    return WeekProgressOut(
        week_id=week.id,
        is_unlocked=row.is_unlocked,
        unlocked_at=row.unlocked_at,
        completed_at=row.completed_at,
        percentage=report.percentage,
        completed_units=report.completed_units,
        total_units=report.total_units,
        modules=[
            ModuleSummaryOut(
                module_id=m.module_id,
                percentage=m.percentage,
                completed_lessons=m.completed_lessons,
                total_lessons=m.total_lessons,
            )
            for m in report.modules
        ],
        activities=[UnitOut.model_validate(a) for a in report.activities],
    )


@router.post("/{week_id}/bulk-unlock", response_model=BulkUnlockOut)
def bulk_unlock(
    week_id: UUID, body: BulkUnlockIn, principal: Staff, services: Services
) -> BulkUnlockOut:
    results = services.weeks.bulk_unlock_week(week_id, body.user_ids)
    return BulkUnlockOut(
        week_id=week_id,
        results={
            user_id: UnlockOut(
                week_id=r.week_id,
                unlocked=r.unlocked,
                newly_unlocked=r.newly_unlocked,
                unlocked_at=r.unlocked_at,
            )
            for user_id, r in results.items()
        },
    )
