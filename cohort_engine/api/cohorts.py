"""Cohort enrollment endpoints, plus enrollment statistics for staff."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict

from cohort_engine.api.dependencies import Learner, Services, Staff

router = APIRouter(prefix="/v1/cohorts", tags=["cohorts"])


class EnrollmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    cohort_id: UUID
    status: str
    enrolled_at: int
    completion_percentage: float
    completed_at: int | None
    withdrawn_at: int | None


@router.post(
    "/{cohort_id}/enroll",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
def enroll(cohort_id: UUID, principal: Learner, services: Services) -> EnrollmentOut:
    enrollment = services.enrollments.enroll(principal.user_id, cohort_id)
    return EnrollmentOut.model_validate(enrollment)


@router.post("/{cohort_id}/withdraw", response_model=EnrollmentOut)
def withdraw(cohort_id: UUID, principal: Learner, services: Services) -> EnrollmentOut:
    enrollment = services.enrollments.withdraw(principal.user_id, cohort_id)
    return EnrollmentOut.model_validate(enrollment)


@router.get("/{cohort_id}/enrollment", response_model=EnrollmentOut)
def get_enrollment(cohort_id: UUID, principal: Learner, services: Services) -> EnrollmentOut:
    enrollment = services.enrollments.get_enrollment(principal.user_id, cohort_id)
    return EnrollmentOut.model_validate(enrollment)


class CohortStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    cohort_id: UUID
    total_enrolled: int
    active_students: int
    completed_students: int
    withdrawn_students: int
    completion_rate: float
    average_progress: float


@router.get("/{cohort_id}/stats", response_model=CohortStatsOut)
def cohort_stats(cohort_id: UUID, principal: Staff, services: Services) -> CohortStatsOut:
    return CohortStatsOut.model_validate(services.enrollments.get_cohort_stats(cohort_id))
