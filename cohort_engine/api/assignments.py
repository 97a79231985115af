"""Assignment submission and review endpoints.

Learners submit and resubmit; instructors and admins review.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict, Field

from cohort_engine.api.dependencies import Learner, Services, Staff
from cohort_engine.services.cache import invalidate_leaderboards

router = APIRouter(prefix="/v1/assignments", tags=["assignments"])


class SubmissionIn(BaseModel):
    content: str = Field(min_length=1)


class ReviewIn(BaseModel):
    feedback: str | None = None


class FeedbackIn(BaseModel):
    feedback: str = Field(min_length=1)


class SubmissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    assignment_id: UUID
    content: str
    submitted_at: int
    status: str
    feedback: str | None
    reviewed_by: str | None
    reviewed_at: int | None
    coins_awarded: int
    revision_count: int


@router.post(
    "/{assignment_id}/submissions",
    response_model=SubmissionOut,
    status_code=status.HTTP_201_CREATED,
)
def submit(
    assignment_id: UUID, body: SubmissionIn, principal: Learner, services: Services
) -> SubmissionOut:
    submission = services.assignments.submit(principal.user_id, assignment_id, body.content)
    return SubmissionOut.model_validate(submission)


@router.put("/submissions/{submission_id}", response_model=SubmissionOut)
def resubmit(
    submission_id: UUID, body: SubmissionIn, principal: Learner, services: Services
) -> SubmissionOut:
    submission = services.assignments.resubmit(principal.user_id, submission_id, body.content)
    return SubmissionOut.model_validate(submission)


@router.get("/submissions/{submission_id}", response_model=SubmissionOut)
def get_submission(submission_id: UUID, principal: Learner, services: Services) -> SubmissionOut:
    submission = services.assignments.get_submission(principal.user_id, submission_id)
    return SubmissionOut.model_validate(submission)


@router.post("/submissions/{submission_id}/approve", response_model=SubmissionOut)
async def approve(
    submission_id: UUID, principal: Staff, services: Services, body: ReviewIn | None = None
) -> SubmissionOut:
    submission = services.assignments.approve(
        submission_id, principal.user_id, body.feedback if body else None
    )
    if submission.coins_awarded:
        await invalidate_leaderboards()
    return SubmissionOut.model_validate(submission)


@router.post("/submissions/{submission_id}/reject", response_model=SubmissionOut)
def reject(
    submission_id: UUID, body: FeedbackIn, principal: Staff, services: Services
) -> SubmissionOut:
    submission = services.assignments.reject(submission_id, principal.user_id, body.feedback)
    return SubmissionOut.model_validate(submission)


@router.post("/submissions/{submission_id}/request-revision", response_model=SubmissionOut)
def request_revision(
    submission_id: UUID, body: FeedbackIn, principal: Staff, services: Services
) -> SubmissionOut:
    submission = services.assignments.request_revision(
        submission_id, principal.user_id, body.feedback
    )
    return SubmissionOut.model_validate(submission)
