"""Quiz attempt endpoints.

  POST /v1/quizzes/{id}/attempts                start (or resume the open attempt)
  PUT  /v1/quizzes/attempts/{attempt_id}/answers autosave answers
  POST /v1/quizzes/{id}/submit                  grade an attempt
  GET  /v1/quizzes/{id}/attempts                history, best score, attempts left

Staff only:

  DELETE /v1/quizzes/{id}/attempts/{user_id}     wipe a learner's attempts
  GET    /v1/quizzes/{id}/statistics             pass rate, average score

Answers are sent as a list of {question_id, answer} items.  Questions
are returned without their answer key; the key only comes back after
grading, and only when the quiz is configured to show it.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, ConfigDict, Field

from cohort_engine.api.dependencies import Learner, Services, Staff
from cohort_engine.models.progress import QuizAttempt
from cohort_engine.services.cache import invalidate_leaderboards

router = APIRouter(prefix="/v1/quizzes", tags=["quizzes"])


class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    prompt: str
    options: list[str]
    points: int


class AttemptOut(BaseModel):
    id: UUID
    quiz_id: UUID
    attempt_number: int
    started_at: int
    expires_at: int | None
    completed_at: int | None
    score: int
    total_points: int
    percentage: float
    passed: bool
    coins_awarded: int
    auto_submitted: bool


class AttemptStartOut(BaseModel):
    attempt: AttemptOut
    questions: list[QuestionOut]
    resumed: bool
    remaining_attempts: int | None


class AnswerIn(BaseModel):
    question_id: UUID
    answer: Any = None


class AnswersIn(BaseModel):
    answers: list[AnswerIn] = Field(default_factory=list)

    def by_question(self) -> dict[str, Any]:
        """Answers keyed by question id; a repeated question keeps its last answer."""
        return {str(a.question_id): a.answer for a in self.answers}


class SubmitIn(AnswersIn):
    attempt_id: UUID


class QuestionReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_id: UUID
    correct: bool
    points_awarded: int
    correct_answers: list[str]
    explanation: str | None


class SubmissionOut(BaseModel):
    attempt: AttemptOut
    coins_awarded: int
    new_balance: int
    feedback: str
    remaining_attempts: int | None
    pending_review: list[UUID]
    review: list[QuestionReviewOut]


class AttemptHistoryOut(BaseModel):
    attempts: list[AttemptOut]
    best_attempt_id: UUID | None
    best_percentage: float | None
    remaining_attempts: int | None


def _attempt_out(attempt: QuizAttempt) -> AttemptOut:
    return AttemptOut(
        id=attempt.id,
        quiz_id=attempt.quiz_id,
        attempt_number=attempt.attempt_number,
        started_at=attempt.started_at,
        expires_at=attempt.expires_at,
        completed_at=attempt.completed_at,
        score=attempt.score,
        total_points=attempt.total_points,
        percentage=attempt.percentage,
        passed=attempt.passed,
        coins_awarded=attempt.coins_awarded,
        auto_submitted=attempt.auto_submitted,
    )


@router.post(
    "/{quiz_id}/attempts",
    response_model=AttemptStartOut,
    status_code=status.HTTP_201_CREATED,
)
async def start_attempt(
    quiz_id: UUID, response: Response, principal: Learner, services: Services
) -> AttemptStartOut:
    started = services.quizzes.start_quiz_attempt(principal.user_id, quiz_id)
    if started.resumed:
        response.status_code = status.HTTP_200_OK
    # Starting may have finalized an overdue attempt, which can pay coins
    await invalidate_leaderboards()
    return AttemptStartOut(
        attempt=_attempt_out(started.attempt),
        questions=[QuestionOut.model_validate(q) for q in started.questions],
        resumed=started.resumed,
        remaining_attempts=started.remaining_attempts,
    )


@router.get("/{quiz_id}/attempts", response_model=AttemptHistoryOut)
def list_attempts(quiz_id: UUID, principal: Learner, services: Services) -> AttemptHistoryOut:
    quizzes = services.quizzes
    best = quizzes.get_best_attempt(principal.user_id, quiz_id)
    return AttemptHistoryOut(
        attempts=[_attempt_out(a) for a in quizzes.list_attempts(principal.user_id, quiz_id)],
        best_attempt_id=best.id if best else None,
        best_percentage=best.percentage if best else None,
        remaining_attempts=quizzes.get_remaining_attempts(principal.user_id, quiz_id),
    )


@router.put("/attempts/{attempt_id}/answers", response_model=AttemptOut)
def save_answers(
    attempt_id: UUID, body: AnswersIn, principal: Learner, services: Services
) -> AttemptOut:
    attempt = services.quizzes.save_answers(principal.user_id, attempt_id, body.by_question())
    return _attempt_out(attempt)


@router.post("/{quiz_id}/submit", response_model=SubmissionOut)
async def submit_attempt(
    quiz_id: UUID, body: SubmitIn, principal: Learner, services: Services
) -> SubmissionOut:
    submission = services.quizzes.submit_quiz_attempt(
        principal.user_id, body.attempt_id, body.by_question(), quiz_id=quiz_id
    )
    if submission.coins_awarded:
        await invalidate_leaderboards()
    return SubmissionOut(
        attempt=_attempt_out(submission.attempt),
        coins_awarded=submission.coins_awarded,
        new_balance=submission.new_balance,
        feedback=submission.feedback,
        remaining_attempts=submission.remaining_attempts,
        pending_review=[
            r.question_id for r in submission.attempt.question_results if r.pending_review
        ],
        review=[QuestionReviewOut.model_validate(r) for r in submission.review],
    )


class AttemptResetOut(BaseModel):
    quiz_id: UUID
    user_id: str
    attempts_deleted: int


class QuizStatisticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    quiz_id: UUID
    total_attempts: int
    passed_attempts: int
    pass_rate: float
    average_score: float
    unique_users: int
    score_distribution: dict[str, int]


@router.delete("/{quiz_id}/attempts/{user_id}", response_model=AttemptResetOut)
def reset_attempts(
    quiz_id: UUID, user_id: str, principal: Staff, services: Services
) -> AttemptResetOut:
    deleted = services.quizzes.reset_user_attempts(user_id, quiz_id, actor=principal.user_id)
    return AttemptResetOut(quiz_id=quiz_id, user_id=user_id, attempts_deleted=deleted)


@router.get("/{quiz_id}/statistics", response_model=QuizStatisticsOut)
def quiz_statistics(quiz_id: UUID, principal: Staff, services: Services) -> QuizStatisticsOut:
    return QuizStatisticsOut.model_validate(services.quizzes.get_quiz_statistics(quiz_id))
