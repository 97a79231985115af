"""Learner-side facts owned by the engine.

Completion facts (topic completions, block attempts, quiz attempts,
submissions, attendance) are the source of truth.  UserProgress,
LessonProgress and Enrollment.completion_percentage are projections
that the cascade recomputes from those facts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import UUID, uuid4

EnrollmentStatus = Literal["active", "completed", "withdrawn"]
SubmissionStatus = Literal["submitted", "approved", "rejected", "revision_requested"]


@dataclass(frozen=True, slots=True)
class Enrollment:
    id: UUID
    user_id: str
    cohort_id: UUID
    enrolled_at: int
    status: EnrollmentStatus = "active"
    completion_percentage: float = 0.0
    completed_at: int | None = None
    withdrawn_at: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @staticmethod
    def new(*, user_id: str, cohort_id: UUID, enrolled_at: int) -> Enrollment:
        return Enrollment(
            id=uuid4(), user_id=user_id, cohort_id=cohort_id, enrolled_at=enrolled_at
        )


@dataclass(frozen=True, slots=True)
class UserProgress:
    """Per (user, week) gate and completion projection.

    ``is_unlocked`` only ever moves from False to True.
    """

    user_id: str
    week_id: UUID
    is_unlocked: bool = False
    unlocked_at: int | None = None
    completion_percentage: float = 0.0
    completed_at: int | None = None
    updated_at: int | None = None


@dataclass(frozen=True, slots=True)
class TopicCompletion:
    id: UUID
    user_id: str
    topic_id: UUID
    started_at: int
    completed_at: int | None = None
    coins_awarded: int = 0
    time_spent_seconds: int = 0
    last_position_seconds: int = 0
    completion_percentage: float = 0.0
    completion_data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @staticmethod
    def new(*, user_id: str, topic_id: UUID, started_at: int) -> TopicCompletion:
        return TopicCompletion(
            id=uuid4(), user_id=user_id, topic_id=topic_id, started_at=started_at
        )


@dataclass(frozen=True, slots=True)
class LessonProgress:
    user_id: str
    lesson_id: UUID
    # Time on the lesson page itself, on top of per-topic time
    time_spent_seconds: int = 0
    completion_percentage: float = 0.0
    completed_at: int | None = None
    updated_at: int | None = None


@dataclass(frozen=True, slots=True)
class LessonBlockCompletion:
    id: UUID
    user_id: str
    lesson_id: UUID
    block_id: str
    block_type: str
    attempt_number: int
    completed_at: int
    is_completed: bool = True
    passed: bool | None = None
    score_percentage: float | None = None
    coins_awarded: int = 0
    completion_data: dict[str, Any] = field(default_factory=dict)

    @property
    def counts_as_done(self) -> bool:
        # Ungraded blocks report passed=None and count once completed
        return self.is_completed and self.passed is not False


@dataclass(frozen=True, slots=True)
class QuestionResult:
    question_id: UUID
    correct: bool
    points_awarded: int
    points_possible: int
    pending_review: bool = False


@dataclass(frozen=True, slots=True)
class QuizAttempt:
    id: UUID
    user_id: str
    quiz_id: UUID
    attempt_number: int
    started_at: int
    expires_at: int | None = None
    completed_at: int | None = None
    score: int = 0
    total_points: int = 0
    percentage: float = 0.0
    passed: bool = False
    answers: dict[str, Any] = field(default_factory=dict)
    question_results: tuple[QuestionResult, ...] = ()
    coins_awarded: int = 0
    time_taken_seconds: int | None = None
    auto_submitted: bool = False

    @property
    def is_open(self) -> bool:
        return self.completed_at is None

    def is_expired(self, now: int) -> bool:
        return self.expires_at is not None and now > self.expires_at

    @staticmethod
    def new(
        *,
        user_id: str,
        quiz_id: UUID,
        attempt_number: int,
        started_at: int,
        expires_at: int | None = None,
    ) -> QuizAttempt:
        return QuizAttempt(
            id=uuid4(),
            user_id=user_id,
            quiz_id=quiz_id,
            attempt_number=attempt_number,
            started_at=started_at,
            expires_at=expires_at,
        )


@dataclass(frozen=True, slots=True)
class AssignmentSubmission:
    id: UUID
    user_id: str
    assignment_id: UUID
    content: str
    submitted_at: int
    status: SubmissionStatus = "submitted"
    feedback: str | None = None
    reviewed_by: str | None = None
    reviewed_at: int | None = None
    coins_awarded: int = 0
    revision_count: int = 0

    @staticmethod
    def new(
        *, user_id: str, assignment_id: UUID, content: str, submitted_at: int
    ) -> AssignmentSubmission:
        return AssignmentSubmission(
            id=uuid4(),
            user_id=user_id,
            assignment_id=assignment_id,
            content=content,
            submitted_at=submitted_at,
        )


@dataclass(frozen=True, slots=True)
class LiveAttendance:
    id: UUID
    user_id: str
    live_class_id: UUID
    joined_at: int
    left_at: int | None = None
    duration_seconds: int = 0
    attended: bool = False
    coins_awarded: int = 0
