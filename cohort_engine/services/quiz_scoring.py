"""Quiz attempts and grading.

ATTEMPT LIFECYCLE
-------------------
    start --> open (answers autosaved) --> graded

At most one attempt per (user, quiz) is open.  Starting again while one
is open returns it unchanged, so a double-clicked "Start" does not burn
an attempt.  Attempts are bounded by ``quiz.max_attempts``.

SERVER-AUTHORITATIVE EXPIRY
-----------------------------
A timed attempt carries ``expires_at``.  The client timer is a courtesy:
a submission arriving later than ``expires_at`` plus a small grace
window is graded on the answers autosaved before expiry, and flagged
``auto_submitted``.  Overdue open attempts are also finalized the next
time the learner touches the quiz.

Grading stores through a compare-and-set, so when the client's late
submit and the server's expiry sweep race, exactly one grades the
attempt and the other sees AlreadyCompleted.

GRADING
---------
Multiple choice and true/false are graded by set membership: a single
submitted option is correct if it is in ``correct_answers``; a list of
options must equal the correct set exactly.  Free-text questions are not
auto-graded.  They score 0 and are flagged ``pending_review``.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any
from uuid import UUID

from cohort_engine.core.clock import Clock
from cohort_engine.core.config import Settings
from cohort_engine.core.errors import (
    AlreadyCompleted,
    AttemptNotFound,
    MaxAttemptsReached,
)
from cohort_engine.core.metrics import COMPLETIONS_RECORDED, QUIZ_ATTEMPTS_GRADED
from cohort_engine.db.memory import InMemoryDatabase
from cohort_engine.models.content import Quiz, QuizQuestion, normalize_answer
from cohort_engine.models.ledger import QUIZ_ATTEMPT
from cohort_engine.models.progress import QuestionResult, QuizAttempt
from cohort_engine.repos.quiz_attempt_repo import QuizAttemptRepo
from cohort_engine.services.coin_ledger import AwardResult, CoinLedgerService
from cohort_engine.services.hierarchy import HierarchyLookup
from cohort_engine.services.lesson_completion import LessonCompletionService
from cohort_engine.services.progress_cascade import ProgressCascade
from cohort_engine.services.week_unlock import WeekUnlockService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PublicQuestion:
    """A question as shown to the learner: no answer key, no explanation."""

    id: UUID
    type: str
    prompt: str
    options: tuple[str, ...]
    points: int


@dataclass(frozen=True, slots=True)
class QuestionReview:
    question_id: UUID
    correct: bool
    points_awarded: int
    correct_answers: tuple[str, ...]
    explanation: str | None


@dataclass(frozen=True, slots=True)
class GradeResult:
    score: int
    total_points: int
    percentage: float
    results: tuple[QuestionResult, ...]


@dataclass(frozen=True, slots=True)
class AttemptStart:
    attempt: QuizAttempt
    questions: list[PublicQuestion]
    resumed: bool
    remaining_attempts: int | None


@dataclass(frozen=True, slots=True)
class QuizSubmission:
    attempt: QuizAttempt
    coins_awarded: int
    new_balance: int
    feedback: str
    remaining_attempts: int | None
    review: tuple[QuestionReview, ...] = ()


@dataclass(frozen=True, slots=True)
class QuizStatistics:
    quiz_id: UUID
    total_attempts: int
    passed_attempts: int
    pass_rate: float
    average_score: float
    unique_users: int
    score_distribution: dict[str, int]


# Upper bound (inclusive) of each percentage bucket
SCORE_BUCKETS = ((20, "0-20"), (40, "21-40"), (60, "41-60"), (80, "61-80"), (100, "81-100"))


def score_distribution(percentages: Sequence[float]) -> dict[str, int]:
    counts = dict.fromkeys((label for _, label in SCORE_BUCKETS), 0)
    for percentage in percentages:
        label = next((lbl for top, lbl in SCORE_BUCKETS if percentage <= top), "81-100")
        counts[label] += 1
    return counts


def _is_correct(question: QuizQuestion, submitted: Any) -> bool:
    if submitted is None:
        return False
    correct = set(question.correct_answers)
    if isinstance(submitted, (list, tuple, set, frozenset)):
        chosen = {normalize_answer(question.type, s) for s in submitted}
        return bool(chosen) and chosen == correct
    return normalize_answer(question.type, submitted) in correct


def grade_answers(
    questions: Sequence[QuizQuestion], answers: Mapping[str, Any]
) -> GradeResult:
    """Score ``answers`` (keyed by question id string) against the key."""
    results: list[QuestionResult] = []
    score = 0
    total = 0
    for question in questions:
        total += question.points
        submitted = answers.get(str(question.id))
        if not question.is_auto_graded:
            results.append(
                QuestionResult(
                    question_id=question.id,
                    correct=False,
                    points_awarded=0,
                    points_possible=question.points,
                    pending_review=True,
                )
            )
            continue
        correct = _is_correct(question, submitted)
        awarded = question.points if correct else 0
        score += awarded
        results.append(
            QuestionResult(
                question_id=question.id,
                correct=correct,
                points_awarded=awarded,
                points_possible=question.points,
            )
        )

    percentage = round(score / total * 100, 2) if total else 0.0
    return GradeResult(score=score, total_points=total, percentage=percentage, results=tuple(results))


def feedback_for(percentage: float, passing_score: int) -> str:
    if percentage >= 90:
        return "Excellent work!"
    if percentage >= passing_score:
        return "Good job, you passed."
    if percentage >= passing_score - 10:
        return "So close. Review the material and try again."
    return "Keep studying and try again."


class QuizScoringEngine:
    def __init__(
        self,
        lookup: HierarchyLookup,
        attempts: QuizAttemptRepo,
        lessons: LessonCompletionService,
        weeks: WeekUnlockService,
        ledger: CoinLedgerService,
        cascade: ProgressCascade,
        db: InMemoryDatabase,
        clock: Clock,
        settings: Settings,
    ) -> None:
        self._lookup = lookup
        self._attempts = attempts
        self._lessons = lessons
        self._weeks = weeks
        self._ledger = ledger
        self._cascade = cascade
        self._db = db
        self._clock = clock
        self._settings = settings

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def start_quiz_attempt(self, user_id: str, quiz_id: UUID) -> AttemptStart:
        quiz = self._lookup.quiz(quiz_id)
        self._weeks.ensure_week_access(user_id, quiz.week_id)
        self.expire_overdue_attempts(user_id, quiz.id)

        now = self._clock.now()
        with self._db.transaction():
            attempts = self._attempts.list_for(user_id, quiz.id)
            open_attempt = next((a for a in attempts if a.is_open), None)
            if open_attempt is not None:
                return AttemptStart(
                    attempt=open_attempt,
                    questions=self.get_questions_for_attempt(open_attempt),
                    resumed=True,
                    remaining_attempts=self._remaining(quiz, attempts),
                )
            if any(a.passed for a in attempts):
                raise AlreadyCompleted("Quiz already passed")
            if quiz.max_attempts is not None and len(attempts) >= quiz.max_attempts:
                raise MaxAttemptsReached(
                    f"All {quiz.max_attempts} attempt(s) for this quiz have been used"
                )

            attempt = QuizAttempt.new(
                user_id=user_id,
                quiz_id=quiz.id,
                attempt_number=len(attempts) + 1,
                started_at=now,
                expires_at=now + quiz.time_limit_seconds if quiz.time_limit_seconds else None,
            )
            self._attempts.add(attempt)

        logger.info(
            "Quiz attempt started user=%s quiz=%s attempt=%d",
            user_id,
            quiz.id,
            attempt.attempt_number,
            extra={"user_id": user_id, "quiz_id": str(quiz.id), "attempt_id": str(attempt.id)},
        )
        return AttemptStart(
            attempt=attempt,
            questions=self.get_questions_for_attempt(attempt),
            resumed=False,
            remaining_attempts=self._remaining(quiz, [*attempts, attempt]),
        )

    def get_questions_for_attempt(self, attempt: QuizAttempt) -> list[PublicQuestion]:
        quiz = self._lookup.quiz(attempt.quiz_id)
        questions = list(self._lookup.content.list_quiz_questions(quiz.id))
        if quiz.is_randomized:
            # Seeded by attempt id: stable across reloads of the same attempt
            random.Random(str(attempt.id)).shuffle(questions)
        return [
            PublicQuestion(
                id=q.id, type=q.type, prompt=q.prompt, options=q.options, points=q.points
            )
            for q in questions
        ]

    def save_answers(
        self, user_id: str, attempt_id: UUID, answers: Mapping[str, Any]
    ) -> QuizAttempt:
        attempt = self._own_attempt(user_id, attempt_id)
        if not attempt.is_open:
            raise AlreadyCompleted("Attempt already submitted", existing=attempt)
        if attempt.is_expired(self._clock.now()):
            # Past expiry the autosaved answers are frozen
            return attempt
        return self._attempts.save_answers(attempt.id, _keyed(answers))

    def submit_quiz_attempt(
        self,
        user_id: str,
        attempt_id: UUID,
        answers: Mapping[str, Any],
        quiz_id: UUID | None = None,
    ) -> QuizSubmission:
        attempt = self._own_attempt(user_id, attempt_id)
        if quiz_id is not None and attempt.quiz_id != quiz_id:
            raise AttemptNotFound()
        if not attempt.is_open:
            raise AlreadyCompleted("Attempt already submitted", existing=attempt)

        quiz = self._lookup.quiz(attempt.quiz_id)
        late = self._past_grace(attempt)
        final_answers = attempt.answers if late else {**attempt.answers, **_keyed(answers)}
        if late:
            logger.warning(
                "Late quiz submission graded on saved answers user=%s attempt=%s",
                user_id,
                attempt.id,
                extra={"user_id": user_id, "attempt_id": str(attempt.id)},
            )
        return self._finalize(quiz, attempt, final_answers, auto_submitted=late)

    def expire_overdue_attempts(self, user_id: str, quiz_id: UUID) -> list[QuizSubmission]:
        quiz = self._lookup.quiz(quiz_id)
        finalized = []
        for attempt in self._attempts.list_for(user_id, quiz.id):
            if attempt.is_open and self._past_grace(attempt):
                try:
                    finalized.append(
                        self._finalize(quiz, attempt, attempt.answers, auto_submitted=True)
                    )
                except AlreadyCompleted:
                    # A concurrent submit graded it first
                    continue
        return finalized

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_attempts(self, user_id: str, quiz_id: UUID) -> list[QuizAttempt]:
        return self._attempts.list_for(user_id, quiz_id)

    def get_best_attempt(self, user_id: str, quiz_id: UUID) -> QuizAttempt | None:
        graded = [a for a in self._attempts.list_for(user_id, quiz_id) if not a.is_open]
        if not graded:
            return None
        # Highest percentage; the earliest attempt wins a tie
        return min(graded, key=lambda a: (-a.percentage, a.attempt_number))

    def get_remaining_attempts(self, user_id: str, quiz_id: UUID) -> int | None:
        quiz = self._lookup.quiz(quiz_id)
        return self._remaining(quiz, self._attempts.list_for(user_id, quiz.id))

    # ------------------------------------------------------------------
    # Staff
    # ------------------------------------------------------------------

    def reset_user_attempts(self, user_id: str, quiz_id: UUID, actor: str) -> int:
        """Delete a learner's attempts so they can take the quiz afresh.

        Coins already paid for the quiz stay on the ledger, and a later
        pass after the reset pays nothing more.
        """
        quiz = self._lookup.quiz(quiz_id)
        with self._db.transaction():
            deleted = self._attempts.delete_for(user_id, quiz.id)
        logger.warning(
            "Quiz attempts reset user=%s quiz=%s deleted=%d actor=%s",
            user_id,
            quiz.id,
            deleted,
            actor,
            extra={"user_id": user_id, "quiz_id": str(quiz.id), "actor": actor},
        )
        if deleted:
            if quiz.lesson_id is not None:
                self._cascade.on_lesson_changed(user_id, quiz.lesson_id)
            else:
                self._cascade.on_week_changed(user_id, quiz.week_id)
        return deleted

    def get_quiz_statistics(self, quiz_id: UUID) -> QuizStatistics:
        """Aggregates over graded attempts only; open attempts are ignored."""
        quiz = self._lookup.quiz(quiz_id)
        graded = [a for a in self._attempts.list_for_quiz(quiz.id) if not a.is_open]
        passed = sum(1 for a in graded if a.passed)
        percentages = [a.percentage for a in graded]
        return QuizStatistics(
            quiz_id=quiz.id,
            total_attempts=len(graded),
            passed_attempts=passed,
            pass_rate=round(passed / len(graded) * 100, 2) if graded else 0.0,
            average_score=round(sum(percentages) / len(percentages), 2) if graded else 0.0,
            unique_users=len({a.user_id for a in graded}),
            score_distribution=score_distribution(percentages),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _quiz_paid(self, user_id: str, quiz_id: UUID) -> bool:
        # Survives an attempt reset: the ledger is never rewritten
        return any(
            t.metadata.get("quiz_id") == str(quiz_id)
            for t in self._ledger.rewards_for(user_id, QUIZ_ATTEMPT)
        )

    @staticmethod
    def _remaining(quiz: Quiz, attempts: Sequence[QuizAttempt]) -> int | None:
        if quiz.max_attempts is None:
            return None
        return max(0, quiz.max_attempts - len(attempts))

    def _own_attempt(self, user_id: str, attempt_id: UUID) -> QuizAttempt:
        attempt = self._attempts.get(attempt_id)
        if attempt is None or attempt.user_id != user_id:
            raise AttemptNotFound()
        return attempt

    def _past_grace(self, attempt: QuizAttempt) -> bool:
        if attempt.expires_at is None:
            return False
        return self._clock.now() > attempt.expires_at + self._settings.quiz_submit_grace_seconds

    def _finalize(
        self,
        quiz: Quiz,
        attempt: QuizAttempt,
        answers: dict[str, Any],
        *,
        auto_submitted: bool,
    ) -> QuizSubmission:
        questions = self._lookup.content.list_quiz_questions(quiz.id)
        grade = grade_answers(questions, answers)
        passed = grade.percentage >= quiz.passing_score
        now = self._clock.now()

        with self._db.transaction():
            earlier_pass = any(
                a.passed
                for a in self._attempts.list_for(attempt.user_id, quiz.id)
                if a.id != attempt.id and not a.is_open
            ) or self._quiz_paid(attempt.user_id, quiz.id)
            award = AwardResult(transaction=None, created=False)
            if passed and not earlier_pass:
                award = self._ledger.award(
                    attempt.user_id,
                    quiz.coin_reward,
                    QUIZ_ATTEMPT,
                    str(attempt.id),
                    reason=f"Passed quiz: {quiz.title}",
                    metadata={"quiz_id": str(quiz.id), "percentage": grade.percentage},
                )
            graded = replace(
                attempt,
                completed_at=now,
                score=grade.score,
                total_points=grade.total_points,
                percentage=grade.percentage,
                passed=passed,
                answers=dict(answers),
                question_results=grade.results,
                coins_awarded=award.amount,
                time_taken_seconds=now - attempt.started_at,
                auto_submitted=auto_submitted,
            )
            if not self._attempts.complete(graded):
                raise AlreadyCompleted(
                    "Attempt already submitted", existing=self._attempts.get(attempt.id)
                )
            if quiz.lesson_id is not None and quiz.block_id is not None:
                self._lessons.record_block_completion(
                    attempt.user_id,
                    quiz.lesson_id,
                    quiz.block_id,
                    "quiz",
                    score_percentage=grade.percentage,
                    passed=passed,
                    completion_data={"quiz_attempt_id": str(attempt.id)},
                    trusted=True,
                )

        outcome = "passed" if passed else "failed"
        QUIZ_ATTEMPTS_GRADED.labels(outcome=outcome).inc()
        COMPLETIONS_RECORDED.labels(kind="quiz_attempt").inc()
        logger.info(
            "Quiz graded user=%s quiz=%s attempt=%d percentage=%.2f %s",
            attempt.user_id,
            quiz.id,
            attempt.attempt_number,
            grade.percentage,
            outcome,
            extra={
                "user_id": attempt.user_id,
                "quiz_id": str(quiz.id),
                "attempt_id": str(attempt.id),
            },
        )

        if quiz.lesson_id is not None:
            self._cascade.on_lesson_changed(attempt.user_id, quiz.lesson_id)
        else:
            self._cascade.on_week_changed(attempt.user_id, quiz.week_id)

        review: tuple[QuestionReview, ...] = ()
        if quiz.show_correct_answers:
            by_id = {r.question_id: r for r in grade.results}
            review = tuple(
                QuestionReview(
                    question_id=q.id,
                    correct=by_id[q.id].correct,
                    points_awarded=by_id[q.id].points_awarded,
                    correct_answers=q.correct_answers,
                    explanation=q.explanation,
                )
                for q in questions
            )

        return QuizSubmission(
            attempt=graded,
            coins_awarded=award.amount,
            new_balance=self._ledger.get_balance(attempt.user_id),
            feedback=feedback_for(grade.percentage, quiz.passing_score),
            remaining_attempts=self._remaining(
                quiz, self._attempts.list_for(attempt.user_id, quiz.id)
            ),
            review=review,
        )


def _keyed(answers: Mapping[Any, Any]) -> dict[str, Any]:
    return {str(k): v for k, v in answers.items()}
