"""Lesson progress: topics plus evaluable blocks.

A lesson's completion units are its topics and its *required* quiz,
assignment and live blocks.  Percentage is done units over all units; a
lesson with no units at all is trivially complete.

A lesson can be marked complete only when every unit is done AND the
learner has spent the lesson's minimum time on it.  Time is the sum of
per-topic tracked time and time tracked on the lesson page itself.

calculate_lesson_progress() is a pure read.  recalculate_lesson_progress()
stores its result on the LessonProgress row and is safe to run any
number of times, concurrently or not: it only ever derives from facts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any
from uuid import UUID, uuid4

from cohort_engine.core.clock import Clock
from cohort_engine.core.errors import ValidationFailed
from cohort_engine.core.metrics import COMPLETIONS_RECORDED
from cohort_engine.db.memory import InMemoryDatabase
from cohort_engine.models.blocks import (
    AssignmentBlock,
    LessonBlock,
    LiveBlock,
    QuizBlock,
    is_evaluable,
)
from cohort_engine.models.ledger import LESSON_BLOCK_COMPLETION
from cohort_engine.models.progress import LessonBlockCompletion, LessonProgress
from cohort_engine.repos.activity_repo import ActivityRepo
from cohort_engine.repos.completion_repo import CompletionRepo
from cohort_engine.services.coin_ledger import CoinLedgerService
from cohort_engine.services.hierarchy import HierarchyLookup

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UnitStatus:
    kind: str  # topic|quiz|assignment|live
    id: str
    title: str
    completed: bool


@dataclass(frozen=True, slots=True)
class LessonProgressReport:
    lesson_id: UUID
    completed: int
    total: int
    percentage: float
    time_spent: int
    min_time_required: int | None
    time_requirement_met: bool
    can_complete: bool
    units: tuple[UnitStatus, ...] = ()


@dataclass(frozen=True, slots=True)
class BlockCompletionResult:
    attempt: LessonBlockCompletion
    coins_awarded: int


def _percentage(done: int, total: int) -> float:
    if total == 0:
        return 100.0
    return round(done / total * 100, 2)


class LessonCompletionService:
    def __init__(
        self,
        lookup: HierarchyLookup,
        completions: CompletionRepo,
        activity: ActivityRepo,
        ledger: CoinLedgerService,
        db: InMemoryDatabase,
        clock: Clock,
    ) -> None:
        self._lookup = lookup
        self._completions = completions
        self._activity = activity
        self._ledger = ledger
        self._db = db
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def calculate_lesson_progress(self, user_id: str, lesson_id: UUID) -> LessonProgressReport:
        lesson = self._lookup.lesson(lesson_id)
        topics = self._lookup.content.list_topics(lesson.id)
        topic_rows = self._completions.list_topic_completions(
            user_id, [t.id for t in topics]
        )

        units = [
            UnitStatus(
                kind="topic",
                id=str(t.id),
                title=t.title,
                completed=t.id in topic_rows and topic_rows[t.id].is_completed,
            )
            for t in topics
        ]
        attempts = self._completions.list_block_attempts(user_id, lesson.id)
        for block in lesson.blocks:
            if is_evaluable(block) and block.required:
                units.append(
                    UnitStatus(
                        kind=block.type,
                        id=block.id,
                        title=block.title,
                        completed=self._block_done(user_id, block, attempts),
                    )
                )

        completed = sum(1 for u in units if u.completed)
        percentage = _percentage(completed, len(units))

        lesson_row = self._completions.get_lesson_progress(user_id, lesson.id)
        time_spent = sum(c.time_spent_seconds for c in topic_rows.values())
        if lesson_row is not None:
            time_spent += lesson_row.time_spent_seconds

        min_time = lesson.min_time_required_seconds
        time_met = min_time is None or time_spent >= min_time

        return LessonProgressReport(
            lesson_id=lesson.id,
            completed=completed,
            total=len(units),
            percentage=percentage,
            time_spent=time_spent,
            min_time_required=min_time,
            time_requirement_met=time_met,
            can_complete=percentage >= 100 and time_met,
            units=tuple(units),
        )

    def _block_done(
        self, user_id: str, block: LessonBlock, attempts: list[LessonBlockCompletion]
    ) -> bool:
        if any(a.block_id == block.id and a.counts_as_done for a in attempts):
            return True
        if isinstance(block, LiveBlock) and block.live_class_id is not None:
            attendance = self._activity.get_attendance(user_id, block.live_class_id)
            return attendance is not None and attendance.attended
        return False

    def list_block_attempts(
        self, user_id: str, lesson_id: UUID, block_id: str
    ) -> list[LessonBlockCompletion]:
        return self._completions.list_block_attempts(user_id, lesson_id, block_id)

    def get_latest_block_attempt(
        self, user_id: str, lesson_id: UUID, block_id: str
    ) -> LessonBlockCompletion | None:
        attempts = self.list_block_attempts(user_id, lesson_id, block_id)
        return attempts[-1] if attempts else None

    def get_best_block_score(
        self, user_id: str, lesson_id: UUID, block_id: str
    ) -> float | None:
        scores = [
            a.score_percentage
            for a in self.list_block_attempts(user_id, lesson_id, block_id)
            if a.score_percentage is not None
        ]
        return max(scores) if scores else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def recalculate_lesson_progress(self, user_id: str, lesson_id: UUID) -> LessonProgressReport:
        report = self.calculate_lesson_progress(user_id, lesson_id)
        now = self._clock.now()
        with self._db.transaction():
            row = self._completions.get_lesson_progress(user_id, lesson_id) or LessonProgress(
                user_id=user_id, lesson_id=lesson_id
            )
            completed_at = row.completed_at
            if completed_at is None and report.can_complete:
                completed_at = now
                logger.info(
                    "Lesson completed user=%s lesson=%s",
                    user_id,
                    lesson_id,
                    extra={"user_id": user_id, "lesson_id": str(lesson_id)},
                )
            self._completions.save_lesson_progress(
                replace(
                    row,
                    completion_percentage=report.percentage,
                    completed_at=completed_at,
                    updated_at=now,
                )
            )
        return report

    def track_lesson_time(
        self, user_id: str, lesson_id: UUID, time_spent_seconds: int
    ) -> LessonProgress:
        """Record cumulative time on the lesson page.  Never decreases."""
        if time_spent_seconds < 0:
            raise ValidationFailed("time_spent_seconds must be >= 0")
        self._lookup.lesson(lesson_id)
        with self._db.transaction():
            row = self._completions.get_lesson_progress(user_id, lesson_id) or LessonProgress(
                user_id=user_id, lesson_id=lesson_id
            )
            row = replace(
                row,
                time_spent_seconds=max(row.time_spent_seconds, time_spent_seconds),
                updated_at=self._clock.now(),
            )
            self._completions.save_lesson_progress(row)
        return row

    def record_block_completion(
        self,
        user_id: str,
        lesson_id: UUID,
        block_id: str,
        block_type: str,
        *,
        score_percentage: float | None = None,
        passed: bool | None = None,
        completion_data: dict[str, Any] | None = None,
        trusted: bool = False,
    ) -> BlockCompletionResult:
        """Append a new attempt for a lesson block.

        ``trusted`` is set by the quiz, assignment and live-class services
        when they record the outcome of an entity they manage.  Learner
        reports for such blocks are refused, and a learner's quiz score
        is re-judged against the block's own passing score.

        The block's configured coin reward is paid on the first attempt
        that counts as done.  Callers run the progress cascade afterwards.
        """
        lesson = self._lookup.lesson(lesson_id)
        block = lesson.get_block(block_id)
        if block is None:
            raise ValidationFailed(f"Block {block_id!r} not found in lesson")
        if block.type != block_type:
            raise ValidationFailed(
                f"Block {block_id!r} is a {block.type} block, not {block_type}"
            )
        if score_percentage is not None and not 0 <= score_percentage <= 100:
            raise ValidationFailed("score_percentage must be between 0 and 100")
        if not trusted:
            passed = self._judge_learner_report(block, score_percentage, passed)

        now = self._clock.now()
        with self._db.transaction():
            previous = self._completions.list_block_attempts(user_id, lesson.id, block.id)
            attempt = LessonBlockCompletion(
                id=uuid4(),
                user_id=user_id,
                lesson_id=lesson.id,
                block_id=block.id,
                block_type=block.type,
                attempt_number=len(previous) + 1,
                completed_at=now,
                passed=passed,
                score_percentage=score_percentage,
                completion_data=dict(completion_data or {}),
            )

            coins = 0
            if not trusted and is_evaluable(block) and attempt.counts_as_done:
                award = self._ledger.award(
                    user_id,
                    block.coin_reward,
                    LESSON_BLOCK_COMPLETION,
                    f"{lesson.id}:{block.id}",
                    reason=f"Completed {block.type} block in {lesson.title}",
                    metadata={"lesson_id": str(lesson.id), "block_id": block.id},
                )
                coins = award.amount
            attempt = replace(attempt, coins_awarded=coins)
            self._completions.add_block_attempt(attempt)

        COMPLETIONS_RECORDED.labels(kind="lesson_block").inc()
        logger.info(
            "Block attempt recorded user=%s lesson=%s block=%s attempt=%d passed=%s",
            user_id,
            lesson.id,
            block.id,
            attempt.attempt_number,
            attempt.passed,
            extra={"user_id": user_id, "lesson_id": str(lesson.id)},
        )
        return BlockCompletionResult(attempt=attempt, coins_awarded=coins)

    @staticmethod
    def _judge_learner_report(
        block: LessonBlock, score_percentage: float | None, passed: bool | None
    ) -> bool | None:
        if isinstance(block, QuizBlock):
            if block.quiz_id is not None:
                raise ValidationFailed("This quiz block is completed by submitting its quiz")
            if score_percentage is None:
                raise ValidationFailed("score_percentage is required for quiz blocks")
            return score_percentage >= block.passing_score
        if isinstance(block, AssignmentBlock) and block.assignment_id is not None:
            raise ValidationFailed("This assignment block is completed by an approved submission")
        if isinstance(block, LiveBlock) and block.live_class_id is not None:
            raise ValidationFailed("This live block is completed by attending its class")
        return passed