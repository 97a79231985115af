"""Topic state machine and time eligibility.

    (none) --start/progress--> InProgress --complete--> Completed

Completed is terminal: later progress reports are ignored and the row
stays at 100%.  completeTopic is the engine's most retried call (video
players fire "ended" more than once), so every path through it is
idempotent:

  * A completed row short-circuits with AlreadyCompleted carrying the
    stored row; the HTTP layer answers that as a no-op success.
  * The fact and its coin reward commit in one transaction, keyed on
    (user, topic) and (user, 'topic_completion', topic_id).  A
    concurrent duplicate that slips past the first check loses at the
    store and gets the same AlreadyCompleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any
from uuid import UUID

from cohort_engine.core.clock import Clock
from cohort_engine.core.config import Settings
from cohort_engine.core.errors import (
    AlreadyCompleted,
    EngineError,
    NotEligible,
    ValidationFailed,
)
from cohort_engine.core.metrics import COMPLETIONS_RECORDED
from cohort_engine.db.memory import DuplicateKeyError, InMemoryDatabase
from cohort_engine.models.content import Topic
from cohort_engine.models.ledger import TOPIC_COMPLETION
from cohort_engine.models.progress import TopicCompletion
from cohort_engine.repos.completion_repo import CompletionRepo
from cohort_engine.services.coin_ledger import CoinLedgerService
from cohort_engine.services.enrollment import EnrollmentService
from cohort_engine.services.hierarchy import HierarchyLookup
from cohort_engine.services.lesson_completion import LessonProgressReport
from cohort_engine.services.progress_cascade import CascadeResult, ProgressCascade
from cohort_engine.services.week_unlock import WeekUnlockService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NextItem:
    type: str  # topic|lesson|module
    id: UUID
    title: str


@dataclass(frozen=True, slots=True)
class TopicCompletionResult:
    completion: TopicCompletion
    coins_awarded: int
    new_balance: int
    lesson_progress: LessonProgressReport | None
    cascade: CascadeResult | None
    next_item: NextItem | None


@dataclass(frozen=True, slots=True)
class TopicStatistics:
    topic_id: UUID
    total_completions: int
    total_students: int
    completion_rate: float
    average_time_spent_seconds: float | None
    coins_distributed: int


@dataclass(frozen=True, slots=True)
class BulkCompletionOutcome:
    topic_id: UUID
    success: bool
    coins_awarded: int = 0
    already_completed: bool = False
    error: str | None = None
    message: str | None = None


class TopicCompletionService:
    def __init__(
        self,
        lookup: HierarchyLookup,
        completions: CompletionRepo,
        ledger: CoinLedgerService,
        weeks: WeekUnlockService,
        cascade: ProgressCascade,
        enrollments: EnrollmentService,
        db: InMemoryDatabase,
        clock: Clock,
        settings: Settings,
    ) -> None:
        self._lookup = lookup
        self._completions = completions
        self._ledger = ledger
        self._weeks = weeks
        self._cascade = cascade
        self._enrollments = enrollments
        self._db = db
        self._clock = clock
        self._settings = settings

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def min_time_for(self, topic: Topic) -> int:
        if topic.min_time_required_seconds is not None:
            return topic.min_time_required_seconds
        return self._settings.default_topic_min_time_seconds

    def is_eligible_for_completion(
        self, completion: TopicCompletion | None, topic: Topic
    ) -> bool:
        spent = completion.time_spent_seconds if completion else 0
        return spent >= self.min_time_for(topic)

    def get_time_remaining_for_eligibility(
        self, completion: TopicCompletion | None, topic: Topic
    ) -> int:
        spent = completion.time_spent_seconds if completion else 0
        return max(0, self.min_time_for(topic) - spent)

    # ------------------------------------------------------------------
    # In-progress tracking
    # ------------------------------------------------------------------

    def start_topic(self, user_id: str, topic_id: UUID) -> TopicCompletion:
        topic = self._lookup.topic(topic_id)
        self._weeks.ensure_week_access(user_id, self._lookup.week_for_topic(topic).id)
        with self._db.transaction():
            existing = self._completions.get_topic_completion(user_id, topic.id)
            if existing is not None:
                return existing
            completion = TopicCompletion.new(
                user_id=user_id, topic_id=topic.id, started_at=self._clock.now()
            )
            self._completions.add_topic_completion(completion)
        logger.debug("Topic started user=%s topic=%s", user_id, topic.id)
        return completion

    def update_topic_progress(
        self,
        user_id: str,
        topic_id: UUID,
        percentage: float,
        last_position_seconds: int,
        time_spent_seconds: int | None = None,
    ) -> TopicCompletion:
        """Record scrubbing progress.  A no-op on a completed topic.

        Percentage is clamped to [0, 100].  Reported times are cumulative
        and the stored values never go down.
        """
        if last_position_seconds < 0 or (
            time_spent_seconds is not None and time_spent_seconds < 0
        ):
            raise ValidationFailed("Times must be >= 0")

        current = self.start_topic(user_id, topic_id)
        if current.is_completed:
            return current

        with self._db.transaction():
            current = self._completions.get_topic_completion(user_id, topic_id) or current
            if current.is_completed:
                return current
            updated = replace(
                current,
                completion_percentage=min(max(float(percentage), 0.0), 100.0),
                last_position_seconds=max(current.last_position_seconds, last_position_seconds),
                time_spent_seconds=(
                    max(current.time_spent_seconds, time_spent_seconds)
                    if time_spent_seconds is not None
                    else current.time_spent_seconds
                ),
            )
            self._completions.save_topic_completion(updated)
        return updated

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete_topic(
        self,
        user_id: str,
        topic_id: UUID,
        completion_data: dict[str, Any] | None = None,
        *,
        enforce_min_time: bool = True,
    ) -> TopicCompletionResult:
        topic = self._lookup.topic(topic_id)
        lesson = self._lookup.lesson(topic.lesson_id)
        week = self._lookup.week_for_lesson(lesson)

        existing = self._completions.get_topic_completion(user_id, topic.id)
        if existing is not None and existing.is_completed:
            raise AlreadyCompleted("Topic already completed", existing=existing)

        self._weeks.ensure_week_access(user_id, week.id)
        if (
            enforce_min_time
            and self._settings.enforce_topic_min_time
            and not self.is_eligible_for_completion(existing, topic)
        ):
            remaining = self.get_time_remaining_for_eligibility(existing, topic)
            raise NotEligible(f"Spend {remaining} more second(s) on this topic first")

        now = self._clock.now()
        try:
            with self._db.transaction():
                current = self._completions.get_topic_completion(user_id, topic.id)
                if current is not None and current.is_completed:
                    raise AlreadyCompleted("Topic already completed", existing=current)

                award = self._ledger.award(
                    user_id,
                    topic.coin_reward,
                    TOPIC_COMPLETION,
                    str(topic.id),
                    reason=f"Completed topic: {topic.title}",
                    metadata={"lesson_id": str(lesson.id), "week_id": str(week.id)},
                )
                base = current or TopicCompletion.new(
                    user_id=user_id, topic_id=topic.id, started_at=now
                )
                completion = replace(
                    base,
                    completed_at=now,
                    completion_percentage=100.0,
                    coins_awarded=award.amount,
                    completion_data={**base.completion_data, **(completion_data or {})},
                )
                if current is None:
                    self._completions.add_topic_completion(completion)
                else:
                    self._completions.save_topic_completion(completion)
        except DuplicateKeyError:
            winner = self._completions.get_topic_completion(user_id, topic.id)
            raise AlreadyCompleted("Topic already completed", existing=winner) from None

        COMPLETIONS_RECORDED.labels(kind="topic").inc()
        logger.info(
            "Topic completed user=%s topic=%s coins=%d",
            user_id,
            topic.id,
            award.amount,
            extra={"user_id": user_id, "topic_id": str(topic.id), "week_id": str(week.id)},
        )

        cascade = self._cascade.on_lesson_changed(user_id, lesson.id)
        return TopicCompletionResult(
            completion=completion,
            coins_awarded=award.amount,
            new_balance=self._ledger.get_balance(user_id),
            lesson_progress=cascade.lesson,
            cascade=cascade,
            next_item=self.get_next_item(topic),
        )

    def get_completion(self, user_id: str, topic_id: UUID) -> TopicCompletion | None:
        return self._completions.get_topic_completion(user_id, topic_id)

    # ------------------------------------------------------------------
    # Staff
    # ------------------------------------------------------------------

    def bulk_complete_topics(
        self, user_id: str, topic_ids: list[UUID], actor: str
    ) -> dict[UUID, BulkCompletionOutcome]:
        """Staff override: complete topics for a learner, skipping the minimum time.

        Each topic stands alone; a failure is reported and the rest go on.
        The week must still be unlocked for the learner.
        """
        outcomes: dict[UUID, BulkCompletionOutcome] = {}
        for topic_id in topic_ids:
            try:
                result = self.complete_topic(
                    user_id,
                    topic_id,
                    {"completed_by": actor},
                    enforce_min_time=False,
                )
            except AlreadyCompleted:
                outcomes[topic_id] = BulkCompletionOutcome(
                    topic_id, success=True, already_completed=True
                )
            except EngineError as exc:
                logger.warning(
                    "Bulk completion skipped user=%s topic=%s: %s",
                    user_id,
                    topic_id,
                    exc.message,
                    extra={"user_id": user_id, "topic_id": str(topic_id), "actor": actor},
                )
                outcomes[topic_id] = BulkCompletionOutcome(
                    topic_id, success=False, error=exc.error, message=exc.message
                )
            else:
                outcomes[topic_id] = BulkCompletionOutcome(
                    topic_id, success=True, coins_awarded=result.coins_awarded
                )
        return outcomes

    def get_topic_statistics(self, topic_id: UUID) -> TopicStatistics:
        """Completion rate against every learner ever enrolled, withdrawn ones excluded."""
        topic = self._lookup.topic(topic_id)
        week = self._lookup.week_for_topic(topic)
        students = {
            e.user_id
            for e in self._enrollments.list_enrollments(week.cohort_id)
            if e.status != "withdrawn"
        }
        done = [c for c in self._completions.list_completions_for_topic(topic.id) if c.is_completed]
        completed_by_students = sum(1 for c in done if c.user_id in students)
        return TopicStatistics(
            topic_id=topic.id,
            total_completions=len(done),
            total_students=len(students),
            completion_rate=(
                round(completed_by_students / len(students) * 100, 2) if students else 0.0
            ),
            average_time_spent_seconds=(
                round(sum(c.time_spent_seconds for c in done) / len(done), 2) if done else None
            ),
            coins_distributed=sum(c.coins_awarded for c in done),
        )

    def get_next_item(self, topic: Topic) -> NextItem | None:
        """Where the learner goes after ``topic``, within its week."""
        content = self._lookup.content
        lesson = self._lookup.lesson(topic.lesson_id)

        later = _after(content.list_topics(lesson.id), topic.id)
        if later:
            return NextItem("topic", later[0].id, later[0].title)

        module = self._lookup.module(lesson.module_id)
        later_lessons = _after(content.list_lessons(module.id), lesson.id)
        if later_lessons:
            return NextItem("lesson", later_lessons[0].id, later_lessons[0].title)

        later_modules = _after(content.list_modules(module.week_id), module.id)
        if later_modules:
            return NextItem("module", later_modules[0].id, later_modules[0].title)
        return None


def _after(siblings: list, row_id: UUID) -> list:
    ids = [s.id for s in siblings]
    return siblings[ids.index(row_id) + 1 :] if row_id in ids else []
