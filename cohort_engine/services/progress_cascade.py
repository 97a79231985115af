"""Upward recomputation after a completion fact lands.

    lesson -> (modules) -> week -> next-week gate -> enrollment

Each step recomputes from source facts and never from a percentage some
other step stored earlier.  Two cascades for the same learner can run
in any order, or at the same time, and still converge on the same
stored values.

The cascade runs after the fact's own transaction has committed.  A
crash in between leaves projections stale but never wrong: the next
cascade for that learner brings them up to date.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from cohort_engine.models.progress import Enrollment
from cohort_engine.services.enrollment import EnrollmentService
from cohort_engine.services.hierarchy import HierarchyLookup
from cohort_engine.services.lesson_completion import (
    LessonCompletionService,
    LessonProgressReport,
)
from cohort_engine.services.week_unlock import WeekRecalculation, WeekUnlockService


@dataclass(frozen=True, slots=True)
class CascadeResult:
    week: WeekRecalculation
    enrollment: Enrollment | None
    lesson: LessonProgressReport | None = None


class ProgressCascade:
    def __init__(
        self,
        lookup: HierarchyLookup,
        lessons: LessonCompletionService,
        weeks: WeekUnlockService,
        enrollments: EnrollmentService,
    ) -> None:
        self._lookup = lookup
        self._lessons = lessons
        self._weeks = weeks
        self._enrollments = enrollments

    def on_lesson_changed(self, user_id: str, lesson_id: UUID) -> CascadeResult:
        lesson_report = self._lessons.recalculate_lesson_progress(user_id, lesson_id)
        week = self._lookup.week_for_lesson(self._lookup.lesson(lesson_id))
        result = self.on_week_changed(user_id, week.id)
        return CascadeResult(week=result.week, enrollment=result.enrollment, lesson=lesson_report)

    def on_week_changed(self, user_id: str, week_id: UUID) -> CascadeResult:
        week = self._lookup.week(week_id)
        recalculation = self._weeks.recalculate_week_progress(user_id, week.id)
        enrollment = self._enrollments.recalculate_enrollment(user_id, week.cohort_id)
        return CascadeResult(week=recalculation, enrollment=enrollment)
