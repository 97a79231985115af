from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from cohort_engine.services.hierarchy import HierarchyLookup
from cohort_engine.services.lesson_completion import (
    LessonCompletionService,
    LessonProgressReport,
)


@dataclass(frozen=True, slots=True)
class ModuleProgressReport:
    module_id: UUID
    completed_lessons: int
    total_lessons: int
    percentage: float
    time_spent: int
    lessons: tuple[LessonProgressReport, ...] = ()


class ModuleCompletionService:
    """Pure aggregation of lesson progress.  Awards nothing.

    Percentage is the mean of lesson percentages, so partial lessons move
    the module forward.  ``completed_lessons`` is stricter: a lesson
    counts only at 100% with its time requirement met.
    """

    def __init__(self, lookup: HierarchyLookup, lessons: LessonCompletionService) -> None:
        self._lookup = lookup
        self._lessons = lessons

    def calculate_module_progress(self, user_id: str, module_id: UUID) -> ModuleProgressReport:
        module = self._lookup.module(module_id)
        reports = tuple(
            self._lessons.calculate_lesson_progress(user_id, lesson.id)
            for lesson in self._lookup.content.list_lessons(module.id)
        )
        if reports:
            percentage = round(sum(r.percentage for r in reports) / len(reports), 2)
        else:
            percentage = 100.0

        return ModuleProgressReport(
            module_id=module.id,
            completed_lessons=sum(1 for r in reports if r.can_complete),
            total_lessons=len(reports),
            percentage=percentage,
            time_spent=sum(r.time_spent for r in reports),
            lessons=reports,
        )
