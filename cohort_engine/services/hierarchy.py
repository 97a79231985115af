"""Explicit hierarchy lookups over the content repo.

Every "which week does this topic belong to?" question goes through
here, one repository call per hop.  Missing rows raise ContentNotFound
so services don't sprinkle None checks.
"""

from __future__ import annotations

from uuid import UUID

from cohort_engine.core.errors import ContentNotFound
from cohort_engine.models.content import (
    Assignment,
    Cohort,
    Lesson,
    LiveClass,
    Module,
    Quiz,
    Topic,
    Week,
)
from cohort_engine.repos.content_repo import ContentRepo


class HierarchyLookup:
    def __init__(self, content: ContentRepo) -> None:
        self.content = content

    def cohort(self, cohort_id: UUID) -> Cohort:
        return _found(self.content.get_cohort(cohort_id), "Cohort", cohort_id)

    def week(self, week_id: UUID) -> Week:
        return _found(self.content.get_week(week_id), "Week", week_id)

    def module(self, module_id: UUID) -> Module:
        return _found(self.content.get_module(module_id), "Module", module_id)

    def lesson(self, lesson_id: UUID) -> Lesson:
        return _found(self.content.get_lesson(lesson_id), "Lesson", lesson_id)

    def topic(self, topic_id: UUID) -> Topic:
        return _found(self.content.get_topic(topic_id), "Topic", topic_id)

    def quiz(self, quiz_id: UUID) -> Quiz:
        return _found(self.content.get_quiz(quiz_id), "Quiz", quiz_id)

    def assignment(self, assignment_id: UUID) -> Assignment:
        return _found(self.content.get_assignment(assignment_id), "Assignment", assignment_id)

    def live_class(self, live_class_id: UUID) -> LiveClass:
        return _found(self.content.get_live_class(live_class_id), "Live class", live_class_id)

    # --- upward ---

    def week_for_module(self, module: Module) -> Week:
        return self.week(module.week_id)

    def week_for_lesson(self, lesson: Lesson) -> Week:
        return self.week_for_module(self.module(lesson.module_id))

    def week_for_topic(self, topic: Topic) -> Week:
        return self.week_for_lesson(self.lesson(topic.lesson_id))

    # --- siblings within a cohort ---

    def first_week(self, cohort_id: UUID) -> Week | None:
        weeks = self.content.list_weeks(cohort_id)
        return weeks[0] if weeks else None

    def previous_week(self, week: Week) -> Week | None:
        earlier = [
            w
            for w in self.content.list_weeks(week.cohort_id)
            if w.week_number < week.week_number
        ]
        return earlier[-1] if earlier else None

    def next_week(self, week: Week) -> Week | None:
        later = [
            w
            for w in self.content.list_weeks(week.cohort_id)
            if w.week_number > week.week_number
        ]
        return later[0] if later else None

    def week_by_number(self, cohort_id: UUID, week_number: int) -> Week | None:
        for w in self.content.list_weeks(cohort_id):
            if w.week_number == week_number:
                return w
        return None

    def topics_in_week(self, week: Week) -> list[Topic]:
        return [
            topic
            for module in self.content.list_modules(week.id)
            for lesson in self.content.list_lessons(module.id)
            for topic in self.content.list_topics(lesson.id)
        ]


def _found(row, kind: str, row_id: UUID):
    if row is None:
        raise ContentNotFound(f"{kind} {row_id} not found")
    return row
