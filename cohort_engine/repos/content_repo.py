"""Read-only view of the content hierarchy.

Services ask for exactly the slice they need (the lessons of a module,
the standalone quizzes of a week) instead of walking object relations,
so every query a cascade makes is visible at its call site.

``add`` exists for the authoring subsystem and for tests that load
fixtures; the engine itself never calls it.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from cohort_engine.models.content import (
    Assignment,
    Cohort,
    Lesson,
    LiveClass,
    Module,
    Quiz,
    QuizQuestion,
    Topic,
    Week,
)

ContentRow = (
    Cohort | Week | Module | Lesson | Topic | Quiz | QuizQuestion | Assignment | LiveClass
)


class ContentRepo(Protocol):
    def get_cohort(self, cohort_id: UUID) -> Cohort | None: ...
    def get_week(self, week_id: UUID) -> Week | None: ...
    def get_module(self, module_id: UUID) -> Module | None: ...
    def get_lesson(self, lesson_id: UUID) -> Lesson | None: ...
    def get_topic(self, topic_id: UUID) -> Topic | None: ...
    def get_quiz(self, quiz_id: UUID) -> Quiz | None: ...
    def get_assignment(self, assignment_id: UUID) -> Assignment | None: ...
    def get_live_class(self, live_class_id: UUID) -> LiveClass | None: ...
    def list_weeks(self, cohort_id: UUID) -> list[Week]: ...
    def list_modules(self, week_id: UUID) -> list[Module]: ...
    def list_lessons(self, module_id: UUID) -> list[Lesson]: ...
    def list_topics(self, lesson_id: UUID) -> list[Topic]: ...
    def list_quiz_questions(self, quiz_id: UUID) -> list[QuizQuestion]: ...
    def list_week_quizzes(self, week_id: UUID) -> list[Quiz]: ...
    def list_week_assignments(self, week_id: UUID) -> list[Assignment]: ...
    def list_week_live_classes(self, week_id: UUID) -> list[LiveClass]: ...
    def add(self, row: ContentRow) -> None: ...
    def update_live_class(self, live_class: LiveClass) -> None: ...


class InMemoryContentRepo:
    def __init__(self) -> None:
        self._cohorts: dict[UUID, Cohort] = {}
        self._weeks: dict[UUID, Week] = {}
        self._modules: dict[UUID, Module] = {}
        self._lessons: dict[UUID, Lesson] = {}
        self._topics: dict[UUID, Topic] = {}
        self._quizzes: dict[UUID, Quiz] = {}
        self._questions: dict[UUID, QuizQuestion] = {}
        self._assignments: dict[UUID, Assignment] = {}
        self._live_classes: dict[UUID, LiveClass] = {}

    # --- lookups ---

    def get_cohort(self, cohort_id: UUID) -> Cohort | None:
        return self._cohorts.get(cohort_id)

    def get_week(self, week_id: UUID) -> Week | None:
        return self._weeks.get(week_id)

    def get_module(self, module_id: UUID) -> Module | None:
        return self._modules.get(module_id)

    def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        return self._lessons.get(lesson_id)

    def get_topic(self, topic_id: UUID) -> Topic | None:
        return self._topics.get(topic_id)

    def get_quiz(self, quiz_id: UUID) -> Quiz | None:
        return self._quizzes.get(quiz_id)

    def get_assignment(self, assignment_id: UUID) -> Assignment | None:
        return self._assignments.get(assignment_id)

    def get_live_class(self, live_class_id: UUID) -> LiveClass | None:
        return self._live_classes.get(live_class_id)

    # --- ordered children ---

    def list_weeks(self, cohort_id: UUID) -> list[Week]:
        weeks = [w for w in self._weeks.values() if w.cohort_id == cohort_id]
        return sorted(weeks, key=lambda w: w.week_number)

    def list_modules(self, week_id: UUID) -> list[Module]:
        modules = [m for m in self._modules.values() if m.week_id == week_id]
        return sorted(modules, key=lambda m: m.order_index)

    def list_lessons(self, module_id: UUID) -> list[Lesson]:
        lessons = [le for le in self._lessons.values() if le.module_id == module_id]
        return sorted(lessons, key=lambda le: le.order_index)

    def list_topics(self, lesson_id: UUID) -> list[Topic]:
        topics = [t for t in self._topics.values() if t.lesson_id == lesson_id]
        return sorted(topics, key=lambda t: t.order_index)

    def list_quiz_questions(self, quiz_id: UUID) -> list[QuizQuestion]:
        questions = [q for q in self._questions.values() if q.quiz_id == quiz_id]
        return sorted(questions, key=lambda q: q.order_index)

    def list_week_quizzes(self, week_id: UUID) -> list[Quiz]:
        return [q for q in self._quizzes.values() if q.week_id == week_id]

    def list_week_assignments(self, week_id: UUID) -> list[Assignment]:
        return [a for a in self._assignments.values() if a.week_id == week_id]

    def list_week_live_classes(self, week_id: UUID) -> list[LiveClass]:
        return [c for c in self._live_classes.values() if c.week_id == week_id]

    # --- writes (authoring side) ---

    def add(self, row: ContentRow) -> None:
        store = self._store_for(row)
        if row.id in store:
            raise ValueError(f"{type(row).__name__} {row.id} already exists")
        if isinstance(row, Week) and any(
            w.cohort_id == row.cohort_id and w.week_number == row.week_number
            for w in self._weeks.values()
        ):
            raise ValueError("week_number already exists in cohort")
        store[row.id] = row

    def update_live_class(self, live_class: LiveClass) -> None:
        if live_class.id not in self._live_classes:
            raise KeyError(live_class.id)
        self._live_classes[live_class.id] = live_class

    def _store_for(self, row: ContentRow) -> dict:
        stores: dict[type, dict] = {
            Cohort: self._cohorts,
            Week: self._weeks,
            Module: self._modules,
            Lesson: self._lessons,
            Topic: self._topics,
            Quiz: self._quizzes,
            QuizQuestion: self._questions,
            Assignment: self._assignments,
            LiveClass: self._live_classes,
        }
        try:
            return stores[type(row)]
        except KeyError:
            raise TypeError(f"Not a content row: {type(row).__name__}") from None
