"""Content hierarchy: Cohort > Week > Module > Lesson > Topic.

These rows belong to the content-authoring subsystem.  The engine only
reads them (the one exception is LiveClass.status, which the live-class
service advances).  Quizzes, assignments and live classes hang off a
week and may additionally be embedded in a lesson through a block.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import UUID, uuid4

from cohort_engine.models.blocks import LessonBlock, decode_blocks

QuestionType = Literal["multiple_choice", "true_false", "short_answer", "essay"]
CompletionKind = Literal["topics", "quizzes", "assignments", "live_classes"]
LiveClassStatus = Literal["scheduled", "live", "completed", "cancelled"]

AUTO_GRADED_TYPES = frozenset({"multiple_choice", "true_false"})


def normalize_answer(question_type: str, value: Any) -> str:
    """Canonical string form of an option id or true/false answer."""
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip()
    return text.lower() if question_type == "true_false" else text


@dataclass(frozen=True, slots=True)
class Cohort:
    id: UUID
    name: str
    start_date: int | None = None

    @staticmethod
    def new(*, name: str, start_date: int | None = None) -> Cohort:
        return Cohort(id=uuid4(), name=name, start_date=start_date)


@dataclass(frozen=True, slots=True)
class RequiredCompletion:
    """Require N completed items of a kind in an earlier week.

    ``week_number`` of None means the week immediately before the one
    being unlocked.
    """

    type: CompletionKind
    count: int
    week_number: int | None = None


@dataclass(frozen=True, slots=True)
class UnlockRules:
    """Gate that must be satisfied before a week opens.

    ``min_progress`` of None falls back to the previous week's
    ``min_completion_percentage`` and then to the configured default.
    """

    min_progress: int | None = None
    min_coins: int = 0
    sequential: bool = True
    required_completions: tuple[RequiredCompletion, ...] = ()


@dataclass(frozen=True, slots=True)
class Week:
    id: UUID
    cohort_id: UUID
    week_number: int
    title: str
    unlock_rules: UnlockRules = field(default_factory=UnlockRules)
    # Completion this week needs before the next one can open
    min_completion_percentage: int | None = None
    deadline_at: int | None = None
    drip_days: int | None = None

    @staticmethod
    def new(
        *,
        cohort_id: UUID,
        week_number: int,
        title: str = "",
        unlock_rules: UnlockRules | None = None,
        min_completion_percentage: int | None = None,
        deadline_at: int | None = None,
        drip_days: int | None = None,
    ) -> Week:
        return Week(
            id=uuid4(),
            cohort_id=cohort_id,
            week_number=week_number,
            title=title or f"Week {week_number}",
            unlock_rules=unlock_rules or UnlockRules(),
            min_completion_percentage=min_completion_percentage,
            deadline_at=deadline_at,
            drip_days=drip_days,
        )


@dataclass(frozen=True, slots=True)
class Module:
    id: UUID
    week_id: UUID
    title: str
    order_index: int = 0

    @staticmethod
    def new(*, week_id: UUID, title: str, order_index: int = 0) -> Module:
        return Module(id=uuid4(), week_id=week_id, title=title, order_index=order_index)


@dataclass(frozen=True, slots=True)
class Lesson:
    id: UUID
    module_id: UUID
    title: str
    order_index: int = 0
    # None: no lesson-level time requirement
    min_time_required_seconds: int | None = None
    blocks: tuple[LessonBlock, ...] = ()

    def get_block(self, block_id: str) -> LessonBlock | None:
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None

    @staticmethod
    def new(
        *,
        module_id: UUID,
        title: str,
        order_index: int = 0,
        min_time_required_seconds: int | None = None,
        blocks: Iterable[Any] = (),
    ) -> Lesson:
        return Lesson(
            id=uuid4(),
            module_id=module_id,
            title=title,
            order_index=order_index,
            min_time_required_seconds=min_time_required_seconds,
            blocks=decode_blocks(blocks),
        )


@dataclass(frozen=True, slots=True)
class Topic:
    id: UUID
    lesson_id: UUID
    title: str
    order_index: int = 0
    # None: use the configured default
    min_time_required_seconds: int | None = None
    coin_reward: int = 0

    @staticmethod
    def new(
        *,
        lesson_id: UUID,
        title: str,
        order_index: int = 0,
        min_time_required_seconds: int | None = None,
        coin_reward: int = 0,
    ) -> Topic:
        return Topic(
            id=uuid4(),
            lesson_id=lesson_id,
            title=title,
            order_index=order_index,
            min_time_required_seconds=min_time_required_seconds,
            coin_reward=coin_reward,
        )


@dataclass(frozen=True, slots=True)
class Quiz:
    """A graded quiz.

    Standalone week quizzes have ``lesson_id`` None and count as a unit
    of week progress.  Lesson quizzes are referenced from a QuizBlock and
    count towards their lesson instead.
    """

    id: UUID
    week_id: UUID
    title: str
    lesson_id: UUID | None = None
    block_id: str | None = None
    max_attempts: int | None = None  # None: unlimited
    time_limit_seconds: int | None = None
    passing_score: int = 70
    coin_reward: int = 0
    is_randomized: bool = False
    show_correct_answers: bool = False

    @property
    def is_standalone(self) -> bool:
        return self.lesson_id is None

    @staticmethod
    def new(
        *,
        week_id: UUID,
        title: str,
        lesson_id: UUID | None = None,
        block_id: str | None = None,
        max_attempts: int | None = None,
        time_limit_seconds: int | None = None,
        passing_score: int = 70,
        coin_reward: int = 0,
        is_randomized: bool = False,
        show_correct_answers: bool = False,
    ) -> Quiz:
        return Quiz(
            id=uuid4(),
            week_id=week_id,
            title=title,
            lesson_id=lesson_id,
            block_id=block_id,
            max_attempts=max_attempts,
            time_limit_seconds=time_limit_seconds,
            passing_score=passing_score,
            coin_reward=coin_reward,
            is_randomized=is_randomized,
            show_correct_answers=show_correct_answers,
        )


@dataclass(frozen=True, slots=True)
class QuizQuestion:
    id: UUID
    quiz_id: UUID
    type: QuestionType
    prompt: str
    options: tuple[str, ...] = ()
    correct_answers: tuple[str, ...] = ()
    points: int = 1
    explanation: str | None = None
    order_index: int = 0

    @property
    def is_auto_graded(self) -> bool:
        return self.type in AUTO_GRADED_TYPES

    @staticmethod
    def new(
        *,
        quiz_id: UUID,
        type: QuestionType,
        prompt: str,
        options: Iterable[str] = (),
        correct_answers: Iterable[str] = (),
        points: int = 1,
        explanation: str | None = None,
        order_index: int = 0,
    ) -> QuizQuestion:
        return QuizQuestion(
            id=uuid4(),
            quiz_id=quiz_id,
            type=type,
            prompt=prompt,
            options=tuple(options),
            correct_answers=tuple(normalize_answer(type, a) for a in correct_answers),
            points=points,
            explanation=explanation,
            order_index=order_index,
        )


@dataclass(frozen=True, slots=True)
class Assignment:
    id: UUID
    week_id: UUID
    title: str
    lesson_id: UUID | None = None
    block_id: str | None = None
    coin_reward: int = 0
    due_at: int | None = None

    @property
    def is_standalone(self) -> bool:
        return self.lesson_id is None

    @staticmethod
    def new(
        *,
        week_id: UUID,
        title: str,
        lesson_id: UUID | None = None,
        block_id: str | None = None,
        coin_reward: int = 0,
        due_at: int | None = None,
    ) -> Assignment:
        return Assignment(
            id=uuid4(),
            week_id=week_id,
            title=title,
            lesson_id=lesson_id,
            block_id=block_id,
            coin_reward=coin_reward,
            due_at=due_at,
        )


@dataclass(frozen=True, slots=True)
class LiveClass:
    id: UUID
    week_id: UUID
    title: str
    lesson_id: UUID | None = None
    block_id: str | None = None
    status: LiveClassStatus = "scheduled"
    scheduled_at: int | None = None
    started_at: int | None = None
    ended_at: int | None = None
    min_attendance_seconds: int = 0
    coin_reward: int = 0

    @property
    def is_standalone(self) -> bool:
        return self.lesson_id is None

    @staticmethod
    def new(
        *,
        week_id: UUID,
        title: str,
        lesson_id: UUID | None = None,
        block_id: str | None = None,
        scheduled_at: int | None = None,
        min_attendance_seconds: int = 0,
        coin_reward: int = 0,
    ) -> LiveClass:
        return LiveClass(
            id=uuid4(),
            week_id=week_id,
            title=title,
            lesson_id=lesson_id,
            block_id=block_id,
            scheduled_at=scheduled_at,
            min_attendance_seconds=min_attendance_seconds,
            coin_reward=coin_reward,
        )
