"""PostgreSQL implementation of CompletionRepo."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from cohort_engine.db.memory import DuplicateKeyError
from cohort_engine.db.sql import SqlDatabase
from cohort_engine.db.tables import (
    LessonBlockCompletionRow,
    LessonProgressRow,
    TopicCompletionRow,
)
from cohort_engine.models.progress import (
    LessonBlockCompletion,
    LessonProgress,
    TopicCompletion,
)


class PgCompletionRepo:
    """Satisfies the CompletionRepo Protocol using PostgreSQL via SQLAlchemy.

    Unique constraints on (user_id, topic_id) and on (user_id, lesson_id,
    block_id, attempt_number) reject the losing insert of a race; that
    IntegrityError surfaces as DuplicateKeyError like the in-memory repo.
    """

    def __init__(self, db: SqlDatabase) -> None:
        self._db = db

    # --- topic completions ---

    def get_topic_completion(self, user_id: str, topic_id: UUID) -> TopicCompletion | None:
        stmt = select(TopicCompletionRow).where(
            TopicCompletionRow.user_id == user_id, TopicCompletionRow.topic_id == topic_id
        )
        with self._db.session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _row_to_topic(row) if row is not None else None

    def add_topic_completion(self, completion: TopicCompletion) -> None:
        with self._db.session() as session:
            try:
                with session.begin_nested():
                    session.add(_topic_to_row(completion))
            except IntegrityError as exc:
                raise DuplicateKeyError("topic completion already exists") from exc

    def save_topic_completion(self, completion: TopicCompletion) -> None:
        with self._db.session() as session:
            session.merge(_topic_to_row(completion))

    def list_topic_completions(
        self, user_id: str, topic_ids: Iterable[UUID]
    ) -> dict[UUID, TopicCompletion]:
        wanted = list(topic_ids)
        if not wanted:
            return {}
        stmt = select(TopicCompletionRow).where(
            TopicCompletionRow.user_id == user_id, TopicCompletionRow.topic_id.in_(wanted)
        )
        with self._db.session() as session:
            return {row.topic_id: _row_to_topic(row) for row in session.execute(stmt).scalars()}

    def list_completions_for_topic(self, topic_id: UUID) -> list[TopicCompletion]:
        stmt = select(TopicCompletionRow).where(TopicCompletionRow.topic_id == topic_id)
        with self._db.session() as session:
            return [_row_to_topic(row) for row in session.execute(stmt).scalars()]

    # --- lesson progress ---

    def get_lesson_progress(self, user_id: str, lesson_id: UUID) -> LessonProgress | None:
        with self._db.session() as session:
            row = session.get(LessonProgressRow, (user_id, lesson_id))
            return _row_to_lesson(row) if row is not None else None

    def save_lesson_progress(self, progress: LessonProgress) -> None:
        with self._db.session() as session:
            session.merge(
                LessonProgressRow(
                    user_id=progress.user_id,
                    lesson_id=progress.lesson_id,
                    time_spent_seconds=progress.time_spent_seconds,
                    completion_percentage=progress.completion_percentage,
                    completed_at=progress.completed_at,
                    updated_at=progress.updated_at,
                )
            )

    # --- lesson block attempts ---

    def list_block_attempts(
        self, user_id: str, lesson_id: UUID, block_id: str | None = None
    ) -> list[LessonBlockCompletion]:
        stmt = (
            select(LessonBlockCompletionRow)
            .where(
                LessonBlockCompletionRow.user_id == user_id,
                LessonBlockCompletionRow.lesson_id == lesson_id,
            )
            .order_by(LessonBlockCompletionRow.block_id, LessonBlockCompletionRow.attempt_number)
        )
        if block_id is not None:
            stmt = stmt.where(LessonBlockCompletionRow.block_id == block_id)
        with self._db.session() as session:
            return [_row_to_block(row) for row in session.execute(stmt).scalars()]

    def add_block_attempt(self, attempt: LessonBlockCompletion) -> None:
        row = LessonBlockCompletionRow(
            id=attempt.id,
            user_id=attempt.user_id,
            lesson_id=attempt.lesson_id,
            block_id=attempt.block_id,
            block_type=attempt.block_type,
            attempt_number=attempt.attempt_number,
            completed_at=attempt.completed_at,
            is_completed=attempt.is_completed,
            passed=attempt.passed,
            score_percentage=attempt.score_percentage,
            coins_awarded=attempt.coins_awarded,
            completion_data=dict(attempt.completion_data),
        )
        with self._db.session() as session:
            try:
                with session.begin_nested():
                    session.add(row)
            except IntegrityError as exc:
                raise DuplicateKeyError("block attempt number already used") from exc


def _topic_to_row(completion: TopicCompletion) -> TopicCompletionRow:
    return TopicCompletionRow(
        id=completion.id,
        user_id=completion.user_id,
        topic_id=completion.topic_id,
        started_at=completion.started_at,
        completed_at=completion.completed_at,
        coins_awarded=completion.coins_awarded,
        time_spent_seconds=completion.time_spent_seconds,
        last_position_seconds=completion.last_position_seconds,
        completion_percentage=completion.completion_percentage,
        completion_data=dict(completion.completion_data),
    )


def _row_to_topic(row: TopicCompletionRow) -> TopicCompletion:
    return TopicCompletion(
        id=row.id,
        user_id=row.user_id,
        topic_id=row.topic_id,
        started_at=row.started_at,
        completed_at=row.completed_at,
        coins_awarded=row.coins_awarded,
        time_spent_seconds=row.time_spent_seconds,
        last_position_seconds=row.last_position_seconds,
        completion_percentage=row.completion_percentage,
        completion_data=dict(row.completion_data or {}),
    )


def _row_to_lesson(row: LessonProgressRow) -> LessonProgress:
    return LessonProgress(
        user_id=row.user_id,
        lesson_id=row.lesson_id,
        time_spent_seconds=row.time_spent_seconds,
        completion_percentage=row.completion_percentage,
        completed_at=row.completed_at,
        updated_at=row.updated_at,
    )


def _row_to_block(row: LessonBlockCompletionRow) -> LessonBlockCompletion:
    return LessonBlockCompletion(
        id=row.id,
        user_id=row.user_id,
        lesson_id=row.lesson_id,
        block_id=row.block_id,
        block_type=row.block_type,
        attempt_number=row.attempt_number,
        completed_at=row.completed_at,
        is_completed=row.is_completed,
        passed=row.passed,
        score_percentage=row.score_percentage,
        coins_awarded=row.coins_awarded,
        completion_data=dict(row.completion_data or {}),
    )
