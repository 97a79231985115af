from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from cohort_engine.db.memory import DuplicateKeyError, InMemoryDatabase
from cohort_engine.models.progress import (
    LessonBlockCompletion,
    LessonProgress,
    TopicCompletion,
)


class CompletionRepo(Protocol):
    def get_topic_completion(
        self, user_id: str, topic_id: UUID
    ) -> TopicCompletion | None: ...
    def add_topic_completion(self, completion: TopicCompletion) -> None: ...
    def save_topic_completion(self, completion: TopicCompletion) -> None: ...
    def list_topic_completions(
        self, user_id: str, topic_ids: Iterable[UUID]
    ) -> dict[UUID, TopicCompletion]: ...
    def list_completions_for_topic(self, topic_id: UUID) -> list[TopicCompletion]: ...
    def get_lesson_progress(self, user_id: str, lesson_id: UUID) -> LessonProgress | None: ...
    def save_lesson_progress(self, progress: LessonProgress) -> None: ...
    def list_block_attempts(
        self, user_id: str, lesson_id: UUID, block_id: str | None = None
    ) -> list[LessonBlockCompletion]: ...
    def add_block_attempt(self, attempt: LessonBlockCompletion) -> None: ...


class InMemoryCompletionRepo:
    """Topic completions, lesson progress rows and lesson-block attempts.

    Keys:
      topic_completions   (user_id, topic_id)
      lesson_progress     (user_id, lesson_id)
      block_completions   (user_id, lesson_id, block_id, attempt_number)
    """

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self._topics = db.table("topic_completions")
        self._lessons = db.table("lesson_progress")
        self._blocks = db.table("lesson_block_completions")

    # --- topic completions ---

    def get_topic_completion(self, user_id: str, topic_id: UUID) -> TopicCompletion | None:
        return self._topics.get((user_id, topic_id))

    def add_topic_completion(self, completion: TopicCompletion) -> None:
        key = (completion.user_id, completion.topic_id)
        with self._db.lock:
            if key in self._topics:
                raise DuplicateKeyError("topic completion already exists")
            self._topics[key] = completion

    def save_topic_completion(self, completion: TopicCompletion) -> None:
        with self._db.lock:
            self._topics[(completion.user_id, completion.topic_id)] = completion

    def list_topic_completions(
        self, user_id: str, topic_ids: Iterable[UUID]
    ) -> dict[UUID, TopicCompletion]:
        found: dict[UUID, TopicCompletion] = {}
        for topic_id in topic_ids:
            completion = self._topics.get((user_id, topic_id))
            if completion is not None:
                found[topic_id] = completion
        return found

    def list_completions_for_topic(self, topic_id: UUID) -> list[TopicCompletion]:
        return [c for (_, tid), c in list(self._topics.items()) if tid == topic_id]

    # --- lesson progress ---

    def get_lesson_progress(self, user_id: str, lesson_id: UUID) -> LessonProgress | None:
        return self._lessons.get((user_id, lesson_id))

    def save_lesson_progress(self, progress: LessonProgress) -> None:
        with self._db.lock:
            self._lessons[(progress.user_id, progress.lesson_id)] = progress

    # --- lesson block attempts ---

    def list_block_attempts(
        self, user_id: str, lesson_id: UUID, block_id: str | None = None
    ) -> list[LessonBlockCompletion]:
        attempts = [
            a
            for (uid, lid, bid, _), a in list(self._blocks.items())
            if uid == user_id and lid == lesson_id and (block_id is None or bid == block_id)
        ]
        return sorted(attempts, key=lambda a: (a.block_id, a.attempt_number))

    def add_block_attempt(self, attempt: LessonBlockCompletion) -> None:
        key = (attempt.user_id, attempt.lesson_id, attempt.block_id, attempt.attempt_number)
        with self._db.lock:
            if key in self._blocks:
                raise DuplicateKeyError("block attempt number already used")
            self._blocks[key] = attempt
