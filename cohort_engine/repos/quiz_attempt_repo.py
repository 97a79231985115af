from __future__ import annotations

from dataclasses import replace
from typing import Any, Protocol
from uuid import UUID

from cohort_engine.db.memory import DuplicateKeyError, InMemoryDatabase
from cohort_engine.models.progress import QuizAttempt


class QuizAttemptRepo(Protocol):
    def get(self, attempt_id: UUID) -> QuizAttempt | None: ...
    def list_for(self, user_id: str, quiz_id: UUID) -> list[QuizAttempt]: ...
    def list_for_user(self, user_id: str) -> list[QuizAttempt]: ...
    def list_for_quiz(self, quiz_id: UUID) -> list[QuizAttempt]: ...
    def add(self, attempt: QuizAttempt) -> None: ...
    def save_answers(self, attempt_id: UUID, answers: dict[str, Any]) -> QuizAttempt: ...
    def complete(self, attempt: QuizAttempt) -> bool: ...
    def delete_for(self, user_id: str, quiz_id: UUID) -> int: ...


class InMemoryQuizAttemptRepo:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self._by_id = db.table("quiz_attempts")

    def get(self, attempt_id: UUID) -> QuizAttempt | None:
        return self._by_id.get(attempt_id)

    def list_for(self, user_id: str, quiz_id: UUID) -> list[QuizAttempt]:
        attempts = [
            a
            for a in list(self._by_id.values())
            if a.user_id == user_id and a.quiz_id == quiz_id
        ]
        return sorted(attempts, key=lambda a: a.attempt_number)

    def list_for_user(self, user_id: str) -> list[QuizAttempt]:
        return [a for a in list(self._by_id.values()) if a.user_id == user_id]

    def list_for_quiz(self, quiz_id: UUID) -> list[QuizAttempt]:
        return [a for a in list(self._by_id.values()) if a.quiz_id == quiz_id]

    def add(self, attempt: QuizAttempt) -> None:
        with self._db.lock:
            for existing in self._by_id.values():
                if (
                    existing.user_id == attempt.user_id
                    and existing.quiz_id == attempt.quiz_id
                    and existing.attempt_number == attempt.attempt_number
                ):
                    raise DuplicateKeyError("attempt number already used")
            self._by_id[attempt.id] = attempt

    def save_answers(self, attempt_id: UUID, answers: dict[str, Any]) -> QuizAttempt:
        with self._db.lock:
            current = self._by_id[attempt_id]
            if not current.is_open:
                return current
            updated = replace(current, answers={**current.answers, **answers})
            self._by_id[attempt_id] = updated
            return updated

    def complete(self, attempt: QuizAttempt) -> bool:
        """Store a graded attempt only if it is still open.

        Compare-and-set: of two concurrent submitters (client timer and
        server expiry) exactly one gets True.
        """
        with self._db.lock:
            current = self._by_id.get(attempt.id)
            if current is None or not current.is_open:
                return False
            self._by_id[attempt.id] = attempt
            return True


    def delete_for(self, user_id: str, quiz_id: UUID) -> int:
        with self._db.lock:
            doomed = [
                a.id
                for a in self._by_id.values()
                if a.user_id == user_id and a.quiz_id == quiz_id
            ]
            for attempt_id in doomed:
                del self._by_id[attempt_id]
            return len(doomed)
