from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from cohort_engine.db.memory import DuplicateKeyError, InMemoryDatabase
from cohort_engine.models.progress import Enrollment, UserProgress


class ProgressRepo(Protocol):
    def get_week_progress(self, user_id: str, week_id: UUID) -> UserProgress | None: ...
    def ensure_week_progress(self, user_id: str, week_id: UUID) -> UserProgress: ...
    def mark_unlocked(
        self, user_id: str, week_id: UUID, unlocked_at: int
    ) -> tuple[UserProgress, bool]: ...
    def save_week_completion(
        self,
        user_id: str,
        week_id: UUID,
        percentage: float,
        completed_at: int | None,
        updated_at: int,
    ) -> UserProgress: ...
    def get_enrollment(self, user_id: str, cohort_id: UUID) -> Enrollment | None: ...
    def add_enrollment(self, enrollment: Enrollment) -> None: ...
    def save_enrollment(self, enrollment: Enrollment) -> None: ...
    def list_enrollments(self, cohort_id: UUID) -> list[Enrollment]: ...
    def list_user_enrollments(self, user_id: str) -> list[Enrollment]: ...


class InMemoryProgressRepo:
    """UserProgress (user, week) and Enrollment (user, cohort) rows.

    The only way to change ``is_unlocked`` is mark_unlocked(), and it
    only ever sets True.  save_week_completion() copies the stored flag
    forward untouched, so a recomputation can never re-lock a week.
    """

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self._weeks = db.table("user_progress")
        self._enrollments = db.table("enrollments")

    # --- week progress ---

    def get_week_progress(self, user_id: str, week_id: UUID) -> UserProgress | None:
        return self._weeks.get((user_id, week_id))

    def ensure_week_progress(self, user_id: str, week_id: UUID) -> UserProgress:
        with self._db.lock:
            key = (user_id, week_id)
            row = self._weeks.get(key)
            if row is None:
                row = UserProgress(user_id=user_id, week_id=week_id)
                self._weeks[key] = row
            return row

    def mark_unlocked(
        self, user_id: str, week_id: UUID, unlocked_at: int
    ) -> tuple[UserProgress, bool]:
        """Returns (row, changed).  changed is False when already unlocked."""
        with self._db.lock:
            row = self.ensure_week_progress(user_id, week_id)
            if row.is_unlocked:
                return row, False
            row = replace(row, is_unlocked=True, unlocked_at=unlocked_at)
            self._weeks[(user_id, week_id)] = row
            return row, True

    def save_week_completion(
        self,
        user_id: str,
        week_id: UUID,
        percentage: float,
        completed_at: int | None,
        updated_at: int,
    ) -> UserProgress:
        with self._db.lock:
            row = self.ensure_week_progress(user_id, week_id)
            row = replace(
                row,
                completion_percentage=percentage,
                completed_at=row.completed_at or completed_at,
                updated_at=updated_at,
            )
            self._weeks[(user_id, week_id)] = row
            return row

    # --- enrollments ---

    def get_enrollment(self, user_id: str, cohort_id: UUID) -> Enrollment | None:
        return self._enrollments.get((user_id, cohort_id))

    def add_enrollment(self, enrollment: Enrollment) -> None:
        key = (enrollment.user_id, enrollment.cohort_id)
        with self._db.lock:
            if key in self._enrollments:
                raise DuplicateKeyError("already enrolled")
            self._enrollments[key] = enrollment

    def save_enrollment(self, enrollment: Enrollment) -> None:
        with self._db.lock:
            self._enrollments[(enrollment.user_id, enrollment.cohort_id)] = enrollment

    def list_enrollments(self, cohort_id: UUID) -> list[Enrollment]:
        return [e for e in list(self._enrollments.values()) if e.cohort_id == cohort_id]

    def list_user_enrollments(self, user_id: str) -> list[Enrollment]:
        return [e for e in list(self._enrollments.values()) if e.user_id == user_id]
