from __future__ import annotations

from typing import Protocol
from uuid import UUID

from cohort_engine.db.memory import InMemoryDatabase
from cohort_engine.models.progress import AssignmentSubmission, LiveAttendance


class ActivityRepo(Protocol):
    def get_submission(self, submission_id: UUID) -> AssignmentSubmission | None: ...
    def latest_submission(
        self, user_id: str, assignment_id: UUID
    ) -> AssignmentSubmission | None: ...
    def list_submissions(self, user_id: str) -> list[AssignmentSubmission]: ...
    def save_submission(self, submission: AssignmentSubmission) -> None: ...
    def get_attendance(self, user_id: str, live_class_id: UUID) -> LiveAttendance | None: ...
    def list_attendance(self, user_id: str) -> list[LiveAttendance]: ...
    def save_attendance(self, attendance: LiveAttendance) -> None: ...


class InMemoryActivityRepo:
    """Assignment submissions and live-class attendance."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self._submissions = db.table("assignment_submissions")
        self._attendance = db.table("live_attendances")

    def get_submission(self, submission_id: UUID) -> AssignmentSubmission | None:
        return self._submissions.get(submission_id)

    def latest_submission(
        self, user_id: str, assignment_id: UUID
    ) -> AssignmentSubmission | None:
        mine = [
            s
            for s in list(self._submissions.values())
            if s.user_id == user_id and s.assignment_id == assignment_id
        ]
        return max(mine, key=lambda s: s.submitted_at, default=None)

    def list_submissions(self, user_id: str) -> list[AssignmentSubmission]:
        return [s for s in list(self._submissions.values()) if s.user_id == user_id]

    def save_submission(self, submission: AssignmentSubmission) -> None:
        with self._db.lock:
            self._submissions[submission.id] = submission

    def get_attendance(self, user_id: str, live_class_id: UUID) -> LiveAttendance | None:
        return self._attendance.get((user_id, live_class_id))

    def list_attendance(self, user_id: str) -> list[LiveAttendance]:
        return [a for (uid, _), a in list(self._attendance.items()) if uid == user_id]

    def save_attendance(self, attendance: LiveAttendance) -> None:
        with self._db.lock:
            self._attendance[(attendance.user_id, attendance.live_class_id)] = attendance
