"""Assignment submissions and instructor review.

    submitted --approve--> approved            (terminal, pays once)
    submitted --reject--> rejected --submit--> submitted
    submitted --request_revision--> revision_requested --resubmit--> submitted

Only the latest submission for (user, assignment) counts toward
progress.  Coins for an assignment are keyed on the assignment, not on
the submission, so a learner who is approved once is never paid twice.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from uuid import UUID

from cohort_engine.core.clock import Clock
from cohort_engine.core.errors import (
    AccessDenied,
    ContentNotFound,
    InvalidStateTransition,
    ValidationFailed,
)
from cohort_engine.core.metrics import COMPLETIONS_RECORDED
from cohort_engine.db.memory import InMemoryDatabase
from cohort_engine.models.ledger import ASSIGNMENT_APPROVAL
from cohort_engine.models.progress import AssignmentSubmission
from cohort_engine.repos.activity_repo import ActivityRepo
from cohort_engine.services.coin_ledger import CoinLedgerService
from cohort_engine.services.hierarchy import HierarchyLookup
from cohort_engine.services.lesson_completion import LessonCompletionService
from cohort_engine.services.progress_cascade import ProgressCascade
from cohort_engine.services.week_unlock import WeekUnlockService

logger = logging.getLogger(__name__)


class AssignmentReviewService:
    def __init__(
        self,
        lookup: HierarchyLookup,
        activity: ActivityRepo,
        lessons: LessonCompletionService,
        weeks: WeekUnlockService,
        ledger: CoinLedgerService,
        cascade: ProgressCascade,
        db: InMemoryDatabase,
        clock: Clock,
    ) -> None:
        self._lookup = lookup
        self._activity = activity
        self._lessons = lessons
        self._weeks = weeks
        self._ledger = ledger
        self._cascade = cascade
        self._db = db
        self._clock = clock

    # ------------------------------------------------------------------
    # Learner side
    # ------------------------------------------------------------------

    def submit(self, user_id: str, assignment_id: UUID, content: str) -> AssignmentSubmission:
        assignment = self._lookup.assignment(assignment_id)
        self._weeks.ensure_week_access(user_id, assignment.week_id)
        if not content.strip():
            raise ValidationFailed("Submission content is required")

        with self._db.transaction():
            latest = self._activity.latest_submission(user_id, assignment.id)
            if latest is not None and latest.status in ("submitted", "approved"):
                raise InvalidStateTransition(
                    f"Cannot submit while the latest submission is {latest.status}"
                )
            if latest is not None and latest.status == "revision_requested":
                raise InvalidStateTransition("Revision requested: resubmit instead")
            submission = AssignmentSubmission.new(
                user_id=user_id,
                assignment_id=assignment.id,
                content=content,
                submitted_at=self._clock.now(),
            )
            self._activity.save_submission(submission)

        logger.info(
            "Assignment submitted user=%s assignment=%s",
            user_id,
            assignment.id,
            extra={"user_id": user_id, "week_id": str(assignment.week_id)},
        )
        return submission

    def resubmit(self, user_id: str, submission_id: UUID, content: str) -> AssignmentSubmission:
        if not content.strip():
            raise ValidationFailed("Submission content is required")

        with self._db.transaction():
            submission = self._get(submission_id)
            if submission.user_id != user_id:
                raise AccessDenied("Not your submission")
            if submission.status != "revision_requested":
                raise InvalidStateTransition(
                    f"Cannot resubmit a {submission.status} submission"
                )
            submission = replace(
                submission,
                content=content,
                status="submitted",
                submitted_at=self._clock.now(),
                revision_count=submission.revision_count + 1,
            )
            self._activity.save_submission(submission)
        return submission

    def get_submission(self, user_id: str, submission_id: UUID) -> AssignmentSubmission:
        submission = self._get(submission_id)
        if submission.user_id != user_id:
            raise AccessDenied("Not your submission")
        return submission

    def latest_submission(self, user_id: str, assignment_id: UUID) -> AssignmentSubmission | None:
        return self._activity.latest_submission(user_id, assignment_id)

    # ------------------------------------------------------------------
    # Instructor side
    # ------------------------------------------------------------------

    def approve(
        self, submission_id: UUID, reviewer_id: str, feedback: str | None = None
    ) -> AssignmentSubmission:
        now = self._clock.now()

        # Status is re-read under the store lock: of two racing reviews
        # only the first sees "submitted"
        with self._db.transaction():
            submission = self._pending(submission_id)
            assignment = self._lookup.assignment(submission.assignment_id)
            award = self._ledger.award(
                submission.user_id,
                assignment.coin_reward,
                ASSIGNMENT_APPROVAL,
                str(assignment.id),
                reason=f"Assignment approved: {assignment.title}",
                metadata={"submission_id": str(submission.id)},
            )
            submission = replace(
                submission,
                status="approved",
                feedback=feedback,
                reviewed_by=reviewer_id,
                reviewed_at=now,
                coins_awarded=award.amount,
            )
            self._activity.save_submission(submission)
            if assignment.lesson_id is not None and assignment.block_id is not None:
                self._lessons.record_block_completion(
                    submission.user_id,
                    assignment.lesson_id,
                    assignment.block_id,
                    "assignment",
                    passed=True,
                    completion_data={"submission_id": str(submission.id)},
                    trusted=True,
                )

        COMPLETIONS_RECORDED.labels(kind="assignment").inc()
        logger.info(
            "Assignment approved user=%s assignment=%s reviewer=%s",
            submission.user_id,
            assignment.id,
            reviewer_id,
            extra={"user_id": submission.user_id, "week_id": str(assignment.week_id)},
        )

        if assignment.lesson_id is not None:
            self._cascade.on_lesson_changed(submission.user_id, assignment.lesson_id)
        else:
            self._cascade.on_week_changed(submission.user_id, assignment.week_id)
        return submission

    def reject(self, submission_id: UUID, reviewer_id: str, feedback: str) -> AssignmentSubmission:
        return self._review(submission_id, reviewer_id, feedback, "rejected")

    def request_revision(
        self, submission_id: UUID, reviewer_id: str, feedback: str
    ) -> AssignmentSubmission:
        return self._review(submission_id, reviewer_id, feedback, "revision_requested")

    def _review(
        self, submission_id: UUID, reviewer_id: str, feedback: str, status: str
    ) -> AssignmentSubmission:
        if not feedback.strip():
            raise ValidationFailed("Feedback is required")
        with self._db.transaction():
            submission = replace(
                self._pending(submission_id),
                status=status,
                feedback=feedback,
                reviewed_by=reviewer_id,
                reviewed_at=self._clock.now(),
            )
            self._activity.save_submission(submission)
        logger.info(
            "Assignment %s submission=%s reviewer=%s",
            status,
            submission.id,
            reviewer_id,
            extra={"user_id": submission.user_id},
        )
        return submission

    def _get(self, submission_id: UUID) -> AssignmentSubmission:
        submission = self._activity.get_submission(submission_id)
        if submission is None:
            raise ContentNotFound(f"Submission {submission_id} not found")
        return submission

    def _pending(self, submission_id: UUID) -> AssignmentSubmission:
        submission = self._get(submission_id)
        if submission.status != "submitted":
            raise InvalidStateTransition(
                f"Cannot review a {submission.status} submission"
            )
        return submission
