from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, replace
from uuid import UUID

from cohort_engine.core.clock import Clock
from cohort_engine.core.config import Settings
from cohort_engine.core.errors import InvalidStateTransition, ValidationFailed
from cohort_engine.core.metrics import WEEKS_UNLOCKED
from cohort_engine.db.memory import InMemoryDatabase
from cohort_engine.models.ledger import COHORT_COMPLETION
from cohort_engine.models.progress import Enrollment
from cohort_engine.repos.progress_repo import ProgressRepo
from cohort_engine.services.coin_ledger import CoinLedgerService
from cohort_engine.services.hierarchy import HierarchyLookup
from cohort_engine.services.week_unlock import WeekUnlockService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CohortStats:
    cohort_id: UUID
    total_enrolled: int
    active_students: int
    completed_students: int
    withdrawn_students: int
    completion_rate: float
    average_progress: float


class EnrollmentService:
    """Enrollment lifecycle: active -> completed | withdrawn.

    Enrolling opens the cohort's first week.  When every week reaches
    100% the enrollment completes and pays the cohort completion bonus
    once.  Rows are never deleted.
    """

    def __init__(
        self,
        lookup: HierarchyLookup,
        progress: ProgressRepo,
        weeks: WeekUnlockService,
        ledger: CoinLedgerService,
        db: InMemoryDatabase,
        clock: Clock,
        settings: Settings,
    ) -> None:
        self._lookup = lookup
        self._progress = progress
        self._weeks = weeks
        self._ledger = ledger
        self._db = db
        self._clock = clock
        self._settings = settings

    def enroll(self, user_id: str, cohort_id: UUID) -> Enrollment:
        cohort = self._lookup.cohort(cohort_id)
        now = self._clock.now()

        with self._db.transaction():
            existing = self._progress.get_enrollment(user_id, cohort.id)
            if existing is not None and existing.status != "withdrawn":
                raise ValidationFailed("Already enrolled in this cohort")
            if existing is not None:
                enrollment = replace(existing, status="active", withdrawn_at=None)
                self._progress.save_enrollment(enrollment)
            else:
                enrollment = Enrollment.new(
                    user_id=user_id, cohort_id=cohort.id, enrolled_at=now
                )
                self._progress.add_enrollment(enrollment)

            weeks = self._lookup.content.list_weeks(cohort.id)
            for week in weeks:
                self._progress.ensure_week_progress(user_id, week.id)
            if weeks:
                _, changed = self._progress.mark_unlocked(user_id, weeks[0].id, now)
                if changed:
                    WEEKS_UNLOCKED.labels(trigger="enrollment").inc()

        logger.info(
            "Enrolled user=%s cohort=%s weeks=%d",
            user_id,
            cohort.id,
            len(weeks),
            extra={"user_id": user_id, "cohort_id": str(cohort.id)},
        )
        return enrollment

    def withdraw(self, user_id: str, cohort_id: UUID) -> Enrollment:
        enrollment = self.get_enrollment(user_id, cohort_id)
        if enrollment.status != "active":
            raise InvalidStateTransition(
                f"Cannot withdraw from a {enrollment.status} enrollment"
            )
        enrollment = replace(
            enrollment, status="withdrawn", withdrawn_at=self._clock.now()
        )
        self._progress.save_enrollment(enrollment)
        logger.info(
            "Withdrawn user=%s cohort=%s",
            user_id,
            cohort_id,
            extra={"user_id": user_id, "cohort_id": str(cohort_id)},
        )
        return enrollment

    def get_enrollment(self, user_id: str, cohort_id: UUID) -> Enrollment:
        enrollment = self._progress.get_enrollment(user_id, cohort_id)
        if enrollment is None:
            raise ValidationFailed("Not enrolled in this cohort")
        return enrollment

    def active_cohort_for(self, user_id: str) -> UUID | None:
        for enrollment in self._progress.list_user_enrollments(user_id):
            if enrollment.status != "withdrawn":
                return enrollment.cohort_id
        return None

    def recalculate_enrollment(self, user_id: str, cohort_id: UUID) -> Enrollment | None:
        """Refresh completion and complete the enrollment at 100%.

        A cohort without weeks stays at 0; there is nothing to finish.
        """
        enrollment = self._progress.get_enrollment(user_id, cohort_id)
        if enrollment is None or enrollment.status == "withdrawn":
            return enrollment

        weeks = self._lookup.content.list_weeks(cohort_id)
        if weeks:
            percentages = [
                self._weeks.calculate_week_progress(user_id, w.id).percentage for w in weeks
            ]
            percentage = round(sum(percentages) / len(percentages), 2)
        else:
            percentage = 0.0

        with self._db.transaction():
            enrollment = replace(enrollment, completion_percentage=percentage)
            if enrollment.status == "active" and weeks and percentage >= 100:
                enrollment = replace(enrollment, status="completed", completed_at=self._clock.now())
                self._ledger.award(
                    user_id,
                    self._settings.cohort_completion_bonus,
                    COHORT_COMPLETION,
                    str(cohort_id),
                    reason="Cohort completed",
                )
                logger.info(
                    "Cohort completed user=%s cohort=%s",
                    user_id,
                    cohort_id,
                    extra={"user_id": user_id, "cohort_id": str(cohort_id)},
                )
            self._progress.save_enrollment(enrollment)
        return enrollment

    def list_enrollments(self, cohort_id: UUID) -> list[Enrollment]:
        return self._progress.list_enrollments(cohort_id)

    def get_cohort_stats(self, cohort_id: UUID) -> CohortStats:
        """Headcounts by status.  Average progress covers active learners only."""
        cohort = self._lookup.cohort(cohort_id)
        enrollments = self._progress.list_enrollments(cohort.id)
        by_status = Counter(e.status for e in enrollments)
        active = [e.completion_percentage for e in enrollments if e.status == "active"]
        total = len(enrollments)
        return CohortStats(
            cohort_id=cohort.id,
            total_enrolled=total,
            active_students=by_status["active"],
            completed_students=by_status["completed"],
            withdrawn_students=by_status["withdrawn"],
            completion_rate=round(by_status["completed"] / total * 100, 2) if total else 0.0,
            average_progress=round(sum(active) / len(active), 2) if active else 0.0,
        )
