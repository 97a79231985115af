"""Week gating: the engine's central state machine.

STATES
--------
Per (user, week) there are exactly two states:

    Locked  --unlock_week()-->  Unlocked

and no way back.  The only write that touches ``is_unlocked`` is
ProgressRepo.mark_unlocked(), which can only set it.  Recomputing a
week's percentage (recalculate_week_progress) writes the percentage and
leaves the flag alone, so a later data correction that lowers progress
never re-locks content a learner already has.

ONE SET OF PREDICATES
-----------------------
evaluate_unlock() produces one RequirementStatus per rule.  Both the
yes/no answer (can_unlock_week) and the UI summary
(get_unlock_requirements_summary) are read off that same list, so the
two can never disagree about a threshold.

Rules, for every week except a cohort's first:

  sequential         previous week already unlocked (if rules.sequential)
  min_progress       previous week's live-recomputed completion >= N
  min_coins          current ledger balance >= N
  required_<kind>    N topics / quizzes / assignments / live classes
                     completed in a given earlier week
  drip               cohort start + drip_days has passed
  deadline           the week's deadline has not passed; reported only,
                     unless DEADLINE_BLOCKS_UNLOCK is set

WEEK PERCENTAGE
-----------------
Each module is one unit weighted by its own percentage; each standalone
week quiz, assignment and live class is one unit worth 0 or 100.  A week
with no units is complete.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from cohort_engine.core.clock import Clock
from cohort_engine.core.config import Settings
from cohort_engine.core.errors import AccessDenied, WeekLocked
from cohort_engine.core.metrics import WEEKS_UNLOCKED
from cohort_engine.models.content import RequiredCompletion, Week
from cohort_engine.models.progress import UserProgress
from cohort_engine.repos.activity_repo import ActivityRepo
from cohort_engine.repos.coin_ledger_repo import CoinLedgerRepo
from cohort_engine.repos.completion_repo import CompletionRepo
from cohort_engine.repos.progress_repo import ProgressRepo
from cohort_engine.repos.quiz_attempt_repo import QuizAttemptRepo
from cohort_engine.services.hierarchy import HierarchyLookup
from cohort_engine.services.lesson_completion import UnitStatus
from cohort_engine.services.module_completion import (
    ModuleCompletionService,
    ModuleProgressReport,
)

logger = logging.getLogger(__name__)

_DAY = 86_400


@dataclass(frozen=True, slots=True)
class RequirementStatus:
    rule: str
    threshold: int | float
    current: int | float
    satisfied: bool
    blocking: bool = True
    detail: str = ""


@dataclass(frozen=True, slots=True)
class UnlockEvaluation:
    week_id: UUID
    week_number: int
    is_unlocked: bool
    requirements: tuple[RequirementStatus, ...] = ()

    @property
    def can_unlock(self) -> bool:
        return all(r.satisfied for r in self.requirements if r.blocking)

    @property
    def unmet(self) -> tuple[RequirementStatus, ...]:
        return tuple(r for r in self.requirements if r.blocking and not r.satisfied)

    @property
    def warnings(self) -> tuple[RequirementStatus, ...]:
        return tuple(r for r in self.requirements if not r.blocking and not r.satisfied)


@dataclass(frozen=True, slots=True)
class UnlockResult:
    week_id: UUID
    unlocked: bool
    newly_unlocked: bool
    unlocked_at: int | None
    evaluation: UnlockEvaluation | None = None


@dataclass(frozen=True, slots=True)
class WeekProgressReport:
    week_id: UUID
    percentage: float
    completed_units: int
    total_units: int
    modules: tuple[ModuleProgressReport, ...] = ()
    activities: tuple[UnitStatus, ...] = ()


@dataclass(frozen=True, slots=True)
class WeekRecalculation:
    report: WeekProgressReport
    progress: UserProgress
    next_week_unlock: UnlockResult | None


class WeekUnlockService:
    def __init__(
        self,
        lookup: HierarchyLookup,
        progress: ProgressRepo,
        modules: ModuleCompletionService,
        completions: CompletionRepo,
        quiz_attempts: QuizAttemptRepo,
        activity: ActivityRepo,
        ledger: CoinLedgerRepo,
        clock: Clock,
        settings: Settings,
    ) -> None:
        self._lookup = lookup
        self._progress = progress
        self._modules = modules
        self._completions = completions
        self._quiz_attempts = quiz_attempts
        self._activity = activity
        self._ledger = ledger
        self._clock = clock
        self._settings = settings

    # ------------------------------------------------------------------
    # Week percentage
    # ------------------------------------------------------------------

    def calculate_week_progress(self, user_id: str, week_id: UUID) -> WeekProgressReport:
        week = self._lookup.week(week_id)
        content = self._lookup.content

        modules = tuple(
            self._modules.calculate_module_progress(user_id, m.id)
            for m in content.list_modules(week.id)
        )
        activities = tuple(
            [
                UnitStatus("quiz", str(q.id), q.title, self._quiz_passed(user_id, q.id))
                for q in content.list_week_quizzes(week.id)
                if q.is_standalone
            ]
            + [
                UnitStatus("assignment", str(a.id), a.title, self._assignment_approved(user_id, a.id))
                for a in content.list_week_assignments(week.id)
                if a.is_standalone
            ]
            + [
                UnitStatus("live", str(c.id), c.title, self._attended(user_id, c.id))
                for c in content.list_week_live_classes(week.id)
                if c.is_standalone
            ]
        )

        weights = [m.percentage for m in modules] + [
            100.0 if a.completed else 0.0 for a in activities
        ]
        percentage = round(sum(weights) / len(weights), 2) if weights else 100.0
        completed_units = sum(1 for m in modules if m.percentage >= 100) + sum(
            1 for a in activities if a.completed
        )
        return WeekProgressReport(
            week_id=week.id,
            percentage=percentage,
            completed_units=completed_units,
            total_units=len(weights),
            modules=modules,
            activities=activities,
        )

    def _quiz_passed(self, user_id: str, quiz_id: UUID) -> bool:
        return any(
            a.passed and not a.is_open for a in self._quiz_attempts.list_for(user_id, quiz_id)
        )

    def _assignment_approved(self, user_id: str, assignment_id: UUID) -> bool:
        latest = self._activity.latest_submission(user_id, assignment_id)
        return latest is not None and latest.status == "approved"

    def _attended(self, user_id: str, live_class_id: UUID) -> bool:
        attendance = self._activity.get_attendance(user_id, live_class_id)
        return attendance is not None and attendance.attended

    # ------------------------------------------------------------------
    # Gate evaluation
    # ------------------------------------------------------------------

    def evaluate_unlock(self, user_id: str, week_id: UUID) -> UnlockEvaluation:
        week = self._lookup.week(week_id)
        row = self._progress.get_week_progress(user_id, week.id)
        is_unlocked = row is not None and row.is_unlocked

        previous = self._lookup.previous_week(week)
        if previous is None:
            # First week of the cohort: opened at enrollment, no gate
            return UnlockEvaluation(week.id, week.week_number, is_unlocked)

        rules = week.unlock_rules
        now = self._clock.now()
        requirements: list[RequirementStatus] = []

        if rules.sequential:
            prev_row = self._progress.get_week_progress(user_id, previous.id)
            prev_unlocked = prev_row is not None and prev_row.is_unlocked
            requirements.append(
                RequirementStatus(
                    rule="sequential",
                    threshold=1,
                    current=1 if prev_unlocked else 0,
                    satisfied=prev_unlocked,
                    detail=f"week {previous.week_number} unlocked",
                )
            )

        min_progress = self._min_progress_for(week, previous)
        if min_progress > 0:
            current = self.calculate_week_progress(user_id, previous.id).percentage
            requirements.append(
                RequirementStatus(
                    rule="min_progress",
                    threshold=min_progress,
                    current=current,
                    satisfied=current >= min_progress,
                    detail=f"week {previous.week_number} completion",
                )
            )

        if rules.min_coins > 0:
            balance = self._ledger.balance(user_id)
            requirements.append(
                RequirementStatus(
                    rule="min_coins",
                    threshold=rules.min_coins,
                    current=balance,
                    satisfied=balance >= rules.min_coins,
                )
            )

        for required in rules.required_completions:
            requirements.append(self._required_completion(user_id, week, previous, required))

        if week.drip_days is not None:
            cohort = self._lookup.cohort(week.cohort_id)
            if cohort.start_date is not None:
                opens_at = cohort.start_date + week.drip_days * _DAY
                requirements.append(
                    RequirementStatus(
                        rule="drip",
                        threshold=opens_at,
                        current=now,
                        satisfied=now >= opens_at,
                        detail=f"opens {week.drip_days} day(s) after cohort start",
                    )
                )

        if week.deadline_at is not None:
            requirements.append(
                RequirementStatus(
                    rule="deadline",
                    threshold=week.deadline_at,
                    current=now,
                    satisfied=now <= week.deadline_at,
                    blocking=self._settings.deadline_blocks_unlock,
                    detail="deadline passed" if now > week.deadline_at else "",
                )
            )

        return UnlockEvaluation(week.id, week.week_number, is_unlocked, tuple(requirements))

    def _min_progress_for(self, week: Week, previous: Week) -> int:
        if week.unlock_rules.min_progress is not None:
            return week.unlock_rules.min_progress
        if previous.min_completion_percentage is not None:
            return previous.min_completion_percentage
        return self._settings.default_min_progress

    def _required_completion(
        self, user_id: str, week: Week, previous: Week, required: RequiredCompletion
    ) -> RequirementStatus:
        target_number = (
            required.week_number if required.week_number is not None else previous.week_number
        )
        target = self._lookup.week_by_number(week.cohort_id, target_number)
        current = self._count_completed(user_id, target, required.type) if target else 0
        return RequirementStatus(
            rule=f"required_{required.type}",
            threshold=required.count,
            current=current,
            satisfied=current >= required.count,
            detail=f"week {target_number}",
        )

    def _count_completed(self, user_id: str, week: Week, kind: str) -> int:
        content = self._lookup.content
        if kind == "topics":
            topics = self._lookup.topics_in_week(week)
            rows = self._completions.list_topic_completions(user_id, [t.id for t in topics])
            return sum(1 for c in rows.values() if c.is_completed)
        if kind == "quizzes":
            return sum(
                1 for q in content.list_week_quizzes(week.id) if self._quiz_passed(user_id, q.id)
            )
        if kind == "assignments":
            return sum(
                1
                for a in content.list_week_assignments(week.id)
                if self._assignment_approved(user_id, a.id)
            )
        if kind == "live_classes":
            return sum(
                1
                for c in content.list_week_live_classes(week.id)
                if self._attended(user_id, c.id)
            )
        raise ValueError(f"unknown completion kind {kind!r}")

    def can_unlock_week(self, user_id: str, week_id: UUID) -> bool:
        return self.evaluate_unlock(user_id, week_id).can_unlock

    def get_unlock_requirements_summary(self, user_id: str, week_id: UUID) -> UnlockEvaluation:
        return self.evaluate_unlock(user_id, week_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def unlock_week(
        self,
        user_id: str,
        week_id: UUID,
        *,
        force: bool = False,
        trigger: str = "evaluation",
    ) -> UnlockResult:
        """Move (user, week) to Unlocked.

        Idempotent: an unlocked week returns success without writing.
        Raises AccessDenied without an active enrollment and WeekLocked
        when a blocking requirement is unmet (unless ``force``).
        """
        week = self._lookup.week(week_id)
        enrollment = self._progress.get_enrollment(user_id, week.cohort_id)
        if enrollment is None or enrollment.status == "withdrawn":
            raise AccessDenied("Not enrolled in this cohort")

        row = self._progress.get_week_progress(user_id, week.id)
        if row is not None and row.is_unlocked:
            return UnlockResult(week.id, True, False, row.unlocked_at)

        evaluation = None
        if not force:
            evaluation = self.evaluate_unlock(user_id, week.id)
            if not evaluation.can_unlock:
                unmet = ", ".join(r.rule for r in evaluation.unmet)
                raise WeekLocked(f"Week {week.week_number} is locked: unmet {unmet}")

        row, changed = self._progress.mark_unlocked(user_id, week.id, self._clock.now())
        if changed:
            WEEKS_UNLOCKED.labels(trigger=trigger).inc()
            logger.info(
                "Week unlocked user=%s week=%d trigger=%s",
                user_id,
                week.week_number,
                trigger,
                extra={"user_id": user_id, "week_id": str(week.id)},
            )
        return UnlockResult(week.id, True, changed, row.unlocked_at, evaluation)

    def recalculate_week_progress(self, user_id: str, week_id: UUID) -> WeekRecalculation:
        """Refresh the stored percentage, then see if the next week opens."""
        report = self.calculate_week_progress(user_id, week_id)
        now = self._clock.now()
        row = self._progress.save_week_completion(
            user_id,
            week_id,
            report.percentage,
            completed_at=now if report.percentage >= 100 else None,
            updated_at=now,
        )
        return WeekRecalculation(
            report=report,
            progress=row,
            next_week_unlock=self.evaluate_and_unlock_next(user_id, week_id),
        )

    def evaluate_and_unlock_next(self, user_id: str, week_id: UUID) -> UnlockResult | None:
        """Unlock the following week if its gate is open.  None when nothing changed."""
        week = self._lookup.week(week_id)
        following = self._lookup.next_week(week)
        if following is None:
            return None
        enrollment = self._progress.get_enrollment(user_id, week.cohort_id)
        if enrollment is None or enrollment.status == "withdrawn":
            return None
        row = self._progress.get_week_progress(user_id, following.id)
        if row is not None and row.is_unlocked:
            return None
        evaluation = self.evaluate_unlock(user_id, following.id)
        if not evaluation.can_unlock:
            return None
        result = self.unlock_week(user_id, following.id, force=True, trigger="cascade")
        return UnlockResult(
            result.week_id, result.unlocked, result.newly_unlocked, result.unlocked_at, evaluation
        )

    def bulk_unlock_week(self, week_id: UUID, user_ids: list[str]) -> dict[str, UnlockResult]:
        """Staff override: open a week for many learners regardless of rules.

        Learners without an active enrollment are reported as not unlocked.
        """
        week = self._lookup.week(week_id)
        results: dict[str, UnlockResult] = {}
        for user_id in user_ids:
            try:
                results[user_id] = self.unlock_week(
                    user_id, week.id, force=True, trigger="admin"
                )
            except AccessDenied:
                logger.warning(
                    "Bulk unlock skipped user=%s week=%s: not enrolled",
                    user_id,
                    week.id,
                    extra={"user_id": user_id, "week_id": str(week.id)},
                )
                results[user_id] = UnlockResult(week.id, False, False, None)
        return results

    def get_week_progress(self, user_id: str, week_id: UUID) -> UserProgress | None:
        return self._progress.get_week_progress(user_id, week_id)

    def ensure_week_access(self, user_id: str, week_id: UUID) -> None:
        """Raise unless the learner is enrolled and the week is unlocked."""
        week = self._lookup.week(week_id)
        enrollment = self._progress.get_enrollment(user_id, week.cohort_id)
        if enrollment is None or enrollment.status == "withdrawn":
            raise AccessDenied("Not enrolled in this cohort")
        row = self._progress.get_week_progress(user_id, week.id)
        if row is None or not row.is_unlocked:
            raise WeekLocked(f"Week {week.week_number} is locked for this user")
