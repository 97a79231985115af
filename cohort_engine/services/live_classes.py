"""Live class lifecycle and attendance.

    scheduled --start--> live --end--> completed

Attendance can be recorded while a class is live or after it has ended
(the video platform often reports leave events late).  Repeated reports
for the same learner keep the longest duration seen; a learner counts as
attended once that duration reaches ``min_attendance_seconds``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from uuid import UUID, uuid4

from cohort_engine.core.clock import Clock
from cohort_engine.core.errors import InvalidStateTransition, ValidationFailed
from cohort_engine.core.metrics import COMPLETIONS_RECORDED
from cohort_engine.db.memory import InMemoryDatabase
from cohort_engine.models.content import LiveClass
from cohort_engine.models.ledger import LIVE_ATTENDANCE
from cohort_engine.models.progress import LiveAttendance
from cohort_engine.repos.activity_repo import ActivityRepo
from cohort_engine.services.coin_ledger import CoinLedgerService
from cohort_engine.services.hierarchy import HierarchyLookup
from cohort_engine.services.lesson_completion import LessonCompletionService
from cohort_engine.services.progress_cascade import ProgressCascade
from cohort_engine.services.week_unlock import WeekUnlockService

logger = logging.getLogger(__name__)


class LiveClassService:
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

    def start_class(self, live_class_id: UUID) -> LiveClass:
        live = self._lookup.live_class(live_class_id)
        if live.status != "scheduled":
            raise InvalidStateTransition(f"Cannot start a {live.status} class")
        live = replace(live, status="live", started_at=self._clock.now())
        self._lookup.content.update_live_class(live)
        logger.info("Live class started id=%s", live.id, extra={"week_id": str(live.week_id)})
        return live

    def end_class(self, live_class_id: UUID) -> LiveClass:
        live = self._lookup.live_class(live_class_id)
        if live.status != "live":
            raise InvalidStateTransition(f"Cannot end a {live.status} class")
        live = replace(live, status="completed", ended_at=self._clock.now())
        self._lookup.content.update_live_class(live)
        logger.info("Live class ended id=%s", live.id, extra={"week_id": str(live.week_id)})
        return live

    def mark_attendance(
        self,
        user_id: str,
        live_class_id: UUID,
        joined_at: int,
        left_at: int,
    ) -> LiveAttendance:
        live = self._lookup.live_class(live_class_id)
        if live.status == "scheduled":
            raise InvalidStateTransition("Class has not started yet")
        if left_at < joined_at:
            raise ValidationFailed("left_at must not be before joined_at")
        self._weeks.ensure_week_access(user_id, live.week_id)

        duration = left_at - joined_at
        newly_attended = False
        with self._db.transaction():
            current = self._activity.get_attendance(user_id, live.id)
            if current is None:
                current = LiveAttendance(
                    id=uuid4(), user_id=user_id, live_class_id=live.id, joined_at=joined_at
                )
            best = max(current.duration_seconds, duration)
            attendance = replace(
                current,
                joined_at=min(current.joined_at, joined_at),
                left_at=max(current.left_at or left_at, left_at),
                duration_seconds=best,
                attended=current.attended or best >= live.min_attendance_seconds,
            )
            if attendance.attended and not current.attended:
                newly_attended = True
                award = self._ledger.award(
                    user_id,
                    live.coin_reward,
                    LIVE_ATTENDANCE,
                    str(live.id),
                    reason=f"Attended live class: {live.title}",
                )
                attendance = replace(attendance, coins_awarded=award.amount)
                if live.lesson_id is not None and live.block_id is not None:
                    self._lessons.record_block_completion(
                        user_id,
                        live.lesson_id,
                        live.block_id,
                        "live",
                        passed=True,
                        completion_data={"duration_seconds": best},
                        trusted=True,
                    )
            self._activity.save_attendance(attendance)

        if not newly_attended:
            return attendance

        COMPLETIONS_RECORDED.labels(kind="live_attendance").inc()
        logger.info(
            "Live attendance recorded user=%s class=%s duration=%d",
            user_id,
            live.id,
            best,
            extra={"user_id": user_id, "week_id": str(live.week_id)},
        )
        if live.lesson_id is not None:
            self._cascade.on_lesson_changed(user_id, live.lesson_id)
        else:
            self._cascade.on_week_changed(user_id, live.week_id)
        return attendance

    def get_attendance(self, user_id: str, live_class_id: UUID) -> LiveAttendance | None:
        return self._activity.get_attendance(user_id, live_class_id)
