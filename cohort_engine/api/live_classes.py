"""Live class control and attendance endpoints.

Staff start and end a class.  Attendance is reported per learner with
join/leave timestamps; the learner reports it for themselves.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from cohort_engine.api.dependencies import Learner, Services, Staff
from cohort_engine.services.cache import invalidate_leaderboards

router = APIRouter(prefix="/v1/live-classes", tags=["live-classes"])


class LiveClassOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    week_id: UUID
    title: str
    status: str
    scheduled_at: int | None
    started_at: int | None
    ended_at: int | None


class AttendIn(BaseModel):
    joined_at: int = Field(ge=0)
    left_at: int = Field(ge=0)


class AttendanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    live_class_id: UUID
    joined_at: int
    left_at: int | None
    duration_seconds: int
    attended: bool
    coins_awarded: int


@router.post("/{live_class_id}/start", response_model=LiveClassOut)
def start_class(live_class_id: UUID, principal: Staff, services: Services) -> LiveClassOut:
    return LiveClassOut.model_validate(services.live_classes.start_class(live_class_id))


@router.post("/{live_class_id}/end", response_model=LiveClassOut)
def end_class(live_class_id: UUID, principal: Staff, services: Services) -> LiveClassOut:
    return LiveClassOut.model_validate(services.live_classes.end_class(live_class_id))


@router.post("/{live_class_id}/attend", response_model=AttendanceOut)
async def attend(
    live_class_id: UUID, body: AttendIn, principal: Learner, services: Services
) -> AttendanceOut:
    attendance = services.live_classes.mark_attendance(
        principal.user_id, live_class_id, body.joined_at, body.left_at
    )
    if attendance.coins_awarded:
        await invalidate_leaderboards()
    return AttendanceOut.model_validate(attendance)
