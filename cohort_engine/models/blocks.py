"""Typed lesson blocks.

Lessons carry an ordered list of blocks authored in the content
builder.  They arrive as JSON objects tagged by ``type`` and are decoded
exactly once, when the Lesson is built, into one of the variants below.
Nothing downstream inspects raw dicts.

Only quiz, assignment and live blocks are *evaluable*: they count as
completion units of the lesson.  Video, text and photo blocks are
presentational.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from cohort_engine.core.errors import ValidationFailed


class _Block(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    title: str = ""


class VideoBlock(_Block):
    type: Literal["video"] = "video"
    url: str = ""
    duration_seconds: int | None = Field(default=None, ge=0)


class TextBlock(_Block):
    type: Literal["text"] = "text"
    content: str = ""


class PhotoBlock(_Block):
    type: Literal["photo"] = "photo"
    url: str = ""
    caption: str = ""


class _EvaluableBlock(_Block):
    required: bool = True
    coin_reward: int = Field(default=0, ge=0)


class QuizBlock(_EvaluableBlock):
    type: Literal["quiz"] = "quiz"
    # Set when the block embeds a managed Quiz; inline quizzes report scores directly
    quiz_id: UUID | None = None
    passing_score: int = Field(default=70, ge=0, le=100)


class AssignmentBlock(_EvaluableBlock):
    type: Literal["assignment"] = "assignment"
    assignment_id: UUID | None = None


class LiveBlock(_EvaluableBlock):
    type: Literal["live"] = "live"
    live_class_id: UUID | None = None


LessonBlock = Annotated[
    Union[VideoBlock, TextBlock, PhotoBlock, QuizBlock, AssignmentBlock, LiveBlock],
    Field(discriminator="type"),
]
EvaluableBlock = Union[QuizBlock, AssignmentBlock, LiveBlock]

BlockType = Literal["video", "text", "photo", "quiz", "assignment", "live"]

_BLOCKS = TypeAdapter(list[LessonBlock])


def decode_blocks(raw: Iterable[Any]) -> tuple[LessonBlock, ...]:
    """Validate authored block payloads into typed blocks.

    Accepts dicts or already-built block models.  Raises ValidationFailed
    on an unknown ``type``, a missing id, or duplicate block ids.
    """
    try:
        blocks = tuple(_BLOCKS.validate_python(list(raw)))
    except ValidationError as e:
        raise ValidationFailed(
            f"Invalid lesson blocks ({e.error_count()} error(s))"
        ) from None

    seen: set[str] = set()
    for block in blocks:
        if block.id in seen:
            raise ValidationFailed(f"Duplicate block id {block.id!r}")
        seen.add(block.id)
    return blocks


def is_evaluable(block: LessonBlock) -> bool:
    return isinstance(block, (QuizBlock, AssignmentBlock, LiveBlock))
