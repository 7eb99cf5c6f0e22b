"""Pydantic schemas for lesson operations.

Presence matters for updates: a field sent as ``null`` is different from a
field not sent at all, so the engine inspects ``model_fields_set``.
"""

import re
from datetime import date
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from .models import LessonStatus, Modality, modality_from_api


TIME_OF_DAY_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

SCHEDULE_FIELDS = frozenset(
    {"scheduled_date", "start_time", "end_time", "duration_minutes"}
)
REFERENCE_FIELDS = ("class_id", "instructor_id", "module_id")


def _parse_modality(value: object) -> object:
    if value is None or isinstance(value, Modality):
        return value
    if isinstance(value, str):
        return modality_from_api(value)
    return value


def _check_time_of_day(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not TIME_OF_DAY_PATTERN.match(value):
        msg = "Horario deve estar no formato HH:MM"
        raise ValueError(msg)
    return value


class _LessonFields(BaseModel):
    description: str | None = Field(None, max_length=5000)
    modality: Modality | None = Field(
        None, description="ONLINE, PRESENCIAL, AO_VIVO or SEMIPRESENCIAL"
    )
    class_id: UUID | None = None
    module_id: UUID | None = None
    course_id: UUID | None = None
    instructor_id: UUID | None = None
    scheduled_date: date | None = Field(None, description="Lesson date")
    start_time: str | None = Field(None, description="Start time of day (HH:MM)")
    end_time: str | None = Field(None, description="End time of day (HH:MM)")
    duration_minutes: int | None = Field(None, gt=0, le=24 * 60)
    video_url: str | None = Field(None, max_length=2048)
    room: str | None = Field(None, max_length=255)

    @field_validator("modality", mode="before")
    @classmethod
    def parse_modality(cls, value: object) -> object:
        return _parse_modality(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time_of_day(cls, value: str | None) -> str | None:
        return _check_time_of_day(value)

    @field_validator("video_url", "room", "description")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


class CreateLessonRequest(_LessonFields):
    """Create a lesson. Any requested status is ignored (always DRAFT)."""

    title: str = Field(..., min_length=1, max_length=255)
    status: LessonStatus | None = None
    required: bool = True
    record: bool = True


class UpdateLessonRequest(_LessonFields):
    """Update a lesson. Only fields that were sent are applied."""

    title: str | None = Field(None, min_length=1, max_length=255)
    status: LessonStatus | None = None
    required: bool | None = None
    record: bool | None = None
