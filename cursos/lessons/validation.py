"""Lesson validation rules.

- Modality normalization against the class instructional method
- Schedule resolution (date + time of day + duration into UTC instants)
- Modality-specific field requirements at creation and at publication
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

from cursos.cohorts.models import Cohort
from cursos.core.errors import ValidationError
from cursos.core.logging import get_logger
from cursos.utils import combine_local, format_local_time

from .models import Lesson, Modality, modality_from_class_method


logger = get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class MissingRequiredFieldsError(ValidationError):
    """Modality rules require fields that are absent."""

    def __init__(self, missing_fields: list[str], message: str | None = None):
        super().__init__(
            message or "Campos obrigatorios ausentes: " + ", ".join(missing_fields),
            "missing_required_fields",
            missing_fields=missing_fields,
        )


class StartInPastError(ValidationError):
    """The start instant must be strictly in the future."""

    def __init__(self, message: str = "A data de inicio da aula deve estar no futuro"):
        super().__init__(message, "start_in_past", field="starts_at")


class InvalidScheduleError(ValidationError):
    def __init__(self, message: str = "Horario da aula invalido"):
        super().__init__(message, "invalid_schedule")


# ==============================================================================
# Modality
# ==============================================================================


def normalize_modality(
    requested: Modality | None,
    cohort: Cohort | None,
    lesson_id: UUID | None = None,
) -> Modality | None:
    """Resolve the stored modality: a linked class always wins."""
    if cohort is None:
        return requested

    modality = modality_from_class_method(cohort.instructional_method)
    if requested is not None and requested != modality:
        logger.info(
            "lesson_modality_normalized",
            lesson_id=str(lesson_id) if lesson_id else None,
            class_id=str(cohort.class_id),
            requested=requested.value,
            applied=modality.value,
        )
    return modality


# ==============================================================================
# Schedule
# ==============================================================================


@dataclass
class Schedule:
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    start_time: str | None = None
    end_time: str | None = None
    duration_minutes: int | None = None


def resolve_schedule(
    day: date | None,
    start_time: str | None,
    end_time: str | None,
    duration_minutes: int | None,
    tz_name: str,
) -> Schedule:
    """Combine a date, times of day and a duration into instants.

    Without a date only the raw values are kept. With an end time the
    duration is derived from it; with only a duration the end is computed.

    Raises:
        InvalidScheduleError: If a time is malformed or the end is not after the start.
    """
    schedule = Schedule(
        start_time=start_time, end_time=end_time, duration_minutes=duration_minutes
    )
    if day is None:
        return schedule

    try:
        schedule.starts_at = combine_local(day, start_time, tz_name)
        if end_time:
            schedule.ends_at = combine_local(day, end_time, tz_name)
        elif duration_minutes:
            schedule.ends_at = schedule.starts_at + timedelta(minutes=duration_minutes)
            schedule.end_time = format_local_time(schedule.ends_at, tz_name)
    except ValueError as e:
        raise InvalidScheduleError(str(e)) from e

    if schedule.ends_at is not None:
        if schedule.ends_at <= schedule.starts_at:
            raise InvalidScheduleError("O horario de termino deve ser apos o inicio")
        schedule.duration_minutes = int(
            (schedule.ends_at - schedule.starts_at).total_seconds() // 60
        )
    return schedule


# ==============================================================================
# Field requirements
# ==============================================================================


def check_create_requirements(
    modality: Modality, video_url: str | None, day: date | None
) -> None:
    """ONLINE needs a video URL; IN_PERSON and LIVE need a date."""
    missing: list[str] = []
    if modality == Modality.ONLINE and not video_url:
        missing.append("video_url")
    if modality in (Modality.IN_PERSON, Modality.LIVE) and day is None:
        missing.append("scheduled_date")
    if missing:
        raise MissingRequiredFieldsError(missing)


def check_publishable(lesson: Lesson, now: datetime) -> None:
    """Validate the merged record before it becomes PUBLISHED.

    Raises:
        MissingRequiredFieldsError: With the exact list of missing fields.
        StartInPastError: If a required start instant is not in the future.
    """
    missing: list[str] = []
    start_must_be_future = False

    if lesson.modality == Modality.ONLINE:
        if not lesson.video_url:
            missing.append("video_url")

    elif lesson.modality == Modality.IN_PERSON:
        if lesson.starts_at is None:
            missing.append("starts_at")
        if lesson.class_id is None:
            missing.append("class_id")

    elif lesson.modality == Modality.LIVE:
        if lesson.starts_at is None:
            missing.append("starts_at")
        if lesson.class_id is None:
            missing.append("class_id")
        start_must_be_future = True

    elif lesson.modality == Modality.HYBRID and not lesson.video_url:
        if lesson.starts_at is None:
            missing.append("starts_at")
        if lesson.class_id is None:
            missing.append("class_id")
        if missing:
            missing.insert(0, "video_url")
        start_must_be_future = True

    if missing:
        raise MissingRequiredFieldsError(missing)
    if start_must_be_future and lesson.starts_at is not None and lesson.starts_at <= now:
        raise StartInPastError
