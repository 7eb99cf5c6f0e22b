"""Tests for modality normalization, schedule resolution and publish rules."""

from datetime import UTC, date, datetime, timedelta
from uuid import uuid4

import pytest

from cursos.cohorts.models import ClassStatus, Cohort, InstructionalMethod
from cursos.lessons.models import Lesson, LessonStatus, Modality
from cursos.lessons.validation import (
    InvalidScheduleError,
    MissingRequiredFieldsError,
    StartInPastError,
    check_create_requirements,
    check_publishable,
    normalize_modality,
    resolve_schedule,
)


TZ = "America/Sao_Paulo"
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _lesson(modality: Modality, **kwargs) -> Lesson:
    return Lesson(
        lesson_id=uuid4(),
        title="Aula",
        modality=modality,
        status=LessonStatus.DRAFT,
        **kwargs,
    )


def _cohort(method: InstructionalMethod) -> Cohort:
    return Cohort(
        class_id=uuid4(),
        course_id=uuid4(),
        name="Turma",
        instructional_method=method,
        status=ClassStatus.PLANNED,
    )


class TestNormalizeModality:
    """Tests for normalize_modality."""

    def test_class_method_wins(self):
        """Should override the requested modality with the class method."""
        result = normalize_modality(
            Modality.ONLINE, _cohort(InstructionalMethod.SEMIPRESENCIAL)
        )

        assert result == Modality.HYBRID

    def test_requested_kept_without_class(self):
        assert normalize_modality(Modality.IN_PERSON, None) == Modality.IN_PERSON

    def test_none_without_class(self):
        assert normalize_modality(None, None) is None


class TestResolveSchedule:
    """Tests for resolve_schedule."""

    def test_duration_computes_end(self):
        """Should derive the end instant and time from a duration."""
        schedule = resolve_schedule(date(2026, 3, 10), "19:00", None, 120, TZ)

        assert schedule.starts_at == datetime(2026, 3, 10, 22, 0, tzinfo=UTC)
        assert schedule.ends_at == datetime(2026, 3, 11, 0, 0, tzinfo=UTC)
        assert schedule.end_time == "21:00"

    def test_end_time_wins_over_duration(self):
        """Should recompute the duration from an explicit end time."""
        schedule = resolve_schedule(date(2026, 3, 10), "08:00", "09:30", 15, TZ)

        assert schedule.duration_minutes == 90

    def test_without_date_keeps_raw_values(self):
        schedule = resolve_schedule(None, "08:00", None, 60, TZ)

        assert schedule.starts_at is None
        assert schedule.start_time == "08:00"
        assert schedule.duration_minutes == 60

    def test_end_before_start_is_rejected(self):
        with pytest.raises(InvalidScheduleError):
            resolve_schedule(date(2026, 3, 10), "10:00", "09:00", None, TZ)

    def test_date_without_time_is_local_midnight(self):
        schedule = resolve_schedule(date(2026, 3, 10), None, None, None, TZ)

        assert schedule.starts_at == datetime(2026, 3, 10, 3, 0, tzinfo=UTC)


class TestCreateRequirements:
    """Tests for check_create_requirements."""

    def test_online_needs_video(self):
        with pytest.raises(MissingRequiredFieldsError) as exc:
            check_create_requirements(Modality.ONLINE, None, None)

        assert exc.value.missing_fields == ["video_url"]

    @pytest.mark.parametrize("modality", [Modality.IN_PERSON, Modality.LIVE])
    def test_scheduled_modalities_need_date(self, modality):
        with pytest.raises(MissingRequiredFieldsError) as exc:
            check_create_requirements(modality, None, None)

        assert exc.value.missing_fields == ["scheduled_date"]

    def test_hybrid_has_no_create_requirements(self):
        check_create_requirements(Modality.HYBRID, None, None)


class TestCheckPublishable:
    """Tests for check_publishable."""

    def test_online_with_video_passes(self):
        check_publishable(_lesson(Modality.ONLINE, video_url="https://v/1"), NOW)

    def test_live_without_schedule_or_class(self):
        """Should list every missing field."""
        with pytest.raises(MissingRequiredFieldsError) as exc:
            check_publishable(_lesson(Modality.LIVE), NOW)

        assert exc.value.missing_fields == ["starts_at", "class_id"]

    def test_live_start_must_be_future(self):
        lesson = _lesson(
            Modality.LIVE, class_id=uuid4(), starts_at=NOW - timedelta(minutes=1)
        )

        with pytest.raises(StartInPastError) as exc:
            check_publishable(lesson, NOW)

        assert exc.value.details == {"field": "starts_at"}

    def test_in_person_start_may_be_past(self):
        """Should not require a future start for IN_PERSON lessons."""
        lesson = _lesson(
            Modality.IN_PERSON, class_id=uuid4(), starts_at=NOW - timedelta(days=1)
        )

        check_publishable(lesson, NOW)

    def test_hybrid_with_video_only_passes(self):
        check_publishable(_lesson(Modality.HYBRID, video_url="https://v/2"), NOW)

    def test_hybrid_without_video_or_schedule(self):
        """Should report the video as the first alternative."""
        with pytest.raises(MissingRequiredFieldsError) as exc:
            check_publishable(_lesson(Modality.HYBRID, class_id=uuid4()), NOW)

        assert exc.value.missing_fields == ["video_url", "starts_at"]

    def test_hybrid_scheduled_start_must_be_future(self):
        lesson = _lesson(Modality.HYBRID, class_id=uuid4(), starts_at=NOW)

        with pytest.raises(StartInPastError):
            check_publishable(lesson, NOW)
