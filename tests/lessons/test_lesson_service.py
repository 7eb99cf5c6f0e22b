"""Tests for the lesson lifecycle engine."""

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from cursos.auth.models import Actor
from cursos.auth.permissions import UserRole
from cursos.cohorts.models import ClassStatus, Cohort, InstructionalMethod
from cursos.core.errors import ConflictError, ForbiddenError, ValidationError
from cursos.lessons.models import (
    AttendanceKind,
    AttendanceStatus,
    HistoryAction,
    LessonStatus,
    Modality,
    ProgressRecord,
)
from cursos.lessons.schemas import CreateLessonRequest, UpdateLessonRequest
from cursos.lessons.service import (
    CannotUnpublishError,
    ClassNotFoundError,
    InsufficientNoticeError,
    InvalidStatusTransitionError,
    LessonAlreadyOccurredError,
    LessonInProgressError,
    LessonNotFoundError,
    LessonPermissionError,
    OutsideClassWindowError,
)
from cursos.lessons.validation import MissingRequiredFieldsError, StartInPastError
from cursos.notifications.models import NotificationPriority, NotificationType


def _day(now, days: int) -> date:
    """Calendar date ``days`` after the reference instant."""
    return (now + timedelta(days=days)).date()


def _live_request(live_class, now, days: int = 8, **overrides) -> CreateLessonRequest:
    data = {
        "title": "Farmacologia aplicada",
        "class_id": live_class.class_id,
        "course_id": live_class.course_id,
        "scheduled_date": _day(now, days),
        "start_time": "19:00",
        "duration_minutes": 90,
    }
    data.update(overrides)
    return CreateLessonRequest(**data)


async def _lesson_with_enrollment(
    lesson_service, enrollment_repo, live_class, actor, now
):
    lesson = await lesson_service.create(_live_request(live_class, now), actor)
    return lesson, enrollment_repo.enroll(live_class.class_id)


# ==============================================================================
# Create
# ==============================================================================


class TestCreateLesson:
    """Tests for LessonService.create."""

    @pytest.mark.asyncio
    async def test_create_always_yields_draft(
        self, lesson_service, live_class, admin, now
    ):
        """Should persist DRAFT even when PUBLISHED is requested."""
        lesson = await lesson_service.create(
            _live_request(live_class, now, status=LessonStatus.PUBLISHED), admin
        )

        assert lesson.status == LessonStatus.DRAFT

    @pytest.mark.asyncio
    async def test_class_modality_overrides_requested_modality(
        self, lesson_service, live_class, admin, now
    ):
        """Should store the class instructional method as modality."""
        lesson = await lesson_service.create(
            _live_request(live_class, now, modality="ONLINE"), admin
        )

        assert lesson.modality == Modality.LIVE

    @pytest.mark.asyncio
    async def test_combines_date_time_and_duration(
        self, lesson_service, live_class, admin, now
    ):
        """Should compute UTC start and end instants from local date and time."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        # 19:00 in Sao Paulo is 22:00 UTC
        assert lesson.starts_at.hour == 22
        assert lesson.ends_at - lesson.starts_at == timedelta(minutes=90)
        assert lesson.end_time == "20:30"
        assert lesson.duration_minutes == 90

    @pytest.mark.asyncio
    async def test_writes_created_history(
        self, lesson_service, lesson_repo, live_class, admin, now
    ):
        """Should record a CREATED history entry in the same write."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        history = await lesson_repo.list_history(lesson.lesson_id)
        assert [entry.action for entry in history] == [HistoryAction.CREATED]
        assert history[0].actor_id == admin.user_id

    @pytest.mark.asyncio
    async def test_live_start_in_past_is_rejected(
        self, lesson_service, live_class, admin, now
    ):
        """Should reject a LIVE lesson whose start is not in the future."""
        with pytest.raises(StartInPastError) as exc:
            await lesson_service.create(
                _live_request(live_class, now, days=0, start_time="08:00"), admin
            )

        assert exc.value.details["field"] == "starts_at"

    @pytest.mark.asyncio
    async def test_standalone_lesson_requires_course(self, lesson_service, admin):
        """Should require a course when no class is linked."""
        with pytest.raises(MissingRequiredFieldsError) as exc:
            await lesson_service.create(
                CreateLessonRequest(
                    title="Aula avulsa",
                    modality="ONLINE",
                    video_url="https://videos.example.com/1",
                ),
                admin,
            )

        assert exc.value.missing_fields == ["course_id"]

    @pytest.mark.asyncio
    async def test_online_lesson_requires_video(self, lesson_service, admin):
        """Should list video_url as missing for an ONLINE lesson."""
        with pytest.raises(MissingRequiredFieldsError) as exc:
            await lesson_service.create(
                CreateLessonRequest(title="Aula", modality="ONLINE", course_id=uuid4()),
                admin,
            )

        assert exc.value.missing_fields == ["video_url"]

    @pytest.mark.asyncio
    async def test_class_of_other_course_is_rejected(
        self, lesson_service, live_class, admin, now
    ):
        """Should reject a class that belongs to a different course."""
        with pytest.raises(ClassNotFoundError):
            await lesson_service.create(
                _live_request(live_class, now, course_id=uuid4()), admin
            )

    @pytest.mark.asyncio
    async def test_lesson_outside_class_window_is_rejected(
        self, lesson_service, live_class, admin, now
    ):
        """Should reject a lesson after the class end."""
        with pytest.raises(OutsideClassWindowError):
            await lesson_service.create(_live_request(live_class, now, days=90), admin)

    @pytest.mark.asyncio
    async def test_student_cannot_create(self, lesson_service, live_class, now):
        """Should reject authors without a staff or instructor role."""
        student = Actor(user_id=uuid4(), role=UserRole.STUDENT)

        with pytest.raises(LessonPermissionError):
            await lesson_service.create(_live_request(live_class, now), student)

    @pytest.mark.asyncio
    async def test_instructor_cannot_create_in_foreign_class(
        self, lesson_service, live_class, now
    ):
        """Should restrict instructors to their own classes."""
        other_instructor = Actor(user_id=uuid4(), role=UserRole.INSTRUCTOR)

        with pytest.raises(LessonPermissionError):
            await lesson_service.create(_live_request(live_class, now), other_instructor)

    @pytest.mark.asyncio
    async def test_defaults_instructor_to_class_instructor(
        self, lesson_service, live_class, admin, now
    ):
        """Should attach the class instructor when none is given."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        assert lesson.instructor_id == live_class.instructor_id

    @pytest.mark.asyncio
    async def test_eligible_lesson_gets_conferencing_event(
        self, lesson_service, lesson_repo, fake_conferencing, live_class, admin, now
    ):
        """Should create a Meet event right away for an eligible lesson."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        stored = lesson_repo.lessons[lesson.lesson_id]
        assert len(fake_conferencing.created) == 1
        assert fake_conferencing.created[0]["organizer_id"] == live_class.instructor_id
        assert stored.calendar_event_id == "evt1"
        assert stored.meet_url == "https://meet.google.com/evt1"

    @pytest.mark.asyncio
    async def test_conferencing_failure_does_not_fail_create(
        self, lesson_service, lesson_repo, fake_conferencing, live_class, admin, now
    ):
        """Should keep the lesson when the calendar sync fails."""
        fake_conferencing.fail = True

        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        assert lesson.lesson_id in lesson_repo.lessons
        assert lesson_repo.lessons[lesson.lesson_id].calendar_event_id is None

    @pytest.mark.asyncio
    async def test_orders_after_existing_lessons(
        self, lesson_service, live_class, admin, now
    ):
        """Should append lessons and flag those added to a running class."""
        first = await lesson_service.create(_live_request(live_class, now), admin)
        second = await lesson_service.create(
            _live_request(live_class, now, days=9), admin
        )

        assert (first.display_order, second.display_order) == (1, 2)
        assert second.added_after_start is True


# ==============================================================================
# Update / publish / unpublish
# ==============================================================================


class TestPublishLesson:
    """Tests for publishing and unpublishing through update."""

    @pytest.mark.asyncio
    async def test_publish_live_lesson_with_past_start_is_rejected(
        self, lesson_service, live_class, admin, now
    ):
        """Should reject publishing once the start instant has passed."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        lesson_service.clock = lambda: now + timedelta(days=10)

        with pytest.raises(StartInPastError) as exc:
            await lesson_service.set_publication(lesson.lesson_id, True, admin)

        assert exc.value.details["field"] == "starts_at"

    @pytest.mark.asyncio
    async def test_publish_in_person_without_class_lists_missing_fields(
        self, lesson_service, admin, now
    ):
        """Should reject with the exact missing field list."""
        lesson = await lesson_service.create(
            CreateLessonRequest(
                title="Pratica de laboratorio",
                modality="PRESENCIAL",
                course_id=uuid4(),
                scheduled_date=_day(now, 10),
                start_time="14:00",
            ),
            admin,
        )

        with pytest.raises(MissingRequiredFieldsError) as exc:
            await lesson_service.set_publication(lesson.lesson_id, True, admin)

        assert exc.value.missing_fields == ["class_id"]

    @pytest.mark.asyncio
    async def test_publish_writes_calendar_entry_and_notifies(
        self,
        lesson_service,
        calendar_entry_repo,
        notification_repo,
        enrollment_repo,
        live_class,
        admin,
        now,
    ):
        """Should write the agenda entry and notify each enrolled student."""
        students = [enrollment_repo.enroll(live_class.class_id) for _ in range(2)]
        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        published = await lesson_service.set_publication(lesson.lesson_id, True, admin)

        assert published.status == LessonStatus.PUBLISHED
        assert len(await calendar_entry_repo.list_for_lesson(lesson.lesson_id)) == 1
        recipients = {n.user_id for n in notification_repo.of_type(NotificationType.NEW_LESSON)}
        assert recipients == {s.student_id for s in students}

    @pytest.mark.asyncio
    async def test_invalid_transition_is_rejected(
        self, lesson_service, live_class, admin, now
    ):
        """Should reject DRAFT -> COMPLETED."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        with pytest.raises(InvalidStatusTransitionError):
            await lesson_service.update(
                lesson.lesson_id,
                UpdateLessonRequest(status=LessonStatus.COMPLETED),
                admin,
                partial=True,
            )

    @pytest.mark.asyncio
    async def test_unpublish_after_start_is_rejected(
        self, lesson_service, live_class, admin, now
    ):
        """Should reject unpublishing a lesson that already started."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        await lesson_service.set_publication(lesson.lesson_id, True, admin)
        lesson_service.clock = lambda: now + timedelta(days=9)

        with pytest.raises(CannotUnpublishError):
            await lesson_service.set_publication(lesson.lesson_id, False, admin)

    @pytest.mark.asyncio
    async def test_unpublish_in_progress_lesson_is_rejected(
        self, lesson_service, lesson_repo, live_class, admin, now
    ):
        """Should reject any change to an IN_PROGRESS lesson."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        lesson_repo.lessons[lesson.lesson_id].status = LessonStatus.IN_PROGRESS

        with pytest.raises(LessonInProgressError):
            await lesson_service.set_publication(lesson.lesson_id, False, admin)

    @pytest.mark.asyncio
    async def test_unpublish_completed_lesson_is_rejected(
        self, lesson_service, lesson_repo, live_class, admin, pedagogical, now
    ):
        """Should reject unpublishing a COMPLETED lesson."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        lesson_repo.lessons[lesson.lesson_id].status = LessonStatus.COMPLETED

        with pytest.raises(ForbiddenError):
            await lesson_service.set_publication(lesson.lesson_id, False, pedagogical)
        with pytest.raises(InvalidStatusTransitionError):
            await lesson_service.set_publication(lesson.lesson_id, False, admin)

    @pytest.mark.asyncio
    async def test_unpublish_removes_event_and_entries(
        self,
        lesson_service,
        lesson_repo,
        calendar_entry_repo,
        notification_repo,
        enrollment_repo,
        fake_conferencing,
        live_class,
        admin,
        now,
    ):
        """Should delete the Meet event and agenda entry and notify students."""
        enrollment_repo.enroll(live_class.class_id)
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        await lesson_service.set_publication(lesson.lesson_id, True, admin)

        draft = await lesson_service.set_publication(lesson.lesson_id, False, admin)

        stored = lesson_repo.lessons[lesson.lesson_id]
        assert draft.status == LessonStatus.DRAFT
        assert fake_conferencing.deleted == [("evt1", live_class.instructor_id)]
        assert stored.calendar_event_id is None
        assert stored.meet_url is None
        assert await calendar_entry_repo.list_for_lesson(lesson.lesson_id) == []
        assert len(notification_repo.of_type(NotificationType.LESSON_UNPUBLISHED)) == 1

    @pytest.mark.asyncio
    async def test_set_publication_is_noop_in_target_state(
        self, lesson_service, lesson_repo, live_class, admin, now
    ):
        """Should not write history when already in the requested state."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        await lesson_service.set_publication(lesson.lesson_id, False, admin)

        assert len(await lesson_repo.list_history(lesson.lesson_id)) == 1


class TestUpdateLesson:
    """Tests for LessonService.update field semantics."""

    @pytest.mark.asyncio
    async def test_full_update_clears_omitted_references(
        self, lesson_service, cohort_repo, live_class, admin, now
    ):
        """Should clear module and instructor when omitted from a full update."""
        module = cohort_repo.add_module(live_class.class_id)
        lesson = await lesson_service.create(
            _live_request(live_class, now, module_id=module.module_id), admin
        )

        updated = await lesson_service.update(
            lesson.lesson_id,
            UpdateLessonRequest(title="Novo titulo", class_id=live_class.class_id),
            admin,
        )

        assert updated.title == "Novo titulo"
        assert updated.class_id == live_class.class_id
        assert updated.module_id is None
        assert updated.instructor_id is None

    @pytest.mark.asyncio
    async def test_partial_update_keeps_references(
        self, lesson_service, live_class, admin, now
    ):
        """Should leave unsent references untouched."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        updated = await lesson_service.update(
            lesson.lesson_id, UpdateLessonRequest(room="Sala 2"), admin, partial=True
        )

        assert updated.room == "Sala 2"
        assert updated.class_id == live_class.class_id
        assert updated.instructor_id == live_class.instructor_id

    @pytest.mark.asyncio
    async def test_records_edited_history_with_changes(
        self, lesson_service, lesson_repo, live_class, admin, now
    ):
        """Should store before/after values of changed fields."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        await lesson_service.update(
            lesson.lesson_id, UpdateLessonRequest(title="Revisado"), admin, partial=True
        )

        entry = (await lesson_repo.list_history(lesson.lesson_id))[-1]
        assert entry.action == HistoryAction.EDITED
        assert entry.changes["title"] == {
            "before": "Farmacologia aplicada",
            "after": "Revisado",
        }

    @pytest.mark.asyncio
    async def test_rescheduling_published_lesson_patches_event(
        self, lesson_service, fake_conferencing, live_class, admin, now
    ):
        """Should patch the existing Meet event when the schedule changes."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        await lesson_service.set_publication(lesson.lesson_id, True, admin)
        fake_conferencing.updated.clear()

        updated = await lesson_service.update(
            lesson.lesson_id, UpdateLessonRequest(start_time="20:00"), admin, partial=True
        )

        assert updated.starts_at.hour == 23
        event_id, _, patch = fake_conferencing.updated[-1]
        assert event_id == "evt1"
        assert patch.start == updated.starts_at

    @pytest.mark.asyncio
    async def test_moving_published_lesson_refreshes_attendees(
        self, lesson_service, fake_conferencing, cohort_repo, live_class, admin, now
    ):
        """Should replace the Meet guest list with the new class's students."""
        other_class = cohort_repo.add(replace(live_class, class_id=uuid4(), name="Turma C"))
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        await lesson_service.set_publication(lesson.lesson_id, True, admin)
        fake_conferencing.updated.clear()
        fake_conferencing.resolve_attendees = AsyncMock(return_value=["ana@example.com"])

        await lesson_service.update(
            lesson.lesson_id,
            UpdateLessonRequest(class_id=other_class.class_id),
            admin,
            partial=True,
        )

        event_id, _, patch = fake_conferencing.updated[-1]
        assert event_id == "evt1"
        assert patch.attendee_emails == ["ana@example.com"]
        fake_conferencing.resolve_attendees.assert_awaited_once_with(other_class.class_id)

    @pytest.mark.asyncio
    async def test_reschedule_keeps_attendees(
        self, lesson_service, fake_conferencing, live_class, admin, now
    ):
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        await lesson_service.set_publication(lesson.lesson_id, True, admin)

        await lesson_service.update(
            lesson.lesson_id, UpdateLessonRequest(title="Revisada"), admin, partial=True
        )

        assert fake_conferencing.updated[-1][2].attendee_emails is None

    @pytest.mark.asyncio
    async def test_instructor_cannot_edit_lesson_of_other_author(
        self, lesson_service, live_class, admin, now
    ):
        """Should allow instructors to edit only lessons they created."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        instructor = Actor(user_id=live_class.instructor_id, role=UserRole.INSTRUCTOR)

        with pytest.raises(LessonPermissionError):
            await lesson_service.update(
                lesson.lesson_id, UpdateLessonRequest(title="X"), instructor, partial=True
            )

    @pytest.mark.asyncio
    async def test_missing_lesson(self, lesson_service, admin):
        """Should raise LessonNotFoundError for unknown ids."""
        with pytest.raises(LessonNotFoundError):
            await lesson_service.update(uuid4(), UpdateLessonRequest(title="X"), admin)


# ==============================================================================
# Delete
# ==============================================================================


class TestDeleteLesson:
    """Tests for LessonService.delete."""

    @pytest.mark.asyncio
    async def test_delete_inside_notice_window_is_rejected(
        self, lesson_service, live_class, admin, now
    ):
        """Should reject deleting a lesson scheduled in 3 days."""
        lesson = await lesson_service.create(
            _live_request(live_class, now, days=3), admin
        )

        with pytest.raises(InsufficientNoticeError) as exc:
            await lesson_service.delete(lesson.lesson_id, admin)

        assert exc.value.details["days_remaining"] == 3

    @pytest.mark.asyncio
    async def test_delete_outside_notice_window_succeeds(
        self,
        lesson_service,
        lesson_repo,
        calendar_entry_repo,
        fake_conferencing,
        live_class,
        admin,
        now,
    ):
        """Should cancel a lesson scheduled in 6 days and clean up."""
        lesson = await lesson_service.create(
            _live_request(live_class, now, days=6, video_url="https://v.example.com/1"),
            admin,
        )
        await lesson_service.set_publication(lesson.lesson_id, True, admin)

        cancelled = await lesson_service.delete(lesson.lesson_id, admin)

        assert cancelled.status == LessonStatus.CANCELLED
        assert cancelled.deleted_by == admin.user_id
        assert cancelled.meet_url is None
        assert cancelled.video_url is None
        assert lesson_repo.deleted_materials == [lesson.lesson_id]
        assert await calendar_entry_repo.list_for_lesson(lesson.lesson_id) == []
        assert fake_conferencing.deleted == [("evt1", live_class.instructor_id)]
        entry = (await lesson_repo.list_history(lesson.lesson_id))[-1]
        assert entry.action == HistoryAction.CANCELLED
        assert entry.changes["status"] == {"before": "PUBLISHED", "after": "CANCELLED"}

    @pytest.mark.asyncio
    async def test_delete_notifies_running_class_with_urgency(
        self,
        lesson_service,
        notification_repo,
        enrollment_repo,
        live_class,
        admin,
        now,
    ):
        """Should notify enrollments of a running class with URGENT priority."""
        enrollment_repo.enroll(live_class.class_id)
        lesson = await lesson_service.create(
            _live_request(live_class, now, days=6), admin
        )

        await lesson_service.delete(lesson.lesson_id, admin)

        cancelled = notification_repo.of_type(NotificationType.LESSON_CANCELLED)
        assert len(cancelled) == 1
        assert cancelled[0].priority == NotificationPriority.URGENT
        assert cancelled[0].action_link == f"/turmas/{live_class.class_id}"

    @pytest.mark.asyncio
    async def test_past_lesson_cannot_be_deleted(
        self, lesson_service, live_class, admin, now
    ):
        """Should reject deleting a lesson that already occurred."""
        lesson = await lesson_service.create(
            _live_request(live_class, now, days=6), admin
        )
        lesson_service.clock = lambda: now + timedelta(days=7)

        with pytest.raises(LessonAlreadyOccurredError):
            await lesson_service.delete(lesson.lesson_id, admin)

    @pytest.mark.asyncio
    async def test_deleting_twice_is_a_conflict(
        self, lesson_service, live_class, admin, now
    ):
        """Should reject deleting an already cancelled lesson."""
        lesson = await lesson_service.create(
            _live_request(live_class, now, days=6), admin
        )
        await lesson_service.delete(lesson.lesson_id, admin)

        with pytest.raises(ConflictError):
            await lesson_service.delete(lesson.lesson_id, admin)

    @pytest.mark.asyncio
    async def test_unscheduled_online_lesson_skips_notice(self, lesson_service, admin):
        """Should allow deleting ONLINE lessons without a schedule at any time."""
        lesson = await lesson_service.create(
            CreateLessonRequest(
                title="Gravada",
                modality="ONLINE",
                course_id=uuid4(),
                video_url="https://videos.example.com/2",
            ),
            admin,
        )

        cancelled = await lesson_service.delete(lesson.lesson_id, admin)

        assert cancelled.status == LessonStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_pedagogical_cannot_delete_required_lesson_with_completions(
        self, lesson_service, lesson_repo, live_class, admin, pedagogical, now
    ):
        """Should restrict such deletions to admins and moderators."""
        lesson = await lesson_service.create(
            _live_request(live_class, now, days=6), admin
        )
        await lesson_repo.save_progress(
            ProgressRecord(
                lesson_id=lesson.lesson_id,
                enrollment_id=uuid4(),
                percentage=Decimal(100),
                completed=True,
            )
        )

        with pytest.raises(LessonPermissionError) as exc:
            await lesson_service.delete(lesson.lesson_id, pedagogical)

        assert exc.value.code == "requires_senior_role"


# ==============================================================================
# Progress
# ==============================================================================


class TestRecordProgress:
    """Tests for LessonService.record_progress."""

    @pytest.mark.asyncio
    async def test_threshold_completes_at_100(
        self, lesson_service, enrollment_repo, live_class, admin, now
    ):
        """Should store 100 and completed for 95%."""
        lesson, enrollment = await _lesson_with_enrollment(
            lesson_service, enrollment_repo, live_class, admin, now
        )

        record = await lesson_service.record_progress(
            lesson.lesson_id, enrollment.enrollment_id, 95, 1800, 1790, admin
        )

        assert record.percentage == Decimal(100)
        assert record.completed is True
        assert record.completed_at == now

    @pytest.mark.asyncio
    async def test_below_threshold_is_stored_as_is(
        self, lesson_service, enrollment_repo, live_class, admin, now
    ):
        """Should keep partial progress below 90%."""
        lesson, enrollment = await _lesson_with_enrollment(
            lesson_service, enrollment_repo, live_class, admin, now
        )

        record = await lesson_service.record_progress(
            lesson.lesson_id, enrollment.enrollment_id, Decimal("42.5"), 600, 600, admin
        )

        assert record.percentage == Decimal("42.5")
        assert record.completed is False

    @pytest.mark.asyncio
    async def test_completed_record_stays_complete(
        self, lesson_service, enrollment_repo, live_class, admin, now
    ):
        """Should keep 100 after a later lower report."""
        lesson, enrollment = await _lesson_with_enrollment(
            lesson_service, enrollment_repo, live_class, admin, now
        )
        await lesson_service.record_progress(
            lesson.lesson_id, enrollment.enrollment_id, 95, 1800, 1790, admin
        )

        record = await lesson_service.record_progress(
            lesson.lesson_id, enrollment.enrollment_id, 10, 60, 60, admin
        )

        assert record.completed is True
        assert record.percentage == Decimal(100)

    @pytest.mark.asyncio
    async def test_out_of_range_percentage_is_rejected(
        self, lesson_service, enrollment_repo, live_class, admin, now
    ):
        lesson, enrollment = await _lesson_with_enrollment(
            lesson_service, enrollment_repo, live_class, admin, now
        )

        with pytest.raises(ValidationError):
            await lesson_service.record_progress(
                lesson.lesson_id, enrollment.enrollment_id, 120, 0, 0, admin
            )

    @pytest.mark.asyncio
    async def test_student_cannot_report_for_other_enrollment(
        self, lesson_service, enrollment_repo, live_class, admin, now
    ):
        """Should restrict students to their own enrollment."""
        lesson, enrollment = await _lesson_with_enrollment(
            lesson_service, enrollment_repo, live_class, admin, now
        )
        intruder = Actor(user_id=uuid4(), role=UserRole.STUDENT)

        with pytest.raises(ForbiddenError):
            await lesson_service.record_progress(
                lesson.lesson_id, enrollment.enrollment_id, 50, 10, 10, intruder
            )


# ==============================================================================
# Attendance
# ==============================================================================


class TestRecordAttendance:
    """Tests for LessonService.record_attendance."""

    @pytest.mark.asyncio
    async def test_entry_then_exit_annotates_record(
        self, lesson_service, enrollment_repo, live_class, admin, now
    ):
        """Should create a PRESENT record and annotate it on exit."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        enrollment = enrollment_repo.enroll(live_class.class_id)

        entry = await lesson_service.record_attendance(
            lesson.lesson_id, enrollment.enrollment_id, AttendanceKind.ENTRY, admin
        )
        lesson_service.clock = lambda: now + timedelta(hours=1)
        exited = await lesson_service.record_attendance(
            lesson.lesson_id, enrollment.enrollment_id, "exit", admin
        )

        assert entry.status == AttendanceStatus.PRESENT
        assert exited.attendance_id == entry.attendance_id
        # 13:00 UTC is 10:00 in Sao Paulo
        assert exited.notes == "Saída registrada às 10:00"

    @pytest.mark.asyncio
    async def test_exit_without_entry_is_noop(
        self, lesson_service, enrollment_repo, live_class, admin, now
    ):
        """Should return None when no entry exists in the lookback window."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        enrollment = enrollment_repo.enroll(live_class.class_id)

        result = await lesson_service.record_attendance(
            lesson.lesson_id, enrollment.enrollment_id, AttendanceKind.EXIT, admin
        )

        assert result is None

    @pytest.mark.asyncio
    async def test_online_lesson_rejects_attendance(
        self, lesson_service, enrollment_repo, cohort_repo, admin, now
    ):
        """Should only track attendance of LIVE and HYBRID lessons."""
        online_class = cohort_repo.add(
            Cohort(
                class_id=uuid4(),
                course_id=uuid4(),
                name="Turma EAD",
                instructional_method=InstructionalMethod.ONLINE,
                status=ClassStatus.IN_PROGRESS,
            )
        )
        lesson = await lesson_service.create(
            CreateLessonRequest(
                title="Gravada",
                class_id=online_class.class_id,
                video_url="https://videos.example.com/3",
            ),
            admin,
        )
        enrollment = enrollment_repo.enroll(online_class.class_id)

        with pytest.raises(ValidationError):
            await lesson_service.record_attendance(
                lesson.lesson_id, enrollment.enrollment_id, AttendanceKind.ENTRY, admin
            )

    @pytest.mark.asyncio
    async def test_get_attendance_lists_entries(
        self, lesson_service, enrollment_repo, live_class, admin, now
    ):
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        enrollment = enrollment_repo.enroll(live_class.class_id)
        await lesson_service.record_attendance(
            lesson.lesson_id, enrollment.enrollment_id, AttendanceKind.ENTRY, admin
        )

        records = await lesson_service.get_attendance(
            lesson.lesson_id, enrollment.enrollment_id
        )

        assert [r.enrollment_id for r in records] == [enrollment.enrollment_id]


class TestLessonHistory:
    @pytest.mark.asyncio
    async def test_history_follows_lifecycle(
        self, lesson_service, live_class, admin, now
    ):
        """Should list one entry per committed change, oldest first."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        await lesson_service.set_publication(lesson.lesson_id, True, admin)

        history = await lesson_service.get_history(lesson.lesson_id, admin)

        assert [entry.action for entry in history] == [
            HistoryAction.CREATED,
            HistoryAction.STATUS_CHANGED,
        ]

    @pytest.mark.asyncio
    async def test_history_of_unknown_lesson(self, lesson_service, admin):
        with pytest.raises(LessonNotFoundError):
            await lesson_service.get_history(uuid4(), admin)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [UserRole.INSTRUCTOR, UserRole.STUDENT])
    async def test_history_is_staff_only(
        self, lesson_service, live_class, admin, instructor_id, now, role
    ):
        """Should refuse the audit trail to instructors and students."""
        lesson = await lesson_service.create(_live_request(live_class, now), admin)
        viewer = Actor(user_id=instructor_id, role=role)

        with pytest.raises(LessonPermissionError):
            await lesson_service.get_history(lesson.lesson_id, viewer)


# ==============================================================================
# End-to-end scenarios
# ==============================================================================


class TestLessonScenarios:
    """Whole flows across the engine and its collaborators."""

    @pytest.mark.asyncio
    async def test_publish_live_lesson_end_to_end(
        self,
        lesson_service,
        lesson_repo,
        calendar_entry_repo,
        notification_repo,
        enrollment_repo,
        live_class,
        admin,
        now,
    ):
        """Should link a Meet event, write the agenda and notify once per student."""
        students = [enrollment_repo.enroll(live_class.class_id) for _ in range(3)]
        lesson = await lesson_service.create(_live_request(live_class, now), admin)

        await lesson_service.set_publication(lesson.lesson_id, True, admin)

        stored = lesson_repo.lessons[lesson.lesson_id]
        assert stored.status == LessonStatus.PUBLISHED
        assert stored.calendar_event_id is not None
        assert stored.meet_url is not None
        assert len(await calendar_entry_repo.list_for_lesson(lesson.lesson_id)) == 1
        for student in students:
            received = [
                n
                for n in await notification_repo.list_for_user(student.student_id)
                if n.type == NotificationType.NEW_LESSON
            ]
            assert len(received) == 1

    @pytest.mark.asyncio
    async def test_publish_hybrid_video_only_lesson(
        self, lesson_service, cohort_repo, fake_conferencing, admin
    ):
        """Should publish without creating a conferencing event."""
        hybrid_class = cohort_repo.add(
            Cohort(
                class_id=uuid4(),
                course_id=uuid4(),
                name="Turma hibrida",
                instructional_method=InstructionalMethod.SEMIPRESENCIAL,
                status=ClassStatus.ENROLLMENT_OPEN,
            )
        )
        lesson = await lesson_service.create(
            CreateLessonRequest(
                title="Introducao",
                class_id=hybrid_class.class_id,
                video_url="https://videos.example.com/4",
            ),
            admin,
        )

        published = await lesson_service.set_publication(lesson.lesson_id, True, admin)

        assert published.modality == Modality.HYBRID
        assert published.status == LessonStatus.PUBLISHED
        assert fake_conferencing.created == []

    @pytest.mark.asyncio
    async def test_delete_required_lesson_with_completion(
        self, lesson_service, lesson_repo, live_class, admin, now
    ):
        """Should reject a plain instructor and accept a top-level admin."""
        lesson = await lesson_service.create(
            _live_request(live_class, now, days=10), admin
        )
        await lesson_repo.save_progress(
            ProgressRecord(
                lesson_id=lesson.lesson_id,
                enrollment_id=uuid4(),
                percentage=Decimal(100),
                completed=True,
            )
        )
        instructor = Actor(user_id=live_class.instructor_id, role=UserRole.INSTRUCTOR)

        with pytest.raises(ForbiddenError):
            await lesson_service.delete(lesson.lesson_id, instructor)
        cancelled = await lesson_service.delete(lesson.lesson_id, admin)

        assert cancelled.status == LessonStatus.CANCELLED
