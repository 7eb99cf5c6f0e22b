"""Lesson lifecycle service.

Business logic for:
- Creating lessons (always as DRAFT) inside a class or a standalone course
- Updating, publishing and unpublishing with modality-specific rules
- Soft deletion with a minimum notice window
- Recording watch progress and live attendance

Every mutation writes its history row in the same batch as the lesson. Calendar
sync, internal agenda entries and notifications run afterwards as independent
post-commit actions whose failures never fail the operation.
"""

import math
from collections.abc import Callable
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from cursos.agenda.models import create_calendar_entry
from cursos.auth.models import Actor
from cursos.auth.permissions import (
    UserRole,
    can_author_lessons,
    is_senior_staff,
    is_staff,
    is_top_admin,
)
from cursos.cohorts.models import ClassStatus, Cohort
from cursos.conferencing.models import EventPatch
from cursos.config.settings import Settings, get_settings
from cursos.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from cursos.core.logging import get_logger
from cursos.core.side_effects import PostCommitAction, run_post_commit
from cursos.notifications.models import (
    NotificationDraft,
    NotificationPriority,
    NotificationType,
)
from cursos.utils import format_local_time, utc_now

from .models import (
    COMPLETION_THRESHOLD,
    AttendanceKind,
    AttendanceRecord,
    AttendanceStatus,
    HistoryAction,
    HistoryEntry,
    Lesson,
    LessonStatus,
    Modality,
    ProgressRecord,
    create_history_entry,
)
from .schemas import (
    REFERENCE_FIELDS,
    SCHEDULE_FIELDS,
    CreateLessonRequest,
    UpdateLessonRequest,
)
from .validation import (
    MissingRequiredFieldsError,
    StartInPastError,
    check_create_requirements,
    check_publishable,
    normalize_modality,
    resolve_schedule,
)


if TYPE_CHECKING:
    from cursos.agenda.repository import CalendarEntryRepository
    from cursos.cohorts.repository import CohortRepository, EnrollmentRepository
    from cursos.conferencing.service import ConferencingService
    from cursos.notifications.service import NotificationService

    from .repository import LessonRepository


logger = get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class LessonNotFoundError(NotFoundError):
    def __init__(self, message: str = "Aula nao encontrada"):
        super().__init__(message, "lesson_not_found")


class ClassNotFoundError(NotFoundError):
    def __init__(self, message: str = "Turma nao encontrada"):
        super().__init__(message, "class_not_found")


class ClassModuleNotFoundError(NotFoundError):
    def __init__(self, message: str = "Modulo nao encontrado para a turma informada"):
        super().__init__(message, "module_not_found")


class EnrollmentNotFoundError(NotFoundError):
    def __init__(self, message: str = "Inscricao nao encontrada"):
        super().__init__(message, "enrollment_not_found")


class LessonPermissionError(ForbiddenError):
    def __init__(
        self,
        message: str = "Voce nao tem permissao para alterar esta aula",
        code: str = "lesson_forbidden",
    ):
        super().__init__(message, code)


class OutsideClassWindowError(ValidationError):
    def __init__(self, message: str = "A aula deve estar dentro do periodo da turma"):
        super().__init__(message, "outside_class_window")


class LessonInProgressError(ConflictError):
    def __init__(self, message: str = "Aula em andamento nao pode ser alterada"):
        super().__init__(message, "lesson_in_progress")


class InvalidStatusTransitionError(ConflictError):
    def __init__(self, current: LessonStatus, requested: LessonStatus):
        super().__init__(
            f"Transicao de status invalida: {current.value} -> {requested.value}",
            "invalid_status_transition",
            current=current.value,
            requested=requested.value,
        )


class CannotUnpublishError(ConflictError):
    def __init__(self, message: str = "Aula nao pode ser despublicada"):
        super().__init__(message, "cannot_unpublish")


class LessonAlreadyOccurredError(ConflictError):
    def __init__(self, message: str = "Aula ja realizada nao pode ser cancelada"):
        super().__init__(message, "lesson_already_occurred")


class InsufficientNoticeError(ConflictError):
    def __init__(self, days_remaining: int, notice_days: int):
        super().__init__(
            f"Aulas so podem ser canceladas com {notice_days} dias de antecedencia",
            "insufficient_notice",
            days_remaining=days_remaining,
        )


# Transitions reachable through update(); CANCELLED only through delete()
ALLOWED_TRANSITIONS: dict[LessonStatus, frozenset[LessonStatus]] = {
    LessonStatus.DRAFT: frozenset({LessonStatus.PUBLISHED}),
    LessonStatus.PUBLISHED: frozenset({LessonStatus.DRAFT, LessonStatus.IN_PROGRESS}),
    LessonStatus.IN_PROGRESS: frozenset({LessonStatus.COMPLETED}),
    LessonStatus.COMPLETED: frozenset(),
    LessonStatus.CANCELLED: frozenset(),
}

# Fields whose change must reach the calendar event and agenda entry
_SCHEDULE_VISIBLE_FIELDS = ("title", "description", "starts_at", "ends_at")


# ==============================================================================
# Lesson Service
# ==============================================================================


class LessonService:
    """Lesson lifecycle engine."""

    def __init__(
        self,
        lessons: "LessonRepository",
        cohorts: "CohortRepository",
        enrollments: "EnrollmentRepository",
        calendar_entries: "CalendarEntryRepository",
        conferencing: "ConferencingService",
        notifications: "NotificationService",
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.lessons = lessons
        self.cohorts = cohorts
        self.enrollments = enrollments
        self.calendar_entries = calendar_entries
        self.conferencing = conferencing
        self.notifications = notifications
        self.settings = settings or get_settings()
        self.clock = clock

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get(self, lesson_id: UUID) -> Lesson:
        lesson = await self.lessons.get(lesson_id)
        if lesson is None:
            raise LessonNotFoundError
        return lesson

    async def get_history(self, lesson_id: UUID, actor: Actor) -> list[HistoryEntry]:
        """Audit trail of a lesson, oldest first. Staff only."""
        if not is_staff(actor.role):
            raise LessonPermissionError(
                "Apenas a equipe pode consultar o historico da aula"
            )
        await self.get(lesson_id)
        return await self.lessons.list_history(lesson_id)

    async def _get_active(self, lesson_id: UUID) -> Lesson:
        lesson = await self.get(lesson_id)
        if lesson.is_deleted:
            raise LessonNotFoundError
        return lesson

    async def _get_class(self, class_id: UUID, course_id: UUID | None = None) -> Cohort:
        cohort = await self.cohorts.get(class_id)
        if cohort is None:
            raise ClassNotFoundError
        if course_id is not None and cohort.course_id != course_id:
            raise ClassNotFoundError("Turma nao encontrada para o curso informado")
        return cohort

    async def _check_module(self, module_id: UUID, cohort: Cohort | None) -> None:
        module = await self.cohorts.get_module(module_id)
        if module is None or (cohort is not None and module.class_id != cohort.class_id):
            raise ClassModuleNotFoundError

    def _check_class_window(self, cohort: Cohort | None, lesson: Lesson) -> None:
        if cohort is None:
            return
        for instant in (lesson.starts_at, lesson.ends_at):
            if instant is not None and not cohort.contains(instant):
                raise OutsideClassWindowError

    def _check_instructor_owns_class(self, actor: Actor, cohort: Cohort) -> None:
        if actor.role == UserRole.INSTRUCTOR and cohort.instructor_id != actor.user_id:
            raise LessonPermissionError(
                "Instrutores so podem gerenciar aulas das proprias turmas"
            )

    # ==========================================================================
    # Create
    # ==========================================================================

    async def create(self, data: CreateLessonRequest, actor: Actor) -> Lesson:
        """Create a lesson. The result is always a DRAFT."""
        if not can_author_lessons(actor.role):
            raise LessonPermissionError("Voce nao tem permissao para criar aulas")

        cohort: Cohort | None = None
        if data.class_id is not None:
            cohort = await self._get_class(data.class_id, data.course_id)
            self._check_instructor_owns_class(actor, cohort)
        elif data.course_id is None:
            raise MissingRequiredFieldsError(
                ["course_id"], "Aulas sem turma precisam de um curso"
            )

        if data.module_id is not None:
            await self._check_module(data.module_id, cohort)

        lesson_id = uuid4()
        modality = normalize_modality(data.modality, cohort, lesson_id)
        if modality is None:
            raise MissingRequiredFieldsError(["modality"])
        check_create_requirements(modality, data.video_url, data.scheduled_date)

        schedule = resolve_schedule(
            data.scheduled_date,
            data.start_time,
            data.end_time,
            data.duration_minutes,
            self.settings.schedule_timezone,
        )
        now = self.clock()
        if modality == Modality.LIVE and schedule.starts_at and schedule.starts_at <= now:
            raise StartInPastError

        if data.status is not None and data.status != LessonStatus.DRAFT:
            logger.info(
                "lesson_requested_status_ignored",
                lesson_id=str(lesson_id),
                requested=data.status.value,
            )

        instructor_id = data.instructor_id
        if instructor_id is None and cohort is not None:
            instructor_id = cohort.instructor_id
        if instructor_id is None and actor.role == UserRole.INSTRUCTOR:
            instructor_id = actor.user_id

        lesson = Lesson(
            lesson_id=lesson_id,
            title=data.title.strip(),
            description=data.description,
            modality=modality,
            status=LessonStatus.DRAFT,
            required=data.required,
            class_id=cohort.class_id if cohort else None,
            module_id=data.module_id,
            course_id=cohort.course_id if cohort else data.course_id,
            instructor_id=instructor_id,
            created_by=actor.user_id,
            starts_at=schedule.starts_at,
            ends_at=schedule.ends_at,
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            duration_minutes=schedule.duration_minutes,
            record=data.record,
            video_url=data.video_url,
            room=data.room,
            created_at=now,
            updated_at=now,
        )
        self._check_class_window(cohort, lesson)
        lesson.display_order, lesson.added_after_start = await self._next_position(
            lesson, cohort
        )

        await self.lessons.save_with_history(
            lesson,
            create_history_entry(
                lesson, actor.user_id, HistoryAction.CREATED, {"after": lesson.to_dict()}
            ),
        )
        logger.info(
            "lesson_created",
            lesson_id=str(lesson.lesson_id),
            class_id=str(lesson.class_id) if lesson.class_id else None,
            modality=lesson.modality.value,
        )

        actions: list[PostCommitAction] = []
        if lesson.is_conferencing_eligible and lesson.instructor_id:
            actions.append(
                PostCommitAction(
                    "sync_conferencing_event", lambda: self._sync_conferencing(lesson)
                )
            )
        await run_post_commit(actions, lesson_id=str(lesson.lesson_id))
        return lesson

    async def _next_position(
        self, lesson: Lesson, cohort: Cohort | None
    ) -> tuple[int, bool]:
        """Display order after the last lesson of the same module."""
        if cohort is None:
            return 0, False
        siblings = [
            other
            for other in await self.lessons.list_for_class(cohort.class_id)
            if not other.is_deleted and other.module_id == lesson.module_id
        ]
        last_order = max((other.display_order for other in siblings), default=0)
        return last_order + 1, cohort.status == ClassStatus.IN_PROGRESS

    # ==========================================================================
    # Update / publish / unpublish
    # ==========================================================================

    async def update(
        self,
        lesson_id: UUID,
        data: UpdateLessonRequest,
        actor: Actor,
        partial: bool = False,
    ) -> Lesson:
        """Apply an update to a lesson.

        Warning: ``partial`` defaults to False, which is a whole-resource
        update. The class, instructor and module references that are not sent
        are CLEARED, so a body carrying only ``status`` detaches the lesson
        and then fails the publish checks. Pass ``partial=True`` (as
        ``set_publication`` does) to leave omitted references untouched.
        Every other field only changes when it was sent.
        """
        lesson = await self._get_active(lesson_id)
        self._check_can_edit(lesson, actor)

        sent = data.model_fields_set
        now = self.clock()
        updated = replace(lesson)

        for reference in REFERENCE_FIELDS:
            if reference in sent:
                setattr(updated, reference, getattr(data, reference))
            elif not partial:
                setattr(updated, reference, None)

        cohort: Cohort | None = None
        if updated.class_id is not None:
            cohort = await self._get_class(updated.class_id)
            if updated.class_id != lesson.class_id:
                self._check_instructor_owns_class(actor, cohort)
                updated.course_id = cohort.course_id

        if updated.module_id is not None and updated.module_id != lesson.module_id:
            await self._check_module(updated.module_id, cohort)

        if "modality" in sent or updated.class_id != lesson.class_id:
            requested = data.modality if "modality" in sent else None
            updated.modality = normalize_modality(
                requested or lesson.modality, cohort, lesson.lesson_id
            )

        for name in ("title", "description", "required", "record", "video_url", "room"):
            if name in sent:
                value = getattr(data, name)
                if value is None and name in ("title", "required", "record"):
                    raise MissingRequiredFieldsError([name])
                setattr(updated, name, value)
        if "course_id" in sent and updated.class_id is None:
            updated.course_id = data.course_id

        if sent & SCHEDULE_FIELDS:
            self._apply_schedule(updated, data, sent)
        self._check_class_window(cohort, updated)

        requested_status = data.status if "status" in sent and data.status else None
        if requested_status is not None and requested_status != lesson.status:
            if requested_status not in ALLOWED_TRANSITIONS[lesson.status]:
                raise InvalidStatusTransitionError(lesson.status, requested_status)
            updated.status = requested_status

        publishing = (
            lesson.status != LessonStatus.PUBLISHED
            and updated.status == LessonStatus.PUBLISHED
        )
        unpublishing = (
            lesson.status == LessonStatus.PUBLISHED
            and updated.status == LessonStatus.DRAFT
        )
        if publishing:
            check_publishable(updated, now)
        if unpublishing and lesson.has_started(now):
            raise CannotUnpublishError("Aula que ja comecou nao pode ser despublicada")

        updated.updated_at = now
        changes = _diff(lesson, updated)
        action = (
            HistoryAction.STATUS_CHANGED
            if updated.status != lesson.status
            else HistoryAction.EDITED
        )
        await self.lessons.save_with_history(
            updated, create_history_entry(updated, actor.user_id, action, changes)
        )
        logger.info(
            "lesson_updated",
            lesson_id=str(lesson_id),
            action=action.value,
            status=updated.status.value,
            fields=sorted(changes),
        )

        if publishing:
            actions = self._publish_actions(updated, actor)
        elif unpublishing:
            actions = self._unpublish_actions(lesson, updated)
        else:
            actions = self._edit_actions(lesson, updated, changes, actor)
        await run_post_commit(actions, lesson_id=str(lesson_id))
        return updated

    async def set_publication(
        self, lesson_id: UUID, publish: bool, actor: Actor
    ) -> Lesson:
        """Publish or unpublish, keeping every reference as is."""
        lesson = await self._get_active(lesson_id)
        target = LessonStatus.PUBLISHED if publish else LessonStatus.DRAFT
        if lesson.status == target:
            return lesson
        return await self.update(
            lesson_id, UpdateLessonRequest(status=target), actor, partial=True
        )

    def _check_can_edit(self, lesson: Lesson, actor: Actor) -> None:
        if not is_staff(actor.role) and not (
            actor.role == UserRole.INSTRUCTOR and lesson.created_by == actor.user_id
        ):
            raise LessonPermissionError
        if lesson.status == LessonStatus.IN_PROGRESS:
            raise LessonInProgressError
        if lesson.status == LessonStatus.CANCELLED:
            raise ConflictError("Aula cancelada nao pode ser alterada", "lesson_cancelled")
        if lesson.status == LessonStatus.COMPLETED and not is_top_admin(actor.role):
            raise LessonPermissionError(
                "Apenas administradores podem editar aulas realizadas",
                "lesson_completed",
            )

    def _apply_schedule(
        self, lesson: Lesson, data: UpdateLessonRequest, sent: set[str]
    ) -> None:
        tz_name = self.settings.schedule_timezone
        day: date | None
        if "scheduled_date" in sent:
            day = data.scheduled_date
        elif lesson.starts_at is not None:
            day = lesson.starts_at.astimezone(ZoneInfo(tz_name)).date()
        else:
            day = None

        start_time = data.start_time if "start_time" in sent else lesson.start_time
        end_time = data.end_time if "end_time" in sent else lesson.end_time
        duration = (
            data.duration_minutes if "duration_minutes" in sent else lesson.duration_minutes
        )
        # A new duration without a new end time recomputes the end
        if "duration_minutes" in sent and "end_time" not in sent:
            end_time = None

        schedule = resolve_schedule(day, start_time, end_time, duration, tz_name)
        lesson.starts_at = schedule.starts_at
        lesson.ends_at = schedule.ends_at
        lesson.start_time = schedule.start_time
        lesson.end_time = schedule.end_time
        lesson.duration_minutes = schedule.duration_minutes

    # ==========================================================================
    # Post-commit actions
    # ==========================================================================

    def _publish_actions(self, lesson: Lesson, actor: Actor) -> list[PostCommitAction]:
        if not (lesson.class_id and lesson.starts_at and lesson.start_time):
            return []

        actions: list[PostCommitAction] = []
        if lesson.is_conferencing_eligible and lesson.instructor_id:
            actions.append(
                PostCommitAction(
                    "sync_conferencing_event", lambda: self._sync_conferencing(lesson)
                )
            )
        elif lesson.is_conferencing_eligible:
            logger.info(
                "lesson_conferencing_deferred",
                lesson_id=str(lesson.lesson_id),
                reason="no_instructor",
            )
        actions.append(
            PostCommitAction(
                "write_calendar_entry", lambda: self._write_calendar_entry(lesson, actor)
            )
        )
        actions.append(
            PostCommitAction(
                "notify_new_lesson",
                lambda: self.notifications.notify_enrollments(
                    lesson.class_id, _new_lesson_notice(lesson, self.settings)
                ),
            )
        )
        return actions

    def _unpublish_actions(
        self, before: Lesson, lesson: Lesson
    ) -> list[PostCommitAction]:
        actions: list[PostCommitAction] = []
        if before.calendar_event_id and before.instructor_id:
            actions.append(
                PostCommitAction(
                    "delete_conferencing_event",
                    lambda: self._remove_conferencing(lesson, before),
                )
            )
        actions.append(
            PostCommitAction(
                "delete_calendar_entries",
                lambda: self.calendar_entries.delete_for_lesson(lesson.lesson_id),
            )
        )
        if lesson.class_id:
            actions.append(
                PostCommitAction(
                    "notify_lesson_unpublished",
                    lambda: self.notifications.notify_enrollments(
                        lesson.class_id,
                        NotificationDraft(
                            type=NotificationType.LESSON_UNPUBLISHED,
                            title="Aula removida da agenda",
                            message=f'A aula "{lesson.title}" foi despublicada.',
                            action_link=f"/turmas/{lesson.class_id}",
                            payload={"lesson_id": str(lesson.lesson_id)},
                        ),
                    ),
                )
            )
        return actions

    def _edit_actions(
        self, before: Lesson, lesson: Lesson, changes: dict[str, Any], actor: Actor
    ) -> list[PostCommitAction]:
        """Keep the calendar in sync when a published lesson changes."""
        if lesson.status != LessonStatus.PUBLISHED:
            return []

        actions: list[PostCommitAction] = []
        visible_change = any(name in changes for name in _SCHEDULE_VISIBLE_FIELDS)
        gained_instructor = before.instructor_id is None and lesson.instructor_id
        class_changed = "class_id" in changes
        if lesson.is_conferencing_eligible and lesson.instructor_id and (
            visible_change
            or gained_instructor
            or class_changed
            or lesson.calendar_event_id is None
        ):
            actions.append(
                PostCommitAction(
                    "sync_conferencing_event",
                    lambda: self._sync_conferencing(lesson, refresh_attendees=class_changed),
                )
            )
        if visible_change and lesson.class_id and lesson.starts_at:
            actions.append(
                PostCommitAction(
                    "write_calendar_entry",
                    lambda: self._write_calendar_entry(lesson, actor),
                )
            )
        return actions

    async def _sync_conferencing(
        self, lesson: Lesson, refresh_attendees: bool = False
    ) -> None:
        """Patch the existing event or create one with a Meet link.

        ``refresh_attendees`` replaces the guest list with the current class.
        """
        if lesson.calendar_event_id:
            attendees = None
            if refresh_attendees:
                attendees = await self.conferencing.resolve_attendees(lesson.class_id)
            await self.conferencing.update_event(
                lesson.calendar_event_id,
                lesson.instructor_id,
                EventPatch(
                    title=lesson.title,
                    description=lesson.description,
                    start=lesson.starts_at,
                    end=lesson.ends_at,
                    attendee_emails=attendees,
                ),
            )
            return

        event = await self.conferencing.create_event(
            title=lesson.title,
            description=lesson.description,
            start=lesson.starts_at,
            end=lesson.ends_at,
            organizer_id=lesson.instructor_id,
            attendee_emails=await self.conferencing.resolve_attendees(lesson.class_id),
        )
        lesson.meet_url = event.join_url
        lesson.calendar_event_id = event.event_id
        await self.lessons.set_conferencing(
            lesson.lesson_id, event.join_url, event.event_id, self.clock()
        )

    async def _remove_conferencing(self, lesson: Lesson, before: Lesson) -> None:
        await self.conferencing.delete_event(before.calendar_event_id, before.instructor_id)
        lesson.meet_url = None
        lesson.calendar_event_id = None
        await self.lessons.set_conferencing(lesson.lesson_id, None, None, self.clock())

    async def _write_calendar_entry(self, lesson: Lesson, actor: Actor) -> None:
        await self.calendar_entries.replace_for_lesson(
            create_calendar_entry(
                lesson_id=lesson.lesson_id,
                class_id=lesson.class_id,
                title=lesson.title,
                starts_at=lesson.starts_at,
                ends_at=lesson.ends_at,
                created_by=actor.user_id,
            )
        )

    # ==========================================================================
    # Delete
    # ==========================================================================

    async def delete(self, lesson_id: UUID, actor: Actor) -> Lesson:
        """Cancel a lesson (soft delete)."""
        if not is_staff(actor.role):
            raise LessonPermissionError("Apenas a equipe pode cancelar aulas")

        lesson = await self.get(lesson_id)
        if lesson.is_deleted or lesson.status == LessonStatus.CANCELLED:
            raise ConflictError("Aula ja cancelada", "lesson_cancelled")
        if lesson.status == LessonStatus.COMPLETED:
            raise LessonAlreadyOccurredError

        now = self.clock()
        if lesson.has_started(now):
            raise LessonAlreadyOccurredError
        if lesson.starts_at is not None:
            notice = timedelta(days=self.settings.delete_notice_days)
            remaining = lesson.starts_at - now
            if remaining < notice:
                raise InsufficientNoticeError(
                    days_remaining=math.floor(remaining / timedelta(days=1)),
                    notice_days=self.settings.delete_notice_days,
                )
        if lesson.status == LessonStatus.IN_PROGRESS:
            raise LessonInProgressError

        if (
            lesson.required
            and not is_senior_staff(actor.role)
            and await self.lessons.count_completed_progress(lesson_id) > 0
        ):
            raise LessonPermissionError(
                "Aula obrigatoria com progresso concluido so pode ser cancelada "
                "por administradores ou moderadores",
                "requires_senior_role",
            )

        cancelled = replace(
            lesson,
            status=LessonStatus.CANCELLED,
            deleted_at=now,
            deleted_by=actor.user_id,
            meet_url=None,
            calendar_event_id=None,
            video_url=None,
            updated_at=now,
        )
        await self.lessons.save_with_history(
            cancelled,
            create_history_entry(
                cancelled,
                actor.user_id,
                HistoryAction.CANCELLED,
                {
                    "status": {
                        "before": lesson.status.value,
                        "after": LessonStatus.CANCELLED.value,
                    }
                },
            ),
        )
        logger.info("lesson_cancelled", lesson_id=str(lesson_id), actor_id=str(actor.user_id))

        actions = [
            PostCommitAction(
                "delete_materials", lambda: self.lessons.delete_materials(lesson_id)
            ),
            PostCommitAction(
                "delete_calendar_entries",
                lambda: self.calendar_entries.delete_for_lesson(lesson_id),
            ),
        ]
        if lesson.calendar_event_id and lesson.instructor_id:
            actions.append(
                PostCommitAction(
                    "delete_conferencing_event",
                    lambda: self.conferencing.delete_event(
                        lesson.calendar_event_id, lesson.instructor_id
                    ),
                )
            )
        if lesson.class_id:
            actions.append(
                PostCommitAction(
                    "notify_lesson_cancelled",
                    lambda: self._notify_cancellation(cancelled),
                )
            )
        await run_post_commit(actions, lesson_id=str(lesson_id))
        return cancelled

    async def _notify_cancellation(self, lesson: Lesson) -> None:
        cohort = await self.cohorts.get(lesson.class_id)
        if cohort is None or cohort.status != ClassStatus.IN_PROGRESS:
            return
        await self.notifications.notify_enrollments(
            lesson.class_id,
            NotificationDraft(
                type=NotificationType.LESSON_CANCELLED,
                title="Aula cancelada",
                message=f'A aula "{lesson.title}" foi cancelada.',
                priority=(
                    NotificationPriority.URGENT
                    if lesson.required
                    else NotificationPriority.NORMAL
                ),
                action_link=f"/turmas/{lesson.class_id}",
                payload={"lesson_id": str(lesson.lesson_id)},
                dedup_event_id=str(lesson.lesson_id),
            ),
            escalate_email=lesson.required,
        )

    # ==========================================================================
    # Progress
    # ==========================================================================

    async def record_progress(
        self,
        lesson_id: UUID,
        enrollment_id: UUID,
        percentage: Decimal | float | int,
        seconds_watched: int,
        position: int,
        actor: Actor,
    ) -> ProgressRecord:
        """Upsert watch progress. 90% or more completes the lesson."""
        percent = Decimal(str(percentage))
        if not Decimal(0) <= percent <= Decimal(100):
            raise ValidationError(
                "Percentual deve estar entre 0 e 100", "invalid_percentage"
            )
        if seconds_watched < 0 or position < 0:
            raise ValidationError("Tempo assistido invalido", "invalid_progress")

        lesson = await self._get_active(lesson_id)
        await self._get_enrollment(enrollment_id, lesson, actor)

        now = self.clock()
        record = await self.lessons.get_progress(lesson_id, enrollment_id)
        if record is None:
            record = ProgressRecord(
                lesson_id=lesson_id, enrollment_id=enrollment_id, started_at=now
            )

        record.percentage = percent
        record.seconds_watched = seconds_watched
        record.last_position = position
        record.updated_at = now
        if percent >= COMPLETION_THRESHOLD and not record.completed:
            record.completed = True
            record.completed_at = now
        if record.completed:
            record.percentage = Decimal(100)

        await self.lessons.save_progress(record)
        logger.info(
            "lesson_progress_recorded",
            lesson_id=str(lesson_id),
            enrollment_id=str(enrollment_id),
            percentage=str(record.percentage),
            completed=record.completed,
        )
        return record

    async def get_progress(
        self, lesson_id: UUID, enrollment_id: UUID
    ) -> ProgressRecord | None:
        return await self.lessons.get_progress(lesson_id, enrollment_id)

    async def _get_enrollment(self, enrollment_id: UUID, lesson: Lesson, actor: Actor):
        enrollment = await self.enrollments.get(enrollment_id)
        if enrollment is None:
            raise EnrollmentNotFoundError
        if lesson.class_id is not None and enrollment.class_id != lesson.class_id:
            raise EnrollmentNotFoundError("Inscricao nao pertence a turma da aula")
        if actor.role == UserRole.STUDENT and enrollment.student_id != actor.user_id:
            raise LessonPermissionError(
                "Alunos so podem registrar o proprio progresso", "enrollment_forbidden"
            )
        return enrollment

    # ==========================================================================
    # Attendance
    # ==========================================================================

    async def record_attendance(
        self,
        lesson_id: UUID,
        enrollment_id: UUID,
        kind: AttendanceKind | str,
        actor: Actor,
    ) -> AttendanceRecord | None:
        """Register an entry, or annotate the latest entry on exit.

        An exit without an entry in the lookback window is a no-op and
        returns None.
        """
        try:
            kind = AttendanceKind(kind)
        except ValueError as e:
            raise ValidationError(
                "Tipo de presenca invalido", "invalid_attendance_kind"
            ) from e

        lesson = await self._get_active(lesson_id)
        if not lesson.modality.needs_conferencing:
            raise ValidationError(
                "Presenca so pode ser registrada em aulas ao vivo ou semipresenciais",
                "attendance_not_supported",
            )
        await self._get_enrollment(enrollment_id, lesson, actor)
        now = self.clock()

        if kind == AttendanceKind.ENTRY:
            if lesson.class_id is None:
                raise MissingRequiredFieldsError(["class_id"])
            record = AttendanceRecord(
                attendance_id=uuid4(),
                lesson_id=lesson_id,
                enrollment_id=enrollment_id,
                class_id=lesson.class_id,
                status=AttendanceStatus.PRESENT,
                entered_at=now,
            )
            await self.lessons.insert_attendance(record)
            logger.info(
                "attendance_entry_recorded",
                lesson_id=str(lesson_id),
                enrollment_id=str(enrollment_id),
            )
            return record

        since = now - timedelta(hours=self.settings.attendance_lookback_hours)
        record = await self.lessons.latest_attendance_since(lesson_id, enrollment_id, since)
        if record is None:
            logger.info(
                "attendance_exit_without_entry",
                lesson_id=str(lesson_id),
                enrollment_id=str(enrollment_id),
            )
            return None

        note = f"Saída registrada às {format_local_time(now, self.settings.schedule_timezone)}"
        record.notes = f"{record.notes}\n{note}" if record.notes else note
        record.exited_at = now
        await self.lessons.annotate_attendance(record)
        logger.info(
            "attendance_exit_recorded",
            lesson_id=str(lesson_id),
            enrollment_id=str(enrollment_id),
        )
        return record

    async def get_attendance(
        self, lesson_id: UUID, enrollment_id: UUID
    ) -> list[AttendanceRecord]:
        return await self.lessons.list_attendance(lesson_id, enrollment_id)


# ==============================================================================
# Helpers
# ==============================================================================


def _diff(before: Lesson, after: Lesson) -> dict[str, Any]:
    """Changed fields as {field: {"before": ..., "after": ...}}."""
    old, new = before.to_dict(), after.to_dict()
    return {
        name: {"before": old[name], "after": new[name]}
        for name in new
        if name != "updated_at" and old[name] != new[name]
    }


def _new_lesson_notice(lesson: Lesson, settings: Settings) -> NotificationDraft:
    when = lesson.starts_at.astimezone(ZoneInfo(settings.schedule_timezone))
    return NotificationDraft(
        type=NotificationType.NEW_LESSON,
        title="Nova aula disponivel",
        message=(
            f'A aula "{lesson.title}" foi agendada para '
            f"{when.strftime('%d/%m/%Y')} as {when.strftime('%H:%M')}."
        ),
        action_link=f"/turmas/{lesson.class_id}/aulas/{lesson.lesson_id}",
        payload={
            "lesson_id": str(lesson.lesson_id),
            "starts_at": lesson.starts_at.isoformat(),
        },
    )


__all__ = [
    "ALLOWED_TRANSITIONS",
    "CannotUnpublishError",
    "ClassModuleNotFoundError",
    "ClassNotFoundError",
    "EnrollmentNotFoundError",
    "InsufficientNoticeError",
    "InvalidStatusTransitionError",
    "LessonAlreadyOccurredError",
    "LessonInProgressError",
    "LessonNotFoundError",
    "LessonPermissionError",
    "LessonService",
    "OutsideClassWindowError",
]
