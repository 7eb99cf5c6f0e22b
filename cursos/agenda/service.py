"""Agenda aggregation.

Merges live lessons, exams, birthdays and class milestones into one
timeline scoped by the viewer's role. Read-only.
"""

from datetime import date, datetime, time
from typing import TYPE_CHECKING
from uuid import UUID
from zoneinfo import ZoneInfo

from cursos.auth.permissions import UserRole, is_staff, parse_role
from cursos.cohorts.models import Cohort
from cursos.config.settings import Settings, get_settings
from cursos.core.logging import get_logger
from cursos.lessons.models import Lesson, LessonStatus, modality_to_api

from .models import AgendaEvent, AgendaEventType


if TYPE_CHECKING:
    from cursos.auth.models import User
    from cursos.auth.repository import UserRepository
    from cursos.cohorts.repository import CohortRepository, EnrollmentRepository
    from cursos.exams.repository import ExamRepository
    from cursos.lessons.repository import LessonRepository


logger = get_logger(__name__)


VISIBLE_LESSON_STATUSES = frozenset({LessonStatus.PUBLISHED, LessonStatus.IN_PROGRESS})

# Roles left out of birthday views
_HIDDEN_FROM_SENIOR = frozenset(
    {UserRole.STUDENT, UserRole.STUDENT_CANDIDATE, UserRole.COMPANY}
)


class _Scope:
    """Classes and lessons a viewer may see. ``everything`` for staff."""

    def __init__(
        self,
        viewer_id: UUID,
        everything: bool = False,
        class_ids: set[UUID] | None = None,
        as_instructor: bool = False,
    ):
        self.viewer_id = viewer_id
        self.everything = everything
        self.class_ids = class_ids or set()
        self.as_instructor = as_instructor

    def allows_class(self, class_id: UUID | None) -> bool:
        return self.everything or (class_id is not None and class_id in self.class_ids)

    def allows_lesson(self, lesson: Lesson) -> bool:
        if self.everything or self.allows_class(lesson.class_id):
            return True
        return self.as_instructor and lesson.instructor_id == self.viewer_id


class AgendaService:
    """Role-scoped merged timeline."""

    def __init__(
        self,
        lessons: "LessonRepository",
        exams: "ExamRepository",
        cohorts: "CohortRepository",
        enrollments: "EnrollmentRepository",
        users: "UserRepository",
        settings: Settings | None = None,
    ):
        self.lessons = lessons
        self.exams = exams
        self.cohorts = cohorts
        self.enrollments = enrollments
        self.users = users
        self.settings = settings or get_settings()

    async def get_events(
        self,
        viewer_id: UUID,
        role: UserRole | str,
        range_start: datetime,
        range_end: datetime,
        types: set[AgendaEventType] | None = None,
    ) -> list[AgendaEvent]:
        """Events in ``[range_start, range_end]`` visible to the viewer.

        Args:
            viewer_id: The viewing user.
            role: The viewer's role.
            range_start: Inclusive start of the range.
            range_end: Inclusive end of the range.
            types: Optional filter on event types.

        Returns:
            Events sorted ascending by start.
        """
        if range_end < range_start:
            msg = "range_end must not be before range_start"
            raise ValueError(msg)

        viewer_role = parse_role(role)
        wanted = set(types) if types else set(AgendaEventType)
        scope = await self._resolve_scope(viewer_id, viewer_role)

        events: list[AgendaEvent] = []
        if AgendaEventType.LESSON in wanted:
            events.extend(await self._lesson_events(scope, range_start, range_end))
        if AgendaEventType.EXAM in wanted:
            events.extend(await self._exam_events(scope, range_start, range_end))
        if AgendaEventType.BIRTHDAY in wanted:
            events.extend(
                await self._birthday_events(viewer_id, viewer_role, range_start, range_end)
            )
        if wanted & {AgendaEventType.CLASS_START, AgendaEventType.CLASS_END}:
            events.extend(
                await self._class_events(scope, wanted, range_start, range_end)
            )

        events.sort(key=lambda event: event.starts_at)
        logger.debug(
            "agenda_events_resolved",
            viewer_id=str(viewer_id),
            role=viewer_role.value if viewer_role else None,
            count=len(events),
        )
        return events

    async def _resolve_scope(self, viewer_id: UUID, role: UserRole | None) -> _Scope:
        if is_staff(role):
            return _Scope(viewer_id, everything=True)
        if role == UserRole.INSTRUCTOR:
            classes = await self.cohorts.list_for_instructor(viewer_id)
            return _Scope(
                viewer_id, class_ids={c.class_id for c in classes}, as_instructor=True
            )
        if role == UserRole.STUDENT:
            enrollments = await self.enrollments.list_for_student(viewer_id)
            return _Scope(
                viewer_id, class_ids={e.class_id for e in enrollments if e.is_active}
            )
        return _Scope(viewer_id)

    # ==========================================================================
    # Sources
    # ==========================================================================

    async def _lesson_events(
        self, scope: _Scope, start: datetime, end: datetime
    ) -> list[AgendaEvent]:
        if not scope.everything and not scope.class_ids and not scope.as_instructor:
            return []
        events = []
        for lesson in await self.lessons.list_starting_between(start, end):
            if (
                lesson.is_deleted
                or lesson.status not in VISIBLE_LESSON_STATUSES
                or not lesson.modality.needs_conferencing
                or not scope.allows_lesson(lesson)
            ):
                continue
            events.append(
                AgendaEvent(
                    id=f"aula-{lesson.lesson_id}",
                    type=AgendaEventType.LESSON,
                    title=lesson.title,
                    starts_at=lesson.starts_at,
                    ends_at=lesson.ends_at,
                    class_id=lesson.class_id,
                    details={
                        "lesson_id": str(lesson.lesson_id),
                        "modality": modality_to_api(lesson.modality),
                        "status": lesson.status.value,
                        "meet_url": lesson.meet_url,
                        "room": lesson.room,
                    },
                )
            )
        return events

    async def _exam_events(
        self, scope: _Scope, start: datetime, end: datetime
    ) -> list[AgendaEvent]:
        if not scope.everything and not scope.class_ids:
            return []
        return [
            AgendaEvent(
                id=f"prova-{exam.exam_id}",
                type=AgendaEventType.EXAM,
                title=exam.title,
                starts_at=exam.scheduled_at,
                class_id=exam.class_id,
                details={"exam_id": str(exam.exam_id)},
            )
            for exam in await self.exams.list_active_between(start, end)
            if exam.scheduled_at is not None and scope.allows_class(exam.class_id)
        ]

    async def _class_events(
        self,
        scope: _Scope,
        wanted: set[AgendaEventType],
        start: datetime,
        end: datetime,
    ) -> list[AgendaEvent]:
        if scope.everything:
            cohorts = await self.cohorts.list_all()
        elif scope.class_ids:
            cohorts = list((await self.cohorts.get_many(list(scope.class_ids))).values())
        else:
            return []

        events = []
        for cohort in cohorts:
            if AgendaEventType.CLASS_START in wanted and _within(cohort.starts_at, start, end):
                events.append(_milestone(cohort, AgendaEventType.CLASS_START))
            if AgendaEventType.CLASS_END in wanted and _within(cohort.ends_at, start, end):
                events.append(_milestone(cohort, AgendaEventType.CLASS_END))
        return events

    async def _birthday_events(
        self,
        viewer_id: UUID,
        role: UserRole | None,
        start: datetime,
        end: datetime,
    ) -> list[AgendaEvent]:
        if role is None or role in _HIDDEN_FROM_SENIOR:
            return []

        tz = ZoneInfo(self.settings.schedule_timezone)
        first_day = start.astimezone(tz).date()
        last_day = end.astimezone(tz).date()

        events = []
        for user in await self.users.list_with_birth_date():
            if not _can_see_birthday(viewer_id, role, user):
                continue
            for year in range(first_day.year, last_day.year + 1):
                day = birthday_in_year(user.birth_date, year)
                if first_day <= day <= last_day:
                    events.append(
                        AgendaEvent(
                            id=f"aniversario-{user.user_id}-{year}",
                            type=AgendaEventType.BIRTHDAY,
                            title=f"Aniversario de {user.name}",
                            starts_at=datetime.combine(day, time(0, 0), tzinfo=tz),
                            details={"user_id": str(user.user_id)},
                        )
                    )
        return events


# ==============================================================================
# Helpers
# ==============================================================================


def birthday_in_year(birth_date: date, year: int) -> date:
    """The birthday's date in a given year (Feb 29 falls on Feb 28)."""
    try:
        return birth_date.replace(year=year)
    except ValueError:
        return date(year, 2, 28)


def _can_see_birthday(viewer_id: UUID, role: UserRole, user: "User") -> bool:
    if role in (UserRole.ADMIN, UserRole.MODERATOR):
        return user.role not in _HIDDEN_FROM_SENIOR
    if role == UserRole.PEDAGOGICAL:
        return user.user_id == viewer_id or user.role == UserRole.INSTRUCTOR
    if role == UserRole.INSTRUCTOR:
        return user.user_id == viewer_id
    return False


def _within(instant: datetime | None, start: datetime, end: datetime) -> bool:
    return instant is not None and start <= instant <= end


def _milestone(cohort: Cohort, event_type: AgendaEventType) -> AgendaEvent:
    is_start = event_type == AgendaEventType.CLASS_START
    return AgendaEvent(
        id=f"turma-{'inicio' if is_start else 'fim'}-{cohort.class_id}",
        type=event_type,
        title=f"{'Inicio' if is_start else 'Fim'} da turma {cohort.name}",
        starts_at=cohort.starts_at if is_start else cohort.ends_at,
        class_id=cohort.class_id,
        details={"status": cohort.status.value},
    )
