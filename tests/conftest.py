"""Shared fixtures: in-memory repositories and fake external clients."""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from cursos.auth.models import Actor, User
from cursos.auth.permissions import UserRole
from cursos.cohorts.models import (
    ClassModule,
    ClassStatus,
    Cohort,
    Enrollment,
    EnrollmentStatus,
    InstructionalMethod,
)
from cursos.conferencing.models import ConferencingEvent, EventPatch
from cursos.conferencing.oauth import OAuthTokens
from cursos.config.settings import Settings
from cursos.core.crypto import TokenCipher
from cursos.exams.models import Exam
from cursos.lessons.service import LessonService
from cursos.notifications.service import NotificationService


# ==============================================================================
# Settings and clock
# ==============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="testing",
        scheduler_enabled=False,
        email_enabled=False,
        schedule_timezone="America/Sao_Paulo",
    )


@pytest.fixture
def now() -> datetime:
    """Fixed reference instant (a Monday, 12:00 UTC)."""
    return datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def cipher() -> TokenCipher:
    return TokenCipher("test-secret-for-token-encryption", "test-salt")


@pytest.fixture
def client() -> TestClient:
    """Test client without running the lifespan (no Cassandra/Redis)."""
    from cursos.main import create_app

    return TestClient(create_app())


# ==============================================================================
# In-memory repositories
# ==============================================================================


class FakeLessonRepository:
    def __init__(self):
        self.lessons = {}
        self.history = []
        self.progress = {}
        self.attendance = []
        self.deleted_materials = []
        self.fail_on_save = False

    async def get(self, lesson_id):
        lesson = self.lessons.get(lesson_id)
        return replace(lesson) if lesson else None

    async def save_with_history(self, lesson, entry):
        if self.fail_on_save:
            msg = "write failed"
            raise RuntimeError(msg)
        self.lessons[lesson.lesson_id] = replace(lesson)
        self.history.append(entry)

    async def set_conferencing(self, lesson_id, meet_url, event_id, updated_at):
        stored = self.lessons[lesson_id]
        stored.meet_url = meet_url
        stored.calendar_event_id = event_id
        stored.updated_at = updated_at

    async def list_for_class(self, class_id):
        return [replace(x) for x in self.lessons.values() if x.class_id == class_id]

    async def list_for_instructor(self, instructor_id):
        return [
            replace(x) for x in self.lessons.values() if x.instructor_id == instructor_id
        ]

    async def list_starting_between(self, start, end):
        return sorted(
            (
                replace(x)
                for x in self.lessons.values()
                if x.starts_at is not None and start <= x.starts_at <= end
            ),
            key=lambda x: x.starts_at,
        )

    async def list_history(self, lesson_id):
        return [entry for entry in self.history if entry.lesson_id == lesson_id]

    async def delete_materials(self, lesson_id):
        self.deleted_materials.append(lesson_id)

    async def get_progress(self, lesson_id, enrollment_id):
        record = self.progress.get((lesson_id, enrollment_id))
        return replace(record) if record else None

    async def save_progress(self, record):
        self.progress[(record.lesson_id, record.enrollment_id)] = replace(record)

    async def count_completed_progress(self, lesson_id):
        return sum(
            1
            for (stored_lesson, _), record in self.progress.items()
            if stored_lesson == lesson_id and record.completed
        )

    async def insert_attendance(self, record):
        self.attendance.append(replace(record))

    async def latest_attendance_since(self, lesson_id, enrollment_id, since):
        matches = [
            record
            for record in self.attendance
            if record.lesson_id == lesson_id
            and record.enrollment_id == enrollment_id
            and record.entered_at >= since
        ]
        if not matches:
            return None
        return replace(max(matches, key=lambda record: record.entered_at))

    async def list_attendance(self, lesson_id, enrollment_id):
        return [
            replace(record)
            for record in self.attendance
            if record.lesson_id == lesson_id and record.enrollment_id == enrollment_id
        ]

    async def annotate_attendance(self, record):
        for index, stored in enumerate(self.attendance):
            if stored.attendance_id == record.attendance_id:
                self.attendance[index] = replace(record)


class FakeCohortRepository:
    def __init__(self):
        self.cohorts = {}
        self.modules = {}

    def add(self, cohort: Cohort) -> Cohort:
        self.cohorts[cohort.class_id] = cohort
        return cohort

    def add_module(self, class_id: UUID, title: str = "Modulo 1") -> ClassModule:
        module = ClassModule(module_id=uuid4(), class_id=class_id, title=title)
        self.modules[module.module_id] = module
        return module

    async def get(self, class_id):
        return self.cohorts.get(class_id)

    async def get_many(self, class_ids):
        return {cid: self.cohorts[cid] for cid in class_ids if cid in self.cohorts}

    async def list_all(self):
        return list(self.cohorts.values())

    async def list_for_instructor(self, instructor_id):
        return [c for c in self.cohorts.values() if c.instructor_id == instructor_id]

    async def get_module(self, module_id):
        return self.modules.get(module_id)


class FakeEnrollmentRepository:
    def __init__(self):
        self.enrollments = {}

    def enroll(
        self,
        class_id: UUID,
        student_id: UUID | None = None,
        status: EnrollmentStatus = EnrollmentStatus.ENROLLED,
    ) -> Enrollment:
        enrollment = Enrollment(
            enrollment_id=uuid4(),
            class_id=class_id,
            student_id=student_id or uuid4(),
            status=status,
        )
        self.enrollments[enrollment.enrollment_id] = enrollment
        return enrollment

    async def get(self, enrollment_id):
        return self.enrollments.get(enrollment_id)

    async def list_active_for_class(self, class_id):
        return [
            e for e in self.enrollments.values() if e.class_id == class_id and e.is_active
        ]

    async def list_for_student(self, student_id):
        return [e for e in self.enrollments.values() if e.student_id == student_id]


class FakeUserRepository:
    def __init__(self):
        self.users = {}

    def add(self, name: str, role: UserRole, email: str | None = None, **kwargs) -> User:
        user = User(
            user_id=kwargs.pop("user_id", None) or uuid4(),
            name=name,
            email=email,
            role=role,
            **kwargs,
        )
        self.users[user.user_id] = user
        return user

    async def get(self, user_id):
        return self.users.get(user_id)

    async def get_many(self, user_ids):
        return {uid: self.users[uid] for uid in user_ids if uid in self.users}

    async def list_with_birth_date(self):
        return [u for u in self.users.values() if u.birth_date is not None]


class FakeExamRepository:
    def __init__(self):
        self.exams = []

    def add(self, class_id, scheduled_at, title="Prova final", active=True) -> Exam:
        exam = Exam(
            exam_id=uuid4(),
            class_id=class_id,
            title=title,
            active=active,
            scheduled_at=scheduled_at,
        )
        self.exams.append(exam)
        return exam

    async def list_active_between(self, start, end):
        return sorted(
            (
                exam
                for exam in self.exams
                if exam.active
                and exam.scheduled_at is not None
                and start <= exam.scheduled_at <= end
            ),
            key=lambda exam: exam.scheduled_at,
        )


class FakeCalendarEntryRepository:
    def __init__(self):
        self.entries = {}

    async def replace_for_lesson(self, entry):
        self.entries[entry.lesson_id] = [entry]

    async def list_for_lesson(self, lesson_id):
        return list(self.entries.get(lesson_id, []))

    async def delete_for_lesson(self, lesson_id):
        self.entries.pop(lesson_id, None)


class FakeNotificationRepository:
    def __init__(self):
        self.markers = set()
        self.notifications = []
        self.fail_for: set[UUID] = set()

    async def claim_marker(self, notification_type, event_id, user_id):
        key = (notification_type, event_id, user_id)
        if key in self.markers:
            return False
        self.markers.add(key)
        return True

    async def release_marker(self, notification_type, event_id, user_id):
        self.markers.discard((notification_type, event_id, user_id))

    async def insert(self, notification):
        if notification.user_id in self.fail_for:
            msg = "insert failed"
            raise RuntimeError(msg)
        self.notifications.append(notification)

    async def list_for_user(self, user_id, limit=50):
        return [n for n in self.notifications if n.user_id == user_id][:limit]

    def of_type(self, notification_type):
        return [n for n in self.notifications if n.type == notification_type]


class FakeCredentialRepository:
    def __init__(self):
        self.credentials = {}

    async def get(self, organizer_id):
        credential = self.credentials.get(organizer_id)
        return replace(credential) if credential else None

    async def save(self, credential):
        self.credentials[credential.organizer_id] = replace(credential)

    async def delete(self, organizer_id):
        self.credentials.pop(organizer_id, None)


# ==============================================================================
# Fake external clients
# ==============================================================================


class FakeCalendarClient:
    """Records Calendar API calls made through GoogleCalendarClient's interface."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.inserted = []
        self.patched = []
        self.deleted = []

    async def insert_event(self, body):
        if self.fail:
            msg = "calendar unavailable"
            raise RuntimeError(msg)
        self.inserted.append(body)
        event_id = f"evt{len(self.inserted)}"
        return {
            "id": event_id,
            "hangoutLink": f"https://meet.google.com/{event_id}",
        }

    async def patch_event(self, event_id, body):
        self.patched.append((event_id, body))
        return {"id": event_id}

    async def delete_event(self, event_id):
        self.deleted.append(event_id)


class FakeOAuthClient:
    def __init__(self):
        self.exchanged = []
        self.refreshed = []

    def authorization_url(self, state):
        return f"https://accounts.google.com/o/oauth2/v2/auth?state={state}"

    async def exchange_code(self, code):
        self.exchanged.append(code)
        return OAuthTokens(
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        )

    async def refresh(self, refresh_token):
        self.refreshed.append(refresh_token)
        return OAuthTokens(
            access_token="access-refreshed",
            refresh_token=refresh_token,
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        )


class FakeConferencingService:
    """Stands in for ConferencingService inside the lesson engine."""

    def __init__(self):
        self.created = []
        self.updated = []
        self.deleted = []
        self.fail = False

    async def create_event(
        self, title, description, start, end, organizer_id, attendee_emails
    ):
        if self.fail:
            msg = "Google Calendar nao conectado"
            raise RuntimeError(msg)
        self.created.append(
            {
                "title": title,
                "start": start,
                "end": end,
                "organizer_id": organizer_id,
                "attendees": attendee_emails,
            }
        )
        event_id = f"evt{len(self.created)}"
        return ConferencingEvent(
            event_id=event_id, join_url=f"https://meet.google.com/{event_id}"
        )

    async def update_event(self, event_id, organizer_id, patch: EventPatch):
        self.updated.append((event_id, organizer_id, patch))

    async def delete_event(self, event_id, organizer_id):
        self.deleted.append((event_id, organizer_id))

    async def resolve_attendees(self, class_id):
        return []


# ==============================================================================
# Wired fixtures
# ==============================================================================


@pytest.fixture
def lesson_repo() -> FakeLessonRepository:
    return FakeLessonRepository()


@pytest.fixture
def cohort_repo() -> FakeCohortRepository:
    return FakeCohortRepository()


@pytest.fixture
def enrollment_repo() -> FakeEnrollmentRepository:
    return FakeEnrollmentRepository()


@pytest.fixture
def user_repo() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture
def exam_repo() -> FakeExamRepository:
    return FakeExamRepository()


@pytest.fixture
def calendar_entry_repo() -> FakeCalendarEntryRepository:
    return FakeCalendarEntryRepository()


@pytest.fixture
def notification_repo() -> FakeNotificationRepository:
    return FakeNotificationRepository()


@pytest.fixture
def credential_repo() -> FakeCredentialRepository:
    return FakeCredentialRepository()


@pytest.fixture
def fake_conferencing() -> FakeConferencingService:
    return FakeConferencingService()


@pytest.fixture
def calendar_client() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture
def oauth_client() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture
def notification_service(
    notification_repo, enrollment_repo, user_repo, settings
) -> NotificationService:
    return NotificationService(
        notification_repo, enrollment_repo, user_repo, settings=settings
    )


@pytest.fixture
def lesson_service(
    lesson_repo,
    cohort_repo,
    enrollment_repo,
    calendar_entry_repo,
    fake_conferencing,
    notification_service,
    settings,
    now,
) -> LessonService:
    return LessonService(
        lesson_repo,
        cohort_repo,
        enrollment_repo,
        calendar_entry_repo,
        fake_conferencing,
        notification_service,
        settings=settings,
        clock=lambda: now,
    )


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=uuid4(), role=UserRole.ADMIN)


@pytest.fixture
def pedagogical() -> Actor:
    return Actor(user_id=uuid4(), role=UserRole.PEDAGOGICAL)


@pytest.fixture
def instructor_id() -> UUID:
    return uuid4()


@pytest.fixture
def live_class(cohort_repo, instructor_id, now) -> Cohort:
    """A LIVE class running for two months around ``now``."""
    return cohort_repo.add(
        Cohort(
            class_id=uuid4(),
            course_id=uuid4(),
            name="Turma A",
            instructional_method=InstructionalMethod.LIVE,
            status=ClassStatus.IN_PROGRESS,
            starts_at=now - timedelta(days=30),
            ends_at=now + timedelta(days=60),
            instructor_id=instructor_id,
        )
    )
