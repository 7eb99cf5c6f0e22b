"""Database models for lessons.

Cassandra table definitions for:
- Lessons: scheduled or on-demand learning units of a class
- Lesson history: append-only audit of every mutation
- Lesson progress: watch progress per (lesson, enrollment)
- Lesson attendance: live attendance entries per (lesson, enrollment)
- Lesson materials: attachments, removed when the lesson is cancelled

Modality uses one canonical vocabulary internally. The public API and the
class instructional method each speak their own vocabulary, translated at
the boundary by ``modality_from_api`` and ``modality_from_class_method``.
"""

import json
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from cursos.cohorts.models import InstructionalMethod
from cursos.utils import ensure_utc_aware


# ==============================================================================
# Constants
# ==============================================================================

# Percentage at which a lesson counts as watched
COMPLETION_THRESHOLD = Decimal(90)


class Modality(str, Enum):
    """Canonical lesson modality."""

    ONLINE = "ONLINE"
    IN_PERSON = "IN_PERSON"
    LIVE = "LIVE"
    HYBRID = "HYBRID"

    @property
    def needs_conferencing(self) -> bool:
        return self in (Modality.LIVE, Modality.HYBRID)


class LessonStatus(str, Enum):
    """Lesson lifecycle: DRAFT <-> PUBLISHED -> IN_PROGRESS -> COMPLETED."""

    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class HistoryAction(str, Enum):
    CREATED = "CREATED"
    EDITED = "EDITED"
    STATUS_CHANGED = "STATUS_CHANGED"
    CANCELLED = "CANCELLED"


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"


class AttendanceKind(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


# ==============================================================================
# Modality translation
# ==============================================================================

_API_MODALITIES: dict[str, Modality] = {
    "ONLINE": Modality.ONLINE,
    "PRESENCIAL": Modality.IN_PERSON,
    "AO_VIVO": Modality.LIVE,
    "SEMIPRESENCIAL": Modality.HYBRID,
}

_CLASS_METHOD_MODALITIES: dict[InstructionalMethod, Modality] = {
    InstructionalMethod.ONLINE: Modality.ONLINE,
    InstructionalMethod.PRESENCIAL: Modality.IN_PERSON,
    InstructionalMethod.LIVE: Modality.LIVE,
    InstructionalMethod.SEMIPRESENCIAL: Modality.HYBRID,
}


def modality_from_api(value: str | Modality) -> Modality:
    """Translate an API modality (Portuguese or canonical name).

    Raises:
        ValueError: If the value is not a known modality.
    """
    if isinstance(value, Modality):
        return value
    key = value.strip().upper()
    if key in _API_MODALITIES:
        return _API_MODALITIES[key]
    return Modality(key)


def modality_to_api(modality: Modality) -> str:
    for api_value, canonical in _API_MODALITIES.items():
        if canonical == modality:
            return api_value
    return modality.value


def modality_from_class_method(method: InstructionalMethod) -> Modality:
    """Translate a class instructional method into the lesson modality."""
    return _CLASS_METHOD_MODALITIES[method]


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

LESSONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lessons (
    lesson_id UUID PRIMARY KEY,
    title TEXT,
    description TEXT,
    modality TEXT,
    status TEXT,
    required BOOLEAN,
    class_id UUID,
    module_id UUID,
    course_id UUID,
    instructor_id UUID,
    created_by UUID,
    starts_at TIMESTAMP,
    ends_at TIMESTAMP,
    start_time TEXT,
    end_time TEXT,
    duration_minutes INT,
    record BOOLEAN,
    video_url TEXT,
    room TEXT,
    meet_url TEXT,
    calendar_event_id TEXT,
    display_order INT,
    added_after_start BOOLEAN,
    deleted_at TIMESTAMP,
    deleted_by UUID,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

LESSONS_BY_CLASS_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS lessons_class_idx ON {keyspace}.lessons (class_id)
"""

LESSONS_BY_INSTRUCTOR_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS lessons_instructor_idx ON {keyspace}.lessons (instructor_id)
"""

LESSONS_BY_START_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS lessons_starts_at_idx ON {keyspace}.lessons (starts_at)
"""

# Append-only, newest first
LESSON_HISTORY_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_history (
    lesson_id UUID,
    created_at TIMESTAMP,
    history_id UUID,
    class_id UUID,
    actor_id UUID,
    action TEXT,
    changes TEXT,
    PRIMARY KEY ((lesson_id), created_at, history_id)
) WITH CLUSTERING ORDER BY (created_at DESC, history_id ASC)
"""

LESSON_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_progress (
    lesson_id UUID,
    enrollment_id UUID,
    percentage DECIMAL,
    seconds_watched INT,
    last_position INT,
    completed BOOLEAN,
    completed_at TIMESTAMP,
    started_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY ((lesson_id), enrollment_id)
)
"""

LESSON_ATTENDANCE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_attendance (
    lesson_id UUID,
    enrollment_id UUID,
    entered_at TIMESTAMP,
    attendance_id UUID,
    class_id UUID,
    status TEXT,
    notes TEXT,
    exited_at TIMESTAMP,
    PRIMARY KEY ((lesson_id, enrollment_id), entered_at, attendance_id)
) WITH CLUSTERING ORDER BY (entered_at DESC, attendance_id ASC)
"""

LESSON_MATERIALS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_materials (
    lesson_id UUID,
    material_id UUID,
    title TEXT,
    url TEXT,
    created_at TIMESTAMP,
    PRIMARY KEY ((lesson_id), material_id)
)
"""

LESSONS_TABLES_CQL = [
    LESSONS_TABLE_CQL,
    LESSONS_BY_CLASS_INDEX_CQL,
    LESSONS_BY_INSTRUCTOR_INDEX_CQL,
    LESSONS_BY_START_INDEX_CQL,
    LESSON_HISTORY_TABLE_CQL,
    LESSON_PROGRESS_TABLE_CQL,
    LESSON_ATTENDANCE_TABLE_CQL,
    LESSON_MATERIALS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class Lesson:
    """Lesson entity."""

    lesson_id: UUID
    title: str
    modality: Modality
    status: LessonStatus
    description: str | None = None
    required: bool = True
    class_id: UUID | None = None
    module_id: UUID | None = None
    course_id: UUID | None = None
    instructor_id: UUID | None = None
    created_by: UUID | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    start_time: str | None = None
    end_time: str | None = None
    duration_minutes: int | None = None
    record: bool = True
    video_url: str | None = None
    room: str | None = None
    meet_url: str | None = None
    calendar_event_id: str | None = None
    display_order: int = 0
    added_after_start: bool = False
    deleted_at: datetime | None = None
    deleted_by: UUID | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_conferencing_eligible(self) -> bool:
        """LIVE/HYBRID with a class and a known start and end."""
        return bool(
            self.modality.needs_conferencing
            and self.class_id
            and self.starts_at
            and self.ends_at
        )

    def has_started(self, now: datetime) -> bool:
        return self.starts_at is not None and self.starts_at <= now

    @classmethod
    def from_row(cls, row: Any) -> "Lesson":
        """Create Lesson from Cassandra row."""
        return cls(
            lesson_id=row.lesson_id,
            title=row.title,
            description=row.description,
            modality=Modality(row.modality),
            status=LessonStatus(row.status),
            required=bool(row.required),
            class_id=row.class_id,
            module_id=row.module_id,
            course_id=row.course_id,
            instructor_id=row.instructor_id,
            created_by=row.created_by,
            starts_at=ensure_utc_aware(row.starts_at),
            ends_at=ensure_utc_aware(row.ends_at),
            start_time=row.start_time,
            end_time=row.end_time,
            duration_minutes=row.duration_minutes,
            record=bool(row.record),
            video_url=row.video_url,
            room=row.room,
            meet_url=row.meet_url,
            calendar_event_id=row.calendar_event_id,
            display_order=row.display_order or 0,
            added_after_start=bool(row.added_after_start),
            deleted_at=ensure_utc_aware(row.deleted_at),
            deleted_by=row.deleted_by,
            created_at=ensure_utc_aware(row.created_at),
            updated_at=ensure_utc_aware(row.updated_at),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, UUID):
                value = str(value)
            data[f.name] = value
        return data


LESSON_COLUMNS = tuple(f.name for f in fields(Lesson))


@dataclass
class HistoryEntry:
    """Audit row for one lesson mutation."""

    history_id: UUID
    lesson_id: UUID
    class_id: UUID | None
    actor_id: UUID
    action: HistoryAction
    changes: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> "HistoryEntry":
        return cls(
            history_id=row.history_id,
            lesson_id=row.lesson_id,
            class_id=row.class_id,
            actor_id=row.actor_id,
            action=HistoryAction(row.action),
            changes=json.loads(row.changes) if row.changes else {},
            created_at=ensure_utc_aware(row.created_at),
        )


def create_history_entry(
    lesson: Lesson,
    actor_id: UUID,
    action: HistoryAction,
    changes: dict[str, Any] | None = None,
) -> HistoryEntry:
    return HistoryEntry(
        history_id=uuid4(),
        lesson_id=lesson.lesson_id,
        class_id=lesson.class_id,
        actor_id=actor_id,
        action=action,
        changes=changes or {},
        created_at=datetime.now(UTC),
    )


@dataclass
class ProgressRecord:
    """Watch progress of an enrollment in a lesson."""

    lesson_id: UUID
    enrollment_id: UUID
    percentage: Decimal = Decimal(0)
    seconds_watched: int = 0
    last_position: int = 0
    completed: bool = False
    completed_at: datetime | None = None
    started_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "ProgressRecord":
        return cls(
            lesson_id=row.lesson_id,
            enrollment_id=row.enrollment_id,
            percentage=row.percentage or Decimal(0),
            seconds_watched=row.seconds_watched or 0,
            last_position=row.last_position or 0,
            completed=bool(row.completed),
            completed_at=ensure_utc_aware(row.completed_at),
            started_at=ensure_utc_aware(row.started_at),
            updated_at=ensure_utc_aware(row.updated_at),
        )


@dataclass
class AttendanceRecord:
    """Attendance of an enrollment in a live lesson."""

    attendance_id: UUID
    lesson_id: UUID
    enrollment_id: UUID
    class_id: UUID
    status: AttendanceStatus
    entered_at: datetime
    notes: str | None = None
    exited_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "AttendanceRecord":
        return cls(
            attendance_id=row.attendance_id,
            lesson_id=row.lesson_id,
            enrollment_id=row.enrollment_id,
            class_id=row.class_id,
            status=AttendanceStatus(row.status),
            entered_at=ensure_utc_aware(row.entered_at),
            notes=row.notes,
            exited_at=ensure_utc_aware(row.exited_at),
        )
