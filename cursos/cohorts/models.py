"""Database models for classes (cohorts), their modules and enrollments.

A class groups lessons: its instructional method constrains lesson modality
and its start/end window bounds lesson scheduling. Enrollments link students
to a class and are the fan-out unit for notifications.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from cursos.utils import ensure_utc_aware


class ClassStatus(str, Enum):
    """Class lifecycle status."""

    PLANNED = "PLANNED"
    ENROLLMENT_OPEN = "ENROLLMENT_OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class InstructionalMethod(str, Enum):
    """How a class is delivered (class vocabulary)."""

    ONLINE = "ONLINE"
    PRESENCIAL = "PRESENCIAL"
    LIVE = "LIVE"
    SEMIPRESENCIAL = "SEMIPRESENCIAL"


class EnrollmentStatus(str, Enum):
    """Enrollment status. Only ENROLLED counts as active."""

    ENROLLED = "ENROLLED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    SUSPENDED = "SUSPENDED"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

CLASSES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.classes (
    class_id UUID PRIMARY KEY,
    course_id UUID,
    name TEXT,
    instructional_method TEXT,
    status TEXT,
    starts_at TIMESTAMP,
    ends_at TIMESTAMP,
    instructor_id UUID
)
"""

CLASSES_BY_INSTRUCTOR_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS classes_instructor_idx
ON {keyspace}.classes (instructor_id)
"""

CLASS_MODULES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.class_modules (
    module_id UUID PRIMARY KEY,
    class_id UUID,
    title TEXT
)
"""

ENROLLMENTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.class_enrollments (
    enrollment_id UUID PRIMARY KEY,
    class_id UUID,
    student_id UUID,
    status TEXT,
    enrolled_at TIMESTAMP
)
"""

ENROLLMENTS_BY_CLASS_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS class_enrollments_class_idx
ON {keyspace}.class_enrollments (class_id)
"""

ENROLLMENTS_BY_STUDENT_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS class_enrollments_student_idx
ON {keyspace}.class_enrollments (student_id)
"""

COHORTS_TABLES_CQL = [
    CLASSES_TABLE_CQL,
    CLASSES_BY_INSTRUCTOR_INDEX_CQL,
    CLASS_MODULES_TABLE_CQL,
    ENROLLMENTS_TABLE_CQL,
    ENROLLMENTS_BY_CLASS_INDEX_CQL,
    ENROLLMENTS_BY_STUDENT_INDEX_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class Cohort:
    """A class: a scheduled run of a course."""

    class_id: UUID
    course_id: UUID
    name: str
    instructional_method: InstructionalMethod
    status: ClassStatus
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    instructor_id: UUID | None = None

    def contains(self, instant: datetime) -> bool:
        """Check whether an instant falls inside the class window."""
        if self.starts_at and instant < self.starts_at:
            return False
        return not (self.ends_at and instant > self.ends_at)

    @classmethod
    def from_row(cls, row: Any) -> "Cohort":
        """Create Cohort from Cassandra row."""
        return cls(
            class_id=row.class_id,
            course_id=row.course_id,
            name=row.name or "",
            instructional_method=InstructionalMethod(row.instructional_method),
            status=ClassStatus(row.status),
            starts_at=ensure_utc_aware(row.starts_at),
            ends_at=ensure_utc_aware(row.ends_at),
            instructor_id=row.instructor_id,
        )


@dataclass
class ClassModule:
    """A module inside a class."""

    module_id: UUID
    class_id: UUID
    title: str

    @classmethod
    def from_row(cls, row: Any) -> "ClassModule":
        return cls(module_id=row.module_id, class_id=row.class_id, title=row.title or "")


@dataclass
class Enrollment:
    """A student's enrollment in a class."""

    enrollment_id: UUID
    class_id: UUID
    student_id: UUID
    status: EnrollmentStatus

    @property
    def is_active(self) -> bool:
        return self.status == EnrollmentStatus.ENROLLED

    @classmethod
    def from_row(cls, row: Any) -> "Enrollment":
        """Create Enrollment from Cassandra row."""
        return cls(
            enrollment_id=row.enrollment_id,
            class_id=row.class_id,
            student_id=row.student_id,
            status=EnrollmentStatus(row.status),
        )
