"""Database models for exams.

Exams belong to a class. ``scheduled_at`` is the instant the exam opens;
the reminder scanner and the agenda only consider exams that have one.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from cursos.utils import ensure_utc_aware


EXAMS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.exams (
    exam_id UUID PRIMARY KEY,
    class_id UUID,
    title TEXT,
    active BOOLEAN,
    scheduled_at TIMESTAMP
)
"""

EXAMS_BY_CLASS_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS exams_class_idx ON {keyspace}.exams (class_id)
"""

EXAMS_TABLES_CQL = [EXAMS_TABLE_CQL, EXAMS_BY_CLASS_INDEX_CQL]


@dataclass
class Exam:
    """An exam of a class."""

    exam_id: UUID
    class_id: UUID | None
    title: str
    active: bool
    scheduled_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Exam":
        return cls(
            exam_id=row.exam_id,
            class_id=row.class_id,
            title=row.title or "",
            active=bool(row.active),
            scheduled_at=ensure_utc_aware(row.scheduled_at),
        )
