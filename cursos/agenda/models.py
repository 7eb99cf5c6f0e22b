"""Agenda models.

Cassandra table definitions for the internal calendar entries written when
a lesson is published, plus the merged timeline event returned to viewers.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from cursos.utils import ensure_utc_aware


class AgendaEventType(str, Enum):
    LESSON = "AULA"
    EXAM = "PROVA"
    BIRTHDAY = "ANIVERSARIO"
    CLASS_START = "TURMA_INICIO"
    CLASS_END = "TURMA_FIM"


EVENT_COLORS: dict[AgendaEventType, str] = {
    AgendaEventType.LESSON: "#3b82f6",
    AgendaEventType.EXAM: "#ef4444",
    AgendaEventType.BIRTHDAY: "#10b981",
    AgendaEventType.CLASS_START: "#8b5cf6",
    AgendaEventType.CLASS_END: "#6366f1",
}


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

CALENDAR_ENTRIES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.calendar_entries (
    lesson_id UUID,
    entry_id UUID,
    class_id UUID,
    title TEXT,
    starts_at TIMESTAMP,
    ends_at TIMESTAMP,
    created_by UUID,
    created_at TIMESTAMP,
    PRIMARY KEY ((lesson_id), entry_id)
)
"""

AGENDA_TABLES_CQL = [CALENDAR_ENTRIES_TABLE_CQL]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class CalendarEntry:
    """Internal calendar entry of a published lesson."""

    entry_id: UUID
    lesson_id: UUID
    class_id: UUID | None
    title: str
    starts_at: datetime
    ends_at: datetime | None
    created_by: UUID
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_row(cls, row: Any) -> "CalendarEntry":
        return cls(
            entry_id=row.entry_id,
            lesson_id=row.lesson_id,
            class_id=row.class_id,
            title=row.title or "",
            starts_at=ensure_utc_aware(row.starts_at),
            ends_at=ensure_utc_aware(row.ends_at),
            created_by=row.created_by,
            created_at=ensure_utc_aware(row.created_at),
        )


def create_calendar_entry(
    lesson_id: UUID,
    class_id: UUID | None,
    title: str,
    starts_at: datetime,
    ends_at: datetime | None,
    created_by: UUID,
) -> CalendarEntry:
    return CalendarEntry(
        entry_id=uuid4(),
        lesson_id=lesson_id,
        class_id=class_id,
        title=title,
        starts_at=starts_at,
        ends_at=ends_at,
        created_by=created_by,
    )


@dataclass
class AgendaEvent:
    """One item of the merged agenda timeline."""

    id: str
    type: AgendaEventType
    title: str
    starts_at: datetime
    ends_at: datetime | None = None
    class_id: UUID | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def color(self) -> str:
        return EVENT_COLORS[self.type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "start": self.starts_at.isoformat(),
            "end": self.ends_at.isoformat() if self.ends_at else None,
            "color": self.color,
            "class_id": str(self.class_id) if self.class_id else None,
            "details": self.details,
        }
