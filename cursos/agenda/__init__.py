"""Merged agenda timeline and internal calendar entries."""

from .models import (
    AGENDA_TABLES_CQL,
    EVENT_COLORS,
    AgendaEvent,
    AgendaEventType,
    CalendarEntry,
)
from .repository import CalendarEntryRepository
from .service import AgendaService


__all__ = [
    "AGENDA_TABLES_CQL",
    "EVENT_COLORS",
    "AgendaEvent",
    "AgendaEventType",
    "AgendaService",
    "CalendarEntry",
    "CalendarEntryRepository",
]
