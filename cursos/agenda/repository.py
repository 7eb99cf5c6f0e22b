# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Data access for internal calendar entries."""

from typing import TYPE_CHECKING
from uuid import UUID

from .models import CalendarEntry


if TYPE_CHECKING:
    from cassandra.cluster import Session


class CalendarEntryRepository:
    """Calendar entries keyed by lesson."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._insert_entry = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.calendar_entries
            (lesson_id, entry_id, class_id, title, starts_at, ends_at, created_by,
             created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._list_for_lesson = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.calendar_entries WHERE lesson_id = ?
        """)
        self._delete_for_lesson = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.calendar_entries WHERE lesson_id = ?
        """)

    async def replace_for_lesson(self, entry: CalendarEntry) -> None:
        """Keep exactly one entry per lesson."""
        await self.session.aexecute(self._delete_for_lesson, [entry.lesson_id])
        await self.session.aexecute(
            self._insert_entry,
            [
                entry.lesson_id,
                entry.entry_id,
                entry.class_id,
                entry.title,
                entry.starts_at,
                entry.ends_at,
                entry.created_by,
                entry.created_at,
            ],
        )

    async def list_for_lesson(self, lesson_id: UUID) -> list[CalendarEntry]:
        rows = await self.session.aexecute(self._list_for_lesson, [lesson_id])
        return [CalendarEntry.from_row(row) for row in rows]

    async def delete_for_lesson(self, lesson_id: UUID) -> None:
        await self.session.aexecute(self._delete_for_lesson, [lesson_id])
