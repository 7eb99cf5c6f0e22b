# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Data access for lessons, history, progress, attendance and materials.

A lesson mutation and its history row are written together in one logged
batch, so the audit trail never misses a committed change.
"""

import json
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from cassandra.query import BatchStatement, BatchType

from .models import (
    LESSON_COLUMNS,
    AttendanceRecord,
    HistoryEntry,
    Lesson,
    ProgressRecord,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class LessonRepository:
    """Cassandra storage for the lesson aggregate."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        columns = ", ".join(LESSON_COLUMNS)
        placeholders = ", ".join("?" for _ in LESSON_COLUMNS)
        self._upsert_lesson = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lessons ({columns}) VALUES ({placeholders})
        """)
        self._get_lesson = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lessons WHERE lesson_id = ?
        """)
        self._list_by_class = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lessons WHERE class_id = ?
        """)
        self._list_by_instructor = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lessons WHERE instructor_id = ?
        """)
        self._list_starting_between = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lessons
            WHERE starts_at >= ? AND starts_at <= ?
            ALLOW FILTERING
        """)
        self._set_conferencing = self.session.prepare(f"""
            UPDATE {self.keyspace}.lessons
            SET meet_url = ?, calendar_event_id = ?, updated_at = ?
            WHERE lesson_id = ?
        """)

        self._insert_history = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lesson_history
            (lesson_id, created_at, history_id, class_id, actor_id, action, changes)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)
        self._list_history = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_history WHERE lesson_id = ?
        """)

        self._get_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE lesson_id = ? AND enrollment_id = ?
        """)
        self._list_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress WHERE lesson_id = ?
        """)
        self._upsert_progress = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lesson_progress
            (lesson_id, enrollment_id, percentage, seconds_watched, last_position,
             completed, completed_at, started_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._insert_attendance = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lesson_attendance
            (lesson_id, enrollment_id, entered_at, attendance_id, class_id, status,
             notes, exited_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._latest_attendance_since = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_attendance
            WHERE lesson_id = ? AND enrollment_id = ? AND entered_at >= ?
            LIMIT 1
        """)
        self._list_attendance = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_attendance
            WHERE lesson_id = ? AND enrollment_id = ?
        """)
        self._annotate_attendance = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_attendance
            SET notes = ?, exited_at = ?
            WHERE lesson_id = ? AND enrollment_id = ? AND entered_at = ?
              AND attendance_id = ?
        """)

        self._delete_materials = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.lesson_materials WHERE lesson_id = ?
        """)

    # ==========================================================================
    # Lessons
    # ==========================================================================

    async def get(self, lesson_id: UUID) -> Lesson | None:
        rows = await self.session.aexecute(self._get_lesson, [lesson_id])
        row = rows.one()
        return Lesson.from_row(row) if row else None

    async def save_with_history(self, lesson: Lesson, entry: HistoryEntry) -> None:
        """Write the lesson row and its history row in one logged batch."""
        batch = BatchStatement(batch_type=BatchType.LOGGED)
        batch.add(
            self._upsert_lesson,
            [_column_value(getattr(lesson, column)) for column in LESSON_COLUMNS],
        )
        batch.add(
            self._insert_history,
            [
                entry.lesson_id,
                entry.created_at,
                entry.history_id,
                entry.class_id,
                entry.actor_id,
                entry.action.value,
                json.dumps(entry.changes, default=str),
            ],
        )
        await self.session.aexecute(batch)

    async def set_conferencing(
        self,
        lesson_id: UUID,
        meet_url: str | None,
        calendar_event_id: str | None,
        updated_at: datetime,
    ) -> None:
        await self.session.aexecute(
            self._set_conferencing, [meet_url, calendar_event_id, updated_at, lesson_id]
        )

    async def list_for_class(self, class_id: UUID) -> list[Lesson]:
        rows = await self.session.aexecute(self._list_by_class, [class_id])
        return [Lesson.from_row(row) for row in rows]

    async def list_for_instructor(self, instructor_id: UUID) -> list[Lesson]:
        rows = await self.session.aexecute(self._list_by_instructor, [instructor_id])
        return [Lesson.from_row(row) for row in rows]

    async def list_starting_between(self, start: datetime, end: datetime) -> list[Lesson]:
        rows = await self.session.aexecute(self._list_starting_between, [start, end])
        return [Lesson.from_row(row) for row in rows]

    async def list_history(self, lesson_id: UUID) -> list[HistoryEntry]:
        rows = await self.session.aexecute(self._list_history, [lesson_id])
        return [HistoryEntry.from_row(row) for row in rows]

    async def delete_materials(self, lesson_id: UUID) -> None:
        await self.session.aexecute(self._delete_materials, [lesson_id])

    # ==========================================================================
    # Progress
    # ==========================================================================

    async def get_progress(
        self, lesson_id: UUID, enrollment_id: UUID
    ) -> ProgressRecord | None:
        rows = await self.session.aexecute(self._get_progress, [lesson_id, enrollment_id])
        row = rows.one()
        return ProgressRecord.from_row(row) if row else None

    async def save_progress(self, record: ProgressRecord) -> None:
        await self.session.aexecute(
            self._upsert_progress,
            [
                record.lesson_id,
                record.enrollment_id,
                record.percentage,
                record.seconds_watched,
                record.last_position,
                record.completed,
                record.completed_at,
                record.started_at,
                record.updated_at,
            ],
        )

    async def count_completed_progress(self, lesson_id: UUID) -> int:
        rows = await self.session.aexecute(self._list_progress, [lesson_id])
        return sum(1 for row in rows if row.completed)

    # ==========================================================================
    # Attendance
    # ==========================================================================

    async def insert_attendance(self, record: AttendanceRecord) -> None:
        await self.session.aexecute(
            self._insert_attendance,
            [
                record.lesson_id,
                record.enrollment_id,
                record.entered_at,
                record.attendance_id,
                record.class_id,
                record.status.value,
                record.notes,
                record.exited_at,
            ],
        )

    async def latest_attendance_since(
        self, lesson_id: UUID, enrollment_id: UUID, since: datetime
    ) -> AttendanceRecord | None:
        rows = await self.session.aexecute(
            self._latest_attendance_since, [lesson_id, enrollment_id, since]
        )
        row = rows.one()
        return AttendanceRecord.from_row(row) if row else None

    async def list_attendance(
        self, lesson_id: UUID, enrollment_id: UUID
    ) -> list[AttendanceRecord]:
        rows = await self.session.aexecute(
            self._list_attendance, [lesson_id, enrollment_id]
        )
        return [AttendanceRecord.from_row(row) for row in rows]

    async def annotate_attendance(self, record: AttendanceRecord) -> None:
        await self.session.aexecute(
            self._annotate_attendance,
            [
                record.notes,
                record.exited_at,
                record.lesson_id,
                record.enrollment_id,
                record.entered_at,
                record.attendance_id,
            ],
        )
