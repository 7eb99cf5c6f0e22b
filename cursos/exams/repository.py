# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Data access for exams."""

from datetime import datetime
from typing import TYPE_CHECKING

from .models import Exam


if TYPE_CHECKING:
    from cassandra.cluster import Session


class ExamRepository:
    """Exam lookups by schedule."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._list_active_between = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.exams
            WHERE active = true AND scheduled_at >= ? AND scheduled_at <= ?
            ALLOW FILTERING
        """)

    async def list_active_between(self, start: datetime, end: datetime) -> list[Exam]:
        """Active exams whose scheduled start lies in [start, end]."""
        rows = await self.session.aexecute(self._list_active_between, [start, end])
        return sorted(
            (Exam.from_row(row) for row in rows),
            key=lambda exam: exam.scheduled_at,
        )
