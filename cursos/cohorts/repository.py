# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Data access for classes, class modules and enrollments."""

from typing import TYPE_CHECKING
from uuid import UUID

from .models import ClassModule, Cohort, Enrollment, EnrollmentStatus


if TYPE_CHECKING:
    from cassandra.cluster import Session


class CohortRepository:
    """Classes and their modules."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._get_class = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.classes WHERE class_id = ?
        """)
        self._get_classes = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.classes WHERE class_id IN ?
        """)
        self._list_classes = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.classes
        """)
        self._list_by_instructor = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.classes WHERE instructor_id = ?
        """)
        self._get_module = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.class_modules WHERE module_id = ?
        """)

    async def get(self, class_id: UUID) -> Cohort | None:
        rows = await self.session.aexecute(self._get_class, [class_id])
        row = rows.one()
        return Cohort.from_row(row) if row else None

    async def get_many(self, class_ids: list[UUID]) -> dict[UUID, Cohort]:
        if not class_ids:
            return {}
        rows = await self.session.aexecute(self._get_classes, [list(set(class_ids))])
        return {row.class_id: Cohort.from_row(row) for row in rows}

    async def list_all(self) -> list[Cohort]:
        rows = await self.session.aexecute(self._list_classes)
        return [Cohort.from_row(row) for row in rows]

    async def list_for_instructor(self, instructor_id: UUID) -> list[Cohort]:
        rows = await self.session.aexecute(self._list_by_instructor, [instructor_id])
        return [Cohort.from_row(row) for row in rows]

    async def get_module(self, module_id: UUID) -> ClassModule | None:
        rows = await self.session.aexecute(self._get_module, [module_id])
        row = rows.one()
        return ClassModule.from_row(row) if row else None


class EnrollmentRepository:
    """Enrollments of students in classes."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._get_enrollment = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.class_enrollments WHERE enrollment_id = ?
        """)
        self._list_by_class = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.class_enrollments WHERE class_id = ?
        """)
        self._list_by_student = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.class_enrollments WHERE student_id = ?
        """)

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        rows = await self.session.aexecute(self._get_enrollment, [enrollment_id])
        row = rows.one()
        return Enrollment.from_row(row) if row else None

    async def list_active_for_class(self, class_id: UUID) -> list[Enrollment]:
        rows = await self.session.aexecute(self._list_by_class, [class_id])
        return [
            enrollment
            for enrollment in (Enrollment.from_row(row) for row in rows)
            if enrollment.status == EnrollmentStatus.ENROLLED
        ]

    async def list_for_student(self, student_id: UUID) -> list[Enrollment]:
        rows = await self.session.aexecute(self._list_by_student, [student_id])
        return [Enrollment.from_row(row) for row in rows]
