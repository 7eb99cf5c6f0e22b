"""Lesson lifecycle: models, validation rules, persistence and the engine."""

from cursos.lessons.models import (
    LESSONS_TABLES_CQL,
    AttendanceKind,
    HistoryAction,
    Lesson,
    LessonStatus,
    Modality,
)


__all__ = [
    "LESSONS_TABLES_CQL",
    "AttendanceKind",
    "HistoryAction",
    "Lesson",
    "LessonStatus",
    "Modality",
]
