"""Exams of a class."""

from .models import EXAMS_TABLES_CQL, Exam
from .repository import ExamRepository


__all__ = ["EXAMS_TABLES_CQL", "Exam", "ExamRepository"]
