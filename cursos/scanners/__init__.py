"""Periodic lesson and exam reminder scanners."""

from .jobs import ExamReminderScanner, LessonReminderScanner, ScanResult
from .scheduler import ScannerScheduler


__all__ = [
    "ExamReminderScanner",
    "LessonReminderScanner",
    "ScanResult",
    "ScannerScheduler",
]
