"""Periodic reminder scanners.

Each scanner looks at a time window around ``now + offset`` and fans out a
deduplicated notification per enrolled student. Running a scanner twice
over the same window delivers nothing new.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from cursos.config.settings import Settings, get_settings
from cursos.core.logging import get_logger
from cursos.lessons.models import Lesson, LessonStatus
from cursos.notifications.models import (
    NotificationDraft,
    NotificationPriority,
    NotificationType,
)
from cursos.utils import utc_now


if TYPE_CHECKING:
    from cursos.exams.models import Exam
    from cursos.exams.repository import ExamRepository
    from cursos.lessons.repository import LessonRepository
    from cursos.notifications.service import FanOutResult, NotificationService


logger = get_logger(__name__)


@dataclass
class ScanResult:
    """Counts of one scanner run."""

    scanned: int = 0
    notified: int = 0
    skipped: int = 0
    failed: int = 0

    def add(self, fan_out: "FanOutResult") -> None:
        self.notified += fan_out.notified
        self.skipped += fan_out.skipped
        self.failed += fan_out.failed


# ==============================================================================
# Lesson reminders
# ==============================================================================


class LessonReminderScanner:
    """Remind students of live lessons starting in about two hours."""

    name = "lesson_reminders"

    def __init__(
        self,
        lessons: "LessonRepository",
        notifications: "NotificationService",
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.lessons = lessons
        self.notifications = notifications
        self.settings = settings or get_settings()
        self.clock = clock

    async def run(self, now: datetime | None = None) -> ScanResult:
        now = now or self.clock()
        target = now + timedelta(minutes=self.settings.lesson_reminder_lead_minutes)
        tolerance = timedelta(minutes=self.settings.reminder_tolerance_minutes)

        candidates = [
            lesson
            for lesson in await self.lessons.list_starting_between(
                target - tolerance, target + tolerance
            )
            if _is_remindable(lesson)
        ]
        result = ScanResult(scanned=len(candidates))

        for lesson in candidates:
            try:
                fan_out = await self.notifications.notify_enrollments(
                    lesson.class_id, self._draft(lesson)
                )
                result.add(fan_out)
            except Exception as e:
                result.failed += 1
                logger.warning(
                    "lesson_reminder_failed", lesson_id=str(lesson.lesson_id), error=str(e)
                )

        logger.info(
            "lesson_reminder_scan_completed",
            scanned=result.scanned,
            notified=result.notified,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    def _draft(self, lesson: Lesson) -> NotificationDraft:
        local_start = lesson.starts_at.astimezone(ZoneInfo(self.settings.schedule_timezone))
        return NotificationDraft(
            type=NotificationType.LESSON_IN_2H,
            title="🕐 Sua aula começa em 2 horas!",
            message=(
                f'A aula "{lesson.title}" começa às {local_start.strftime("%H:%M")}.'
            ),
            priority=NotificationPriority.HIGH,
            action_link=f"/turmas/{lesson.class_id}/aulas/{lesson.lesson_id}",
            payload={
                "lesson_id": str(lesson.lesson_id),
                "starts_at": lesson.starts_at.isoformat(),
                "meet_url": lesson.meet_url,
            },
            dedup_event_id=str(lesson.lesson_id),
        )


def _is_remindable(lesson: Lesson) -> bool:
    return (
        not lesson.is_deleted
        and lesson.status == LessonStatus.PUBLISHED
        and lesson.modality.needs_conferencing
        and lesson.class_id is not None
        and lesson.starts_at is not None
    )


# ==============================================================================
# Exam reminders
# ==============================================================================


class ExamReminderScanner:
    """Remind students of exams at 24h, 8h and 2h before they start.

    The last tier is urgent and also goes out by email.
    """

    name = "exam_reminders"

    def __init__(
        self,
        exams: "ExamRepository",
        notifications: "NotificationService",
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.exams = exams
        self.notifications = notifications
        self.settings = settings or get_settings()
        self.clock = clock

    async def run(self, now: datetime | None = None) -> ScanResult:
        now = now or self.clock()
        tolerance = timedelta(minutes=self.settings.reminder_tolerance_minutes)
        result = ScanResult()

        for offset_hours in self.settings.exam_reminder_offsets_hours:
            target = now + timedelta(hours=offset_hours)
            exams = [
                exam
                for exam in await self.exams.list_active_between(
                    target - tolerance, target + tolerance
                )
                if exam.class_id is not None
            ]
            result.scanned += len(exams)

            for exam in exams:
                try:
                    fan_out = await self.notifications.notify_enrollments(
                        exam.class_id,
                        self._draft(exam, offset_hours),
                        escalate_email=self._is_urgent(offset_hours),
                    )
                    result.add(fan_out)
                except Exception as e:
                    result.failed += 1
                    logger.warning(
                        "exam_reminder_failed",
                        exam_id=str(exam.exam_id),
                        offset_hours=offset_hours,
                        error=str(e),
                    )

        logger.info(
            "exam_reminder_scan_completed",
            scanned=result.scanned,
            notified=result.notified,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    def _is_urgent(self, offset_hours: int) -> bool:
        return offset_hours == self.settings.exam_urgent_offset_hours

    def _draft(self, exam: "Exam", offset_hours: int) -> NotificationDraft:
        urgent = self._is_urgent(offset_hours)
        return NotificationDraft(
            type=NotificationType.exam_reminder(offset_hours),
            title=(
                f"⚠️ Sua prova começa em {offset_hours} horas!"
                if urgent
                else f"📝 Prova em {offset_hours} horas"
            ),
            message=f'A prova "{exam.title}" começa em {offset_hours} horas.',
            priority=NotificationPriority.URGENT if urgent else NotificationPriority.HIGH,
            action_link=f"/turmas/{exam.class_id}/provas/{exam.exam_id}",
            payload={
                "exam_id": str(exam.exam_id),
                "scheduled_at": exam.scheduled_at.isoformat(),
            },
            dedup_event_id=f"exam:{exam.exam_id}:{offset_hours}h",
        )
