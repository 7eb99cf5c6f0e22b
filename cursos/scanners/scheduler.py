"""Scanner scheduling.

Lesson reminders run every 30 minutes and exam reminders hourly on the
hour. A job never overlaps itself inside a process (``max_instances=1``)
and, when Redis is available, a non-blocking lock skips runs that another
process already holds.
"""

from typing import TYPE_CHECKING, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from redis.exceptions import LockNotOwnedError

from cursos.config.settings import Settings, get_settings
from cursos.core.context import OperationContext
from cursos.core.logging import get_logger
from cursos.core.redis import scanner_lock_name

from .jobs import ScanResult


if TYPE_CHECKING:
    from redis.asyncio import Redis


logger = get_logger(__name__)


class Scanner(Protocol):
    name: str

    async def run(self) -> ScanResult: ...


class ScannerScheduler:
    """Owns the APScheduler instance driving the reminder scanners."""

    def __init__(
        self,
        lesson_scanner: Scanner,
        exam_scanner: Scanner,
        redis: "Redis | None" = None,
        settings: Settings | None = None,
    ):
        self.lesson_scanner = lesson_scanner
        self.exam_scanner = exam_scanner
        self.redis = redis
        self.settings = settings or get_settings()
        self.scheduler = AsyncIOScheduler(timezone=self.settings.schedule_timezone)
        self._configure_jobs()

    def _configure_jobs(self) -> None:
        self.scheduler.add_job(
            self.run_scanner,
            CronTrigger(minute="*/30", timezone=self.settings.schedule_timezone),
            args=[self.lesson_scanner],
            id=self.lesson_scanner.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.run_scanner,
            CronTrigger(minute=0, timezone=self.settings.schedule_timezone),
            args=[self.exam_scanner],
            id=self.exam_scanner.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def start(self) -> None:
        self.scheduler.start()
        logger.info(
            "scanner_scheduler_started",
            jobs=[job.id for job in self.scheduler.get_jobs()],
        )

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scanner_scheduler_stopped")

    async def run_scanner(self, scanner: Scanner) -> ScanResult | None:
        """Run one scanner, skipping it when another process holds its lock.

        Never raises: a failed run is logged and the next tick tries again.
        """
        with OperationContext(correlation_id=f"scanner:{scanner.name}"):
            try:
                if self.redis is None:
                    return await scanner.run()

                lock = self.redis.lock(
                    scanner_lock_name(scanner.name),
                    timeout=self.settings.scanner_lock_ttl_seconds,
                    blocking=False,
                )
                if not await lock.acquire():
                    logger.info("scanner_run_skipped", scanner=scanner.name, reason="locked")
                    return None
                try:
                    return await scanner.run()
                finally:
                    await self._release(lock, scanner.name)
            except Exception as e:
                logger.error("scanner_run_failed", scanner=scanner.name, error=str(e))
                return None

    async def _release(self, lock, scanner_name: str) -> None:
        try:
            await lock.release()
        except LockNotOwnedError:
            # The run outlived the lock TTL; the key already expired.
            logger.warning(
                "scanner_lock_expired",
                scanner=scanner_name,
                ttl_seconds=self.settings.scanner_lock_ttl_seconds,
            )
