"""Notification fan-out service.

Business logic for:
- Idempotent delivery of one notification to one recipient
- Fan-out to every active enrollment of a class
- Escalation of critical notification types to email
- Real-time publish over Redis Pub/Sub (best-effort)
"""

import contextlib
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin
from uuid import UUID

from cursos.config.settings import Settings, get_settings
from cursos.core.logging import get_logger
from cursos.core.redis import notification_channel
from cursos.email.templates import (
    critical_notification_html,
    critical_notification_text,
)

from .models import (
    Notification,
    NotificationDraft,
    NotificationPriority,
    NotificationType,
    create_notification,
)


if TYPE_CHECKING:
    from redis.asyncio import Redis

    from cursos.auth.repository import UserRepository
    from cursos.cohorts.repository import EnrollmentRepository
    from cursos.email.service import EmailService

    from .repository import NotificationRepository


logger = get_logger(__name__)


@dataclass
class FanOutResult:
    """Counts of a fan-out to the members of a class."""

    total: int = 0
    notified: int = 0
    skipped: int = 0
    failed: int = 0
    emailed: int = 0


class NotificationService:
    """Idempotent notification delivery."""

    def __init__(
        self,
        repository: "NotificationRepository",
        enrollments: "EnrollmentRepository",
        users: "UserRepository",
        email_service: "EmailService | None" = None,
        redis: "Redis | None" = None,
        settings: Settings | None = None,
    ):
        self.repository = repository
        self.enrollments = enrollments
        self.users = users
        self.email_service = email_service
        self.redis = redis
        self.settings = settings or get_settings()

    # ==========================================================================
    # Single recipient
    # ==========================================================================

    async def notify(
        self,
        recipient_id: UUID,
        notification_type: NotificationType,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        action_link: str | None = None,
        payload: dict[str, Any] | None = None,
        dedup_event_id: str | None = None,
    ) -> Notification | None:
        """Create a notification unless it was already sent.

        With ``dedup_event_id`` the (type, event, recipient) marker is claimed
        first; a second call with the same tuple is a silent no-op returning
        None. If writing the notification fails the marker is released, so a
        later run can deliver it.

        Raises:
            ValueError: If the title or message is empty.
        """
        if not title or not message:
            msg = "Notification title and message are required"
            raise ValueError(msg)

        draft = NotificationDraft(
            type=notification_type,
            title=title,
            message=message,
            priority=priority,
            action_link=action_link,
            payload=payload or {},
            dedup_event_id=dedup_event_id,
        )
        return await self._deliver(recipient_id, draft)

    async def _deliver(
        self, recipient_id: UUID, draft: NotificationDraft
    ) -> Notification | None:
        if draft.dedup_event_id is not None:
            claimed = await self.repository.claim_marker(
                draft.type, draft.dedup_event_id, recipient_id
            )
            if not claimed:
                logger.debug(
                    "notification_deduplicated",
                    type=draft.type.value,
                    event_id=draft.dedup_event_id,
                    recipient_id=str(recipient_id),
                )
                return None

        notification = create_notification(recipient_id, draft)
        try:
            await self.repository.insert(notification)
        except Exception:
            if draft.dedup_event_id is not None:
                await self._release_marker(recipient_id, draft)
            raise

        logger.info(
            "notification_created",
            notification_id=str(notification.notification_id),
            type=draft.type.value,
            recipient_id=str(recipient_id),
        )
        await self._publish_notification(notification)
        return notification

    async def _release_marker(self, recipient_id: UUID, draft: NotificationDraft) -> None:
        """Free the sent marker so a later run retries the recipient."""
        try:
            await self.repository.release_marker(
                draft.type, draft.dedup_event_id, recipient_id
            )
        except Exception as e:
            logger.error(
                "notification_marker_release_failed",
                type=draft.type.value,
                event_id=draft.dedup_event_id,
                recipient_id=str(recipient_id),
                error=str(e),
            )

    async def _publish_notification(self, notification: Notification) -> None:
        """Publish notification to Redis Pub/Sub for real-time delivery."""
        if not self.redis:
            return

        message = {"type": "notification", "data": notification.to_dict()}
        # Best-effort, the record is already stored
        with contextlib.suppress(Exception):
            await self.redis.publish(
                notification_channel(str(notification.user_id)), json.dumps(message)
            )

    # ==========================================================================
    # Fan-out
    # ==========================================================================

    async def notify_enrollments(
        self,
        class_id: UUID,
        draft: NotificationDraft,
        escalate_email: bool = False,
    ) -> FanOutResult:
        """Notify every active enrollment of a class.

        A failure for one recipient is logged and the loop continues. With
        ``escalate_email`` each newly notified recipient also gets a critical
        email when the type is email-worthy.
        """
        enrollments = await self.enrollments.list_active_for_class(class_id)
        result = FanOutResult(total=len(enrollments))
        if not enrollments:
            return result

        recipients: dict[UUID, Any] = {}
        if escalate_email and self.is_email_worthy(draft.type):
            recipients = await self.users.get_many([e.student_id for e in enrollments])

        for enrollment in enrollments:
            try:
                created = await self._deliver(enrollment.student_id, draft)
            except Exception as e:
                result.failed += 1
                logger.warning(
                    "notification_delivery_failed",
                    type=draft.type.value,
                    class_id=str(class_id),
                    recipient_id=str(enrollment.student_id),
                    error=str(e),
                )
                continue

            if created is None:
                result.skipped += 1
                continue
            result.notified += 1

            user = recipients.get(enrollment.student_id)
            if user is not None and user.email:
                sent = await self.send_critical_email(
                    to=user.email,
                    name=user.name,
                    subject=draft.title,
                    message=draft.message,
                    action_link=draft.action_link,
                )
                result.emailed += int(sent)

        logger.info(
            "notification_fan_out_completed",
            type=draft.type.value,
            class_id=str(class_id),
            total=result.total,
            notified=result.notified,
            skipped=result.skipped,
            failed=result.failed,
            emailed=result.emailed,
        )
        return result

    # ==========================================================================
    # Email escalation
    # ==========================================================================

    def is_email_worthy(self, notification_type: NotificationType) -> bool:
        """Check the configured allow-list of types escalated to email."""
        return notification_type.value in self.settings.notification_email_types

    async def send_critical_email(
        self,
        to: str,
        name: str,
        subject: str,
        message: str,
        action_link: str | None = None,
    ) -> bool:
        """Send a critical alert by email. Returns whether it was sent."""
        if self.email_service is None:
            logger.debug("critical_email_skipped", reason="email_disabled", to=to)
            return False

        action_url = (
            urljoin(self.settings.frontend_url.rstrip("/") + "/", action_link.lstrip("/"))
            if action_link
            else None
        )
        try:
            response = await self.email_service.send_simple_email(
                to=to,
                subject=subject,
                body_html=critical_notification_html(name, message, action_url),
                body_text=critical_notification_text(name, message, action_url),
                to_name=name,
            )
        except Exception as e:
            logger.warning("critical_email_failed", to=to, error=str(e))
            return False

        if not response.success:
            logger.warning("critical_email_failed", to=to, error=response.error)
        return response.success
