"""Notification fan-out with deduplication."""

from .models import (
    NOTIFICATIONS_TABLES_CQL,
    Notification,
    NotificationDraft,
    NotificationPriority,
    NotificationType,
)
from .repository import NotificationRepository
from .service import FanOutResult, NotificationService


__all__ = [
    "NOTIFICATIONS_TABLES_CQL",
    "FanOutResult",
    "Notification",
    "NotificationDraft",
    "NotificationPriority",
    "NotificationRepository",
    "NotificationService",
    "NotificationType",
]
