"""Database models for notifications.

Cassandra table definitions for:
- Notifications: recipient-facing records, partitioned by recipient
- Sent markers: the (type, event_id, user_id) tuple used only for idempotency

A marker is claimed with a lightweight transaction before the notification
is written, so two concurrent scanner runs cannot both deliver the same
reminder.
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from cursos.utils import ensure_utc_aware


class NotificationType(str, Enum):
    """Kinds of notification emitted by the scheduling core."""

    NEW_LESSON = "NOVA_AULA"
    LESSON_UNPUBLISHED = "AULA_DESPUBLICADA"
    LESSON_CANCELLED = "AULA_CANCELADA"
    LESSON_IN_2H = "AULA_EM_2H"
    EXAM_IN_24H = "PROVA_EM_24H"
    EXAM_IN_8H = "PROVA_EM_8H"
    EXAM_IN_2H = "PROVA_EM_2H"
    INSTRUCTOR_ASSIGNED = "INSTRUTOR_VINCULADO"
    CLASS_STARTED = "TURMA_INICIOU"
    CLASS_FINISHED = "TURMA_FINALIZADA"
    SYSTEM = "SISTEMA"

    @classmethod
    def exam_reminder(cls, offset_hours: int) -> "NotificationType":
        """Type for the exam reminder sent ``offset_hours`` before the exam."""
        return cls(f"PROVA_EM_{offset_hours}H")


class NotificationPriority(str, Enum):
    LOW = "BAIXA"
    NORMAL = "NORMAL"
    HIGH = "ALTA"
    URGENT = "URGENTE"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

NOTIFICATION_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.notifications (
    user_id UUID,
    notification_id UUID,
    type TEXT,
    title TEXT,
    message TEXT,
    priority TEXT,
    action_link TEXT,
    payload TEXT,
    event_id TEXT,
    is_read BOOLEAN,
    read_at TIMESTAMP,
    created_at TIMESTAMP,
    PRIMARY KEY ((user_id), created_at, notification_id)
) WITH CLUSTERING ORDER BY (created_at DESC, notification_id ASC)
"""

# Uniqueness tuple only, no other columns
NOTIFICATION_SENT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.notifications_sent (
    type TEXT,
    event_id TEXT,
    user_id UUID,
    PRIMARY KEY ((type, event_id, user_id))
)
"""

NOTIFICATIONS_TABLES_CQL = [
    NOTIFICATION_TABLE_CQL,
    NOTIFICATION_SENT_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class Notification:
    """Notification delivered to a single recipient."""

    notification_id: UUID
    user_id: UUID
    type: NotificationType
    title: str
    message: str
    priority: NotificationPriority
    action_link: str | None
    payload: dict[str, Any]
    event_id: str | None
    is_read: bool
    read_at: datetime | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> "Notification":
        """Create Notification from Cassandra row."""
        return cls(
            notification_id=row.notification_id,
            user_id=row.user_id,
            type=NotificationType(row.type),
            title=row.title,
            message=row.message,
            priority=NotificationPriority(row.priority or "NORMAL"),
            action_link=row.action_link,
            payload=json.loads(row.payload) if row.payload else {},
            event_id=row.event_id,
            is_read=row.is_read or False,
            read_at=ensure_utc_aware(row.read_at),
            created_at=ensure_utc_aware(row.created_at),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "notification_id": str(self.notification_id),
            "user_id": str(self.user_id),
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "action_link": self.action_link,
            "payload": self.payload,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class NotificationDraft:
    """Content of a notification before it is addressed to recipients."""

    type: NotificationType
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    action_link: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    dedup_event_id: str | None = None


def create_notification(
    user_id: UUID,
    draft: NotificationDraft,
) -> Notification:
    """Create a new unread notification for a recipient."""
    return Notification(
        notification_id=uuid4(),
        user_id=user_id,
        type=draft.type,
        title=draft.title,
        message=draft.message,
        priority=draft.priority,
        action_link=draft.action_link,
        payload=dict(draft.payload),
        event_id=draft.dedup_event_id,
        is_read=False,
        read_at=None,
        created_at=datetime.now(UTC),
    )
