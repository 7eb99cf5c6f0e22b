# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Data access for notifications and sent markers."""

import json
from typing import TYPE_CHECKING
from uuid import UUID

from .models import Notification, NotificationType


if TYPE_CHECKING:
    from cassandra.cluster import Session


class NotificationRepository:
    """Cassandra storage for notifications."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._insert_notification = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.notifications
            (user_id, notification_id, type, title, message, priority, action_link,
             payload, event_id, is_read, read_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._list_for_user = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.notifications
            WHERE user_id = ?
            LIMIT ?
        """)

        # Lightweight transaction: applied only for the first writer
        self._claim_marker = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.notifications_sent (type, event_id, user_id)
            VALUES (?, ?, ?)
            IF NOT EXISTS
        """)

        # Also a lightweight transaction: plain writes are not ordered against the claim
        self._release_marker = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.notifications_sent
            WHERE type = ? AND event_id = ? AND user_id = ?
            IF EXISTS
        """)

    async def claim_marker(
        self, notification_type: NotificationType, event_id: str, user_id: UUID
    ) -> bool:
        """Claim the sent marker. False when it already existed."""
        result = await self.session.aexecute(
            self._claim_marker, [notification_type.value, event_id, user_id]
        )
        return bool(result.was_applied)

    async def release_marker(
        self, notification_type: NotificationType, event_id: str, user_id: UUID
    ) -> None:
        await self.session.aexecute(
            self._release_marker, [notification_type.value, event_id, user_id]
        )

    async def insert(self, notification: Notification) -> None:
        await self.session.aexecute(
            self._insert_notification,
            [
                notification.user_id,
                notification.notification_id,
                notification.type.value,
                notification.title,
                notification.message,
                notification.priority.value,
                notification.action_link,
                json.dumps(notification.payload, default=str),
                notification.event_id,
                notification.is_read,
                notification.read_at,
                notification.created_at,
            ],
        )

    async def list_for_user(self, user_id: UUID, limit: int = 50) -> list[Notification]:
        rows = await self.session.aexecute(self._list_for_user, [user_id, limit])
        return [Notification.from_row(row) for row in rows]
