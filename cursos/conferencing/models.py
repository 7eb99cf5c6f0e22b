"""Database models for Google Calendar conferencing credentials.

One row per organizer (the instructor whose calendar hosts the Meet events).
Tokens are stored encrypted; see ``cursos.core.crypto``.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from cursos.utils import ensure_utc_aware


CALENDAR_CREDENTIALS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.calendar_credentials (
    organizer_id UUID PRIMARY KEY,
    access_token TEXT,
    refresh_token TEXT,
    calendar_id TEXT,
    expires_at TIMESTAMP,
    connected_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

CONFERENCING_TABLES_CQL = [CALENDAR_CREDENTIALS_TABLE_CQL]


@dataclass
class ConferencingCredential:
    """Encrypted OAuth grant of an organizer."""

    organizer_id: UUID
    access_token: str
    refresh_token: str | None
    calendar_id: str
    expires_at: datetime | None
    connected_at: datetime
    updated_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(UTC))

    @classmethod
    def from_row(cls, row: Any) -> "ConferencingCredential":
        return cls(
            organizer_id=row.organizer_id,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            calendar_id=row.calendar_id or "primary",
            expires_at=ensure_utc_aware(row.expires_at),
            connected_at=ensure_utc_aware(row.connected_at),
            updated_at=ensure_utc_aware(row.updated_at),
        )


@dataclass
class ConferencingEvent:
    """Calendar event created with a generated Meet link."""

    event_id: str
    join_url: str | None


@dataclass
class EventPatch:
    """Fields to change on an existing calendar event."""

    title: str | None = None
    description: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    attendee_emails: list[str] | None = None


@dataclass
class BackfillResult:
    total: int = 0
    synced: int = 0
    failed: int = 0


@dataclass
class ConnectionStatus:
    connected: bool
    expired: bool = False
    calendar_id: str | None = None
    expires_at: datetime | None = None
