# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Data access for conferencing credentials."""

from typing import TYPE_CHECKING
from uuid import UUID

from .models import ConferencingCredential


if TYPE_CHECKING:
    from cassandra.cluster import Session


class CredentialRepository:
    """Cassandra storage for encrypted OAuth grants."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._get_credential = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.calendar_credentials WHERE organizer_id = ?
        """)
        self._upsert_credential = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.calendar_credentials
            (organizer_id, access_token, refresh_token, calendar_id, expires_at,
             connected_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)
        self._delete_credential = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.calendar_credentials WHERE organizer_id = ?
        """)

    async def get(self, organizer_id: UUID) -> ConferencingCredential | None:
        rows = await self.session.aexecute(self._get_credential, [organizer_id])
        row = rows.one()
        return ConferencingCredential.from_row(row) if row else None

    async def save(self, credential: ConferencingCredential) -> None:
        """Insert or replace the whole row (single-partition write)."""
        await self.session.aexecute(
            self._upsert_credential,
            [
                credential.organizer_id,
                credential.access_token,
                credential.refresh_token,
                credential.calendar_id,
                credential.expires_at,
                credential.connected_at,
                credential.updated_at,
            ],
        )

    async def delete(self, organizer_id: UUID) -> None:
        await self.session.aexecute(self._delete_credential, [organizer_id])
