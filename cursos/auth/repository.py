# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Read access to the user directory."""

from typing import TYPE_CHECKING
from uuid import UUID

from .models import User


if TYPE_CHECKING:
    from cassandra.cluster import Session


class UserRepository:
    """Cassandra-backed user lookups."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._get_user = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.users WHERE user_id = ?
        """)
        self._get_users = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.users WHERE user_id IN ?
        """)
        self._list_with_birth_date = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.users
        """)

    async def get(self, user_id: UUID) -> User | None:
        rows = await self.session.aexecute(self._get_user, [user_id])
        row = rows.one()
        return User.from_row(row) if row else None

    async def get_many(self, user_ids: list[UUID]) -> dict[UUID, User]:
        if not user_ids:
            return {}
        rows = await self.session.aexecute(self._get_users, [list(set(user_ids))])
        return {row.user_id: User.from_row(row) for row in rows}

    async def list_with_birth_date(self) -> list[User]:
        rows = await self.session.aexecute(self._list_with_birth_date)
        return [User.from_row(row) for row in rows if row.birth_date is not None]
