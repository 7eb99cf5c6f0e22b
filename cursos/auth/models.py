"""User directory models.

Users are administered elsewhere; this service only reads the fields it
needs for notifications (email, name) and the agenda (role, birth date).
"""

from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

from .permissions import UserRole, parse_role


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

USERS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.users (
    user_id UUID PRIMARY KEY,
    name TEXT,
    email TEXT,
    role TEXT,
    birth_date DATE
)
"""

AUTH_TABLES_CQL = [USERS_TABLE_CQL]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class User:
    """User as seen by the scheduling core."""

    user_id: UUID
    name: str
    email: str | None
    role: UserRole | None
    birth_date: date | None = None

    @classmethod
    def from_row(cls, row: Any) -> "User":
        """Create User from Cassandra row."""
        birth_date = row.birth_date
        # cassandra.util.Date
        if birth_date is not None and not isinstance(birth_date, date):
            birth_date = birth_date.date()
        return cls(
            user_id=row.user_id,
            name=row.name or "",
            email=row.email,
            role=parse_role(row.role),
            birth_date=birth_date,
        )


@dataclass(frozen=True)
class Actor:
    """The caller of an operation with its already resolved role."""

    user_id: UUID
    role: UserRole

    @classmethod
    def of(cls, user_id: UUID, role: UserRole | str) -> "Actor":
        resolved = parse_role(role)
        if resolved is None:
            msg = f"Unknown role: {role!r}"
            raise ValueError(msg)
        return cls(user_id=user_id, role=resolved)
