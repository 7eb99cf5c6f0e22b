"""User directory and role checks."""

from .models import Actor, User
from .permissions import (
    SENIOR_STAFF_ROLES,
    STAFF_ROLES,
    UserRole,
    can_author_lessons,
    is_senior_staff,
    is_staff,
    is_top_admin,
    parse_role,
)
from .repository import UserRepository


__all__ = [
    "SENIOR_STAFF_ROLES",
    "STAFF_ROLES",
    "Actor",
    "User",
    "UserRepository",
    "UserRole",
    "can_author_lessons",
    "is_senior_staff",
    "is_staff",
    "is_top_admin",
    "parse_role",
]
