"""Role checks for the lesson, agenda and conferencing flows.

Authentication happens upstream; every operation receives an already
resolved role. The staff roles manage lessons for every class, instructors
only for their own classes.
"""

from enum import Enum


class UserRole(str, Enum):
    """Platform roles."""

    ADMIN = "admin"
    MODERATOR = "moderator"
    PEDAGOGICAL = "pedagogical"
    INSTRUCTOR = "instructor"
    STUDENT = "student"
    STUDENT_CANDIDATE = "student_candidate"
    COMPANY = "company"


STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.MODERATOR, UserRole.PEDAGOGICAL})

# The two most senior staff roles
SENIOR_STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.MODERATOR})

LESSON_AUTHOR_ROLES = STAFF_ROLES | {UserRole.INSTRUCTOR}


def parse_role(role: UserRole | str | None) -> UserRole | None:
    """Convert a role string to UserRole, None for unknown values."""
    if role is None or isinstance(role, UserRole):
        return role
    try:
        return UserRole(role.lower())
    except ValueError:
        return None


def is_staff(role: UserRole | str | None) -> bool:
    return parse_role(role) in STAFF_ROLES


def is_senior_staff(role: UserRole | str | None) -> bool:
    return parse_role(role) in SENIOR_STAFF_ROLES


def is_top_admin(role: UserRole | str | None) -> bool:
    return parse_role(role) == UserRole.ADMIN


def can_author_lessons(role: UserRole | str | None) -> bool:
    return parse_role(role) in LESSON_AUTHOR_ROLES
