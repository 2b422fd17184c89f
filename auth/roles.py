"""
auth/roles.py -- The closed set of account roles.

Role is a str-valued Enum so it round-trips through the DB and JSON as the
plain role name ("student", "instructor", ...) while code compares against
members rather than string literals.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    student = "student"
    instructor = "instructor"
    admin = "admin"
    parent = "parent"


# Roles a visitor may pick on the public registration form. Admin accounts are
# created by the operator CLI or promoted by another admin.
SELF_SERVICE_ROLES: frozenset[Role] = frozenset({Role.student, Role.instructor, Role.parent})

_BADGES: dict[Role, tuple[str, str]] = {
    Role.student: ("Student", "blue"),
    Role.instructor: ("Instructor", "green"),
    Role.admin: ("Administrator", "red"),
    Role.parent: ("Parent", "purple"),
}


def _check_badges(badges: dict[Role, tuple[str, str]]) -> None:
    missing = set(Role) - set(badges)
    if missing:
        raise RuntimeError(f"Roles without a badge: {sorted(r.value for r in missing)}")


_check_badges(_BADGES)


def role_badge(role: Role | str) -> tuple[str, str]:
    """Return the (label, color) pair the UI shows for a role.

    Raises ValueError for a string that is not a known role.
    """
    return _BADGES[Role(role)]
