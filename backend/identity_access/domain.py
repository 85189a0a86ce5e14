"""
Principal roles of the tracker and their parsing.

Why:
- Centralize the role variant so tools, services and the web layer cannot drift.
- Stored values match the backend schema (`users.role`).
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    MEMBER = "user"
    SECTION_ADMIN = "section_admin"
    SUPER_ADMIN = "super_admin"


# Stored role strings, as accepted by the users.role CHECK constraint.
ALLOWED_ROLES = frozenset(r.value for r in Role)


def parse_role(value: object) -> Role:
    """Map a stored role string onto the closed `Role` variant.

    Raises `ValueError("invalid_role")` for anything outside the variant.
    """
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        raise ValueError("invalid_role")
    try:
        return Role(value.strip().lower())
    except ValueError as exc:
        raise ValueError("invalid_role") from exc


__all__ = ["ALLOWED_ROLES", "Role", "parse_role"]
