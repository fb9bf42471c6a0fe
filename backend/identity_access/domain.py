"""
Identity domain types: roles and the authenticated principal.

Why:
- Centralize the closed set of roles so every policy branch is an exhaustive
  match over `Role` instead of ad-hoc string comparisons.
- Keep the principal immutable for the duration of a request; role changes
  take effect on the next token resolution.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class Role(str, Enum):
    """Roles known to the school platform."""

    STUDENT = "student"
    TEACHER = "teacher"
    HEAD_TEACHER = "head_teacher"

    @classmethod
    def parse(cls, value: object) -> Optional["Role"]:
        """Return the matching role or None for unknown/missing values."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# Roles a head teacher may list via the users directory endpoint.
LISTABLE_ROLES = frozenset({Role.TEACHER.value, Role.STUDENT.value})


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role
    school_id: Optional[str]
    must_change_password: bool = False

    @classmethod
    def from_profile(cls, profile: Mapping[str, Any]) -> Optional["Principal"]:
        """Build a principal from a `profiles` row; None when the role is unknown."""
        role = Role.parse(profile.get("role"))
        if role is None:
            return None
        school_id = profile.get("school_id")
        return cls(
            id=str(profile["id"]),
            role=role,
            school_id=str(school_id) if school_id else None,
            must_change_password=bool(profile.get("must_change_password") or False),
        )


__all__ = ["LISTABLE_ROLES", "Principal", "Role"]
