"""
Identity domain constants and the verified caller context.

Why:
- Centralize allowed roles to avoid drift between tools and web layer.
- `CallerContext` is built once per request from verified token claims and
  passed explicitly into engine calls; it is never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

ROLE_ADMIN = "admin"
ROLE_INSTRUCTOR = "instructor"
ROLE_STUDENT = "student"

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({ROLE_STUDENT, ROLE_INSTRUCTOR, ROLE_ADMIN})


@dataclass(frozen=True)
class CallerContext:
    user_id: str
    roles: frozenset = frozenset()
    student_id: Optional[int] = None
    section_id: Optional[int] = None
    instructor_id: Optional[int] = None
    matric_no: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def is_instructor(self) -> bool:
        return ROLE_INSTRUCTOR in self.roles

    @property
    def is_student(self) -> bool:
        return ROLE_STUDENT in self.roles


__all__ = [
    "ALLOWED_ROLES",
    "ROLE_ADMIN",
    "ROLE_INSTRUCTOR",
    "ROLE_STUDENT",
    "CallerContext",
]
