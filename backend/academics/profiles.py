"""
Student and instructor profile records tied to identity-provider users.

Users, passwords and role assignments live in the external identity provider.
This service keeps the local profile rows in step with a user's roles: every
change runs in one transaction so a half-applied role switch never persists.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from identity_access.domain import ALLOWED_ROLES, ROLE_INSTRUCTOR, ROLE_STUDENT

from .errors import NotFoundError, ValidationError
from .gateway import AcademicsGateway, AcademicsUnitOfWork, atomic
from .models import Instructor, Student

logger = logging.getLogger("polaris.academics.profiles")


@dataclass
class UserProfiles:
    user_id: str
    student: Optional[Student] = None
    instructor: Optional[Instructor] = None


def normalize_roles(roles: Iterable[str]) -> frozenset:
    """Lower-case role names and reject unknown ones."""
    normalized = frozenset(str(r).strip().lower() for r in roles if str(r).strip())
    if not normalized:
        raise ValidationError("roles_required", field="roles")
    invalid = normalized - ALLOWED_ROLES
    if invalid:
        raise ValidationError("invalid_roles", field="roles")
    return normalized


def _temporary_matric_no() -> str:
    return f"TEMP_{time.time_ns()}"


def _check_section(uow: AcademicsUnitOfWork, section_id: Optional[int]) -> None:
    if section_id is not None and uow.sections.get(section_id) is None:
        raise ValidationError("section_not_found", field="section_id")


def _remove_student(uow: AcademicsUnitOfWork, student: Student) -> None:
    uow.results.delete_by_student(student.id)
    uow.students.delete(student.id)


def _remove_instructor(uow: AcademicsUnitOfWork, instructor: Instructor) -> None:
    if uow.sections.list_by_instructor(instructor.id):
        raise ValidationError("instructor_has_sections", field="roles")
    uow.instructors.delete(instructor.id)


class ProfileService:
    def __init__(self, gateway: AcademicsGateway) -> None:
        self._gateway = gateway

    def get_profiles(self, user_id: str) -> UserProfiles:
        with self._gateway.unit_of_work() as uow:
            return UserProfiles(
                user_id=user_id,
                student=uow.students.get_by_user_id(user_id),
                instructor=uow.instructors.get_by_user_id(user_id),
            )

    def get_student_profile(self, student_id: int) -> Student:
        with self._gateway.unit_of_work() as uow:
            student = uow.students.get(student_id)
        if student is None:
            raise NotFoundError("student_not_found")
        return student

    def list_instructors(self):
        with self._gateway.unit_of_work() as uow:
            return uow.instructors.list_all()

    def create_profiles(
        self,
        user_id: str,
        roles: Iterable[str],
        matric_no: Optional[str] = None,
        section_id: Optional[int] = None,
    ) -> UserProfiles:
        """Create the profile rows for a new user's roles.

        The student role requires a matriculation number.
        """
        wanted = normalize_roles(roles)
        matric_no = (matric_no or "").strip() or None
        if ROLE_STUDENT in wanted and not matric_no:
            raise ValidationError("matric_no_required", field="matric_no")
        with self._gateway.unit_of_work() as uow:
            with atomic(uow):
                if uow.students.get_by_user_id(user_id) or uow.instructors.get_by_user_id(user_id):
                    raise ValidationError("profile_exists", field="user_id")
                _check_section(uow, section_id)
                profiles = UserProfiles(user_id=user_id)
                if ROLE_STUDENT in wanted:
                    profiles.student = uow.students.add(
                        Student(matric_no=matric_no, user_id=user_id, section_id=section_id)
                    )
                if ROLE_INSTRUCTOR in wanted:
                    profiles.instructor = uow.instructors.add(Instructor(user_id=user_id))
        logger.info("Profiles created user=%s roles=%s", user_id, sorted(wanted))
        return profiles

    def apply_role_change(
        self,
        user_id: str,
        roles: Iterable[str],
        matric_no: Optional[str] = None,
        section_id: Optional[int] = None,
    ) -> UserProfiles:
        """Bring profile rows in line with the user's new role set.

        Behavior:
            - Dropping the student role deletes the student profile and its results.
            - Dropping the instructor role deletes the instructor profile; refused
              while the instructor still owns sections.
            - Gaining the student role creates a profile (temporary matriculation
              number when none is given); gaining instructor creates one too.
        """
        wanted = normalize_roles(roles)
        with self._gateway.unit_of_work() as uow:
            with atomic(uow):
                student = uow.students.get_by_user_id(user_id)
                instructor = uow.instructors.get_by_user_id(user_id)
                if student is not None and ROLE_STUDENT not in wanted:
                    _remove_student(uow, student)
                    student = None
                if instructor is not None and ROLE_INSTRUCTOR not in wanted:
                    _remove_instructor(uow, instructor)
                    instructor = None
                if student is None and ROLE_STUDENT in wanted:
                    _check_section(uow, section_id)
                    student = uow.students.add(
                        Student(
                            matric_no=(matric_no or "").strip() or _temporary_matric_no(),
                            user_id=user_id,
                            section_id=section_id,
                        )
                    )
                if instructor is None and ROLE_INSTRUCTOR in wanted:
                    instructor = uow.instructors.add(Instructor(user_id=user_id))
        logger.info("Roles applied user=%s roles=%s", user_id, sorted(wanted))
        return UserProfiles(user_id=user_id, student=student, instructor=instructor)

    def delete_profiles(self, user_id: str) -> None:
        """Remove every profile row of a user (results included)."""
        with self._gateway.unit_of_work() as uow:
            with atomic(uow):
                student = uow.students.get_by_user_id(user_id)
                instructor = uow.instructors.get_by_user_id(user_id)
                if student is None and instructor is None:
                    raise NotFoundError("profile_not_found")
                if student is not None:
                    _remove_student(uow, student)
                if instructor is not None:
                    _remove_instructor(uow, instructor)
        logger.info("Profiles deleted user=%s", user_id)


__all__ = ["ProfileService", "UserProfiles", "normalize_roles"]
