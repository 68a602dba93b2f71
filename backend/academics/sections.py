"""
Section administration: create, reassign, delete, enrol and detach students.

Deleting a section is one transaction: students are detached first, then the
section's visibility overrides are removed, then the section itself.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional

from .errors import NotFoundError, ValidationError
from .gateway import AcademicsGateway, AcademicsUnitOfWork, atomic
from .models import Instructor, Section, SectionAssessmentVisibility, Student

logger = logging.getLogger("polaris.academics.sections")


@dataclass
class SectionDetail:
    section: Section
    instructor: Optional[Instructor]
    students: List[Student] = field(default_factory=list)
    overrides: List[SectionAssessmentVisibility] = field(default_factory=list)


def _detail(uow: AcademicsUnitOfWork, section: Section) -> SectionDetail:
    return SectionDetail(
        section=section,
        instructor=uow.instructors.get(section.instructor_id),
        students=uow.students.list_by_section(section.id),
        overrides=uow.visibilities.list_by_section(section.id),
    )


def _instructor_by_user(uow: AcademicsUnitOfWork, instructor_user_id: str) -> Instructor:
    instructor = uow.instructors.get_by_user_id(instructor_user_id)
    if instructor is None:
        raise ValidationError("instructor_not_found", field="instructor_user_id")
    return instructor


class SectionService:
    def __init__(self, gateway: AcademicsGateway) -> None:
        self._gateway = gateway

    def list_sections(self) -> List[SectionDetail]:
        with self._gateway.unit_of_work() as uow:
            return [_detail(uow, s) for s in uow.sections.list_all()]

    def list_sections_for_instructor(self, instructor_id: int) -> List[SectionDetail]:
        with self._gateway.unit_of_work() as uow:
            return [_detail(uow, s) for s in uow.sections.list_by_instructor(instructor_id)]

    def get_section(self, section_id: int) -> SectionDetail:
        with self._gateway.unit_of_work() as uow:
            section = uow.sections.get(section_id)
            if section is None:
                raise NotFoundError("section_not_found")
            return _detail(uow, section)

    def create_section(self, instructor_user_id: str) -> SectionDetail:
        """Create an empty section owned by an existing instructor.

        No visibility rows are created; every assessment starts out visible.
        """
        with self._gateway.unit_of_work() as uow:
            instructor = _instructor_by_user(uow, instructor_user_id)
            section = uow.sections.add(Section(instructor_id=instructor.id))
            logger.info("Section created id=%s instructor=%s", section.id, instructor.id)
            return _detail(uow, section)

    def update_section(self, section_id: int, instructor_user_id: str) -> SectionDetail:
        with self._gateway.unit_of_work() as uow:
            section = uow.sections.get(section_id)
            if section is None:
                raise NotFoundError("section_not_found")
            instructor = _instructor_by_user(uow, instructor_user_id)
            section = uow.sections.update(replace(section, instructor_id=instructor.id))
            return _detail(uow, section)

    def delete_section(self, section_id: int) -> None:
        """Delete a section with its overrides; enrolled students are detached."""
        with self._gateway.unit_of_work() as uow:
            with atomic(uow):
                if uow.sections.get(section_id) is None:
                    raise NotFoundError("section_not_found")
                for student in uow.students.list_by_section(section_id):
                    uow.students.update(replace(student, section_id=None))
                removed = uow.visibilities.delete_by_section(section_id)
                uow.sections.delete(section_id)
        logger.info("Section deleted id=%s overrides_removed=%s", section_id, removed)

    def add_student_to_section(self, section_id: int, user_id: str) -> Student:
        with self._gateway.unit_of_work() as uow:
            if uow.sections.get(section_id) is None:
                raise NotFoundError("section_not_found")
            student = uow.students.get_by_user_id(user_id)
            if student is None:
                raise NotFoundError("student_not_found")
            return uow.students.update(replace(student, section_id=section_id))

    def remove_student_from_section(self, section_id: int, user_id: str) -> Student:
        with self._gateway.unit_of_work() as uow:
            if uow.sections.get(section_id) is None:
                raise NotFoundError("section_not_found")
            student = uow.students.get_by_user_id(user_id)
            if student is None or student.section_id != section_id:
                raise NotFoundError("student_not_in_section")
            return uow.students.update(replace(student, section_id=None))


__all__ = ["SectionService", "SectionDetail"]
