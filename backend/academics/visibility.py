"""
Assessment visibility per section.

Policy:
    Every assessment is visible to every section unless an override row for
    the (section, assessment) pair says otherwise. Rows are only created when
    an instructor hides an assessment; showing it again updates the row in
    place so the history of the override survives. `resolve` is the single
    place that turns "row or no row" into a boolean.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional

from identity_access.domain import CallerContext

from .errors import ForbiddenError, NotFoundError
from .gateway import AcademicsGateway, AcademicsUnitOfWork, atomic
from .models import Assessment, Section

logger = logging.getLogger("polaris.academics.visibility")


def resolve(override: Optional[bool]) -> bool:
    """Effective visibility: the override when present, otherwise visible."""
    return True if override is None else bool(override)


def effective_visibility(uow: AcademicsUnitOfWork, section_id: int, assessment_id: int) -> bool:
    row = uow.visibilities.get_pair(section_id, assessment_id)
    return resolve(row.is_visible if row is not None else None)


def require_section_owner(uow: AcademicsUnitOfWork, caller: CallerContext, section_id: int) -> Section:
    """Return the section when `caller` may manage it.

    Raises:
        NotFoundError: section does not exist.
        ForbiddenError: section belongs to another instructor.
    """
    section = uow.sections.get(section_id)
    if section is None:
        raise NotFoundError("section_not_found")
    if caller.is_admin:
        return section
    if not caller.is_instructor:
        raise ForbiddenError("section_forbidden")
    instructor_id = caller.instructor_id
    if instructor_id is None:
        instructor = uow.instructors.get_by_user_id(caller.user_id)
        instructor_id = instructor.id if instructor else None
    if instructor_id is None or section.instructor_id != instructor_id:
        raise ForbiddenError("section_forbidden")
    return section


@dataclass
class VisibilityRecord:
    section_id: int
    assessment_id: int
    is_visible: bool
    overridden: bool


@dataclass
class VisibilityEntry:
    assessment: Assessment
    is_visible: bool
    overridden: bool


class VisibilityEngine:
    """Read and write per-section visibility.

    Every method accepts an optional `caller`; when given, the section must be
    owned by that instructor (admins pass). Without a caller only existence is
    checked, which is what trusted tooling uses.
    """

    def __init__(self, gateway: AcademicsGateway) -> None:
        self._gateway = gateway

    def _section(self, uow: AcademicsUnitOfWork, section_id: int, caller: Optional[CallerContext]) -> Section:
        if caller is not None:
            return require_section_owner(uow, caller, section_id)
        section = uow.sections.get(section_id)
        if section is None:
            raise NotFoundError("section_not_found")
        return section

    def get_effective_visibility(
        self, section_id: int, assessment_id: int, caller: Optional[CallerContext] = None
    ) -> bool:
        with self._gateway.unit_of_work() as uow:
            self._section(uow, section_id, caller)
            if uow.assessments.get(assessment_id) is None:
                raise NotFoundError("assessment_not_found")
            return effective_visibility(uow, section_id, assessment_id)

    def get_all_effective_visibilities(
        self, section_id: int, caller: Optional[CallerContext] = None
    ) -> Dict[int, bool]:
        """Map every assessment id in the system to its effective visibility."""
        return {
            entry.assessment.id: entry.is_visible
            for entry in self.list_visibility_summary(section_id, caller)
        }

    def list_visibility_summary(
        self, section_id: int, caller: Optional[CallerContext] = None
    ) -> List[VisibilityEntry]:
        with self._gateway.unit_of_work() as uow:
            self._section(uow, section_id, caller)
            overrides = {v.assessment_id: v.is_visible for v in uow.visibilities.list_by_section(section_id)}
            return [
                VisibilityEntry(
                    assessment=a,
                    is_visible=resolve(overrides.get(a.id)),
                    overridden=a.id in overrides,
                )
                for a in uow.assessments.list_all()
            ]

    def list_visible_assessments(self, section_id: Optional[int]) -> List[Assessment]:
        """Assessments a member of `section_id` may see (all when unassigned)."""
        with self._gateway.unit_of_work() as uow:
            assessments = uow.assessments.list_all()
            if section_id is None:
                return assessments
            hidden = {v.assessment_id for v in uow.visibilities.list_by_section(section_id) if not v.is_visible}
            return [a for a in assessments if a.id not in hidden]

    def set_visibility(
        self,
        section_id: int,
        assessment_id: int,
        is_visible: bool,
        caller: Optional[CallerContext] = None,
    ) -> VisibilityRecord:
        """Set the visibility of one assessment for one section.

        Behavior:
            - visible=True without an override row: no-op, nothing is stored.
            - visible=False without a row: inserts an override.
            - Existing row: updated in place, never deleted.
        """
        with self._gateway.unit_of_work() as uow:
            self._section(uow, section_id, caller)
            if uow.assessments.get(assessment_id) is None:
                raise NotFoundError("assessment_not_found")
            record = self._apply(uow, section_id, assessment_id, is_visible)
        logger.info(
            "Visibility set section=%s assessment=%s visible=%s", section_id, assessment_id, record.is_visible
        )
        return record

    def bulk_set_visibility(
        self,
        section_id: int,
        visibility: Mapping[int, bool],
        caller: Optional[CallerContext] = None,
    ) -> int:
        """Apply many visibility changes for one section atomically.

        All assessment ids are checked before anything is written; an unknown
        id or any storage failure rolls back the whole batch.

        Returns:
            Number of entries applied.
        """
        with self._gateway.unit_of_work() as uow:
            with atomic(uow):
                self._section(uow, section_id, caller)
                missing = sorted(aid for aid in visibility if uow.assessments.get(aid) is None)
                if missing:
                    logger.info("Bulk visibility rejected section=%s missing=%s", section_id, missing)
                    raise NotFoundError("assessment_not_found")
                for assessment_id, is_visible in visibility.items():
                    self._apply(uow, section_id, assessment_id, is_visible)
        logger.info("Bulk visibility applied section=%s count=%s", section_id, len(visibility))
        return len(visibility)

    @staticmethod
    def _apply(uow: AcademicsUnitOfWork, section_id: int, assessment_id: int, is_visible: bool) -> VisibilityRecord:
        if not is_visible:
            row = uow.visibilities.upsert(section_id, assessment_id, False)
            return VisibilityRecord(section_id, assessment_id, row.is_visible, overridden=True)
        row = uow.visibilities.get_pair(section_id, assessment_id)
        if row is None:
            return VisibilityRecord(section_id, assessment_id, True, overridden=False)
        if not row.is_visible:
            row = uow.visibilities.update(replace(row, is_visible=True))
        return VisibilityRecord(section_id, assessment_id, row.is_visible, overridden=True)


__all__ = [
    "resolve",
    "effective_visibility",
    "require_section_owner",
    "VisibilityEngine",
    "VisibilityRecord",
    "VisibilityEntry",
]
