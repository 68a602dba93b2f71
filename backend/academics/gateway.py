"""
Persistence gateway contract for academics.

Both backends (`repo_memory.MemoryAcademicsRepo`, `repo_db.DBAcademicsRepo`)
hand out a unit of work bundling one repository per entity. Engines depend on
these Protocols only, so tests run them against the in-memory store.

Transactions:
    Writes outside `begin_transaction()` are committed immediately. Use
    `atomic(uow)` for multi-step procedures; it rolls back on any exception and
    converts non-domain failures into `InternalError`.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Protocol, Tuple, TypeVar

from .errors import DOMAIN_ERRORS, InternalError
from .models import (
    Assessment,
    Feedback,
    Instructor,
    Result,
    Section,
    SectionAssessmentVisibility,
    Student,
)

logger = logging.getLogger("polaris.academics.gateway")

T = TypeVar("T")


class Repository(Protocol[T]):
    def get(self, entity_id) -> Optional[T]: ...
    def list_all(self) -> List[T]: ...
    def add(self, entity: T) -> T: ...
    def update(self, entity: T) -> T: ...
    def delete(self, entity_id) -> bool: ...
    def find(self, predicate: Callable[[T], bool]) -> List[T]: ...


class SectionRepository(Repository[Section], Protocol):
    def list_by_instructor(self, instructor_id: int) -> List[Section]: ...


class InstructorRepository(Repository[Instructor], Protocol):
    def get_by_user_id(self, user_id: str) -> Optional[Instructor]: ...


class StudentRepository(Repository[Student], Protocol):
    def list_by_section(self, section_id: int) -> List[Student]: ...
    def get_by_user_id(self, user_id: str) -> Optional[Student]: ...
    def get_by_matric_no(self, matric_no: str) -> Optional[Student]: ...


class AssessmentRepository(Repository[Assessment], Protocol):
    pass


class VisibilityRepository(Repository[SectionAssessmentVisibility], Protocol):
    def get_pair(self, section_id: int, assessment_id: int) -> Optional[SectionAssessmentVisibility]: ...
    def upsert(self, section_id: int, assessment_id: int, is_visible: bool) -> SectionAssessmentVisibility: ...
    def list_by_section(self, section_id: int) -> List[SectionAssessmentVisibility]: ...
    def delete_by_section(self, section_id: int) -> int: ...
    def delete_by_assessment(self, assessment_id: int) -> int: ...


class ResultRepository(Repository[Result], Protocol):
    def get_for_student_assessment(self, student_id: int, assessment_id: int) -> Optional[Result]: ...
    def list_by_student(self, student_id: int) -> List[Result]: ...
    def list_by_assessment(self, assessment_id: int) -> List[Result]: ...
    def list_by_section(self, section_id: int) -> List[Result]: ...
    def upsert(self, student_id: int, assessment_id: int, score: float, taken_at: datetime) -> Tuple[Result, bool]: ...
    def delete_by_student(self, student_id: int) -> int: ...
    def delete_by_assessment(self, assessment_id: int) -> int: ...


class FeedbackRepository(Repository[Feedback], Protocol):
    def list_by_author(self, user_id: str) -> List[Feedback]: ...
    def list_unresolved(self) -> List[Feedback]: ...


class AcademicsUnitOfWork(Protocol):
    sections: SectionRepository
    instructors: InstructorRepository
    students: StudentRepository
    assessments: AssessmentRepository
    visibilities: VisibilityRepository
    results: ResultRepository
    feedback: FeedbackRepository

    def begin_transaction(self) -> None: ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...
    def __enter__(self) -> "AcademicsUnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...


class AcademicsGateway(Protocol):
    def unit_of_work(self) -> AcademicsUnitOfWork: ...


@contextmanager
def atomic(uow: AcademicsUnitOfWork) -> Iterator[AcademicsUnitOfWork]:
    """Run the enclosed block as one transaction on `uow`.

    Behavior:
        - Commits when the block finishes.
        - Rolls back on any exception. Domain errors and `InternalError` are
          re-raised unchanged; everything else becomes `InternalError`.
    """
    uow.begin_transaction()
    try:
        yield uow
    except DOMAIN_ERRORS:
        uow.rollback()
        raise
    except InternalError:
        uow.rollback()
        logger.warning("Transaction rolled back after storage failure")
        raise
    except Exception as exc:
        uow.rollback()
        logger.warning("Transaction rolled back: %s", type(exc).__name__)
        raise InternalError() from exc
    try:
        uow.commit()
    except InternalError:
        uow.rollback()
        raise
    except Exception as exc:
        uow.rollback()
        logger.warning("Commit failed: %s", type(exc).__name__)
        raise InternalError() from exc


__all__ = [
    "Repository",
    "SectionRepository",
    "InstructorRepository",
    "StudentRepository",
    "AssessmentRepository",
    "VisibilityRepository",
    "ResultRepository",
    "FeedbackRepository",
    "AcademicsUnitOfWork",
    "AcademicsGateway",
    "atomic",
]
