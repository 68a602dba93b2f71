"""
In-memory academics store for tests and local offline work.

All units of work bind to one shared `MemoryAcademicsRepo`. Every write takes
the store's re-entrant lock; an explicit transaction holds the lock until
commit/rollback and restores a snapshot on rollback. Entities are copied on
the way in and out so callers never mutate stored state by accident.
"""
from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import InternalError, NotFoundError, ValidationError
from .models import (
    Feedback,
    Instructor,
    Result,
    Section,
    SectionAssessmentVisibility,
    Student,
)


class _MemoryRepository:
    table = ""
    entity = ""
    unique: Tuple[str, ...] = ()

    def __init__(self, store: "MemoryAcademicsRepo") -> None:
        self._store = store

    @property
    def _rows(self) -> Dict[Any, Any]:
        return self._store.tables[self.table]

    def _check_unique(self, entity) -> None:
        for attr in self.unique:
            value = getattr(entity, attr)
            for row in self._rows.values():
                if row.id != entity.id and getattr(row, attr) == value:
                    raise ValidationError(f"{attr}_taken", field=attr)

    def get(self, entity_id):
        with self._store.lock:
            row = self._rows.get(entity_id)
            return copy.copy(row) if row is not None else None

    def list_all(self) -> list:
        with self._store.lock:
            return [copy.copy(self._rows[k]) for k in sorted(self._rows)]

    def add(self, entity):
        with self._store.lock:
            self._check_unique(entity)
            stored = copy.copy(entity)
            if stored.id is None:
                stored.id = self._store.next_id(self.table)
            elif stored.id in self._rows:
                raise ValidationError(f"{self.entity}_conflict", field="id")
            else:
                self._store.counters[self.table] = max(self._store.counters[self.table], stored.id)
            self._rows[stored.id] = stored
            return copy.copy(stored)

    def update(self, entity):
        with self._store.lock:
            if entity.id not in self._rows:
                raise NotFoundError(f"{self.entity}_not_found")
            self._check_unique(entity)
            self._rows[entity.id] = copy.copy(entity)
            return copy.copy(entity)

    def delete(self, entity_id) -> bool:
        with self._store.lock:
            return self._rows.pop(entity_id, None) is not None

    def find(self, predicate: Callable[[Any], bool]) -> list:
        return [row for row in self.list_all() if predicate(row)]

    def _delete_where(self, predicate: Callable[[Any], bool]) -> int:
        with self._store.lock:
            keys = [k for k, row in self._rows.items() if predicate(row)]
            for k in keys:
                del self._rows[k]
            return len(keys)


class MemorySectionRepository(_MemoryRepository):
    table = "sections"
    entity = "section"

    def list_by_instructor(self, instructor_id: int) -> List[Section]:
        return self.find(lambda s: s.instructor_id == instructor_id)


class MemoryInstructorRepository(_MemoryRepository):
    table = "instructors"
    entity = "instructor"
    unique = ("user_id",)

    def get_by_user_id(self, user_id: str) -> Optional[Instructor]:
        rows = self.find(lambda i: i.user_id == user_id)
        return rows[0] if rows else None


class MemoryStudentRepository(_MemoryRepository):
    table = "students"
    entity = "student"
    unique = ("user_id", "matric_no")

    def list_by_section(self, section_id: int) -> List[Student]:
        return self.find(lambda s: s.section_id == section_id)

    def get_by_user_id(self, user_id: str) -> Optional[Student]:
        rows = self.find(lambda s: s.user_id == user_id)
        return rows[0] if rows else None

    def get_by_matric_no(self, matric_no: str) -> Optional[Student]:
        rows = self.find(lambda s: s.matric_no == matric_no)
        return rows[0] if rows else None


class MemoryAssessmentRepository(_MemoryRepository):
    table = "assessments"
    entity = "assessment"


class MemoryVisibilityRepository(_MemoryRepository):
    table = "visibilities"
    entity = "visibility"

    def add(self, entity: SectionAssessmentVisibility) -> SectionAssessmentVisibility:
        with self._store.lock:
            if entity.id in self._rows:
                raise ValidationError("visibility_exists", field="assessment_id")
            self._rows[entity.id] = copy.copy(entity)
            return copy.copy(entity)

    def update(self, entity: SectionAssessmentVisibility) -> SectionAssessmentVisibility:
        with self._store.lock:
            if entity.id not in self._rows:
                raise NotFoundError("visibility_not_found")
            self._rows[entity.id] = copy.copy(entity)
            return copy.copy(entity)

    def get_pair(self, section_id: int, assessment_id: int) -> Optional[SectionAssessmentVisibility]:
        return self.get((section_id, assessment_id))

    def upsert(self, section_id: int, assessment_id: int, is_visible: bool) -> SectionAssessmentVisibility:
        with self._store.lock:
            row = SectionAssessmentVisibility(section_id=section_id, assessment_id=assessment_id, is_visible=is_visible)
            self._rows[row.id] = row
            return copy.copy(row)

    def list_by_section(self, section_id: int) -> List[SectionAssessmentVisibility]:
        return self.find(lambda v: v.section_id == section_id)

    def delete_by_section(self, section_id: int) -> int:
        return self._delete_where(lambda v: v.section_id == section_id)

    def delete_by_assessment(self, assessment_id: int) -> int:
        return self._delete_where(lambda v: v.assessment_id == assessment_id)


class MemoryResultRepository(_MemoryRepository):
    table = "results"
    entity = "result"

    def add(self, entity: Result) -> Result:
        with self._store.lock:
            if self.get_for_student_assessment(entity.student_id, entity.assessment_id):
                raise ValidationError("result_exists", field="assessment_id")
            return super().add(entity)

    def get_for_student_assessment(self, student_id: int, assessment_id: int) -> Optional[Result]:
        rows = self.find(lambda r: r.student_id == student_id and r.assessment_id == assessment_id)
        return rows[0] if rows else None

    def list_by_student(self, student_id: int) -> List[Result]:
        return self.find(lambda r: r.student_id == student_id)

    def list_by_assessment(self, assessment_id: int) -> List[Result]:
        return self.find(lambda r: r.assessment_id == assessment_id)

    def list_by_section(self, section_id: int) -> List[Result]:
        with self._store.lock:
            members = {s.id for s in self._store.tables["students"].values() if s.section_id == section_id}
            return self.find(lambda r: r.student_id in members)

    def upsert(self, student_id: int, assessment_id: int, score: float, taken_at: datetime) -> Tuple[Result, bool]:
        with self._store.lock:
            existing = self.get_for_student_assessment(student_id, assessment_id)
            if existing is None:
                created = self.add(
                    Result(student_id=student_id, assessment_id=assessment_id, score=score, taken_at=taken_at)
                )
                return created, True
            existing.score = score
            existing.taken_at = taken_at
            return self.update(existing), False

    def delete_by_student(self, student_id: int) -> int:
        return self._delete_where(lambda r: r.student_id == student_id)

    def delete_by_assessment(self, assessment_id: int) -> int:
        return self._delete_where(lambda r: r.assessment_id == assessment_id)


class MemoryFeedbackRepository(_MemoryRepository):
    table = "feedback"
    entity = "feedback"

    def list_by_author(self, user_id: str) -> List[Feedback]:
        return self.find(lambda f: f.author_user_id == user_id)

    def list_unresolved(self) -> List[Feedback]:
        return self.find(lambda f: not f.is_resolved)


class MemoryUnitOfWork:
    def __init__(self, store: "MemoryAcademicsRepo") -> None:
        self._store = store
        self._snapshot: Optional[Tuple[dict, dict]] = None
        self.sections = MemorySectionRepository(store)
        self.instructors = MemoryInstructorRepository(store)
        self.students = MemoryStudentRepository(store)
        self.assessments = MemoryAssessmentRepository(store)
        self.visibilities = MemoryVisibilityRepository(store)
        self.results = MemoryResultRepository(store)
        self.feedback = MemoryFeedbackRepository(store)

    def __enter__(self) -> "MemoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._snapshot is not None:
            self.rollback()

    def begin_transaction(self) -> None:
        if self._snapshot is not None:
            raise InternalError("transaction_already_open")
        self._store.lock.acquire()
        self._snapshot = (copy.deepcopy(self._store.tables), dict(self._store.counters))

    def commit(self) -> None:
        if self._snapshot is None:
            return
        self._snapshot = None
        self._store.lock.release()

    def rollback(self) -> None:
        if self._snapshot is None:
            return
        tables, counters = self._snapshot
        self._store.tables = tables
        self._store.counters = counters
        self._snapshot = None
        self._store.lock.release()


class MemoryAcademicsRepo:
    """Shared in-memory store; `unit_of_work()` returns a fresh unit per call."""

    TABLES = ("sections", "instructors", "students", "assessments", "visibilities", "results", "feedback")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.tables: Dict[str, Dict[Any, Any]] = {name: {} for name in self.TABLES}
        self.counters: Dict[str, int] = {name: 0 for name in self.TABLES}

    def next_id(self, table: str) -> int:
        self.counters[table] += 1
        return self.counters[table]

    def unit_of_work(self) -> MemoryUnitOfWork:
        return MemoryUnitOfWork(self)

    def ping(self) -> bool:
        return True


__all__ = ["MemoryAcademicsRepo", "MemoryUnitOfWork"]
