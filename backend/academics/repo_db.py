"""
Postgres-backed academics gateway.

Design:
- Minimal psycopg3 usage; one connection per unit of work, closed on exit.
- Writes outside an explicit transaction are committed immediately.
- Result submission is a single `insert ... on conflict do update` so
  concurrent retakes of the same (student, assessment) never produce two rows.
- Driver errors never leave this module: constraint violations become
  `ValidationError`, everything else `InternalError` (details logged only).
"""
from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from .errors import InternalError, NotFoundError, ValidationError
from .models import (
    Assessment,
    Feedback,
    Instructor,
    Result,
    Section,
    SectionAssessmentVisibility,
    Student,
)

logger = logging.getLogger("polaris.academics.repo_db")

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_SENSITIVE_TOKEN_PATTERN = re.compile(r"(password|passwd|pwd)=\S+", re.IGNORECASE)
_ERROR_MAX_LENGTH = 200

_SQLSTATE_CODES = {
    "23505": "conflict",
    "23503": "reference_violation",
    "23514": "constraint_violation",
    "23502": "missing_value",
}


def _sanitize_error_message(value: Optional[str]) -> Optional[str]:
    """Strip credentials and truncate driver errors before they reach the log."""
    if not value:
        return None
    collapsed = " ".join(str(value).split())
    if not collapsed:
        return None
    scrubbed = _SENSITIVE_TOKEN_PATTERN.sub("[redacted]", collapsed)
    if len(scrubbed) > _ERROR_MAX_LENGTH:
        scrubbed = scrubbed[: _ERROR_MAX_LENGTH - 3].rstrip() + "..."
    return scrubbed


def _dsn() -> str:
    """Resolve the DSN; callers fall back to the in-memory store when unset."""
    for candidate in (os.getenv("ACADEMICS_DATABASE_URL"), os.getenv("DATABASE_URL")):
        if candidate:
            return candidate
    raise RuntimeError("Database DSN unavailable for DBAcademicsRepo")


def _translate(exc: Exception, entity: str) -> Exception:
    sqlstate = getattr(exc, "sqlstate", None) or getattr(exc, "pgcode", None)
    suffix = _SQLSTATE_CODES.get(str(sqlstate or ""))
    if suffix:
        return ValidationError(f"{entity}_{suffix}")
    logger.warning("Academics DB error (%s): %s", sqlstate, _sanitize_error_message(str(exc)))
    return InternalError()


class _DBRepository:
    table = ""
    entity = ""
    columns: Tuple[str, ...] = ()
    model: Any = None

    def __init__(self, uow: "DBUnitOfWork") -> None:
        self._uow = uow

    @property
    def _column_sql(self) -> str:
        return ", ".join(("id",) + self.columns)

    def _to_entity(self, row: Tuple):
        return self.model(**dict(zip(("id",) + self.columns, row)))

    def _where(self, clause: str, params: Tuple) -> list:
        rows = self._uow.fetch_all(
            f"select {self._column_sql} from {self.table} where {clause} order by id", params, self.entity
        )
        return [self._to_entity(r) for r in rows]

    def get(self, entity_id):
        rows = self._where("id = %s", (entity_id,))
        return rows[0] if rows else None

    def list_all(self) -> list:
        rows = self._uow.fetch_all(f"select {self._column_sql} from {self.table} order by id", (), self.entity)
        return [self._to_entity(r) for r in rows]

    def add(self, entity):
        values = tuple(getattr(entity, c) for c in self.columns)
        placeholders = ", ".join(["%s"] * len(self.columns))
        row = self._uow.write_one(
            f"insert into {self.table} ({', '.join(self.columns)}) values ({placeholders}) "
            f"returning {self._column_sql}",
            values,
            self.entity,
        )
        return self._to_entity(row)

    def update(self, entity):
        assignments = ", ".join(f"{c} = %s" for c in self.columns)
        values = tuple(getattr(entity, c) for c in self.columns) + (entity.id,)
        row = self._uow.write_one(
            f"update {self.table} set {assignments} where id = %s returning {self._column_sql}",
            values,
            self.entity,
        )
        if row is None:
            raise NotFoundError(f"{self.entity}_not_found")
        return self._to_entity(row)

    def delete(self, entity_id) -> bool:
        return self._uow.write(f"delete from {self.table} where id = %s", (entity_id,), self.entity) > 0

    def find(self, predicate: Callable[[Any], bool]) -> list:
        return [row for row in self.list_all() if predicate(row)]


class DBSectionRepository(_DBRepository):
    table = "sections"
    entity = "section"
    columns = ("instructor_id",)
    model = Section

    def list_by_instructor(self, instructor_id: int) -> List[Section]:
        return self._where("instructor_id = %s", (instructor_id,))


class DBInstructorRepository(_DBRepository):
    table = "instructors"
    entity = "instructor"
    columns = ("user_id",)
    model = Instructor

    def get_by_user_id(self, user_id: str) -> Optional[Instructor]:
        rows = self._where("user_id = %s", (user_id,))
        return rows[0] if rows else None


class DBStudentRepository(_DBRepository):
    table = "students"
    entity = "student"
    columns = ("matric_no", "user_id", "section_id")
    model = Student

    def list_by_section(self, section_id: int) -> List[Student]:
        return self._where("section_id = %s", (section_id,))

    def get_by_user_id(self, user_id: str) -> Optional[Student]:
        rows = self._where("user_id = %s", (user_id,))
        return rows[0] if rows else None

    def get_by_matric_no(self, matric_no: str) -> Optional[Student]:
        rows = self._where("matric_no = %s", (matric_no,))
        return rows[0] if rows else None


class DBAssessmentRepository(_DBRepository):
    table = "assessments"
    entity = "assessment"
    columns = ("title", "description", "max_score", "due_date")
    model = Assessment


class DBVisibilityRepository(_DBRepository):
    """Keyed by (section_id, assessment_id); there is no surrogate id column."""

    table = "section_assessment_visibility"
    entity = "visibility"
    columns = ("section_id", "assessment_id", "is_visible")
    model = SectionAssessmentVisibility

    _SELECT = "select section_id, assessment_id, is_visible from section_assessment_visibility"

    def _to_entity(self, row: Tuple) -> SectionAssessmentVisibility:
        return SectionAssessmentVisibility(section_id=row[0], assessment_id=row[1], is_visible=bool(row[2]))

    def _where(self, clause: str, params: Tuple) -> list:
        rows = self._uow.fetch_all(
            f"{self._SELECT} where {clause} order by section_id, assessment_id", params, self.entity
        )
        return [self._to_entity(r) for r in rows]

    def get(self, entity_id) -> Optional[SectionAssessmentVisibility]:
        section_id, assessment_id = entity_id
        return self.get_pair(section_id, assessment_id)

    def list_all(self) -> List[SectionAssessmentVisibility]:
        rows = self._uow.fetch_all(f"{self._SELECT} order by section_id, assessment_id", (), self.entity)
        return [self._to_entity(r) for r in rows]

    def add(self, entity: SectionAssessmentVisibility) -> SectionAssessmentVisibility:
        row = self._uow.write_one(
            """
            insert into section_assessment_visibility (section_id, assessment_id, is_visible)
            values (%s, %s, %s)
            returning section_id, assessment_id, is_visible
            """,
            (entity.section_id, entity.assessment_id, entity.is_visible),
            self.entity,
        )
        return self._to_entity(row)

    def update(self, entity: SectionAssessmentVisibility) -> SectionAssessmentVisibility:
        row = self._uow.write_one(
            """
            update section_assessment_visibility
               set is_visible = %s
             where section_id = %s and assessment_id = %s
            returning section_id, assessment_id, is_visible
            """,
            (entity.is_visible, entity.section_id, entity.assessment_id),
            self.entity,
        )
        if row is None:
            raise NotFoundError("visibility_not_found")
        return self._to_entity(row)

    def delete(self, entity_id) -> bool:
        section_id, assessment_id = entity_id
        return (
            self._uow.write(
                "delete from section_assessment_visibility where section_id = %s and assessment_id = %s",
                (section_id, assessment_id),
                self.entity,
            )
            > 0
        )

    def get_pair(self, section_id: int, assessment_id: int) -> Optional[SectionAssessmentVisibility]:
        rows = self._where("section_id = %s and assessment_id = %s", (section_id, assessment_id))
        return rows[0] if rows else None

    def upsert(self, section_id: int, assessment_id: int, is_visible: bool) -> SectionAssessmentVisibility:
        row = self._uow.write_one(
            """
            insert into section_assessment_visibility (section_id, assessment_id, is_visible)
            values (%s, %s, %s)
            on conflict (section_id, assessment_id) do update set is_visible = excluded.is_visible
            returning section_id, assessment_id, is_visible
            """,
            (section_id, assessment_id, is_visible),
            self.entity,
        )
        return self._to_entity(row)

    def list_by_section(self, section_id: int) -> List[SectionAssessmentVisibility]:
        return self._where("section_id = %s", (section_id,))

    def delete_by_section(self, section_id: int) -> int:
        return self._uow.write(
            "delete from section_assessment_visibility where section_id = %s", (section_id,), self.entity
        )

    def delete_by_assessment(self, assessment_id: int) -> int:
        return self._uow.write(
            "delete from section_assessment_visibility where assessment_id = %s", (assessment_id,), self.entity
        )


class DBResultRepository(_DBRepository):
    table = "results"
    entity = "result"
    columns = ("student_id", "assessment_id", "score", "taken_at")
    model = Result

    def get_for_student_assessment(self, student_id: int, assessment_id: int) -> Optional[Result]:
        rows = self._where("student_id = %s and assessment_id = %s", (student_id, assessment_id))
        return rows[0] if rows else None

    def list_by_student(self, student_id: int) -> List[Result]:
        return self._where("student_id = %s", (student_id,))

    def list_by_assessment(self, assessment_id: int) -> List[Result]:
        return self._where("assessment_id = %s", (assessment_id,))

    def list_by_section(self, section_id: int) -> List[Result]:
        return self._where("student_id in (select id from students where section_id = %s)", (section_id,))

    def upsert(self, student_id: int, assessment_id: int, score: float, taken_at: datetime) -> Tuple[Result, bool]:
        """Insert or overwrite the single result row of a (student, assessment) pair.

        `xmax = 0` holds only for freshly inserted tuples, which tells the
        caller whether this was a first attempt or a retake.
        """
        row = self._uow.write_one(
            """
            insert into results (student_id, assessment_id, score, taken_at)
            values (%s, %s, %s, %s)
            on conflict (student_id, assessment_id)
            do update set score = excluded.score, taken_at = excluded.taken_at
            returning id, student_id, assessment_id, score, taken_at, (xmax = 0) as inserted
            """,
            (student_id, assessment_id, score, taken_at),
            self.entity,
        )
        return self._to_entity(row[:5]), bool(row[5])

    def delete_by_student(self, student_id: int) -> int:
        return self._uow.write("delete from results where student_id = %s", (student_id,), self.entity)

    def delete_by_assessment(self, assessment_id: int) -> int:
        return self._uow.write("delete from results where assessment_id = %s", (assessment_id,), self.entity)


class DBFeedbackRepository(_DBRepository):
    table = "feedback"
    entity = "feedback"
    columns = ("author_user_id", "subject", "message", "created_at", "is_resolved")
    model = Feedback

    def list_by_author(self, user_id: str) -> List[Feedback]:
        return self._where("author_user_id = %s", (user_id,))

    def list_unresolved(self) -> List[Feedback]:
        return self._where("is_resolved = false", ())


class DBUnitOfWork:
    """One psycopg connection shared by all repositories of this unit."""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._conn = None
        self._explicit = False
        self.sections = DBSectionRepository(self)
        self.instructors = DBInstructorRepository(self)
        self.students = DBStudentRepository(self)
        self.assessments = DBAssessmentRepository(self)
        self.visibilities = DBVisibilityRepository(self)
        self.results = DBResultRepository(self)
        self.feedback = DBFeedbackRepository(self)

    def __enter__(self) -> "DBUnitOfWork":
        try:
            self._conn = psycopg.connect(self._dsn)
        except psycopg.Error as exc:
            logger.warning("Academics DB unavailable: %s", _sanitize_error_message(str(exc)))
            raise InternalError("database_unavailable") from exc
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn, self._conn = self._conn, None
        self._explicit = False
        if conn is None:
            return
        try:
            # Writes were committed already; this only ends an open read or an abandoned transaction.
            conn.rollback()
        finally:
            conn.close()

    def _require_conn(self):
        if self._conn is None:
            raise InternalError("unit_of_work_closed")
        return self._conn

    def _run(self, sql: str, params: Tuple, entity: str, *, fetch: str | None, write: bool):
        conn = self._require_conn()
        try:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                if fetch == "one":
                    result = cur.fetchone()
                elif fetch == "all":
                    result = cur.fetchall()
                else:
                    result = cur.rowcount
            if write and not self._explicit:
                conn.commit()
            return result
        except psycopg.Error as exc:
            if not self._explicit:
                conn.rollback()
            raise _translate(exc, entity) from exc

    def fetch_all(self, sql: str, params: Tuple, entity: str) -> list:
        return self._run(sql, params, entity, fetch="all", write=False)

    def write_one(self, sql: str, params: Tuple, entity: str):
        return self._run(sql, params, entity, fetch="one", write=True)

    def write(self, sql: str, params: Tuple, entity: str) -> int:
        return int(self._run(sql, params, entity, fetch=None, write=True) or 0)

    def begin_transaction(self) -> None:
        conn = self._require_conn()
        if self._explicit:
            raise InternalError("transaction_already_open")
        conn.rollback()
        self._explicit = True

    def commit(self) -> None:
        if not self._explicit:
            return
        try:
            self._require_conn().commit()
        except psycopg.Error as exc:
            raise _translate(exc, "transaction") from exc
        finally:
            self._explicit = False

    def rollback(self) -> None:
        self._explicit = False
        if self._conn is not None:
            self._conn.rollback()


class DBAcademicsRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        """Initialize the Postgres-backed gateway.

        Does not open a connection eagerly; every unit of work opens its own.
        Raises RuntimeError when psycopg is missing or no DSN is configured so
        the web adapter can fall back to the in-memory store.
        """
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBAcademicsRepo")
        self._dsn = dsn or _dsn()

    def unit_of_work(self) -> DBUnitOfWork:
        return DBUnitOfWork(self._dsn)

    def ping(self) -> bool:
        try:
            with psycopg.connect(self._dsn, connect_timeout=3) as conn:
                with conn.cursor() as cur:
                    cur.execute("select 1")
                    cur.fetchone()
            return True
        except psycopg.Error as exc:
            logger.warning("Academics DB ping failed: %s", _sanitize_error_message(str(exc)))
            return False

    def apply_schema(self) -> None:
        """Create tables and indexes when missing (idempotent)."""
        ddl = SCHEMA_PATH.read_text(encoding="utf-8")
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(ddl)
            conn.commit()


__all__ = ["DBAcademicsRepo", "DBUnitOfWork", "HAVE_PSYCOPG", "SCHEMA_PATH"]
