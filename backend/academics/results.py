"""
Result submission and retrieval.

Each (student, assessment) pair holds at most one result. A submission is a
first attempt when no row exists and a retake otherwise; a retake overwrites
score and date in place. Submissions are only accepted for assessments that
are visible to the student's section.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from identity_access.domain import CallerContext

from .errors import ForbiddenError, NotFoundError, ValidationError
from .gateway import AcademicsGateway
from .models import Result, Student
from .visibility import effective_visibility, require_section_owner

logger = logging.getLogger("polaris.academics.results")


def clamp_score(score: float, max_score: float) -> float:
    """Bound a submitted score to [0, max_score]; rejects NaN and infinities."""
    try:
        value = float(score)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("invalid_score", field="score")
    if math.isnan(value) or math.isinf(value):
        raise ValidationError("invalid_score", field="score")
    return min(max(value, 0.0), float(max_score))


@dataclass
class SubmissionOutcome:
    result: Result
    created: bool


@dataclass
class StudentResultSummary:
    student: Student
    results: List[Result] = field(default_factory=list)

    @property
    def completed_assessments(self) -> int:
        return len(self.results)

    @property
    def average_score(self) -> Optional[float]:
        if not self.results:
            return None
        return sum(r.score for r in self.results) / len(self.results)


class ResultSubmissionEngine:
    def __init__(
        self,
        gateway: AcademicsGateway,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._gateway = gateway
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def submit_result(
        self,
        caller: CallerContext,
        assessment_id: int,
        score: float,
        taken_at: Optional[datetime] = None,
    ) -> SubmissionOutcome:
        """Record or overwrite the caller's result for one assessment.

        Behavior:
            - Caller must carry a student id claim (`ValidationError`).
            - Unknown assessment -> `NotFoundError`.
            - Assessment hidden for the caller's section -> `ForbiddenError`;
              nothing is written in that case.
            - Score is clamped to [0, max_score].
            - Atomic upsert; `created` is False for a retake.
        """
        if caller.student_id is None:
            raise ValidationError("missing_student_id", field="student_id")
        with self._gateway.unit_of_work() as uow:
            assessment = uow.assessments.get(assessment_id)
            if assessment is None:
                raise NotFoundError("assessment_not_found")
            if caller.section_id is not None and not effective_visibility(uow, caller.section_id, assessment_id):
                raise ForbiddenError(
                    "assessment_not_available",
                    "This assessment is not available for your section",
                )
            value = clamp_score(score, assessment.max_score)
            result, created = uow.results.upsert(
                caller.student_id,
                assessment_id,
                value,
                taken_at or self._clock(),
            )
        logger.info(
            "Result %s student=%s assessment=%s",
            "created" if created else "updated",
            caller.student_id,
            assessment_id,
        )
        return SubmissionOutcome(result=result, created=created)

    def get_result(self, caller: CallerContext, result_id: int) -> Result:
        """Return one result; only its owner may read it."""
        with self._gateway.unit_of_work() as uow:
            result = uow.results.get(result_id)
        if result is None:
            raise NotFoundError("result_not_found")
        if caller.student_id is None or result.student_id != caller.student_id:
            raise ForbiddenError("result_forbidden")
        return result

    def list_results_for_student(self, student_id: int) -> List[Result]:
        with self._gateway.unit_of_work() as uow:
            return uow.results.list_by_student(student_id)

    def list_results_for_section(
        self, section_id: int, caller: Optional[CallerContext] = None
    ) -> List[StudentResultSummary]:
        """Group a section's results by enrolled student.

        Students without results are listed with an empty result list.
        """
        with self._gateway.unit_of_work() as uow:
            if caller is not None:
                require_section_owner(uow, caller, section_id)
            elif uow.sections.get(section_id) is None:
                raise NotFoundError("section_not_found")
            students = uow.students.list_by_section(section_id)
            results = uow.results.list_by_section(section_id)
        by_student: Dict[int, StudentResultSummary] = {s.id: StudentResultSummary(student=s) for s in students}
        for r in results:
            summary = by_student.get(r.student_id)
            if summary is not None:
                summary.results.append(r)
        return list(by_student.values())


__all__ = [
    "clamp_score",
    "ResultSubmissionEngine",
    "SubmissionOutcome",
    "StudentResultSummary",
]
