"""
Entities of the academics bounded context.

Plain dataclasses shared by both gateway backends. Identifiers are integers
assigned by the store on `add`; `id=None` marks an entity not yet persisted.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple


@dataclass
class Instructor:
    user_id: str
    id: Optional[int] = None


@dataclass
class Section:
    instructor_id: int
    id: Optional[int] = None


@dataclass
class Assessment:
    title: str
    max_score: float
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class SectionAssessmentVisibility:
    """Override row; the absence of a row means the assessment is visible."""

    section_id: int
    assessment_id: int
    is_visible: bool

    @property
    def id(self) -> Tuple[int, int]:
        return (self.section_id, self.assessment_id)


@dataclass
class Student:
    matric_no: str
    user_id: str
    section_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class Result:
    student_id: int
    assessment_id: int
    score: float
    taken_at: datetime
    id: Optional[int] = None


@dataclass
class Feedback:
    author_user_id: str
    subject: str
    message: str
    created_at: datetime
    is_resolved: bool = False
    id: Optional[int] = None


def serialize(entity) -> Dict[str, Any]:
    """Return a JSON-friendly dict for an entity (datetimes as ISO 8601)."""
    out: Dict[str, Any] = {}
    for key, value in asdict(entity).items():
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        out[key] = value
    return out


__all__ = [
    "Instructor",
    "Section",
    "Assessment",
    "SectionAssessmentVisibility",
    "Student",
    "Result",
    "Feedback",
    "serialize",
]
