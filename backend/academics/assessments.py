"""Assessment administration (global catalogue, not owned by any section)."""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .errors import NotFoundError, ValidationError
from .gateway import AcademicsGateway, atomic
from .models import Assessment

logger = logging.getLogger("polaris.academics.assessments")

TITLE_MAX_LENGTH = 200

# Sample catalogue used by `db_setup seed-assessments`: (title, description, max_score, due in days).
SAMPLE_ASSESSMENTS = (
    (
        "Introduction to Cryptography Quiz",
        "Basic concepts of cryptography including symmetric and asymmetric encryption, hashing, and digital signatures.",
        100.0,
        14,
    ),
    (
        "AES Encryption Assignment",
        "Practical exercise on Advanced Encryption Standard implementation and analysis.",
        150.0,
        21,
    ),
    (
        "RSA Key Generation Lab",
        "Hands-on lab for understanding RSA key pair generation and digital signatures.",
        120.0,
        28,
    ),
    (
        "Hash Functions and MAC",
        "Assessment covering cryptographic hash functions and message authentication codes.",
        100.0,
        35,
    ),
    (
        "PKI and Digital Certificates",
        "Comprehensive exam on Public Key Infrastructure and certificate management.",
        200.0,
        42,
    ),
)


def _validated(title: str, max_score: float) -> tuple:
    title = (title or "").strip()
    if not title or len(title) > TITLE_MAX_LENGTH:
        raise ValidationError("invalid_title", field="title")
    try:
        score = float(max_score)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("invalid_max_score", field="max_score")
    if not math.isfinite(score) or score <= 0:
        raise ValidationError("invalid_max_score", field="max_score")
    return title, score


class AssessmentService:
    def __init__(self, gateway: AcademicsGateway) -> None:
        self._gateway = gateway

    def list_assessments(self) -> List[Assessment]:
        with self._gateway.unit_of_work() as uow:
            return uow.assessments.list_all()

    def get_assessment(self, assessment_id: int) -> Assessment:
        with self._gateway.unit_of_work() as uow:
            assessment = uow.assessments.get(assessment_id)
        if assessment is None:
            raise NotFoundError("assessment_not_found")
        return assessment

    def create_assessment(
        self,
        *,
        title: str,
        max_score: float,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> Assessment:
        title, score = _validated(title, max_score)
        with self._gateway.unit_of_work() as uow:
            return uow.assessments.add(
                Assessment(title=title, max_score=score, description=description, due_date=due_date)
            )

    def update_assessment(
        self,
        assessment_id: int,
        *,
        title: str,
        max_score: float,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> Assessment:
        title, score = _validated(title, max_score)
        with self._gateway.unit_of_work() as uow:
            current = uow.assessments.get(assessment_id)
            if current is None:
                raise NotFoundError("assessment_not_found")
            return uow.assessments.update(
                replace(current, title=title, max_score=score, description=description, due_date=due_date)
            )

    def delete_assessment(self, assessment_id: int) -> None:
        """Delete an assessment together with its results and overrides."""
        with self._gateway.unit_of_work() as uow:
            with atomic(uow):
                if uow.assessments.get(assessment_id) is None:
                    raise NotFoundError("assessment_not_found")
                results = uow.results.delete_by_assessment(assessment_id)
                overrides = uow.visibilities.delete_by_assessment(assessment_id)
                uow.assessments.delete(assessment_id)
        logger.info(
            "Assessment deleted id=%s results_removed=%s overrides_removed=%s", assessment_id, results, overrides
        )

    def seed_sample_assessments(self, now: Optional[datetime] = None) -> List[Assessment]:
        """Insert the sample catalogue when no assessment exists yet."""
        now = now or datetime.now(timezone.utc)
        with self._gateway.unit_of_work() as uow:
            with atomic(uow):
                if uow.assessments.list_all():
                    return []
                created = [
                    uow.assessments.add(
                        Assessment(
                            title=title,
                            description=description,
                            max_score=score,
                            due_date=now + timedelta(days=days),
                        )
                    )
                    for title, description, score, days in SAMPLE_ASSESSMENTS
                ]
        logger.info("Seeded %s sample assessments", len(created))
        return created


__all__ = ["AssessmentService", "SAMPLE_ASSESSMENTS"]
