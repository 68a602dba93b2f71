"""
Student API routes: submit results, read own results, section and profile.

Security:
    - Requires role `student`; identity and section come from verified token
      claims (`CallerContext`), never from the request body.
    - Submissions for assessments hidden from the caller's section answer 403
      and store nothing.
    - All responses include `Cache-Control: private, no-store`.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from academics.errors import AcademicsError
from academics.models import serialize
from academics.profiles import ProfileService
from academics.results import ResultSubmissionEngine
from academics.sections import SectionService
from academics.visibility import VisibilityEngine
from identity_access.domain import ROLE_STUDENT

from .common import (
    bad_request,
    error_response,
    get_repo,
    json_private,
    parse_id,
    private_error,
    require_role,
    run_sync,
)

student_router = APIRouter(tags=["Student"])


class ResultSubmitPayload(BaseModel):
    # Accept loose typing to avoid FastAPI 422 and surface contract error codes.
    assessment_id: object | None = None
    score: object | None = None
    date_taken: object | None = None


def _parse_timestamp(value: object) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError("invalid_date_taken")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _section_view(section_id: int) -> Dict[str, Any]:
    repo = get_repo()
    detail = SectionService(repo).get_section(section_id)
    assessments = VisibilityEngine(repo).list_visible_assessments(section_id)
    return {
        "id": detail.section.id,
        "instructor_id": detail.section.instructor_id,
        "instructor_user_id": detail.instructor.user_id if detail.instructor else None,
        "student_count": len(detail.students),
        "assessments": [serialize(a) for a in assessments],
    }


@student_router.post("/api/student/results")
async def submit_result(request: Request, payload: ResultSubmitPayload):
    """Submit a result for an assessment, or retake it.

    Behavior:
        - 201 + `Location` on the first submission for the assessment.
        - 200 when an existing result was overwritten (retake).
        - 400 `invalid_assessment_id`, `invalid_score`, `invalid_date_taken`,
          `missing_student_id`.
        - 403 `assessment_not_available` when hidden for the caller's section.
        - 404 `assessment_not_found`.
    """
    caller, error = require_role(request, ROLE_STUDENT)
    if error:
        return error
    assessment_id = parse_id(payload.assessment_id)
    if assessment_id is None:
        return bad_request("invalid_assessment_id", "assessment_id")
    score = payload.score
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return bad_request("invalid_score", "score")
    taken_at = None
    if payload.date_taken is not None:
        try:
            taken_at = _parse_timestamp(payload.date_taken)
        except ValueError:
            return bad_request("invalid_date_taken", "date_taken")
    try:
        outcome = await run_sync(
            ResultSubmissionEngine(get_repo()).submit_result, caller, assessment_id, score, taken_at
        )
    except AcademicsError as exc:
        return error_response(exc)
    body = serialize(outcome.result)
    if outcome.created:
        return json_private(
            body,
            status_code=201,
            headers={"Location": f"/api/student/results/{outcome.result.id}"},
        )
    return json_private(body, status_code=200)


@student_router.get("/api/student/results")
async def list_my_results(request: Request):
    caller, error = require_role(request, ROLE_STUDENT)
    if error:
        return error
    if caller.student_id is None:
        return bad_request("missing_student_id", "student_id")
    try:
        results = await run_sync(ResultSubmissionEngine(get_repo()).list_results_for_student, caller.student_id)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private([serialize(r) for r in results])


@student_router.get("/api/student/results/{result_id}")
async def get_my_result(request: Request, result_id: str):
    """Return one of the caller's results (403 when owned by someone else)."""
    caller, error = require_role(request, ROLE_STUDENT)
    if error:
        return error
    rid = parse_id(result_id)
    if rid is None:
        return bad_request("invalid_result_id")
    try:
        result = await run_sync(ResultSubmissionEngine(get_repo()).get_result, caller, rid)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(serialize(result))


@student_router.get("/api/student/sections/current")
async def get_current_section(request: Request):
    """The caller's section with the assessments visible to it."""
    caller, error = require_role(request, ROLE_STUDENT)
    if error:
        return error
    if caller.section_id is None:
        return private_error({"error": "not_found", "detail": "not_enrolled"}, status_code=404)
    try:
        view = await run_sync(_section_view, caller.section_id)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(view)


@student_router.get("/api/student/sections/{section_id}")
async def get_section(request: Request, section_id: str):
    """Same as `/current`, addressed by id; other sections answer 403."""
    caller, error = require_role(request, ROLE_STUDENT)
    if error:
        return error
    sid = parse_id(section_id)
    if sid is None:
        return bad_request("invalid_section_id")
    if caller.section_id != sid:
        return private_error({"error": "forbidden", "detail": "section_forbidden"}, status_code=403)
    try:
        view = await run_sync(_section_view, sid)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(view)


@student_router.get("/api/student/profile")
async def get_profile(request: Request):
    caller, error = require_role(request, ROLE_STUDENT)
    if error:
        return error
    if caller.student_id is None:
        return bad_request("missing_student_id", "student_id")
    try:
        student = await run_sync(ProfileService(get_repo()).get_student_profile, caller.student_id)
    except AcademicsError as exc:
        return error_response(exc)
    body = serialize(student)
    body["full_name"] = caller.full_name
    body["email"] = caller.email
    return json_private(body)
