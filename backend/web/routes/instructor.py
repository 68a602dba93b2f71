"""
Instructor API routes: section overview, assessment visibility, results.

Why:
    Instructors decide which assessments each of their sections may attempt.
    Every assessment is visible unless an override hides it for a section.

Security:
    - Requires role `instructor` (admins are accepted as well) and ownership of
      the addressed section: 404 for unknown sections, 403 for foreign ones.
    - All responses include `Cache-Control: private, no-store`.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Request

from academics.errors import AcademicsError, NotFoundError
from academics.models import serialize
from academics.profiles import ProfileService
from academics.results import ResultSubmissionEngine, StudentResultSummary
from academics.sections import SectionDetail, SectionService
from academics.visibility import VisibilityEngine, VisibilityEntry
from identity_access.domain import ROLE_ADMIN, ROLE_INSTRUCTOR, CallerContext

from .common import (
    bad_request,
    error_response,
    get_repo,
    json_private,
    parse_id,
    read_json,
    require_role,
    run_sync,
)

instructor_router = APIRouter(tags=["Instructor"])
logger = logging.getLogger("polaris.web.instructor")


def serialize_section(detail: SectionDetail) -> Dict[str, Any]:
    return {
        "id": detail.section.id,
        "instructor_id": detail.section.instructor_id,
        "instructor_user_id": detail.instructor.user_id if detail.instructor else None,
        "students": [serialize(s) for s in detail.students],
        "visibility_overrides": [serialize(v) for v in detail.overrides],
    }


def _serialize_entry(entry: VisibilityEntry) -> Dict[str, Any]:
    data = serialize(entry.assessment)
    data["is_visible"] = entry.is_visible
    data["overridden"] = entry.overridden
    return data


def _serialize_summary(summary: StudentResultSummary) -> Dict[str, Any]:
    return {
        "student_id": summary.student.id,
        "matric_no": summary.student.matric_no,
        "user_id": summary.student.user_id,
        "results": [serialize(r) for r in summary.results],
        "completed_assessments": summary.completed_assessments,
        "average_score": summary.average_score,
    }


def _own_sections(caller: CallerContext) -> List[SectionDetail]:
    repo = get_repo()
    instructor_id = caller.instructor_id
    if instructor_id is None:
        profile = ProfileService(repo).get_profiles(caller.user_id).instructor
        if profile is None:
            logger.info("Instructor token without instructor profile")
            raise NotFoundError("instructor_not_found")
        instructor_id = profile.id
    return SectionService(repo).list_sections_for_instructor(instructor_id)


@instructor_router.get("/api/instructor/sections")
async def list_my_sections(request: Request):
    """List the caller's sections with enrolled students and visibility overrides."""
    caller, error = require_role(request, ROLE_INSTRUCTOR)
    if error:
        return error
    try:
        sections = await run_sync(_own_sections, caller)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private([serialize_section(s) for s in sections])


@instructor_router.get("/api/instructor/sections/{section_id}/assessments/visibility")
async def get_section_visibility(request: Request, section_id: str):
    """Effective visibility of every assessment for one owned section.

    Behavior:
        - 200 `{section_id, visibilities: {assessment_id: bool}, assessments: [...]}`.
        - 400 `invalid_section_id`; 403 foreign section; 404 unknown section.
    """
    caller, error = require_role(request, ROLE_INSTRUCTOR, ROLE_ADMIN)
    if error:
        return error
    sid = parse_id(section_id)
    if sid is None:
        return bad_request("invalid_section_id")
    try:
        entries = await run_sync(VisibilityEngine(get_repo()).list_visibility_summary, sid, caller)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(
        {
            "section_id": sid,
            "visibilities": {str(e.assessment.id): e.is_visible for e in entries},
            "assessments": [_serialize_entry(e) for e in entries],
        }
    )


@instructor_router.put("/api/instructor/sections/{section_id}/assessments/{assessment_id}/visibility")
async def set_assessment_visibility(request: Request, section_id: str, assessment_id: str):
    """Show or hide one assessment for one owned section.

    Body: a bare JSON boolean.

    Behavior:
        - 200 with `{section_id, assessment_id, is_visible, overridden}`.
        - 400 on invalid identifiers or body (`missing_visible`, `invalid_visible_type`).
        - 403 foreign section; 404 unknown section or assessment.
    """
    caller, error = require_role(request, ROLE_INSTRUCTOR, ROLE_ADMIN)
    if error:
        return error
    sid = parse_id(section_id)
    if sid is None:
        return bad_request("invalid_section_id")
    aid = parse_id(assessment_id)
    if aid is None:
        return bad_request("invalid_assessment_id")
    payload, error = await read_json(request, missing_detail="missing_visible")
    if error:
        return error
    if payload is None:
        return bad_request("missing_visible")
    if not isinstance(payload, bool):
        return bad_request("invalid_visible_type")
    try:
        record = await run_sync(VisibilityEngine(get_repo()).set_visibility, sid, aid, payload, caller)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(
        {
            "section_id": record.section_id,
            "assessment_id": record.assessment_id,
            "is_visible": record.is_visible,
            "overridden": record.overridden,
        }
    )


@instructor_router.put("/api/instructor/sections/{section_id}/assessments/visibility/bulk")
async def bulk_set_assessment_visibility(request: Request, section_id: str):
    """Apply many visibility changes for one owned section in a single transaction.

    Body: `{"<assessment_id>": true|false, ...}`. Unknown assessments reject the
    whole batch with 404; nothing is stored in that case.
    """
    caller, error = require_role(request, ROLE_INSTRUCTOR, ROLE_ADMIN)
    if error:
        return error
    sid = parse_id(section_id)
    if sid is None:
        return bad_request("invalid_section_id")
    payload, error = await read_json(request)
    if error:
        return error
    if not isinstance(payload, dict):
        return bad_request("invalid_visibility_map")
    mapping: Dict[int, bool] = {}
    for key, value in payload.items():
        aid = parse_id(key)
        if aid is None:
            return bad_request("invalid_assessment_id")
        if not isinstance(value, bool):
            return bad_request("invalid_visible_type")
        mapping[aid] = value
    try:
        updated = await run_sync(VisibilityEngine(get_repo()).bulk_set_visibility, sid, mapping, caller)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private({"section_id": sid, "updated": updated})


@instructor_router.get("/api/instructor/sections/{section_id}/results")
async def list_section_results(request: Request, section_id: str):
    """Results of an owned section grouped per enrolled student."""
    caller, error = require_role(request, ROLE_INSTRUCTOR, ROLE_ADMIN)
    if error:
        return error
    sid = parse_id(section_id)
    if sid is None:
        return bad_request("invalid_section_id")
    try:
        summaries = await run_sync(ResultSubmissionEngine(get_repo()).list_results_for_section, sid, caller)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private([_serialize_summary(s) for s in summaries])
