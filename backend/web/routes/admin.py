"""
Admin API routes: sections, assessments, profile records.

Notes:
    - Identity users and passwords are managed by the identity provider; admins
      maintain the local student/instructor profile rows that reference them.
    - Multi-step changes (section/assessment deletion, role changes) run in a
      single transaction inside the academics services.
    - All responses include `Cache-Control: private, no-store`.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from academics.assessments import AssessmentService
from academics.errors import AcademicsError
from academics.models import serialize
from academics.profiles import ProfileService, UserProfiles
from academics.sections import SectionService
from identity_access.domain import ROLE_ADMIN

from .common import (
    bad_request,
    error_response,
    get_repo,
    json_private,
    no_content,
    parse_id,
    require_role,
    run_sync,
)
from .instructor import serialize_section

admin_router = APIRouter(tags=["Admin"])
logger = logging.getLogger("polaris.web.admin")


class SectionPayload(BaseModel):
    # Accept loose typing to avoid FastAPI 422 and surface contract error codes.
    instructor_user_id: object | None = None


class AssessmentPayload(BaseModel):
    title: object | None = None
    description: object | None = None
    max_score: object | None = None
    due_date: object | None = None


class ProfilesPayload(BaseModel):
    roles: object | None = None
    matric_no: object | None = None
    section_id: object | None = None


def _serialize_profiles(profiles: UserProfiles) -> Dict[str, Any]:
    return {
        "user_id": profiles.user_id,
        "student": serialize(profiles.student) if profiles.student else None,
        "instructor": serialize(profiles.instructor) if profiles.instructor else None,
    }


def _user_id(raw: str) -> Optional[str]:
    value = (raw or "").strip()
    return value if 0 < len(value) <= 255 else None


def _assessment_fields(payload: AssessmentPayload) -> tuple[Optional[Dict[str, Any]], Optional[Any]]:
    """Validate an assessment body; returns (fields, error_response)."""
    if not isinstance(payload.title, str):
        return None, bad_request("invalid_title", "title")
    score = payload.max_score
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return None, bad_request("invalid_max_score", "max_score")
    description = payload.description
    if description is not None and not isinstance(description, str):
        return None, bad_request("invalid_description", "description")
    due_date = None
    if payload.due_date is not None:
        if not isinstance(payload.due_date, str):
            return None, bad_request("invalid_due_date", "due_date")
        text = payload.due_date.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            due_date = datetime.fromisoformat(text)
        except ValueError:
            return None, bad_request("invalid_due_date", "due_date")
        if due_date.tzinfo is None:
            due_date = due_date.replace(tzinfo=timezone.utc)
    return {
        "title": payload.title,
        "max_score": score,
        "description": (description or "").strip() or None,
        "due_date": due_date,
    }, None


def _profiles_fields(payload: ProfilesPayload) -> tuple[Optional[Dict[str, Any]], Optional[Any]]:
    roles = payload.roles
    if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
        return None, bad_request("invalid_roles", "roles")
    matric_no = payload.matric_no
    if matric_no is not None and not isinstance(matric_no, str):
        return None, bad_request("invalid_matric_no", "matric_no")
    section_id = None
    if payload.section_id is not None:
        section_id = parse_id(payload.section_id)
        if section_id is None:
            return None, bad_request("invalid_section_id", "section_id")
    return {"roles": roles, "matric_no": matric_no, "section_id": section_id}, None


# --- Sections ------------------------------------------------------------------

@admin_router.get("/api/admin/sections")
async def list_sections(request: Request):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    try:
        sections = await run_sync(SectionService(get_repo()).list_sections)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private([serialize_section(s) for s in sections])


@admin_router.post("/api/admin/sections")
async def create_section(request: Request, payload: SectionPayload):
    """Create a section for an existing instructor (400 when the instructor is unknown)."""
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    if not isinstance(payload.instructor_user_id, str) or not payload.instructor_user_id.strip():
        return bad_request("invalid_instructor_user_id", "instructor_user_id")
    try:
        detail = await run_sync(SectionService(get_repo()).create_section, payload.instructor_user_id.strip())
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(
        serialize_section(detail),
        status_code=201,
        headers={"Location": f"/api/admin/sections/{detail.section.id}"},
    )


@admin_router.get("/api/admin/sections/{section_id}")
async def get_section(request: Request, section_id: str):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    sid = parse_id(section_id)
    if sid is None:
        return bad_request("invalid_section_id")
    try:
        detail = await run_sync(SectionService(get_repo()).get_section, sid)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(serialize_section(detail))


@admin_router.put("/api/admin/sections/{section_id}")
async def update_section(request: Request, section_id: str, payload: SectionPayload):
    """Reassign a section to another instructor."""
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    sid = parse_id(section_id)
    if sid is None:
        return bad_request("invalid_section_id")
    if not isinstance(payload.instructor_user_id, str) or not payload.instructor_user_id.strip():
        return bad_request("invalid_instructor_user_id", "instructor_user_id")
    try:
        detail = await run_sync(SectionService(get_repo()).update_section, sid, payload.instructor_user_id.strip())
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(serialize_section(detail))


@admin_router.delete("/api/admin/sections/{section_id}")
async def delete_section(request: Request, section_id: str):
    """Delete a section: detach students, drop overrides, remove the section (one transaction)."""
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    sid = parse_id(section_id)
    if sid is None:
        return bad_request("invalid_section_id")
    try:
        await run_sync(SectionService(get_repo()).delete_section, sid)
    except AcademicsError as exc:
        return error_response(exc)
    logger.info("Section deleted section_id=%s", sid)
    return no_content()


@admin_router.post("/api/admin/sections/{section_id}/students/{user_id}")
async def add_student_to_section(request: Request, section_id: str, user_id: str):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    sid = parse_id(section_id)
    if sid is None:
        return bad_request("invalid_section_id")
    uid = _user_id(user_id)
    if uid is None:
        return bad_request("invalid_user_id")
    try:
        student = await run_sync(SectionService(get_repo()).add_student_to_section, sid, uid)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(serialize(student))


@admin_router.delete("/api/admin/sections/{section_id}/students/{user_id}")
async def remove_student_from_section(request: Request, section_id: str, user_id: str):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    sid = parse_id(section_id)
    if sid is None:
        return bad_request("invalid_section_id")
    uid = _user_id(user_id)
    if uid is None:
        return bad_request("invalid_user_id")
    try:
        student = await run_sync(SectionService(get_repo()).remove_student_from_section, sid, uid)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(serialize(student))


# --- Assessments ---------------------------------------------------------------

@admin_router.get("/api/admin/assessments")
async def list_assessments(request: Request):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    try:
        assessments = await run_sync(AssessmentService(get_repo()).list_assessments)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private([serialize(a) for a in assessments])


@admin_router.post("/api/admin/assessments")
async def create_assessment(request: Request, payload: AssessmentPayload):
    """Create an assessment; it is visible to every section until hidden."""
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    fields, error = _assessment_fields(payload)
    if error:
        return error
    try:
        assessment = await run_sync(lambda: AssessmentService(get_repo()).create_assessment(**fields))
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(
        serialize(assessment),
        status_code=201,
        headers={"Location": f"/api/admin/assessments/{assessment.id}"},
    )


@admin_router.get("/api/admin/assessments/{assessment_id}")
async def get_assessment(request: Request, assessment_id: str):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    aid = parse_id(assessment_id)
    if aid is None:
        return bad_request("invalid_assessment_id")
    try:
        assessment = await run_sync(AssessmentService(get_repo()).get_assessment, aid)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(serialize(assessment))


@admin_router.put("/api/admin/assessments/{assessment_id}")
async def update_assessment(request: Request, assessment_id: str, payload: AssessmentPayload):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    aid = parse_id(assessment_id)
    if aid is None:
        return bad_request("invalid_assessment_id")
    fields, error = _assessment_fields(payload)
    if error:
        return error
    try:
        assessment = await run_sync(lambda: AssessmentService(get_repo()).update_assessment(aid, **fields))
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(serialize(assessment))


@admin_router.delete("/api/admin/assessments/{assessment_id}")
async def delete_assessment(request: Request, assessment_id: str):
    """Delete an assessment with its results and visibility overrides."""
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    aid = parse_id(assessment_id)
    if aid is None:
        return bad_request("invalid_assessment_id")
    try:
        await run_sync(AssessmentService(get_repo()).delete_assessment, aid)
    except AcademicsError as exc:
        return error_response(exc)
    logger.info("Assessment deleted assessment_id=%s", aid)
    return no_content()


# --- Profiles ------------------------------------------------------------------

@admin_router.get("/api/admin/instructors")
async def list_instructors(request: Request):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    try:
        instructors = await run_sync(ProfileService(get_repo()).list_instructors)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private([serialize(i) for i in instructors])


@admin_router.get("/api/admin/users/{user_id}/profiles")
async def get_profiles(request: Request, user_id: str):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    uid = _user_id(user_id)
    if uid is None:
        return bad_request("invalid_user_id")
    try:
        profiles = await run_sync(ProfileService(get_repo()).get_profiles, uid)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(_serialize_profiles(profiles))


@admin_router.post("/api/admin/users/{user_id}/profiles")
async def create_profiles(request: Request, user_id: str, payload: ProfilesPayload):
    """Create student/instructor profile rows for a user of the identity provider.

    Behavior:
        - 201 with `{user_id, student, instructor}`.
        - 400 `invalid_roles`, `matric_no_required`, `matric_no_taken`, `profile_exists`.
    """
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    uid = _user_id(user_id)
    if uid is None:
        return bad_request("invalid_user_id")
    fields, error = _profiles_fields(payload)
    if error:
        return error
    try:
        profiles = await run_sync(lambda: ProfileService(get_repo()).create_profiles(uid, **fields))
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(_serialize_profiles(profiles), status_code=201)


@admin_router.put("/api/admin/users/{user_id}/roles")
async def change_roles(request: Request, user_id: str, payload: ProfilesPayload):
    """Apply a role change to the user's profile rows in one transaction.

    Removing the instructor role is refused (400 `instructor_has_sections`)
    while the instructor still owns sections.
    """
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    uid = _user_id(user_id)
    if uid is None:
        return bad_request("invalid_user_id")
    fields, error = _profiles_fields(payload)
    if error:
        return error
    try:
        profiles = await run_sync(lambda: ProfileService(get_repo()).apply_role_change(uid, **fields))
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(_serialize_profiles(profiles))


@admin_router.delete("/api/admin/users/{user_id}/profiles")
async def delete_profiles(request: Request, user_id: str):
    """Remove a user's profile rows; student results are deleted with them."""
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    uid = _user_id(user_id)
    if uid is None:
        return bad_request("invalid_user_id")
    try:
        await run_sync(ProfileService(get_repo()).delete_profiles, uid)
    except AcademicsError as exc:
        return error_response(exc)
    logger.info("Profiles deleted for user")
    return no_content()

