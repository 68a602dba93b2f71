"""
Feedback API routes.

Students and instructors submit feedback; admins list, resolve and delete it.
Authors may read their own entries.
"""
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Request
from pydantic import BaseModel

from academics.errors import AcademicsError
from academics.feedback import FeedbackService
from academics.models import Feedback, serialize
from identity_access.domain import ROLE_ADMIN, ROLE_INSTRUCTOR, ROLE_STUDENT

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

feedback_router = APIRouter(tags=["Feedback"])
logger = logging.getLogger("polaris.web.feedback")

_ANY_ROLE = (ROLE_ADMIN, ROLE_INSTRUCTOR, ROLE_STUDENT)


class FeedbackPayload(BaseModel):
    subject: object | None = None
    message: object | None = None


def _serialize(entry: Feedback) -> Dict[str, Any]:
    return serialize(entry)


@feedback_router.post("/api/feedback")
async def create_feedback(request: Request, payload: FeedbackPayload):
    """Submit feedback (201 + Location); 400 `invalid_subject` / `invalid_message`."""
    caller, error = require_role(request, ROLE_STUDENT, ROLE_INSTRUCTOR)
    if error:
        return error
    if not isinstance(payload.subject, str):
        return bad_request("invalid_subject", "subject")
    if not isinstance(payload.message, str):
        return bad_request("invalid_message", "message")
    try:
        entry = await run_sync(FeedbackService(get_repo()).create_feedback, caller, payload.subject, payload.message)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(_serialize(entry), status_code=201, headers={"Location": f"/api/feedback/{entry.id}"})


@feedback_router.get("/api/feedback")
async def list_feedback(request: Request):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    try:
        entries = await run_sync(FeedbackService(get_repo()).list_all)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private([_serialize(e) for e in entries])


@feedback_router.get("/api/feedback/my")
async def list_my_feedback(request: Request):
    caller, error = require_role(request, *_ANY_ROLE)
    if error:
        return error
    try:
        entries = await run_sync(FeedbackService(get_repo()).list_mine, caller)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private([_serialize(e) for e in entries])


@feedback_router.get("/api/feedback/unresolved")
async def list_unresolved_feedback(request: Request):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    try:
        entries = await run_sync(FeedbackService(get_repo()).list_unresolved)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private([_serialize(e) for e in entries])


@feedback_router.get("/api/feedback/{feedback_id}")
async def get_feedback(request: Request, feedback_id: str):
    """Admins read any entry; authors their own (403 `feedback_forbidden` otherwise)."""
    caller, error = require_role(request, *_ANY_ROLE)
    if error:
        return error
    fid = parse_id(feedback_id)
    if fid is None:
        return bad_request("invalid_feedback_id")
    try:
        entry = await run_sync(FeedbackService(get_repo()).get_feedback, caller, fid)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(_serialize(entry))


@feedback_router.delete("/api/feedback/{feedback_id}")
async def delete_feedback(request: Request, feedback_id: str):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    fid = parse_id(feedback_id)
    if fid is None:
        return bad_request("invalid_feedback_id")
    try:
        await run_sync(FeedbackService(get_repo()).delete, fid)
    except AcademicsError as exc:
        return error_response(exc)
    logger.info("Feedback deleted feedback_id=%s", fid)
    return no_content()


async def _set_resolved(request: Request, feedback_id: str, resolved: bool):
    _, error = require_role(request, ROLE_ADMIN)
    if error:
        return error
    fid = parse_id(feedback_id)
    if fid is None:
        return bad_request("invalid_feedback_id")
    try:
        entry = await run_sync(FeedbackService(get_repo()).set_resolved, fid, resolved)
    except AcademicsError as exc:
        return error_response(exc)
    return json_private(_serialize(entry))


@feedback_router.put("/api/feedback/{feedback_id}/resolve")
async def resolve_feedback(request: Request, feedback_id: str):
    return await _set_resolved(request, feedback_id, True)


@feedback_router.put("/api/feedback/{feedback_id}/unresolve")
async def unresolve_feedback(request: Request, feedback_id: str):
    return await _set_resolved(request, feedback_id, False)
