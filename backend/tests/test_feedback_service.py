"""Feedback service — validation, author/admin access and triage."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from academics.errors import ForbiddenError, NotFoundError, ValidationError
from academics.feedback import FeedbackService
from identity_access.domain import CallerContext

STUDENT = CallerContext(user_id="stud-1", roles=frozenset({"student"}))
INSTRUCTOR = CallerContext(user_id="inst-1", roles=frozenset({"instructor"}))
ADMIN = CallerContext(user_id="admin-1", roles=frozenset({"admin"}))


def _service(repo) -> FeedbackService:
    ticks = count()
    start = datetime(2030, 1, 1, tzinfo=timezone.utc)
    return FeedbackService(repo, clock=lambda: start + timedelta(minutes=next(ticks)))


def test_create_validates_lengths(memory_repo):
    service = _service(memory_repo)
    entry = service.create_feedback(STUDENT, "  Quiz 2 ", " Question 4 is ambiguous ")
    assert (entry.subject, entry.message, entry.is_resolved) == ("Quiz 2", "Question 4 is ambiguous", False)

    with pytest.raises(ValidationError) as exc:
        service.create_feedback(STUDENT, "x" * 101, "body")
    assert exc.value.code == "invalid_subject"
    with pytest.raises(ValidationError) as exc:
        service.create_feedback(STUDENT, "subject", "   ")
    assert exc.value.code == "invalid_message"


def test_author_or_admin_may_read(memory_repo):
    service = _service(memory_repo)
    entry = service.create_feedback(STUDENT, "Subject", "Message")

    assert service.get_feedback(STUDENT, entry.id).id == entry.id
    assert service.get_feedback(ADMIN, entry.id).id == entry.id
    with pytest.raises(ForbiddenError):
        service.get_feedback(INSTRUCTOR, entry.id)
    with pytest.raises(NotFoundError):
        service.get_feedback(ADMIN, 999)


def test_listing_is_newest_first_and_scoped(memory_repo):
    service = _service(memory_repo)
    first = service.create_feedback(STUDENT, "one", "m")
    second = service.create_feedback(INSTRUCTOR, "two", "m")
    third = service.create_feedback(STUDENT, "three", "m")

    assert [f.id for f in service.list_all()] == [third.id, second.id, first.id]
    assert [f.id for f in service.list_mine(STUDENT)] == [third.id, first.id]


def test_resolve_unresolve_and_delete(memory_repo):
    service = _service(memory_repo)
    a = service.create_feedback(STUDENT, "a", "m")
    b = service.create_feedback(STUDENT, "b", "m")

    assert service.set_resolved(a.id, True).is_resolved is True
    assert [f.id for f in service.list_unresolved()] == [b.id]
    assert service.set_resolved(a.id, False).is_resolved is False

    service.delete(b.id)
    with pytest.raises(NotFoundError):
        service.delete(b.id)
    with pytest.raises(NotFoundError):
        service.set_resolved(b.id, True)
