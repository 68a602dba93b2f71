"""User feedback: students and instructors write, admins triage."""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List

from identity_access.domain import CallerContext

from .errors import ForbiddenError, NotFoundError, ValidationError
from .gateway import AcademicsGateway
from .models import Feedback

SUBJECT_MAX_LENGTH = 100
MESSAGE_MAX_LENGTH = 1000


class FeedbackService:
    def __init__(self, gateway: AcademicsGateway, clock: Callable[[], datetime] | None = None) -> None:
        self._gateway = gateway
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create_feedback(self, caller: CallerContext, subject: str, message: str) -> Feedback:
        subject = (subject or "").strip()
        message = (message or "").strip()
        if not subject or len(subject) > SUBJECT_MAX_LENGTH:
            raise ValidationError("invalid_subject", field="subject")
        if not message or len(message) > MESSAGE_MAX_LENGTH:
            raise ValidationError("invalid_message", field="message")
        with self._gateway.unit_of_work() as uow:
            return uow.feedback.add(
                Feedback(
                    author_user_id=caller.user_id,
                    subject=subject,
                    message=message,
                    created_at=self._clock(),
                )
            )

    def get_feedback(self, caller: CallerContext, feedback_id: int) -> Feedback:
        """Admins read any entry; everyone else only their own."""
        with self._gateway.unit_of_work() as uow:
            entry = uow.feedback.get(feedback_id)
        if entry is None:
            raise NotFoundError("feedback_not_found")
        if not caller.is_admin and entry.author_user_id != caller.user_id:
            raise ForbiddenError("feedback_forbidden")
        return entry

    def list_all(self) -> List[Feedback]:
        with self._gateway.unit_of_work() as uow:
            entries = uow.feedback.list_all()
        return sorted(entries, key=lambda f: f.created_at, reverse=True)

    def list_mine(self, caller: CallerContext) -> List[Feedback]:
        with self._gateway.unit_of_work() as uow:
            entries = uow.feedback.list_by_author(caller.user_id)
        return sorted(entries, key=lambda f: f.created_at, reverse=True)

    def list_unresolved(self) -> List[Feedback]:
        with self._gateway.unit_of_work() as uow:
            entries = uow.feedback.list_unresolved()
        return sorted(entries, key=lambda f: f.created_at, reverse=True)

    def delete(self, feedback_id: int) -> None:
        with self._gateway.unit_of_work() as uow:
            if not uow.feedback.delete(feedback_id):
                raise NotFoundError("feedback_not_found")

    def set_resolved(self, feedback_id: int, resolved: bool) -> Feedback:
        with self._gateway.unit_of_work() as uow:
            entry = uow.feedback.get(feedback_id)
            if entry is None:
                raise NotFoundError("feedback_not_found")
            return uow.feedback.update(replace(entry, is_resolved=bool(resolved)))


__all__ = ["FeedbackService", "SUBJECT_MAX_LENGTH", "MESSAGE_MAX_LENGTH"]
