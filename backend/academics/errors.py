"""
Error taxonomy for the academics bounded context.

Each error derives from the builtin the web adapter already understands
(LookupError -> 404, PermissionError -> 403, ValueError -> 400) and carries a
short machine-readable `code` used as the `detail` of the JSON error body.
"""
from __future__ import annotations


class AcademicsError(Exception):
    """Base class; `code` is safe to expose to API clients."""

    def __init__(self, code: str, message: str | None = None):
        super().__init__(message or code)
        self.code = code


class NotFoundError(AcademicsError, LookupError):
    """Referenced section, assessment, result or profile does not exist."""


class ForbiddenError(AcademicsError, PermissionError):
    """Caller lacks ownership, or the assessment is hidden for their section."""


class ValidationError(AcademicsError, ValueError):
    """Malformed input or a violated precondition (e.g. unknown instructor)."""

    def __init__(self, code: str, field: str | None = None, message: str | None = None):
        super().__init__(code, message)
        self.field = field


class InternalError(AcademicsError, RuntimeError):
    """Persistence failure. The underlying cause is logged, never returned."""

    def __init__(self, code: str = "internal_error", message: str | None = None):
        super().__init__(code, message)


DOMAIN_ERRORS = (NotFoundError, ForbiddenError, ValidationError)

__all__ = [
    "AcademicsError",
    "NotFoundError",
    "ForbiddenError",
    "ValidationError",
    "InternalError",
    "DOMAIN_ERRORS",
]
