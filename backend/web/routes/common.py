"""
Shared helpers for the academics API routers.

Contains:
    - Repository wiring: prefers the Postgres-backed gateway when psycopg and a
      reachable DSN are available; falls back to the in-memory store for
      tests/local offline work. Tests call `set_repo` to swap implementations.
    - Role guards reading the `CallerContext` set by the auth middleware.
    - JSON responses with `Cache-Control: private, no-store` and the mapping
      from academics errors to status codes.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from academics.errors import AcademicsError, InternalError, ValidationError
from academics.repo_memory import MemoryAcademicsRepo
from identity_access.domain import CallerContext

logger = logging.getLogger("polaris.web")

# Try to use DB-backed repo when available; fallback to in-memory for dev/tests
try:  # late import to avoid hard dependency during unit tests
    from academics.repo_db import DBAcademicsRepo  # type: ignore
except Exception as exc:  # pragma: no cover - import failures in dev/test envs
    DBAcademicsRepo = None  # type: ignore
    _DB_REPO_IMPORT_ERROR = exc
else:
    _DB_REPO_IMPORT_ERROR = None


def _build_default_repo():
    """Select the academics gateway according to ACADEMICS_REPO.

    - `memory`: always the in-memory store.
    - `db`: the Postgres gateway; configuration errors propagate.
    - `auto` (default): Postgres when configured and reachable, else memory.
    """
    import config as _cfg  # type: ignore

    mode = _cfg.repo_mode()
    if mode == "memory":
        return MemoryAcademicsRepo()
    if DBAcademicsRepo is None:
        if mode == "db":
            raise RuntimeError(f"ACADEMICS_REPO=db but the DB gateway failed to import: {_DB_REPO_IMPORT_ERROR}")
        if _DB_REPO_IMPORT_ERROR:
            logger.warning("Academics repo import failed: %s", _DB_REPO_IMPORT_ERROR)
        return MemoryAcademicsRepo()
    try:
        repo = DBAcademicsRepo()
    except Exception as exc:
        if mode == "db":
            raise
        logger.info("Academics DB not configured (%s); using in-memory store", exc)
        return MemoryAcademicsRepo()
    if mode == "auto" and not repo.ping():
        logger.warning("Academics DB unreachable; using in-memory fallback")
        return MemoryAcademicsRepo()
    return repo


_REPO = None


def get_repo():
    """Lazy accessor so importing the routers never touches the database."""
    global _REPO
    if _REPO is None:
        _REPO = _build_default_repo()
    return _REPO


def set_repo(repo) -> None:
    """Allow tests to swap the academics gateway implementation."""
    global _REPO
    _REPO = repo


# --- Responses -------------------------------------------------------------------

def json_private(payload: Any, *, status_code: int = 200, headers: Optional[dict] = None) -> JSONResponse:
    """Return a JSONResponse with cache disabled for shared caches and browsers.

    All academics endpoints expose user- and role-scoped data.
    """
    merged = {"Cache-Control": "private, no-store"}
    if headers:
        merged.update(headers)
    return JSONResponse(content=payload, status_code=status_code, headers=merged)


def private_error(payload: dict, *, status_code: int) -> JSONResponse:
    """Return error JSON with private, no-store cache headers."""
    return JSONResponse(content=payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def no_content() -> Response:
    return Response(status_code=204, headers={"Cache-Control": "private, no-store"})


def bad_request(detail: str, field: Optional[str] = None) -> JSONResponse:
    body = {"error": "bad_request", "detail": detail}
    if field:
        body["field"] = field
    return private_error(body, status_code=400)


def error_response(exc: AcademicsError) -> JSONResponse:
    """Map an academics error to its HTTP response.

    Internal errors carry no detail; the cause was logged where it happened.
    """
    if isinstance(exc, InternalError):
        return private_error({"error": "internal_error"}, status_code=500)
    if isinstance(exc, ValidationError):
        return bad_request(exc.code, exc.field)
    if isinstance(exc, LookupError):
        return private_error({"error": "not_found", "detail": exc.code}, status_code=404)
    if isinstance(exc, PermissionError):
        return private_error({"error": "forbidden", "detail": exc.code}, status_code=403)
    logger.error("Unmapped academics error: %s", type(exc).__name__)
    return private_error({"error": "internal_error"}, status_code=500)


# --- Guards & parsing ------------------------------------------------------------

def current_caller(request: Request) -> Optional[CallerContext]:
    caller = getattr(request.state, "caller", None)
    return caller if isinstance(caller, CallerContext) else None


def require_role(request: Request, *roles: str) -> Tuple[Optional[CallerContext], Optional[JSONResponse]]:
    """Return (caller, error_response) ensuring the caller holds one of `roles`."""
    caller = current_caller(request)
    if caller is None:
        return None, private_error({"error": "unauthenticated"}, status_code=401)
    if not any(caller.has_role(r) for r in roles):
        return None, private_error({"error": "forbidden"}, status_code=403)
    return caller, None


def parse_id(value: Any) -> Optional[int]:
    """Parse a positive integer identifier without letting FastAPI return 422."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    text = str(value or "").strip()
    if not (text.isascii() and text.isdigit()):
        return None
    parsed = int(text)
    return parsed if parsed > 0 else None


async def read_json(request: Request, *, missing_detail: str = "missing_body") -> Tuple[Any, Optional[JSONResponse]]:
    """Decode the request body as JSON; returns (payload, error_response)."""
    raw = await request.body()
    if not raw.strip():
        return None, bad_request(missing_detail)
    try:
        return json.loads(raw), None
    except ValueError:
        return None, bad_request("invalid_json")


async def run_sync(fn: Callable, *args, **kwargs):
    """Run blocking engine/gateway work off the event loop."""
    return await asyncio.to_thread(fn, *args, **kwargs)
