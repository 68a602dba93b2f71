"Polaris LMS API"
from __future__ import annotations

import logging
import os
import sys as _sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from identity_access.tokens import AccessTokenError, caller_from_claims, verify_access_token

# Keep `main` and `backend.web.main` bound to the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("backend.web.main", _sys.modules[__name__])
elif __name__ == "backend.web.main":
    _sys.modules["main"] = _sys.modules[__name__]


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out/opt-in via POLARIS_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in _sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("POLARIS_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


try:
    from dotenv import load_dotenv
    if _should_load_dotenv():
        load_dotenv()
except ImportError:
    pass

# Minimal production safety checks (fail-fast on insecure config)
# Support both "flat" (Docker image) and package (repo test) layouts.
try:
    import config as _cfg  # type: ignore
except ImportError:  # pragma: no cover
    from backend.web import config as _cfg  # type: ignore
_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("polaris.web")

app = FastAPI(title="Polaris LMS", description="Sections, assessments and results", version="0.1.0")

from routes.admin import admin_router
from routes.feedback import feedback_router
from routes.instructor import instructor_router
from routes.student import student_router

_PRIVATE_HEADERS = {"Cache-Control": "private, no-store"}

# --- Auth Middleware -------------------------------------------------------------

def _is_public_path(path: str) -> bool:
    return path in ("/health", "/docs", "/openapi.json", "/docs/oauth2-redirect")


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def _unauthenticated() -> JSONResponse:
    return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=dict(_PRIVATE_HEADERS))


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    """Turn a verified bearer token into `request.state.caller`.

    Routers never look at raw claims; they read the immutable CallerContext.
    Token failures answer 401 and log only the error code.
    """
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    token = _bearer_token(request)
    if token is None:
        return _unauthenticated()
    try:
        claims = verify_access_token(token=token, settings=_cfg.load_token_settings())
        request.state.caller = caller_from_claims(claims)
    except AccessTokenError as exc:
        logger.warning("Bearer token rejected: %s", exc.code)
        return _unauthenticated()
    return await call_next(request)

# --- Security Headers Middleware ----------------------------------------------

@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    if _cfg.current_env() in ("prod", "production", "stage", "staging"):
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    # Never leak internals; the cause stays in the server log.
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc.__class__.__name__, exc_info=exc)
    return JSONResponse({"error": "internal_error"}, status_code=500, headers=dict(_PRIVATE_HEADERS))

# --- Routers --------------------------------------------------------------------

app.include_router(instructor_router)
app.include_router(student_router)
app.include_router(admin_router)
app.include_router(feedback_router)


@app.get("/health")
async def health_check():
    # Security: include no-store to avoid caching any runtime status.
    return JSONResponse({"status": "healthy"}, headers=dict(_PRIVATE_HEADERS))


@app.get("/api/me")
async def get_me(request: Request):
    """Echo the verified caller context (roles sorted)."""
    caller = getattr(request.state, "caller", None)
    if caller is None:
        return _unauthenticated()
    return JSONResponse(
        {
            "user_id": caller.user_id,
            "roles": sorted(caller.roles),
            "student_id": caller.student_id,
            "section_id": caller.section_id,
            "instructor_id": caller.instructor_id,
            "matric_no": caller.matric_no,
            "name": caller.full_name,
            "email": caller.email,
        },
        headers=dict(_PRIVATE_HEADERS),
    )
