"""
Configuration and startup security checks for Polaris.

Why: In education contexts we must prevent accidental insecure deployments.
This module reads the environment once per call (tests monkeypatch freely) and
provides a single guard that enforces minimal production safety constraints
without burdening local development.

Permissions: The caller needs no special privileges. The guard simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

from identity_access.tokens import MAX_CLOCK_SKEW_SECONDS, TokenSettings

DEV_JWT_SECRET = "dev-only-insecure-secret-change-me-please"
MIN_SECRET_LENGTH = 32
MAX_LEEWAY_SECONDS = 300
REPO_MODES = {"auto", "db", "memory"}


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or "").strip()


def _int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < minimum or value > maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}")
    return value


def current_env() -> str:
    return _env("POLARIS_ENV", "dev").lower() or "dev"


def load_token_settings() -> TokenSettings:
    """Build token verification settings from the environment.

    Dev/test fall back to a fixed development secret so the API works without
    setup; prod-like environments are stopped earlier by the startup guard.
    """
    secret = _env("JWT_SECRET") or DEV_JWT_SECRET
    return TokenSettings(
        secret=secret,
        algorithm=_env("JWT_ALGORITHM", "HS256") or "HS256",
        issuer=_env("JWT_ISSUER") or None,
        audience=_env("JWT_AUDIENCE") or None,
        leeway_seconds=_int_env(
            "JWT_LEEWAY_SECONDS", MAX_CLOCK_SKEW_SECONDS, minimum=0, maximum=MAX_LEEWAY_SECONDS
        ),
    )


def repo_mode() -> str:
    mode = _env("ACADEMICS_REPO", "auto").lower() or "auto"
    if mode not in REPO_MODES:
        raise ValueError("ACADEMICS_REPO must be one of auto, db, memory")
    return mode


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - JWT_SECRET must be set, not a placeholder, and at least 32 characters.
    - JWT_ALGORITHM must be an HMAC algorithm (tokens are verified with the shared secret).
    - A database DSN must be configured and must not disable TLS.
    - ACADEMICS_REPO=memory is not allowed.
    """

    env = current_env()
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Token signing secret
    secret = _env("JWT_SECRET")
    if not secret or secret == DEV_JWT_SECRET or secret.upper().startswith("CHANGE_ME"):
        raise SystemExit("Refusing to start: JWT_SECRET is unset or a placeholder in production.")
    if len(secret) < MIN_SECRET_LENGTH:
        raise SystemExit(
            f"Refusing to start: JWT_SECRET must be at least {MIN_SECRET_LENGTH} characters in production."
        )
    algorithm = _env("JWT_ALGORITHM", "HS256").upper()
    if algorithm not in {"HS256", "HS384", "HS512"}:
        raise SystemExit("Refusing to start: JWT_ALGORITHM must be HS256, HS384 or HS512.")

    # 2) Postgres: required, TLS not explicitly disabled
    dsn = _env("ACADEMICS_DATABASE_URL") or _env("DATABASE_URL")
    if not dsn:
        raise SystemExit("Refusing to start: ACADEMICS_DATABASE_URL/DATABASE_URL is required in production.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: database DSN contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    # 3) In-memory store loses data on restart
    if _env("ACADEMICS_REPO", "auto").lower() == "memory":
        raise SystemExit("Refusing to start: ACADEMICS_REPO=memory is not allowed in production/staging.")

    # 4) Leeway must parse
    try:
        load_token_settings()
    except ValueError as exc:
        raise SystemExit(f"Refusing to start: {exc}.")
