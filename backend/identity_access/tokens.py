"""
Access-token verification for the identity_access bounded context.

Why: Keep cryptographic validation of bearer tokens outside the web adapter so
we can unit test it independently of FastAPI.

Security: Tokens are HMAC-signed JWTs (HS256 by default). Signature, issuer,
audience and expiry are enforced; verified claims are turned into a read-only
`CallerContext`. Token issuance for real logins belongs to the external
identity provider; `issue_access_token` exists for tests and dev tooling.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional
import time

from jose import jwt
from jose.exceptions import JOSEError

from .domain import ALLOWED_ROLES, CallerContext


class AccessTokenError(Exception):
    """Raised when the bearer token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers
DEFAULT_TTL_SECONDS = 7 * 24 * 3600

# Role claim names emitted by common issuers (plain and .NET style).
_ROLE_CLAIMS = ("role", "roles", "http://schemas.microsoft.com/ws/2008/06/identity/claims/role")
_SUB_CLAIMS = ("sub", "nameid", "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/nameidentifier")


@dataclass(frozen=True)
class TokenSettings:
    secret: str
    algorithm: str = "HS256"
    issuer: Optional[str] = None
    audience: Optional[str] = None
    leeway_seconds: int = MAX_CLOCK_SKEW_SECONDS


def verify_access_token(*, token: str, settings: TokenSettings) -> Dict[str, object]:
    """Validate a bearer token and return its claims.

    Raises
    ------
    AccessTokenError:
        `invalid_token` on signature/issuer/audience failures or malformed
        tokens, `token_expired` when `exp` is missing or in the past.
    """
    if not token or not settings.secret:
        raise AccessTokenError("invalid_token")
    try:
        claims = jwt.decode(
            token,
            settings.secret,
            algorithms=[settings.algorithm],
            audience=settings.audience or None,
            issuer=settings.issuer or None,
            options={
                "verify_signature": True,
                "verify_aud": bool(settings.audience),
                "verify_iss": bool(settings.issuer),
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except JOSEError as exc:
        raise AccessTokenError("invalid_token") from exc
    if settings.audience and "aud" not in claims:
        raise AccessTokenError("invalid_token")

    _validate_temporal_claims(claims, settings.leeway_seconds)

    return claims


def _validate_temporal_claims(claims: Dict[str, object], leeway: int) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise AccessTokenError("token_expired")
    if exp + leeway < now:
        raise AccessTokenError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - leeway > now:
        raise AccessTokenError("invalid_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - leeway > now:
        raise AccessTokenError("invalid_token")


def _first(claims: Dict[str, object], names: Iterable[str]):
    for name in names:
        value = claims.get(name)
        if value not in (None, ""):
            return value
    return None


def _optional_int(claims: Dict[str, object], name: str) -> Optional[int]:
    value = claims.get(name)
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise AccessTokenError("invalid_claims")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise AccessTokenError("invalid_claims") from exc


def _roles(claims: Dict[str, object]) -> frozenset:
    collected = set()
    for name in _ROLE_CLAIMS:
        value = claims.get(name)
        if isinstance(value, str):
            collected.add(value)
        elif isinstance(value, (list, tuple)):
            collected.update(v for v in value if isinstance(v, str))
    return frozenset(r.strip().lower() for r in collected if r.strip().lower() in ALLOWED_ROLES)


def caller_from_claims(claims: Dict[str, object]) -> CallerContext:
    """Build the immutable caller context from verified claims."""
    sub = _first(claims, _SUB_CLAIMS)
    if not isinstance(sub, str) or not sub:
        raise AccessTokenError("missing_sub")
    name = _first(claims, ("name", "full_name"))
    email = claims.get("email")
    matric_no = claims.get("matric_no")
    return CallerContext(
        user_id=sub,
        roles=_roles(claims),
        student_id=_optional_int(claims, "student_id"),
        section_id=_optional_int(claims, "section_id"),
        instructor_id=_optional_int(claims, "instructor_id"),
        matric_no=str(matric_no) if matric_no not in (None, "") else None,
        full_name=str(name) if name else None,
        email=str(email) if email else None,
    )


def issue_access_token(
    settings: TokenSettings,
    *,
    user_id: str,
    roles: Iterable[str],
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    **extra_claims: object,
) -> str:
    """Sign a token carrying the claims `caller_from_claims` understands.

    Extra claims with value None are omitted.
    """
    now = int(time.time())
    claims: Dict[str, object] = {
        "sub": user_id,
        "roles": sorted({str(r).lower() for r in roles}),
        "iat": now,
        "exp": now + int(ttl_seconds),
    }
    if settings.issuer:
        claims["iss"] = settings.issuer
    if settings.audience:
        claims["aud"] = settings.audience
    for key, value in extra_claims.items():
        if value is not None:
            claims[key] = value
    return jwt.encode(claims, settings.secret, algorithm=settings.algorithm)


__all__ = [
    "AccessTokenError",
    "TokenSettings",
    "verify_access_token",
    "caller_from_claims",
    "issue_access_token",
    "MAX_CLOCK_SKEW_SECONDS",
]
