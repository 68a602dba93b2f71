"""
Security tests for bearer-token verification and claim mapping.

Tokens are HMAC-signed; we assert signature, issuer, audience and expiry
enforcement, and that claims map onto an immutable CallerContext.
"""

from __future__ import annotations

import dataclasses
import time

import pytest
from jose import jwt

from identity_access.tokens import (
    AccessTokenError,
    TokenSettings,
    caller_from_claims,
    issue_access_token,
    verify_access_token,
)

SECRET = "unit-test-secret-with-enough-length-000"
SETTINGS = TokenSettings(secret=SECRET)


def _raw(claims: dict, secret: str = SECRET, algorithm: str = "HS256") -> str:
    return jwt.encode(claims, secret, algorithm=algorithm)


def test_round_trip_yields_caller_context():
    token = issue_access_token(SETTINGS, user_id="u-1", roles=["Student"], student_id=4, section_id=7)
    caller = caller_from_claims(verify_access_token(token=token, settings=SETTINGS))

    assert caller.user_id == "u-1"
    assert caller.roles == frozenset({"student"})
    assert (caller.student_id, caller.section_id, caller.instructor_id) == (4, 7, None)
    with pytest.raises(dataclasses.FrozenInstanceError):
        caller.user_id = "other"


def test_wrong_secret_is_rejected():
    token = issue_access_token(TokenSettings(secret="another-secret-another-secret-0000"), user_id="u", roles=[])
    with pytest.raises(AccessTokenError) as exc:
        verify_access_token(token=token, settings=SETTINGS)
    assert exc.value.code == "invalid_token"


def test_algorithm_is_pinned():
    token = _raw({"sub": "u", "exp": int(time.time()) + 60}, algorithm="HS512")
    with pytest.raises(AccessTokenError):
        verify_access_token(token=token, settings=SETTINGS)


def test_expired_and_missing_exp():
    expired = _raw({"sub": "u", "exp": int(time.time()) - 120})
    no_exp = _raw({"sub": "u"})
    for token in (expired, no_exp):
        with pytest.raises(AccessTokenError) as exc:
            verify_access_token(token=token, settings=SETTINGS)
        assert exc.value.code == "token_expired"


def test_small_clock_skew_is_tolerated():
    token = _raw({"sub": "u", "exp": int(time.time()) - 2})
    assert verify_access_token(token=token, settings=SETTINGS)["sub"] == "u"


def test_future_iat_is_rejected():
    token = _raw({"sub": "u", "exp": int(time.time()) + 600, "iat": int(time.time()) + 300})
    with pytest.raises(AccessTokenError):
        verify_access_token(token=token, settings=SETTINGS)


def test_issuer_and_audience_enforced_when_configured():
    strict = TokenSettings(secret=SECRET, issuer="polaris-idp", audience="polaris-api")
    good = issue_access_token(strict, user_id="u", roles=["admin"])
    assert verify_access_token(token=good, settings=strict)["aud"] == "polaris-api"

    wrong_aud = _raw({"sub": "u", "exp": int(time.time()) + 60, "iss": "polaris-idp", "aud": "other"})
    missing_aud = _raw({"sub": "u", "exp": int(time.time()) + 60, "iss": "polaris-idp"})
    wrong_iss = _raw({"sub": "u", "exp": int(time.time()) + 60, "iss": "evil", "aud": "polaris-api"})
    for token in (wrong_aud, missing_aud, wrong_iss):
        with pytest.raises(AccessTokenError):
            verify_access_token(token=token, settings=strict)


def test_garbage_and_empty_tokens():
    for token in ("", "not-a-jwt", "a.b.c"):
        with pytest.raises(AccessTokenError):
            verify_access_token(token=token, settings=SETTINGS)


def test_claim_mapping_accepts_dotnet_style_names():
    claims = {
        "nameid": "u-9",
        "http://schemas.microsoft.com/ws/2008/06/identity/claims/role": ["Instructor", "Janitor"],
        "instructor_id": "3",
        "name": "Ada Lovelace",
        "email": "ada@example.org",
    }
    caller = caller_from_claims(claims)
    assert caller.user_id == "u-9"
    assert caller.roles == frozenset({"instructor"})
    assert caller.instructor_id == 3
    assert (caller.full_name, caller.email) == ("Ada Lovelace", "ada@example.org")


def test_claim_mapping_errors():
    with pytest.raises(AccessTokenError) as exc:
        caller_from_claims({"roles": ["student"]})
    assert exc.value.code == "missing_sub"
    with pytest.raises(AccessTokenError) as exc:
        caller_from_claims({"sub": "u", "student_id": "abc"})
    assert exc.value.code == "invalid_claims"
