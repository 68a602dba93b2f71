"""
API auth enforcement — ensure 401 JSON for unauthenticated /api/* requests.

Drives the bearer-token middleware: missing, malformed, expired or foreign
tokens answer 401 before any handler runs; public paths stay reachable.
"""
from __future__ import annotations

import time

import pytest
import httpx
from httpx import ASGITransport
from jose import jwt
from pathlib import Path
import sys


pytestmark = pytest.mark.anyio("asyncio")


REPO_ROOT = Path(__file__).resolve().parents[2]
WEB_DIR = REPO_ROOT / "backend" / "web"
if str(WEB_DIR) not in sys.path:
    sys.path.insert(0, str(WEB_DIR))
import main  # type: ignore
import config  # type: ignore

from utils.academics import bearer


async def _client():
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


@pytest.mark.anyio
async def test_api_unauthenticated_returns_401_json():
    async with (await _client()) as client:
        r1 = await client.get("/api/instructor/sections")
        assert r1.status_code == 401
        assert r1.headers.get("Cache-Control") == "private, no-store"
        assert r1.json() == {"error": "unauthenticated"}

        r2 = await client.post("/api/student/results", json={"assessment_id": 1, "score": 1})
        assert r2.status_code == 401


@pytest.mark.anyio
@pytest.mark.parametrize(
    "header",
    ["Basic dXNlcjpwYXNz", "Bearer", "Bearer not-a-jwt", "Token abc"],
)
async def test_malformed_authorization_header_is_rejected(header: str):
    async with (await _client()) as client:
        resp = await client.get("/api/me", headers={"Authorization": header})
    assert resp.status_code == 401


@pytest.mark.anyio
async def test_expired_and_foreign_tokens_are_rejected():
    settings = config.load_token_settings()
    expired = jwt.encode({"sub": "u", "roles": ["admin"], "exp": int(time.time()) - 600}, settings.secret)
    foreign = jwt.encode(
        {"sub": "u", "roles": ["admin"], "exp": int(time.time()) + 600}, "some-other-secret-some-other-secret"
    )
    async with (await _client()) as client:
        for token in (expired, foreign):
            resp = await client.get("/api/admin/sections", headers={"Authorization": f"Bearer {token}"})
            assert resp.status_code == 401


@pytest.mark.anyio
async def test_token_without_subject_is_rejected():
    settings = config.load_token_settings()
    token = jwt.encode({"roles": ["admin"], "exp": int(time.time()) + 600}, settings.secret)
    async with (await _client()) as client:
        resp = await client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


@pytest.mark.anyio
async def test_health_is_public_and_has_security_headers():
    async with (await _client()) as client:
        resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert "Strict-Transport-Security" not in resp.headers


@pytest.mark.anyio
async def test_me_echoes_verified_caller():
    headers = bearer("inst-7", "Instructor", "janitor", instructor_id=3, email="i@example.org")
    async with (await _client()) as client:
        resp = await client.get("/api/me", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert (body["user_id"], body["roles"], body["instructor_id"], body["email"]) == (
        "inst-7",
        ["instructor"],
        3,
        "i@example.org",
    )


@pytest.mark.anyio
async def test_tokens_honour_configured_secret(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("JWT_SECRET", "rotated-secret-rotated-secret-rotated-1")
    async with (await _client()) as client:
        ok = await client.get("/api/me", headers=bearer("u-1", "student"))
        monkeypatch.setenv("JWT_SECRET", "rotated-secret-rotated-secret-rotated-2")
        stale = await client.get("/api/me", headers={"Authorization": ok.request.headers["Authorization"]})
    assert ok.status_code == 200
    assert stale.status_code == 401
