"""
Student API — result submission with visibility gate, retake semantics and
read access to own results, section and profile.
"""
from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest
import httpx
from httpx import ASGITransport

pytestmark = pytest.mark.anyio("asyncio")

REPO_ROOT = Path(__file__).resolve().parents[2]
WEB_DIR = REPO_ROOT / "backend" / "web"
if str(WEB_DIR) not in os.sys.path:
    os.sys.path.insert(0, str(WEB_DIR))
import main  # type: ignore  # noqa: E402

from academics.visibility import VisibilityEngine  # noqa: E402
from utils.academics import bearer, instructor_headers, seed_section_with_assessments, student_headers  # noqa: E402


async def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


async def test_first_submission_then_retake(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    aid = sc.assessment_ids[0]
    async with (await _client()) as client:
        first = await client.post(
            "/api/student/results", json={"assessment_id": aid, "score": 70}, headers=student_headers(sc)
        )
        retake = await client.post(
            "/api/student/results",
            json={"assessment_id": aid, "score": 95, "date_taken": "2030-03-01T10:00:00Z"},
            headers=student_headers(sc),
        )
        mine = await client.get("/api/student/results", headers=student_headers(sc))

    assert first.status_code == 201
    assert first.headers["Location"] == f"/api/student/results/{first.json()['id']}"
    assert retake.status_code == 200
    assert retake.json()["id"] == first.json()["id"]
    assert retake.json()["taken_at"] == "2030-03-01T10:00:00+00:00"
    assert [(r["assessment_id"], r["score"]) for r in mine.json()] == [(aid, 95.0)]


async def test_hidden_assessment_is_forbidden_and_nothing_stored(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    aid = sc.assessment_ids[1]
    VisibilityEngine(memory_repo).set_visibility(sc.section.id, aid, False)

    async with (await _client()) as client:
        resp = await client.post(
            "/api/student/results", json={"assessment_id": aid, "score": 80}, headers=student_headers(sc)
        )

    assert resp.status_code == 403
    assert resp.json() == {"error": "forbidden", "detail": "assessment_not_available"}
    with memory_repo.unit_of_work() as uow:
        assert uow.results.list_by_student(sc.student.id) == []


async def test_submission_validation(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    aid = sc.assessment_ids[0]
    cases = [
        ({"score": 10}, "invalid_assessment_id"),
        ({"assessment_id": "x", "score": 10}, "invalid_assessment_id"),
        ({"assessment_id": aid}, "invalid_score"),
        ({"assessment_id": aid, "score": True}, "invalid_score"),
        ({"assessment_id": aid, "score": "10"}, "invalid_score"),
        ({"assessment_id": aid, "score": 10, "date_taken": "yesterday"}, "invalid_date_taken"),
    ]
    async with (await _client()) as client:
        for payload, detail in cases:
            resp = await client.post("/api/student/results", json=payload, headers=student_headers(sc))
            assert (resp.status_code, resp.json()["detail"]) == (400, detail), payload
        missing = await client.post(
            "/api/student/results", json={"assessment_id": 9999, "score": 10}, headers=student_headers(sc)
        )
        no_student = await client.post(
            "/api/student/results",
            json={"assessment_id": aid, "score": 10},
            headers=bearer("stud-x", "student"),
        )

    assert (missing.status_code, missing.json()["detail"]) == (404, "assessment_not_found")
    assert (no_student.status_code, no_student.json()["detail"]) == (400, "missing_student_id")


async def test_oversized_or_non_finite_score_is_rejected(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    aid = sc.assessment_ids[0]
    headers = {**student_headers(sc), "Content-Type": "application/json"}
    bodies = (
        f'{{"assessment_id": {aid}, "score": 1' + "0" * 400 + "}",
        f'{{"assessment_id": {aid}, "score": Infinity}}',
        f'{{"assessment_id": {aid}, "score": NaN}}',
    )
    async with (await _client()) as client:
        responses = [await client.post("/api/student/results", content=body, headers=headers) for body in bodies]

    for resp in responses:
        assert (resp.status_code, resp.json()["detail"]) == (400, "invalid_score")
    with memory_repo.unit_of_work() as uow:
        assert uow.results.list_all() == []


async def test_score_above_maximum_is_clamped(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    async with (await _client()) as client:
        resp = await client.post(
            "/api/student/results",
            json={"assessment_id": sc.assessment_ids[2], "score": 500},
            headers=student_headers(sc),
        )
    assert resp.json()["score"] == 120.0


async def test_concurrent_retakes_leave_one_row(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    aid = sc.assessment_ids[0]
    async with (await _client()) as client:
        responses = await asyncio.gather(
            *[
                client.post(
                    "/api/student/results", json={"assessment_id": aid, "score": s}, headers=student_headers(sc)
                )
                for s in (10, 20, 30, 40, 50)
            ]
        )

    codes = sorted(r.status_code for r in responses)
    assert codes == [200, 200, 200, 200, 201]
    with memory_repo.unit_of_work() as uow:
        assert len(uow.results.list_by_student(sc.student.id)) == 1


async def test_read_single_result_owner_only(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    other = bearer("stud-2", "student", student_id=sc.student.id + 50, section_id=sc.section.id)
    async with (await _client()) as client:
        created = await client.post(
            "/api/student/results",
            json={"assessment_id": sc.assessment_ids[0], "score": 70},
            headers=student_headers(sc),
        )
        rid = created.json()["id"]
        own = await client.get(f"/api/student/results/{rid}", headers=student_headers(sc))
        foreign = await client.get(f"/api/student/results/{rid}", headers=other)
        missing = await client.get("/api/student/results/424242", headers=student_headers(sc))
        invalid = await client.get("/api/student/results/-1", headers=student_headers(sc))

    assert own.status_code == 200
    assert (foreign.status_code, foreign.json()["detail"]) == (403, "result_forbidden")
    assert missing.status_code == 404
    assert invalid.status_code == 400


async def test_current_section_lists_only_visible_assessments(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    VisibilityEngine(memory_repo).set_visibility(sc.section.id, sc.assessment_ids[1], False)
    async with (await _client()) as client:
        current = await client.get("/api/student/sections/current", headers=student_headers(sc))
        by_id = await client.get(f"/api/student/sections/{sc.section.id}", headers=student_headers(sc))
        foreign = await client.get(f"/api/student/sections/{sc.other_section.id}", headers=student_headers(sc))
        unassigned = await client.get("/api/student/sections/current", headers=bearer("stud-x", "student", student_id=77))

    assert [a["id"] for a in current.json()["assessments"]] == [sc.assessment_ids[0], sc.assessment_ids[2]]
    assert current.json()["instructor_user_id"] == "inst-1"
    assert by_id.json() == current.json()
    assert foreign.status_code == 403
    assert (unassigned.status_code, unassigned.json()["detail"]) == (404, "not_enrolled")


async def test_profile_and_role_guard(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    headers = bearer(
        sc.student.user_id,
        "student",
        student_id=sc.student.id,
        section_id=sc.section.id,
        name="Grace Hopper",
        email="grace@example.org",
    )
    async with (await _client()) as client:
        profile = await client.get("/api/student/profile", headers=headers)
        as_instructor = await client.post(
            "/api/student/results",
            json={"assessment_id": sc.assessment_ids[0], "score": 1},
            headers=instructor_headers(sc),
        )

    assert profile.json()["matric_no"] == "M-1001"
    assert profile.json()["full_name"] == "Grace Hopper"
    assert as_instructor.status_code == 403
