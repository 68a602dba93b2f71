"""
Result submission engine — visibility gate, clamping, upsert and retake.
"""
from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from academics.errors import ForbiddenError, NotFoundError, ValidationError
from academics.results import ResultSubmissionEngine, clamp_score
from academics.visibility import VisibilityEngine
from identity_access.domain import CallerContext

from utils.academics import seed_section_with_assessments

FIXED_NOW = datetime(2030, 2, 1, 9, 30, tzinfo=timezone.utc)


def _engine(repo) -> ResultSubmissionEngine:
    return ResultSubmissionEngine(repo, clock=lambda: FIXED_NOW)


def test_clamp_score_bounds_and_rejects_non_finite():
    assert clamp_score(-5, 100) == 0.0
    assert clamp_score(150, 100) == 100.0
    assert clamp_score(42.5, 100) == 42.5
    for bad in (float("nan"), float("inf"), "abc", None, 10**400):
        with pytest.raises(ValidationError):
            clamp_score(bad, 100)


def test_first_submission_creates_result(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    outcome = _engine(memory_repo).submit_result(sc.student_caller(), sc.assessment_ids[0], 70)

    assert outcome.created is True
    assert outcome.result.score == 70.0
    assert outcome.result.taken_at == FIXED_NOW
    assert outcome.result.student_id == sc.student.id


def test_retake_overwrites_single_row(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    engine = _engine(memory_repo)
    aid = sc.assessment_ids[0]

    first = engine.submit_result(sc.student_caller(), aid, 70)
    later = datetime(2030, 3, 1, tzinfo=timezone.utc)
    second = engine.submit_result(sc.student_caller(), aid, 95, taken_at=later)

    assert second.created is False
    assert second.result.id == first.result.id
    rows = engine.list_results_for_student(sc.student.id)
    assert [(r.assessment_id, r.score, r.taken_at) for r in rows] == [(aid, 95.0, later)]


def test_score_is_clamped_to_assessment_maximum(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    outcome = _engine(memory_repo).submit_result(sc.student_caller(), sc.assessment_ids[1], 999)
    assert outcome.result.score == 150.0


def test_hidden_assessment_is_refused_without_writing(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    aid = sc.assessment_ids[1]
    VisibilityEngine(memory_repo).set_visibility(sc.section.id, aid, False)

    with pytest.raises(ForbiddenError) as exc:
        _engine(memory_repo).submit_result(sc.student_caller(), aid, 80)

    assert exc.value.code == "assessment_not_available"
    with memory_repo.unit_of_work() as uow:
        assert uow.results.get_for_student_assessment(sc.student.id, aid) is None


def test_hidden_elsewhere_does_not_block(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    aid = sc.assessment_ids[0]
    VisibilityEngine(memory_repo).set_visibility(sc.other_section.id, aid, False)

    assert _engine(memory_repo).submit_result(sc.student_caller(), aid, 50).created is True


def test_student_without_section_may_submit(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    caller = CallerContext(user_id="stud-9", roles=frozenset({"student"}), student_id=99)

    outcome = _engine(memory_repo).submit_result(caller, sc.assessment_ids[0], 10)
    assert outcome.created is True


def test_missing_student_id_and_unknown_assessment(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    engine = _engine(memory_repo)
    anonymous = CallerContext(user_id="stud-x", roles=frozenset({"student"}))

    with pytest.raises(ValidationError) as exc:
        engine.submit_result(anonymous, sc.assessment_ids[0], 10)
    assert exc.value.code == "missing_student_id"
    with pytest.raises(NotFoundError) as exc:
        engine.submit_result(sc.student_caller(), 9999, 10)
    assert exc.value.code == "assessment_not_found"


def test_get_result_is_owner_only(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    engine = _engine(memory_repo)
    outcome = engine.submit_result(sc.student_caller(), sc.assessment_ids[0], 70)
    other = CallerContext(user_id="stud-2", roles=frozenset({"student"}), student_id=sc.student.id + 100)

    assert engine.get_result(sc.student_caller(), outcome.result.id).score == 70.0
    with pytest.raises(ForbiddenError):
        engine.get_result(other, outcome.result.id)
    with pytest.raises(NotFoundError):
        engine.get_result(sc.student_caller(), 424242)


def test_section_results_are_grouped_per_student(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    engine = _engine(memory_repo)
    a1, a2, _ = sc.assessment_ids
    engine.submit_result(sc.student_caller(), a1, 60)
    engine.submit_result(sc.student_caller(), a2, 90)

    summaries = engine.list_results_for_section(sc.section.id, sc.instructor_caller())

    assert len(summaries) == 1
    assert summaries[0].completed_assessments == 2
    assert summaries[0].average_score == 75.0
    with pytest.raises(NotFoundError):
        engine.list_results_for_section(9999)


def test_concurrent_retakes_leave_one_row(memory_repo):
    sc = seed_section_with_assessments(memory_repo)
    engine = _engine(memory_repo)
    aid = sc.assessment_ids[0]
    outcomes = []

    def submit(score):
        outcomes.append(engine.submit_result(sc.student_caller(), aid, score))

    threads = [threading.Thread(target=submit, args=(s,)) for s in (10, 20, 30, 40, 50, 60)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(1 for o in outcomes if o.created) == 1
    rows = engine.list_results_for_student(sc.student.id)
    assert len(rows) == 1
    assert rows[0].score in {10.0, 20.0, 30.0, 40.0, 50.0, 60.0}
