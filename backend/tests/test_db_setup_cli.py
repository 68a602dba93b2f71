"""
db_setup CLI — token issuance guard rails and DB command wiring.

Database commands are exercised with a fake repository; a live Postgres run is
covered by test_academics_repo_db_optional.py.
"""
from __future__ import annotations

import pytest
from click.testing import CliRunner

from identity_access.tokens import TokenSettings, caller_from_claims, verify_access_token
from tools import db_setup

SECRET = "cli-test-secret-cli-test-secret-000000"


def test_issue_token_round_trips():
    result = CliRunner().invoke(
        db_setup.cli,
        ["issue-token", "--user-id", "stud-1", "--role", "student", "--claim", "student_id=4", "--claim", "section_id=7"],
        env={"JWT_SECRET": SECRET, "POLARIS_ENV": "dev"},
    )
    assert result.exit_code == 0, result.output
    claims = verify_access_token(token=result.output.strip(), settings=TokenSettings(secret=SECRET))
    caller = caller_from_claims(claims)
    assert (caller.user_id, caller.student_id, caller.section_id) == ("stud-1", 4, 7)


@pytest.mark.parametrize(
    "args, env",
    [
        (["--role", "student"], {"POLARIS_ENV": "prod"}),
        (["--role", "janitor"], {"POLARIS_ENV": "dev"}),
        (["--role", "student", "--claim", "student_id=four"], {"POLARIS_ENV": "dev"}),
        (["--role", "student", "--claim", "broken"], {"POLARIS_ENV": "dev"}),
        (["--role", "student", "--ttl", "0"], {"POLARIS_ENV": "dev"}),
    ],
)
def test_issue_token_rejections(args, env):
    result = CliRunner().invoke(
        db_setup.cli, ["issue-token", "--user-id", "u", *args], env={"JWT_SECRET": SECRET, **env}
    )
    assert result.exit_code != 0


def test_seed_assessments_uses_repository(monkeypatch: pytest.MonkeyPatch, memory_repo):
    monkeypatch.setattr(db_setup, "_db_repo", lambda dsn: memory_repo)
    runner = CliRunner()

    first = runner.invoke(db_setup.cli, ["seed-assessments", "--db-dsn", "postgresql://example"])
    second = runner.invoke(db_setup.cli, ["seed-assessments", "--db-dsn", "postgresql://example"])

    assert first.exit_code == 0 and "Seeded 5 assessments." in first.output
    assert "nothing to do" in second.output


def test_apply_schema_calls_repository(monkeypatch: pytest.MonkeyPatch):
    calls = []

    class FakeRepo:
        def apply_schema(self):
            calls.append("applied")

    monkeypatch.setattr(db_setup, "_db_repo", lambda dsn: FakeRepo())
    result = CliRunner().invoke(db_setup.cli, ["apply-schema"], env={"ACADEMICS_DATABASE_URL": "postgresql://example"})

    assert result.exit_code == 0
    assert calls == ["applied"]
