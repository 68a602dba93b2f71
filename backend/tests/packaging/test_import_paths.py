"""Packaging sanity checks for import paths.

The web app runs both flat (backend/ and backend/web on sys.path, as in the
container) and as `backend.web.main`; both must resolve to one app object.
"""
from importlib import import_module


def test_import_academics_modules():
    for name in ("gateway", "repo_memory", "visibility", "results", "sections", "assessments", "profiles", "feedback"):
        import_module(f"academics.{name}")


def test_main_aliases_share_one_app():
    flat = import_module("main")
    packaged = import_module("backend.web.main")
    assert flat.app is packaged.app


def test_schema_file_ships_with_repo_db():
    from academics.repo_db import SCHEMA_PATH

    assert SCHEMA_PATH.is_file()
    assert "results_student_assessment_key" in SCHEMA_PATH.read_text(encoding="utf-8")
