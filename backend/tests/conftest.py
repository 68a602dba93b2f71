"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors).
"""
import os
import sys
from pathlib import Path
import pytest

# Load .env only when E2E suite is explicit enabled.
try:
    from dotenv import load_dotenv  # type: ignore
    if os.getenv("RUN_E2E", "0") == "1":
        load_dotenv()
except Exception:
    pass

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Keep every test on dev defaults unless it opts into something else.

    Why:
        Config is read from the environment on each call. A developer shell
        with POLARIS_ENV=prod or a real JWT secret would otherwise change token
        verification and startup guards for the whole suite.
    """
    for var in (
        "POLARIS_ENV",
        "JWT_SECRET",
        "JWT_ALGORITHM",
        "JWT_ISSUER",
        "JWT_AUDIENCE",
        "JWT_LEEWAY_SECONDS",
        "ACADEMICS_REPO",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def memory_repo():
    """Install a fresh in-memory academics gateway for every test.

    Tests needing Postgres build their own `DBAcademicsRepo` and skip when the
    database is unreachable (see `utils.db.require_db_or_skip`).
    """
    from academics.repo_memory import MemoryAcademicsRepo
    import routes.common as common  # type: ignore

    repo = MemoryAcademicsRepo()
    common.set_repo(repo)
    yield repo
    common.set_repo(None)
