import os
import sys
import tempfile
from pathlib import Path

import pytest

# Ensure project root is on sys.path for imports like 'finboard.db'
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Module-level app in finboard.main reads these at import time
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="finboard-logs-"))
os.environ.setdefault("CRON_ENABLED", "0")

from fastapi.testclient import TestClient  # noqa: E402

from finboard import db  # noqa: E402
from finboard.auth import current_user_id  # noqa: E402
from finboard.main import create_app  # noqa: E402
from finboard.services.cache_service import cache_service  # noqa: E402

OWNER = "user-1"


@pytest.fixture(autouse=True)
def _clear_cache():
    cache_service.clear()
    yield
    cache_service.clear()


@pytest.fixture()
def temp_db_path(tmp_path, monkeypatch) -> Path:
    path = tmp_path / "finboard_test.sqlite3"
    monkeypatch.setattr(db, "DB_PATH", path)
    db.initialise_database()
    return path


@pytest.fixture()
def db_conn(temp_db_path):
    conn = db.get_connection()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture()
def app(temp_db_path):
    application = create_app(auth_enabled=False, cron_enabled=False, setup_logging=False)
    application.dependency_overrides[current_user_id] = lambda: OWNER
    return application


@pytest.fixture()
def app_client(app):
    return TestClient(app)


@pytest.fixture()
def act_as(app):
    """Switch the identity the test client's requests are scoped to."""
    def _act_as(user_id: str) -> None:
        app.dependency_overrides[current_user_id] = lambda: user_id
    return _act_as
