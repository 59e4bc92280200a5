from typing import Any, Dict, List, Tuple

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from app.core.config import Settings
from app.core.logging import AppLogger
from app.core.monitoring import MonitoringOptions, Telemetry
from app.core.security import create_access_token
from app.db.session import Database
from app.main import create_app
from app.services.activity_recorder import ActivityRecorder
from app.services.auth_service import AuthService
from app.services.telemetry_store import TelemetryStore

TEST_PASSWORD = "correct-horse-battery"


# -----------------------------------------------------------------------------
# Telemetry doubles
# -----------------------------------------------------------------------------


class RecordingLogger(AppLogger):
    """AppLogger that keeps every emitted line in memory."""

    __test__ = False

    def __init__(self):
        super().__init__("tests.monitoring")
        self.records: List[Tuple[str, str, Dict[str, Any]]] = []

    def _emit(self, severity: str, message: str, context: Dict[str, Any]) -> None:
        self.records.append((severity, message, dict(context)))

    def messages(self, severity: str = None) -> List[str]:
        return [m for s, m, _ in self.records if severity is None or s == severity]

    def find(self, prefix: str) -> List[Tuple[str, str, Dict[str, Any]]]:
        return [r for r in self.records if r[1].startswith(prefix)]


class FailingStore(TelemetryStore):
    """TelemetryStore whose every write fails like an unreachable database."""

    __test__ = False

    def __init__(self):
        super().__init__(database=None)
        self.attempts = 0

    def _write(self, model, fields, json_fields):
        self.attempts += 1
        raise RuntimeError("telemetry database unavailable")


def build_request(
    path: str = "/api/v1/test",
    method: str = "GET",
    headers: Dict[str, str] = None,
) -> Request:
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "headers": [
            (k.lower().encode("latin-1"), v.encode("latin-1"))
            for k, v in (headers or {}).items()
        ],
        "query_string": b"",
        "scheme": "http",
        "server": ("testserver", 80),
        "client": ("testclient", 1234),
    }
    return Request(scope)


def cookie_header(**cookies: str) -> Dict[str, str]:
    return {"Cookie": "; ".join(f"{k}={v}" for k, v in cookies.items())}


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        ENVIRONMENT="local",
        DATABASE_URL=f"sqlite:///{tmp_path / 'telemetry.db'}",
        LOG_DIR=str(tmp_path / "logs"),
        SECRET_KEY="test-secret-key",
    )


@pytest.fixture
def database(test_settings) -> Database:
    db = Database.from_settings(test_settings)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def store(database) -> TelemetryStore:
    return TelemetryStore(database)


@pytest.fixture
def telemetry(store, recording_logger) -> Telemetry:
    return Telemetry(store=store, logger=recording_logger, options=MonitoringOptions())


@pytest.fixture
def recorder(store, recording_logger) -> ActivityRecorder:
    return ActivityRecorder(store, recording_logger)


@pytest.fixture
def app(test_settings, database, telemetry):
    return create_app(
        test_settings, database=database, telemetry=telemetry, configure_logging=False
    )


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def rows(database):
    """Return every row of a model, oldest first."""

    def _rows(model):
        with database.session() as db:
            return db.query(model).order_by(model.id).all()

    return _rows


@pytest.fixture
def regular_user(database):
    with database.session() as db:
        return AuthService(db).create_user(
            "operator", TEST_PASSWORD, email="operator@hps.local", full_name="Line Operator"
        )


@pytest.fixture
def admin_user(database):
    with database.session() as db:
        return AuthService(db).create_user(
            "admin", TEST_PASSWORD, full_name="Plant Admin", user_level="1"
        )


@pytest.fixture
def auth_headers():
    def _headers(user) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers
