import os

import pytest

DB_PATH = "test_devpulse.db"
if os.path.exists(DB_PATH):
    os.remove(DB_PATH)

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///./{DB_PATH}"
os.environ["BROADCAST_SEND_TIMEOUT"] = "1.0"

from sqlalchemy import create_engine  # noqa: E402

from devpulse.models import Base  # noqa: E402

sync_engine = create_engine(f"sqlite:///./{DB_PATH}")


@pytest.fixture(autouse=True)
def fresh_tables():
    Base.metadata.drop_all(sync_engine)
    Base.metadata.create_all(sync_engine)
    yield


@pytest.fixture
def drop_tables():
    """Remove the tables so that store operations fail."""
    Base.metadata.drop_all(sync_engine)


def make_report(user="alice", timestamp="2024-01-01T10:00:00Z", total=10, passed=9, failed=1, **overrides):
    payload = {
        "user": user,
        "timestamp": timestamp,
        "testStatus": {"total": total, "passed": passed, "failed": failed, "skipped": 0},
        "projectInfo": {"name": "webapp", "path": "/work/webapp"},
        "gitInfo": {"branch": "main", "commit": "abc123"},
        "testRunnerInfo": {"runner": "jest", "version": "29.7.0"},
        "environment": {"os": "linux", "node": "20.11.0"},
        "execution": {"durationMs": 1532, "command": "npm test"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def report():
    return make_report
