from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from carebow_engine import (  # noqa: E402
    ActionRouter,
    ConversationEngine,
    RedFlagDetector,
    SessionStore,
    TriageEngine,
    default_service_registry,
)
from memory import MemoryService, RecordStore, SQLiteMemoryDB  # noqa: E402


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "carebow-test.sqlite"
    monkeypatch.setenv("CAREBOW_DB_PATH", str(db_path))
    monkeypatch.setenv("ALLOW_ANON", "false")
    monkeypatch.delenv("CAREBOW_MAX_FREE_QUESTIONS", raising=False)
    monkeypatch.delenv("CAREBOW_TRIAL_DAYS", raising=False)

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _make(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}"}

    return _make


@pytest.fixture
def db(tmp_path) -> SQLiteMemoryDB:
    return SQLiteMemoryDB(str(tmp_path / "carebow-unit.sqlite"))


@pytest.fixture
def records(db) -> RecordStore:
    return RecordStore(db)


@pytest.fixture
def memory_service(db, records) -> MemoryService:
    return MemoryService(db, records)


@pytest.fixture
def sessions(records) -> SessionStore:
    return SessionStore(records)


@pytest.fixture
def engine(records, sessions, memory_service) -> ConversationEngine:
    detector = RedFlagDetector()
    return ConversationEngine(
        sessions=sessions,
        detector=detector,
        triage=TriageEngine(detector),
        services=default_service_registry(),
        actions=ActionRouter(sessions=sessions, records=records),
        health_memory=memory_service.health,
    )
