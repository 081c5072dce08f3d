import os

# Keep the app's module-level engine off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from callaudit.database import init_db
from callaudit.schemas.audit_schemas import AnalysisResult, AuditEntry
from callaudit.services.record_store import RecordStore
from callaudit.services.session_service import SessionSlot


@pytest.fixture
def engine():
    """Fresh in-memory database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db_session):
    return RecordStore(db_session)


@pytest.fixture
def slot(tmp_path):
    return SessionSlot(str(tmp_path / "session.json"))


def build_analysis(score=7, detailed=None, properties=None, summary="", **fields):
    """AnalysisResult from compact test arguments; ``detailed`` maps parameter -> score."""
    return AnalysisResult.model_validate({
        "overallScore": {"score": score, "summary": summary},
        "detailedScores": [
            {"parameter": name, "score": value, "justification": ""}
            for name, value in (detailed or {}).items()
        ],
        "propertiesDiscussed": properties or [],
        **fields,
    })


@pytest.fixture
def make_entry():
    """Factory for audit entries with sensible defaults."""

    def _make(
        id,
        agent="agent@x.com",
        auditor="auditor@x.com",
        timestamp="2024-06-10T10:00:00",
        score=7,
        detailed=None,
        properties=None,
        summary="",
        **fields,
    ):
        return AuditEntry(
            id=id,
            agent_email=agent,
            auditor_name=auditor,
            timestamp=timestamp,
            file_name=f"call-{id}.mp3",
            analysis=build_analysis(score, detailed, properties, summary),
            **fields,
        )

    return _make


class FakeAnalysisService:
    """Records calls and returns canned results."""

    def __init__(self, result=None):
        self.result = result or build_analysis(score=8, detailed={"Greeting & Opening": 9})
        self.calls = []

    def analyze(self, audio, mime_type, file_name):
        self.calls.append(("analyze", file_name))
        return self.result

    def summarize(self, results):
        self.calls.append(("summarize", len(results)))
        return "summary text"

    def coaching_plan(self, agent_email, results):
        self.calls.append(("coaching_plan", agent_email, len(results)))
        return "coaching text"

    def root_cause_analysis(self, parameter, results):
        self.calls.append(("root_cause_analysis", parameter, len(results)))
        return "root cause text"

    def call_of_the_week(self, entries):
        self.calls.append(("call_of_the_week", len(entries)))
        return "call of the week text"

    def rebuttal(self, objection):
        self.calls.append(("rebuttal", objection))
        return "rebuttal text"


@pytest.fixture
def analysis_service():
    return FakeAnalysisService()


@pytest.fixture
def client(db_session, slot, analysis_service):
    """FastAPI test client wired to the test database, session slot and fake analysis."""
    from callaudit.api.server import app, get_analysis_service, get_db, get_session_slot

    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_session_slot] = lambda: slot
    app.dependency_overrides[get_analysis_service] = lambda: analysis_service
    yield TestClient(app)
    app.dependency_overrides.clear()
