"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from types import SimpleNamespace

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from workhub.db.models import Base, IngestionRun, IngestionRunStatus
from workhub.imports.ledger import DuplicateRunKeyError
from workhub.imports.persistence import InsertOne

# Use in-memory SQLite for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

OWNER_EMAIL = "owner@corp.local"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeRecordStore:
    """In-memory project/task store that records every bulk write."""

    def __init__(self, records=None, fail_with: Exception | None = None):
        self.records = list(records or [])
        self.bulk_calls: list[list] = []
        self.find_calls: list[dict] = []
        self.fail_with = fail_with

    def find(self, codes=None, ids=None, titles=None, assignee_email=None) -> list:
        self.find_calls.append(
            {"codes": codes, "ids": ids, "titles": titles, "assignee_email": assignee_email}
        )
        if codes or ids:
            return [
                record
                for record in self.records
                if getattr(record, "code", None) in (codes or [])
                or record.id in (ids or [])
            ]
        if titles:
            return [
                record
                for record in self.records
                if record.title.lower() in {title.lower() for title in titles}
                and (assignee_email is None or record.assignee_email == assignee_email)
            ]
        return []

    def bulk_write(self, operations) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.bulk_calls.append(list(operations))
        for op in operations:
            if isinstance(op, InsertOne):
                self.records.append(SimpleNamespace(**op.document))
                continue
            record = next(r for r in self.records if r.id == op.record_id)
            for key, value in op.values.items():
                setattr(record, key, value)


class FakeRunStore:
    """In-memory ingestion run store."""

    def __init__(self):
        self.runs: dict[str, IngestionRun] = {}

    def find_one(self, key: str) -> IngestionRun | None:
        return self.runs.get(key)

    def create(self, run: IngestionRun) -> IngestionRun:
        if run.key in self.runs:
            raise DuplicateRunKeyError(run.key)
        self.runs[run.key] = run
        return run

    def save(self, run: IngestionRun) -> IngestionRun:
        self.runs[run.key] = run
        return run

    def reopen(self, run: IngestionRun) -> bool:
        if run.status != IngestionRunStatus.FAILED:
            return False
        run.status = IngestionRunStatus.PROCESSING
        run.error = None
        return True


class RecordingObserver:
    """Observer capturing lifecycle events by name."""

    def __init__(self):
        self.events: list[tuple] = []

    def import_started(self, import_key, owner_email, fmt, strategy):
        self.events.append(("started", import_key, fmt, strategy))

    def import_replayed(self, summary, owner_email):
        self.events.append(("replayed", summary.import_key))

    def import_completed(self, summary, owner_email):
        self.events.append(("completed", summary.import_key))

    def import_failed(self, import_key, owner_email, error):
        self.events.append(("failed", import_key, error))

    def names(self) -> list[str]:
        return [event[0] for event in self.events]


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    # Import here to ensure env vars are set
    from workhub.dependencies import get_db
    from workhub.main import app

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def owner_headers() -> dict[str, str]:
    """Headers identifying the importing user."""
    return {"X-Owner-Email": OWNER_EMAIL}


@pytest.fixture
def owner_email() -> str:
    """Normalized email of the importing user."""
    return OWNER_EMAIL


@pytest.fixture
def project_store() -> FakeRecordStore:
    """Empty in-memory project store."""
    return FakeRecordStore()


@pytest.fixture
def task_store() -> FakeRecordStore:
    """Empty in-memory task store."""
    return FakeRecordStore()


@pytest.fixture
def run_store() -> FakeRunStore:
    """Empty in-memory run store."""
    return FakeRunStore()


@pytest.fixture
def observer() -> RecordingObserver:
    """Observer recording import events."""
    return RecordingObserver()
