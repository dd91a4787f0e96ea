import os

# Point the application at an in-memory database before anything reads settings
os.environ.setdefault("DATABASE_URL", "sqlite://")

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from execution_tracker.core.database import get_database
from execution_tracker.core.errors import PersistenceError
from execution_tracker.models.database import Base
from execution_tracker.models.schemas import ExecutionRecord, TestCase, TestStep
from execution_tracker.repositories.interfaces.execution_repository import IExecutionRepository

# Test database
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


app.dependency_overrides[get_database] = override_get_db


@pytest.fixture
def db_session():
    """Fresh schema per test"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def test_client(db_session):
    """Synchronous test client sharing one event loop across requests"""
    with TestClient(app) as client:
        yield client


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class InMemoryExecutionRepository(IExecutionRepository):
    """Execution store kept in a list, with switches for failure injection"""

    def __init__(self):
        self.rows: List[ExecutionRecord] = []
        self.inserts = 0
        self.updates = 0
        self.fail_reads = False
        self.fail_writes = False
        self._next_id = 1

    async def find_latest(self, test_case_ids, session_id=None) -> Dict[str, ExecutionRecord]:
        if self.fail_reads:
            raise PersistenceError("store unreachable")
        latest: Dict[str, ExecutionRecord] = {}
        for row in reversed(self.rows):
            if row.test_case_id not in test_case_ids:
                continue
            if session_id and row.session_id != session_id:
                continue
            latest.setdefault(row.test_case_id, row)
        return latest

    async def find_latest_for_session(self, session_id) -> Dict[str, ExecutionRecord]:
        ids = [row.test_case_id for row in self.rows if row.session_id == session_id]
        return await self.find_latest(ids, session_id)

    async def insert(self, record: ExecutionRecord) -> ExecutionRecord:
        # yield so that concurrent saves get a chance to interleave
        await asyncio.sleep(0)
        if self.fail_writes:
            raise PersistenceError("store unreachable", test_case_id=record.test_case_id)
        stored = record.model_copy(update={"id": f"exec-{self._next_id}"})
        self._next_id += 1
        self.inserts += 1
        self.rows.append(stored)
        return stored

    async def update(self, execution_id: str, record: ExecutionRecord) -> ExecutionRecord:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise PersistenceError("store unreachable", test_case_id=record.test_case_id)
        for index, row in enumerate(self.rows):
            if row.id == execution_id:
                stored = record.model_copy(update={"id": execution_id})
                self.rows[index] = stored
                self.updates += 1
                return stored
        raise PersistenceError(f"Execution {execution_id} no longer exists")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def execution_repository():
    return InMemoryExecutionRepository()


def make_test_case(test_case_id: str, steps: int = 3) -> TestCase:
    return TestCase(
        id=test_case_id,
        title=f"Test case {test_case_id}",
        test_steps=[
            TestStep(step_number=n, action=f"Do thing {n}", expected=f"Thing {n} happens")
            for n in range(1, steps + 1)
        ],
    )


@pytest.fixture
def case_factory():
    return make_test_case
