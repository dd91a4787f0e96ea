import uuid

from sqlalchemy import Column, String, Text, DateTime, Enum, JSON, Integer, Boolean, ForeignKey, Index
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from execution_tracker.models.schemas import (
    ExecutionStatus,
    SessionStatus,
    TestCasePriority,
    TestCaseStatus,
)

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class TestCaseModel(Base):
    __tablename__ = "test_cases"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    test_type = Column(String(50), nullable=True)
    priority = Column(Enum(TestCasePriority), default=TestCasePriority.MEDIUM)
    status = Column(Enum(TestCaseStatus), default=TestCaseStatus.DRAFT)
    is_edge_case = Column(Boolean, nullable=False, default=False)
    preconditions = Column(Text, nullable=True)
    test_steps = Column(JSON, nullable=False, default=list)
    expected_result = Column(Text, nullable=True)
    generation_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<TestCase(id={self.id}, title='{self.title}', status='{self.status}')>"


class TestSessionModel(Base):
    __tablename__ = "test_sessions"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    status = Column(Enum(SessionStatus), default=SessionStatus.PLANNED)
    environment = Column(String(100), nullable=True)
    actual_start = Column(DateTime(timezone=True), nullable=True)
    actual_end = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<TestSession(id={self.id}, name='{self.name}', status='{self.status}')>"


class TestExecutionModel(Base):
    """One row per recorded attempt; the newest row per test case/session is current"""

    __tablename__ = "test_executions"
    __table_args__ = (
        Index("ix_test_executions_case_session_created", "test_case_id", "session_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    test_case_id = Column(String(36), ForeignKey("test_cases.id"), nullable=False, index=True)
    session_id = Column(String(36), ForeignKey("test_sessions.id"), nullable=True, index=True)
    executed_by = Column(String(100), nullable=True)
    execution_status = Column(Enum(ExecutionStatus), nullable=False, default=ExecutionStatus.NOT_RUN)
    completed_steps = Column(JSON, nullable=False, default=list)
    failed_steps = Column(JSON, nullable=False, default=list)
    execution_notes = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    test_environment = Column(String(100), nullable=True)
    browser = Column(String(100), nullable=True)
    os_version = Column(String(100), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<TestExecution(id={self.id}, test_case_id={self.test_case_id}, status='{self.execution_status}')>"
