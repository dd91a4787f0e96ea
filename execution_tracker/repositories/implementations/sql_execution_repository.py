from datetime import datetime, timezone
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import structlog

from execution_tracker.core.errors import PersistenceError
from execution_tracker.models.database import TestExecutionModel
from execution_tracker.models.schemas import ExecutionRecord, FailedStep
from execution_tracker.repositories.interfaces.execution_repository import IExecutionRepository

logger = structlog.get_logger()


def _to_record(row: TestExecutionModel) -> ExecutionRecord:
    return ExecutionRecord(
        id=row.id,
        test_case_id=row.test_case_id,
        session_id=row.session_id,
        executed_by=row.executed_by,
        status=row.execution_status,
        completed_steps=list(row.completed_steps or []),
        failed_steps=[FailedStep(**item) for item in (row.failed_steps or [])],
        execution_notes=row.execution_notes,
        failure_reason=row.failure_reason,
        test_environment=row.test_environment,
        browser=row.browser,
        os_version=row.os_version,
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_minutes=row.duration_minutes,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _payload(record: ExecutionRecord) -> dict:
    """Column values written on insert and update"""
    return {
        "test_case_id": record.test_case_id,
        "session_id": record.session_id,
        "executed_by": record.executed_by,
        "execution_status": record.status,
        "completed_steps": list(record.completed_steps),
        "failed_steps": [step.model_dump() for step in record.failed_steps],
        "execution_notes": record.execution_notes,
        "failure_reason": record.failure_reason,
        "test_environment": record.test_environment,
        "browser": record.browser,
        "os_version": record.os_version,
        "started_at": record.started_at,
        "completed_at": record.completed_at,
        "duration_minutes": record.duration_minutes,
        "updated_at": record.updated_at or datetime.now(timezone.utc),
    }


class SQLExecutionRepository(IExecutionRepository):
    """SQLAlchemy implementation of the execution store"""

    def __init__(self, db: Session):
        self.db = db

    def _latest_by_test_case(self, query) -> Dict[str, ExecutionRecord]:
        rows = query.order_by(
            TestExecutionModel.created_at.desc(),
            TestExecutionModel.id.desc(),
        ).all()
        latest: Dict[str, ExecutionRecord] = {}
        for row in rows:
            # rows arrive newest first; older history rows are ignored
            if row.test_case_id not in latest:
                latest[row.test_case_id] = _to_record(row)
        return latest

    async def find_latest(self, test_case_ids: List[str], session_id: Optional[str] = None) -> Dict[str, ExecutionRecord]:
        """Get the current execution for each of the given test cases"""
        if not test_case_ids:
            return {}
        try:
            query = self.db.query(TestExecutionModel).filter(TestExecutionModel.test_case_id.in_(test_case_ids))
            if session_id:
                query = query.filter(TestExecutionModel.session_id == session_id)
            return self._latest_by_test_case(query)
        except SQLAlchemyError as e:
            logger.error("Failed to query executions", test_case_count=len(test_case_ids), session_id=session_id, error=str(e))
            raise PersistenceError("Failed to load test executions") from e

    async def find_latest_for_session(self, session_id: str) -> Dict[str, ExecutionRecord]:
        """Get the current execution for every test case run in a session"""
        try:
            query = self.db.query(TestExecutionModel).filter(TestExecutionModel.session_id == session_id)
            return self._latest_by_test_case(query)
        except SQLAlchemyError as e:
            logger.error("Failed to query session executions", session_id=session_id, error=str(e))
            raise PersistenceError("Failed to load session executions") from e

    async def insert(self, record: ExecutionRecord) -> ExecutionRecord:
        """Create a new execution row"""
        try:
            row = TestExecutionModel(**_payload(record))
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            return _to_record(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to insert execution", test_case_id=record.test_case_id, error=str(e))
            raise PersistenceError("Failed to save test execution", test_case_id=record.test_case_id) from e

    async def update(self, execution_id: str, record: ExecutionRecord) -> ExecutionRecord:
        """Update an existing execution row in place"""
        try:
            row = self.db.query(TestExecutionModel).filter(TestExecutionModel.id == execution_id).first()
            if not row:
                raise PersistenceError(f"Execution {execution_id} no longer exists", test_case_id=record.test_case_id)
            for field, value in _payload(record).items():
                setattr(row, field, value)
            self.db.commit()
            self.db.refresh(row)
            return _to_record(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to update execution", execution_id=execution_id, error=str(e))
            raise PersistenceError("Failed to save test execution", test_case_id=record.test_case_id) from e
