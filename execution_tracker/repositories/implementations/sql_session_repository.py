from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import structlog

from execution_tracker.core.errors import PersistenceError
from execution_tracker.repositories.interfaces.session_repository import ISessionRepository
from execution_tracker.models.database import TestSessionModel
from execution_tracker.models.schemas import TestSession, TestSessionCreate, SessionStatus

logger = structlog.get_logger()


class SQLSessionRepository(ISessionRepository):
    """SQLAlchemy implementation of test session repository"""

    def __init__(self, db: Session):
        self.db = db

    async def create(self, session: TestSessionCreate, created_by: Optional[str] = None) -> TestSession:
        """Create a new test session"""
        try:
            db_session = TestSessionModel(**session.model_dump(), created_by=created_by)
            if session.status == SessionStatus.IN_PROGRESS:
                db_session.actual_start = datetime.now(timezone.utc)
            self.db.add(db_session)
            self.db.commit()
            self.db.refresh(db_session)
            return TestSession.model_validate(db_session)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to create test session", name=session.name, error=str(e))
            raise PersistenceError("Failed to create test session") from e

    async def get_by_id(self, session_id: str) -> Optional[TestSession]:
        """Get test session by ID"""
        try:
            db_session = self.db.query(TestSessionModel).filter(TestSessionModel.id == session_id).first()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load test session") from e
        if db_session:
            return TestSession.model_validate(db_session)
        return None

    async def get_all(self, skip: int = 0, limit: int = 100) -> List[TestSession]:
        """Get test sessions, newest first"""
        try:
            rows = (
                self.db.query(TestSessionModel)
                .order_by(TestSessionModel.created_at.desc(), TestSessionModel.id)
                .offset(skip)
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load test sessions") from e
        return [TestSession.model_validate(row) for row in rows]

    async def update_status(self, session_id: str, status: SessionStatus) -> Optional[TestSession]:
        """Move a session to a new status"""
        try:
            db_session = self.db.query(TestSessionModel).filter(TestSessionModel.id == session_id).first()
            if not db_session:
                return None

            now = datetime.now(timezone.utc)
            if status == SessionStatus.IN_PROGRESS and db_session.actual_start is None:
                db_session.actual_start = now
            if status in (SessionStatus.COMPLETED, SessionStatus.ABORTED):
                if db_session.actual_start is None:
                    db_session.actual_start = now
                db_session.actual_end = now
            db_session.status = status

            self.db.commit()
            self.db.refresh(db_session)
            return TestSession.model_validate(db_session)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to update session status", session_id=session_id, status=status.value, error=str(e))
            raise PersistenceError("Failed to update test session") from e
