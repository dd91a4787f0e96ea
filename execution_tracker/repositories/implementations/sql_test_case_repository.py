from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import structlog

from execution_tracker.core.errors import PersistenceError
from execution_tracker.repositories.interfaces.test_case_repository import ITestCaseRepository
from execution_tracker.models.database import TestCaseModel
from execution_tracker.models.schemas import TestCase, TestCaseCreate

logger = structlog.get_logger()


class SQLTestCaseRepository(ITestCaseRepository):
    """SQLAlchemy implementation of test case repository"""

    def __init__(self, db: Session):
        self.db = db

    async def create(self, test_case: TestCaseCreate) -> TestCase:
        """Create a new test case"""
        try:
            db_test_case = TestCaseModel(**test_case.model_dump())
            self.db.add(db_test_case)
            self.db.commit()
            self.db.refresh(db_test_case)
            return TestCase.model_validate(db_test_case)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to create test case", title=test_case.title, error=str(e))
            raise PersistenceError("Failed to create test case") from e

    async def get_by_id(self, test_case_id: str) -> Optional[TestCase]:
        """Get test case by ID"""
        try:
            db_test_case = self.db.query(TestCaseModel).filter(TestCaseModel.id == test_case_id).first()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load test case", test_case_id=test_case_id) from e
        if db_test_case:
            return TestCase.model_validate(db_test_case)
        return None

    async def get_all(self, skip: int = 0, limit: int = 100, generation_id: Optional[str] = None) -> List[TestCase]:
        """Get test cases with pagination, optionally scoped to one generation"""
        try:
            query = self.db.query(TestCaseModel)
            if generation_id:
                query = query.filter(TestCaseModel.generation_id == generation_id)
            db_test_cases = query.order_by(TestCaseModel.created_at, TestCaseModel.id).offset(skip).limit(limit).all()
        except SQLAlchemyError as e:
            logger.error("Failed to list test cases", generation_id=generation_id, error=str(e))
            raise PersistenceError("Failed to load test cases") from e
        return [TestCase.model_validate(test_case) for test_case in db_test_cases]

    async def get_many(self, test_case_ids: List[str]) -> List[TestCase]:
        """Get the existing test cases among the given ids"""
        if not test_case_ids:
            return []
        try:
            rows = self.db.query(TestCaseModel).filter(TestCaseModel.id.in_(test_case_ids)).all()
        except SQLAlchemyError as e:
            logger.error("Failed to load test cases", test_case_count=len(test_case_ids), error=str(e))
            raise PersistenceError("Failed to load test cases") from e
        by_id = {row.id: row for row in rows}
        return [TestCase.model_validate(by_id[tc_id]) for tc_id in test_case_ids if tc_id in by_id]
