from functools import lru_cache
from typing import Optional
from fastapi import Depends, Header
from sqlalchemy.orm import Session
from execution_tracker.repositories.interfaces.test_case_repository import ITestCaseRepository
from execution_tracker.repositories.interfaces.session_repository import ISessionRepository
from execution_tracker.repositories.interfaces.execution_repository import IExecutionRepository

from execution_tracker.repositories.implementations.sql_test_case_repository import SQLTestCaseRepository
from execution_tracker.repositories.implementations.sql_session_repository import SQLSessionRepository
from execution_tracker.repositories.implementations.sql_execution_repository import SQLExecutionRepository

from execution_tracker.config.settings import settings
from execution_tracker.services.tracker_service import TrackerService
from execution_tracker.services.view_registry import ViewRegistry
from execution_tracker.services.write_policy import WritePolicy, get_write_policy
from execution_tracker.core.database import get_database


class Container:
    """Dependency injection container"""

    def __init__(self):
        self._view_registry = None
        self._write_policy = None

    def test_case_repository(self, db: Session) -> ITestCaseRepository:
        """Get test case repository instance"""
        return SQLTestCaseRepository(db)

    def session_repository(self, db: Session) -> ISessionRepository:
        """Get test session repository instance"""
        return SQLSessionRepository(db)

    def execution_repository(self, db: Session) -> IExecutionRepository:
        """Get execution repository instance"""
        return SQLExecutionRepository(db)

    @lru_cache()
    def view_registry(self) -> ViewRegistry:
        """Get the registry of open tracker views (singleton)"""
        if self._view_registry is None:
            self._view_registry = ViewRegistry(max_views=settings.max_open_views)
        return self._view_registry

    @lru_cache()
    def write_policy(self) -> WritePolicy:
        """Get the configured write policy (singleton)"""
        if self._write_policy is None:
            self._write_policy = get_write_policy(settings.write_policy)
        return self._write_policy

    def tracker_service(self, db: Session) -> TrackerService:
        """Get tracker service instance"""
        return TrackerService(
            test_case_repository=self.test_case_repository(db),
            session_repository=self.session_repository(db),
            execution_repository=self.execution_repository(db),
            view_registry=self.view_registry(),
            write_policy=self.write_policy(),
            default_environment=settings.default_test_environment,
            serialize_saves=settings.serialize_saves_per_test_case,
        )


# Global container instance
container = Container()


# Dependency providers for FastAPI
def get_test_case_repository(db: Session = Depends(get_database)) -> ITestCaseRepository:
    """FastAPI dependency for test case repository"""
    return container.test_case_repository(db)


def get_session_repository(db: Session = Depends(get_database)) -> ISessionRepository:
    """FastAPI dependency for test session repository"""
    return container.session_repository(db)


def get_tracker_service(db: Session = Depends(get_database)) -> TrackerService:
    """FastAPI dependency for tracker service"""
    return container.tracker_service(db)


def get_acting_user(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """The user actions are recorded against; None when the caller sent no X-User-Id"""
    if x_user_id is None:
        return None
    return x_user_id.strip() or None
