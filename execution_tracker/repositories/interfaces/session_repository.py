from abc import ABC, abstractmethod
from typing import List, Optional
from execution_tracker.models.schemas import TestSession, TestSessionCreate, SessionStatus


class ISessionRepository(ABC):
    """Interface for test session operations"""

    @abstractmethod
    async def create(self, session: TestSessionCreate, created_by: Optional[str] = None) -> TestSession:
        pass

    @abstractmethod
    async def get_by_id(self, session_id: str) -> Optional[TestSession]:
        pass

    @abstractmethod
    async def get_all(self, skip: int = 0, limit: int = 100) -> List[TestSession]:
        pass

    @abstractmethod
    async def update_status(self, session_id: str, status: SessionStatus) -> Optional[TestSession]:
        """Change a session's status, stamping actual_start/actual_end as it starts and ends"""
        pass
