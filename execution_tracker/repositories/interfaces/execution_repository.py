from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from execution_tracker.models.schemas import ExecutionRecord


class IExecutionRepository(ABC):
    """Interface for the execution store.

    The store may keep several rows per test case; readers only ever see the
    most recently created one.
    """

    @abstractmethod
    async def find_latest(self, test_case_ids: List[str], session_id: Optional[str] = None) -> Dict[str, ExecutionRecord]:
        """Latest execution per test case, keyed by test case id. Test cases without rows are absent."""
        pass

    @abstractmethod
    async def find_latest_for_session(self, session_id: str) -> Dict[str, ExecutionRecord]:
        """Latest execution of every test case that has one in the given session"""
        pass

    @abstractmethod
    async def insert(self, record: ExecutionRecord) -> ExecutionRecord:
        """Create a row and return the stored record (with its id)"""
        pass

    @abstractmethod
    async def update(self, execution_id: str, record: ExecutionRecord) -> ExecutionRecord:
        """Overwrite the row with the given id and return the stored record"""
        pass
