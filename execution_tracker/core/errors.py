from typing import Optional


class TrackerError(Exception):
    """Base class for execution tracker errors"""

    def __init__(self, message: str, test_case_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.test_case_id = test_case_id


class PersistenceError(TrackerError):
    """The execution store could not be read or written"""


class ExecutionValidationError(TrackerError):
    """An operation was rejected before any write was attempted"""


class NotFoundError(TrackerError):
    """A referenced test case, session or view does not exist"""
