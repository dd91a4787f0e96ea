from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Optional, Dict
from datetime import datetime, timezone
from enum import Enum


class ExecutionStatus(str, Enum):
    NOT_RUN = "not_run"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


# Statuses that finish an attempt; entering one stamps completed_at
RESULT_STATUSES = frozenset(
    {
        ExecutionStatus.PASSED,
        ExecutionStatus.FAILED,
        ExecutionStatus.BLOCKED,
        ExecutionStatus.SKIPPED,
    }
)


class TestCaseStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class TestCasePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SessionStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABORTED = "aborted"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TestStep(BaseModel):
    step_number: int = Field(..., gt=0, description="Step sequence number")
    action: str = Field(..., description="Action to be performed")
    expected: str = Field(..., description="Expected result of the action")


class TestCaseBase(BaseModel):
    title: str = Field(..., description="Test case title")
    description: str = Field("", description="Detailed description of the test case")
    test_type: Optional[str] = Field(None, description="Kind of test, e.g. functional or regression")
    priority: TestCasePriority = Field(default=TestCasePriority.MEDIUM)
    is_edge_case: bool = Field(default=False)
    preconditions: Optional[str] = Field(None, description="Preconditions for test execution")
    test_steps: List[TestStep] = Field(default_factory=list, description="List of test steps")
    expected_result: Optional[str] = Field(None, description="Overall expected result")
    generation_id: Optional[str] = Field(None, description="Generation run that produced this test case")

    @field_validator("test_steps")
    @classmethod
    def unique_step_numbers(cls, steps: List[TestStep]) -> List[TestStep]:
        numbers = [step.step_number for step in steps]
        if len(numbers) != len(set(numbers)):
            raise ValueError("step numbers must be unique within a test case")
        return steps


class TestCaseCreate(TestCaseBase):
    status: TestCaseStatus = TestCaseStatus.DRAFT


class TestCase(TestCaseBase):
    id: str
    status: TestCaseStatus = TestCaseStatus.DRAFT
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TestSessionCreate(BaseModel):
    name: str = Field(..., description="Session name, e.g. 'Sprint 12 Regression'")
    environment: Optional[str] = Field(None, description="Environment the session runs against")
    status: SessionStatus = SessionStatus.PLANNED


class TestSession(BaseModel):
    id: str
    name: str
    status: SessionStatus = SessionStatus.PLANNED
    environment: Optional[str] = None
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SessionStatusUpdate(BaseModel):
    status: SessionStatus


class FailedStep(BaseModel):
    step_number: int = Field(..., gt=0)
    failure_reason: str = ""


class ExecutionRecord(BaseModel):
    """The current execution of one test case, as read from and written to the store.

    ``id`` is None until the record has been persisted once. ``completed_steps``
    behaves as a set: duplicates are dropped and the order of first
    appearance is kept.
    """

    id: Optional[str] = None
    test_case_id: str
    session_id: Optional[str] = None
    executed_by: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.NOT_RUN
    completed_steps: List[int] = Field(default_factory=list)
    failed_steps: List[FailedStep] = Field(default_factory=list)
    execution_notes: Optional[str] = None
    failure_reason: Optional[str] = None
    test_environment: Optional[str] = None
    browser: Optional[str] = None
    os_version: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("completed_steps")
    @classmethod
    def dedupe_completed_steps(cls, steps: List[int]) -> List[int]:
        return list(dict.fromkeys(steps))

    @field_validator("started_at", "completed_at", "created_at", "updated_at")
    @classmethod
    def attach_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def is_persisted(self) -> bool:
        return self.id is not None


class ExecutionUpdate(BaseModel):
    """Partial update merged onto the current execution by save_progress.

    Only fields that were explicitly set are applied, so ``None`` can be used
    to clear an optional field.
    """

    status: Optional[ExecutionStatus] = None
    completed_steps: Optional[List[int]] = None
    failed_steps: Optional[List[FailedStep]] = None
    execution_notes: Optional[str] = None
    failure_reason: Optional[str] = None
    test_environment: Optional[str] = None
    browser: Optional[str] = None
    os_version: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None

    @field_validator("completed_steps")
    @classmethod
    def dedupe_completed_steps(cls, steps: Optional[List[int]]) -> Optional[List[int]]:
        if steps is None:
            return None
        return list(dict.fromkeys(steps))

    @field_validator("started_at", "completed_at")
    @classmethod
    def attach_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class ExecutionDetails(BaseModel):
    """Details collected before committing a failed/blocked/skipped result"""

    environment: Optional[str] = None
    browser: Optional[str] = None
    os_version: Optional[str] = None
    notes: Optional[str] = None
    failure_reason: Optional[str] = None


class ResultSubmission(ExecutionDetails):
    status: ExecutionStatus

    @model_validator(mode="after")
    def status_is_result(self) -> "ResultSubmission":
        if self.status not in RESULT_STATUSES:
            raise ValueError("status must be one of passed, failed, blocked, skipped")
        return self


class StepFailure(BaseModel):
    failure_reason: str = ""


class ExecutionStats(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    blocked: int = 0
    skipped: int = 0
    in_progress: int = 0
    not_run: int = 0
    completed: int = 0
    pass_rate: float = 0.0
    progress_percentage: float = 0.0


class StatsRequest(BaseModel):
    test_case_ids: List[str] = Field(..., description="Test cases to aggregate over")
    session_id: Optional[str] = None
    total_test_cases: Optional[int] = Field(None, ge=0, description="Defaults to the number of test case ids")


class Notification(BaseModel):
    level: str = Field(..., description="error, warning or info")
    title: str
    message: str
    test_case_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class OpenViewRequest(BaseModel):
    generation_id: Optional[str] = Field(None, description="Scope the view to test cases of one generation")
    session_id: Optional[str] = Field(None, description="Scope executions to one test session")


class ExpandCaseRequest(BaseModel):
    test_case_id: Optional[str] = None


class TrackerViewSnapshot(BaseModel):
    view_id: str
    generation_id: Optional[str] = None
    session: Optional[TestSession] = None
    expanded_case: Optional[str] = None
    test_cases: List[TestCase] = Field(default_factory=list)
    executions: Dict[str, ExecutionRecord] = Field(default_factory=dict)
    stats: ExecutionStats
    notifications: List[Notification] = Field(default_factory=list)
