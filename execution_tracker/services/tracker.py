import asyncio
import math
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional
import structlog

from execution_tracker.core.errors import ExecutionValidationError, PersistenceError
from execution_tracker.models.schemas import (
    ExecutionDetails,
    ExecutionRecord,
    ExecutionStats,
    ExecutionStatus,
    ExecutionUpdate,
    FailedStep,
    Notification,
    RESULT_STATUSES,
    TestCase,
    TestSession,
)
from execution_tracker.repositories.interfaces.execution_repository import IExecutionRepository
from execution_tracker.services.stats import compute_stats
from execution_tracker.services.write_policy import OptimisticWriteThrough, WritePolicy

logger = structlog.get_logger()

# Builds the update for a save from the execution as it is when the save runs.
# Returning None means there is nothing to write.
UpdateBuilder = Callable[[ExecutionRecord], Optional[ExecutionUpdate]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def duration_in_minutes(started_at: datetime, completed_at: datetime) -> int:
    """Whole minutes between two instants, halves rounded up"""
    seconds = (completed_at - started_at).total_seconds()
    return int(math.floor(seconds / 60.0 + 0.5))


class TrackerState:
    """Everything one open tracker view holds in memory.

    Created when a view is opened and dropped when it is closed. Holds the
    current execution per test case, the expanded test case, pending
    notifications and the per-test-case write locks.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        generation_id: Optional[str] = None,
        test_cases: Optional[Iterable[TestCase]] = None,
        session: Optional[TestSession] = None,
    ):
        self.session_id = session_id
        self.generation_id = generation_id
        self.session = session
        self.test_cases: Dict[str, TestCase] = {}
        self.executions: Dict[str, ExecutionRecord] = {}
        self.expanded_case: Optional[str] = None
        self.notifications: List[Notification] = []
        self._write_locks: Dict[str, asyncio.Lock] = {}
        # False until the test cases of the view are known; unscoped state accepts any id
        self.scoped = False
        if test_cases is not None:
            self.set_test_cases(test_cases)

    @property
    def test_case_ids(self) -> List[str]:
        return list(self.test_cases)

    def set_test_cases(self, test_cases: Iterable[TestCase]) -> None:
        self.test_cases = {test_case.id: test_case for test_case in test_cases}
        self.scoped = True

    def has_test_case(self, test_case_id: str) -> bool:
        return not self.scoped or test_case_id in self.test_cases

    def lock_for(self, test_case_id: str) -> asyncio.Lock:
        lock = self._write_locks.get(test_case_id)
        if lock is None:
            lock = self._write_locks[test_case_id] = asyncio.Lock()
        return lock

    def notify(self, level: str, title: str, message: str, test_case_id: Optional[str] = None) -> Notification:
        notification = Notification(level=level, title=title, message=message, test_case_id=test_case_id)
        self.notifications.append(notification)
        return notification

    def clear_notifications(self) -> None:
        self.notifications.clear()


class ExecutionTracker:
    """Tracks the current execution of each test case in a view and persists progress.

    Public operations come in two layers. ``load_executions`` and
    ``save_progress`` raise ``PersistenceError`` and
    ``ExecutionValidationError``. The user actions (``toggle_step``,
    ``mark_passed``, ``submit_result``, ``reset`` and friends) never raise for
    those: they record a notification on the state and return whatever the
    execution looks like locally afterwards.
    """

    def __init__(
        self,
        state: TrackerState,
        execution_repository: IExecutionRepository,
        acting_user: Optional[str] = None,
        write_policy: Optional[WritePolicy] = None,
        default_environment: Optional[str] = None,
        serialize_saves: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.state = state
        self.execution_repository = execution_repository
        self.acting_user = acting_user
        self.write_policy = write_policy or OptimisticWriteThrough()
        self.default_environment = default_environment
        self.serialize_saves = serialize_saves
        self.clock = clock

    # ------------------------------------------------------------------
    # Loading

    def ensure_execution(self, test_case_id: str) -> ExecutionRecord:
        """Return the local execution, seeding an unsaved not_run placeholder if there is none.

        Test cases outside the view get a placeholder that is not kept on the state.
        """
        current = self.state.executions.get(test_case_id)
        if current is None:
            current = ExecutionRecord(test_case_id=test_case_id, session_id=self.state.session_id)
            if self.state.has_test_case(test_case_id):
                self.state.executions[test_case_id] = current
        return current

    async def load_executions(
        self, test_case_ids: List[str], session_id: Optional[str] = None
    ) -> Dict[str, ExecutionRecord]:
        """Read the current execution of every requested test case.

        Test cases with nothing stored get a not_run placeholder that is not
        written until it is first mutated. If the store cannot be read the
        local state is left exactly as it was.
        """
        stored = await self.execution_repository.find_latest(test_case_ids, session_id)

        loaded: Dict[str, ExecutionRecord] = {}
        for test_case_id in test_case_ids:
            loaded[test_case_id] = stored.get(test_case_id) or ExecutionRecord(
                test_case_id=test_case_id, session_id=session_id
            )
        self.state.executions.update(loaded)
        logger.info(
            "Loaded executions",
            requested=len(test_case_ids),
            stored=len(stored),
            session_id=session_id,
        )
        return loaded

    # ------------------------------------------------------------------
    # Persistence

    async def save_progress(self, test_case_id: str, update: ExecutionUpdate) -> ExecutionRecord:
        """Merge ``update`` onto the current execution and write it to the store"""
        return await self._save(test_case_id, lambda current: update)

    async def _save(self, test_case_id: str, build: UpdateBuilder) -> ExecutionRecord:
        if not self.acting_user:
            raise ExecutionValidationError("No acting user to record the execution against", test_case_id=test_case_id)
        if not self.state.has_test_case(test_case_id):
            raise ExecutionValidationError("Test case is not part of this view", test_case_id=test_case_id)

        lock = self.state.lock_for(test_case_id) if self.serialize_saves else nullcontext()
        async with lock:
            current = self.ensure_execution(test_case_id)
            update = build(current)
            if update is None:
                return current
            record = self._merge(current, update)
            return await self.write_policy.write(self.state, test_case_id, record, self._persist)

    async def _persist(self, record: ExecutionRecord) -> ExecutionRecord:
        if record.is_persisted:
            return await self.execution_repository.update(record.id, record)
        stored = await self.execution_repository.insert(record)
        logger.info("Created execution", test_case_id=record.test_case_id, execution_id=stored.id)
        return stored

    def _merge(self, current: ExecutionRecord, update: ExecutionUpdate) -> ExecutionRecord:
        """Apply an update and derive the timestamps its status change implies"""
        changes = update.model_dump(exclude_unset=True)
        for field in ("status", "completed_steps", "failed_steps"):
            if field in changes and changes[field] is None:
                del changes[field]
        now = self.clock()

        data = current.model_dump()
        data.update(changes)
        next_status = data["status"]

        if next_status == ExecutionStatus.NOT_RUN:
            for field in ("started_at", "completed_at", "duration_minutes"):
                if field not in changes:
                    data[field] = None
        else:
            if data["started_at"] is None and "started_at" not in changes:
                data["started_at"] = now

            if next_status in RESULT_STATUSES:
                # duration is fixed when the result is first recorded
                if next_status != current.status:
                    if "completed_at" not in changes:
                        data["completed_at"] = now
                    if "duration_minutes" not in changes:
                        # a start stamped by this very save does not count
                        started_at = changes["started_at"] if "started_at" in changes else current.started_at
                        completed_at = data["completed_at"]
                        data["duration_minutes"] = (
                            duration_in_minutes(started_at, completed_at) if started_at and completed_at else None
                        )
            elif current.status in RESULT_STATUSES:
                for field in ("completed_at", "duration_minutes"):
                    if field not in changes:
                        data[field] = None

        data["test_case_id"] = current.test_case_id
        data["executed_by"] = self.acting_user
        data["updated_at"] = now
        return ExecutionRecord(**data)

    # ------------------------------------------------------------------
    # User actions

    async def _action(self, action: str, test_case_id: str, build: UpdateBuilder) -> ExecutionRecord:
        try:
            return await self._save(test_case_id, build)
        except ExecutionValidationError as e:
            logger.warning("Execution action rejected", action=action, test_case_id=test_case_id, error=e.message)
            self.state.notify("error", "Cannot save progress", e.message, test_case_id=test_case_id)
        except PersistenceError as e:
            logger.error("Execution action failed to save", action=action, test_case_id=test_case_id, error=e.message)
            self.state.notify("error", "Failed to save progress", e.message, test_case_id=test_case_id)
        return self.ensure_execution(test_case_id)

    def _check_step(self, test_case_id: str, step_number: int) -> None:
        if not self.state.has_test_case(test_case_id):
            raise ExecutionValidationError("Test case is not part of this view", test_case_id=test_case_id)
        test_case = self.state.test_cases.get(test_case_id)
        if test_case is None:
            return
        if step_number not in {step.step_number for step in test_case.test_steps}:
            raise ExecutionValidationError(
                f"Test case has no step {step_number}", test_case_id=test_case_id
            )

    async def toggle_step(self, test_case_id: str, step_number: int) -> ExecutionRecord:
        """Check or uncheck a step; the first step checked starts the execution"""
        try:
            self._check_step(test_case_id, step_number)
        except ExecutionValidationError as e:
            self.state.notify("error", "Cannot save progress", e.message, test_case_id=test_case_id)
            return self.ensure_execution(test_case_id)

        def build(current: ExecutionRecord) -> ExecutionUpdate:
            steps = list(current.completed_steps)
            if step_number in steps:
                steps.remove(step_number)
            else:
                steps.append(step_number)
            status = ExecutionStatus.IN_PROGRESS if current.status == ExecutionStatus.NOT_RUN else current.status
            return ExecutionUpdate(completed_steps=steps, status=status)

        return await self._action("toggle_step", test_case_id, build)

    async def mark_step_failed(self, test_case_id: str, step_number: int, failure_reason: str = "") -> ExecutionRecord:
        """Flag a step as failed, replacing any earlier reason for the same step.

        Whether the step is also in ``completed_steps`` is left untouched.
        """
        try:
            self._check_step(test_case_id, step_number)
        except ExecutionValidationError as e:
            self.state.notify("error", "Cannot save progress", e.message, test_case_id=test_case_id)
            return self.ensure_execution(test_case_id)

        def build(current: ExecutionRecord) -> ExecutionUpdate:
            failed = [step for step in current.failed_steps if step.step_number != step_number]
            failed.append(FailedStep(step_number=step_number, failure_reason=failure_reason))
            failed.sort(key=lambda step: step.step_number)
            status = ExecutionStatus.IN_PROGRESS if current.status == ExecutionStatus.NOT_RUN else current.status
            return ExecutionUpdate(failed_steps=failed, status=status)

        return await self._action("mark_step_failed", test_case_id, build)

    async def clear_step_failure(self, test_case_id: str, step_number: int) -> ExecutionRecord:
        def build(current: ExecutionRecord) -> Optional[ExecutionUpdate]:
            failed = [step for step in current.failed_steps if step.step_number != step_number]
            if len(failed) == len(current.failed_steps):
                return None
            return ExecutionUpdate(failed_steps=failed)

        return await self._action("clear_step_failure", test_case_id, build)

    async def mark_passed(self, test_case_id: str) -> ExecutionRecord:
        """Record a simple pass with no extra details"""

        def build(current: ExecutionRecord) -> Optional[ExecutionUpdate]:
            if current.status == ExecutionStatus.PASSED:
                return None
            return ExecutionUpdate(status=ExecutionStatus.PASSED)

        return await self._action("mark_passed", test_case_id, build)

    async def submit_result(
        self,
        test_case_id: str,
        status: ExecutionStatus,
        details: Optional[ExecutionDetails] = None,
    ) -> ExecutionRecord:
        """Commit a result together with the details collected for it"""
        if status not in RESULT_STATUSES:
            self.state.notify(
                "error",
                "Cannot save progress",
                f"'{status.value}' is not a result status",
                test_case_id=test_case_id,
            )
            return self.ensure_execution(test_case_id)

        details = details or ExecutionDetails()

        def build(current: ExecutionRecord) -> Optional[ExecutionUpdate]:
            if current.status == status:
                return None
            fields = {
                "status": status,
                "test_environment": details.environment or current.test_environment or self.default_environment,
            }
            if details.browser is not None:
                fields["browser"] = details.browser
            if details.os_version is not None:
                fields["os_version"] = details.os_version
            if details.notes is not None:
                fields["execution_notes"] = details.notes
            if details.failure_reason is not None:
                fields["failure_reason"] = details.failure_reason
            return ExecutionUpdate(**fields)

        return await self._action("submit_result", test_case_id, build)

    async def reset(self, test_case_id: str) -> ExecutionRecord:
        """Return an execution to not_run, clearing progress and timing"""

        def build(current: ExecutionRecord) -> Optional[ExecutionUpdate]:
            if not current.is_persisted and current == ExecutionRecord(
                test_case_id=test_case_id, session_id=current.session_id
            ):
                # never saved and untouched; nothing to reset
                return None
            return ExecutionUpdate(
                status=ExecutionStatus.NOT_RUN,
                completed_steps=[],
                failed_steps=[],
                execution_notes=None,
                failure_reason=None,
                started_at=None,
                completed_at=None,
                duration_minutes=None,
            )

        return await self._action("reset", test_case_id, build)

    async def refresh(self) -> bool:
        """Reload executions for the view; on failure keep what is displayed"""
        try:
            await self.load_executions(self.state.test_case_ids, self.state.session_id)
            return True
        except PersistenceError as e:
            logger.error("Failed to refresh executions", session_id=self.state.session_id, error=e.message)
            self.state.notify("error", "Failed to load executions", e.message)
            return False

    def set_expanded(self, test_case_id: Optional[str]) -> None:
        self.state.expanded_case = test_case_id

    # ------------------------------------------------------------------
    # Aggregation

    def stats(self) -> ExecutionStats:
        test_case_ids = self.state.test_case_ids
        if test_case_ids:
            executions = [self.state.executions[tc] for tc in test_case_ids if tc in self.state.executions]
            return compute_stats(executions, len(test_case_ids))
        return compute_stats(self.state.executions, len(self.state.executions))
