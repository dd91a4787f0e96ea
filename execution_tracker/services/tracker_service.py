from typing import Dict, List, Optional
import structlog

from execution_tracker.core.errors import NotFoundError, PersistenceError
from execution_tracker.models.schemas import (
    ExecutionRecord,
    ExecutionStats,
    ExecutionUpdate,
    OpenViewRequest,
    StatsRequest,
    TrackerViewSnapshot,
)
from execution_tracker.repositories.interfaces.execution_repository import IExecutionRepository
from execution_tracker.repositories.interfaces.session_repository import ISessionRepository
from execution_tracker.repositories.interfaces.test_case_repository import ITestCaseRepository
from execution_tracker.services.stats import compute_stats
from execution_tracker.services.tracker import ExecutionTracker, TrackerState
from execution_tracker.services.view_registry import ViewRegistry
from execution_tracker.services.write_policy import WritePolicy

logger = structlog.get_logger()

# Upper bound on test cases pulled into one view
VIEW_TEST_CASE_LIMIT = 1000


class TrackerService:
    """Business logic service for execution tracking"""

    def __init__(
        self,
        test_case_repository: ITestCaseRepository,
        session_repository: ISessionRepository,
        execution_repository: IExecutionRepository,
        view_registry: ViewRegistry,
        write_policy: WritePolicy,
        default_environment: Optional[str] = None,
        serialize_saves: bool = True,
    ):
        self.test_case_repository = test_case_repository
        self.session_repository = session_repository
        self.execution_repository = execution_repository
        self.view_registry = view_registry
        self.write_policy = write_policy
        self.default_environment = default_environment
        self.serialize_saves = serialize_saves

    def tracker(self, state: TrackerState, acting_user: Optional[str] = None) -> ExecutionTracker:
        return ExecutionTracker(
            state=state,
            execution_repository=self.execution_repository,
            acting_user=acting_user,
            write_policy=self.write_policy,
            default_environment=self.default_environment,
            serialize_saves=self.serialize_saves,
        )

    # ------------------------------------------------------------------
    # Views

    async def open_view(self, request: OpenViewRequest, acting_user: Optional[str] = None) -> str:
        """Open a tracker view scoped by generation and/or session.

        Load failures do not prevent the view from opening; they are left on
        the view as notifications and the affected data stays empty.
        """
        state = TrackerState(session_id=request.session_id, generation_id=request.generation_id)

        if request.session_id:
            try:
                session = await self.session_repository.get_by_id(request.session_id)
            except PersistenceError as e:
                session = None
                state.notify("error", "Failed to load session", e.message)
            else:
                if session is None:
                    raise NotFoundError(f"Test session {request.session_id} not found")
            state.session = session

        try:
            test_cases = await self.test_case_repository.get_all(
                limit=VIEW_TEST_CASE_LIMIT, generation_id=request.generation_id
            )
            state.set_test_cases(test_cases)
        except PersistenceError as e:
            logger.error("Failed to load test cases for view", generation_id=request.generation_id, error=e.message)
            state.notify("error", "Failed to load test cases", e.message)

        await self.tracker(state, acting_user).refresh()

        view_id = self.view_registry.open(state)
        logger.info(
            "Opened tracker view",
            view_id=view_id,
            generation_id=request.generation_id,
            session_id=request.session_id,
            test_cases=len(state.test_cases),
        )
        return view_id

    def get_view(self, view_id: str) -> TrackerState:
        state = self.view_registry.get(view_id)
        if state is None:
            raise NotFoundError(f"Tracker view {view_id} not found")
        return state

    def close_view(self, view_id: str) -> bool:
        closed = self.view_registry.close(view_id)
        if closed:
            logger.info("Closed tracker view", view_id=view_id)
        return closed

    def view_tracker(self, view_id: str, acting_user: Optional[str] = None) -> ExecutionTracker:
        return self.tracker(self.get_view(view_id), acting_user)

    def snapshot(self, view_id: str) -> TrackerViewSnapshot:
        state = self.get_view(view_id)
        return TrackerViewSnapshot(
            view_id=view_id,
            generation_id=state.generation_id,
            session=state.session,
            expanded_case=state.expanded_case,
            test_cases=list(state.test_cases.values()),
            executions=dict(state.executions),
            stats=self.tracker(state).stats(),
            notifications=list(state.notifications),
        )

    # ------------------------------------------------------------------
    # Direct execution access

    async def load_executions(self, test_case_ids: List[str], session_id: Optional[str] = None) -> Dict[str, ExecutionRecord]:
        state = TrackerState(session_id=session_id)
        return await self.tracker(state).load_executions(test_case_ids, session_id)

    async def save_progress(
        self,
        test_case_id: str,
        update: ExecutionUpdate,
        session_id: Optional[str] = None,
        acting_user: Optional[str] = None,
    ) -> ExecutionRecord:
        """Load the current execution of one test case and merge an update onto it"""
        if await self.test_case_repository.get_by_id(test_case_id) is None:
            raise NotFoundError(f"Test case {test_case_id} not found", test_case_id=test_case_id)
        if session_id and await self.session_repository.get_by_id(session_id) is None:
            raise NotFoundError(f"Test session {session_id} not found", test_case_id=test_case_id)

        tracker = self.tracker(TrackerState(session_id=session_id), acting_user)
        await tracker.load_executions([test_case_id], session_id)
        return await tracker.save_progress(test_case_id, update)

    async def compute_stats(self, request: StatsRequest) -> ExecutionStats:
        executions = await self.load_executions(request.test_case_ids, request.session_id)
        total = request.total_test_cases if request.total_test_cases is not None else len(request.test_case_ids)
        return compute_stats(executions, total)

    async def session_stats(self, session_id: str, generation_id: Optional[str] = None) -> ExecutionStats:
        """Statistics for one session.

        With a generation, every test case of that generation counts towards
        the total; otherwise only the test cases run in the session do.
        """
        if await self.session_repository.get_by_id(session_id) is None:
            raise NotFoundError(f"Test session {session_id} not found")

        if generation_id:
            test_cases = await self.test_case_repository.get_all(limit=VIEW_TEST_CASE_LIMIT, generation_id=generation_id)
            executions = await self.execution_repository.find_latest([tc.id for tc in test_cases], session_id)
            return compute_stats(executions, len(test_cases))

        executions = await self.execution_repository.find_latest_for_session(session_id)
        return compute_stats(executions, len(executions))
