"""How local tracker state relates to a save that is still in flight.

The tracker always applies a mutation to its in-memory state before the
store confirms it. What happens to that local copy when the store rejects
the write is decided here, so the behavior can be swapped in one place.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, TYPE_CHECKING
import structlog

from execution_tracker.core.errors import PersistenceError
from execution_tracker.models.schemas import ExecutionRecord

if TYPE_CHECKING:
    from execution_tracker.services.tracker import TrackerState

logger = structlog.get_logger()

Persist = Callable[[ExecutionRecord], Awaitable[ExecutionRecord]]


class WritePolicy(ABC):
    name = "abstract"

    @abstractmethod
    async def write(
        self,
        state: "TrackerState",
        test_case_id: str,
        record: ExecutionRecord,
        persist: Persist,
    ) -> ExecutionRecord:
        """Apply ``record`` locally, persist it and return what the store holds"""
        pass


class OptimisticWriteThrough(WritePolicy):
    """Local state changes immediately and is kept even when the save fails.

    The displayed status can therefore drift from the stored one until the
    next load reconciles them.
    """

    name = "optimistic"

    async def write(self, state, test_case_id, record, persist):
        state.executions[test_case_id] = record
        try:
            stored = await persist(record)
        except PersistenceError:
            logger.warning(
                "Save failed; keeping unsaved local execution state",
                test_case_id=test_case_id,
                status=record.status.value,
            )
            raise
        state.executions[test_case_id] = stored
        return stored


class RollbackOnFailure(WritePolicy):
    """Local state changes immediately but is restored if the save fails"""

    name = "rollback"

    async def write(self, state, test_case_id, record, persist):
        previous = state.executions.get(test_case_id)
        state.executions[test_case_id] = record
        try:
            stored = await persist(record)
        except PersistenceError:
            logger.warning("Save failed; restoring previous execution state", test_case_id=test_case_id)
            if previous is None:
                state.executions.pop(test_case_id, None)
            else:
                state.executions[test_case_id] = previous
            raise
        state.executions[test_case_id] = stored
        return stored


WRITE_POLICIES = {
    OptimisticWriteThrough.name: OptimisticWriteThrough,
    RollbackOnFailure.name: RollbackOnFailure,
}


def get_write_policy(name: str) -> WritePolicy:
    try:
        return WRITE_POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown write policy '{name}'") from None
