from typing import Iterable, Mapping, Union

from execution_tracker.models.schemas import ExecutionRecord, ExecutionStats, ExecutionStatus


def _percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part * 100.0 / whole, 1)


def compute_stats(
    executions: Union[Iterable[ExecutionRecord], Mapping[str, ExecutionRecord]],
    total_test_cases: int,
) -> ExecutionStats:
    """Aggregate execution statuses over a run of ``total_test_cases`` test cases.

    Only the five explicit statuses are counted. ``not_run`` is whatever is
    left of the total, so test cases missing from ``executions`` are reported
    as not run and the counts always add up to ``total_test_cases``.
    """
    if isinstance(executions, Mapping):
        executions = executions.values()

    counts = {
        ExecutionStatus.PASSED: 0,
        ExecutionStatus.FAILED: 0,
        ExecutionStatus.BLOCKED: 0,
        ExecutionStatus.SKIPPED: 0,
        ExecutionStatus.IN_PROGRESS: 0,
    }
    for execution in executions:
        if execution.status in counts:
            counts[execution.status] += 1

    counted = sum(counts.values())
    if total_test_cases < counted:
        raise ValueError(
            f"total_test_cases ({total_test_cases}) is smaller than the {counted} executions already started"
        )

    completed = (
        counts[ExecutionStatus.PASSED]
        + counts[ExecutionStatus.FAILED]
        + counts[ExecutionStatus.BLOCKED]
        + counts[ExecutionStatus.SKIPPED]
    )
    return ExecutionStats(
        total=total_test_cases,
        passed=counts[ExecutionStatus.PASSED],
        failed=counts[ExecutionStatus.FAILED],
        blocked=counts[ExecutionStatus.BLOCKED],
        skipped=counts[ExecutionStatus.SKIPPED],
        in_progress=counts[ExecutionStatus.IN_PROGRESS],
        not_run=total_test_cases - counted,
        completed=completed,
        pass_rate=_percent(counts[ExecutionStatus.PASSED], completed),
        progress_percentage=_percent(completed, total_test_cases),
    )
