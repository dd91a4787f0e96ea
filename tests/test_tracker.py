import asyncio
from datetime import timedelta

import pytest

from execution_tracker.core.errors import ExecutionValidationError, PersistenceError
from execution_tracker.models.schemas import (
    ExecutionDetails,
    ExecutionRecord,
    ExecutionStatus,
    ExecutionUpdate,
)
from execution_tracker.services.tracker import ExecutionTracker, TrackerState, duration_in_minutes
from execution_tracker.services.write_policy import RollbackOnFailure


@pytest.fixture
def state(case_factory):
    return TrackerState(test_cases=[case_factory("tc-1"), case_factory("tc-2"), case_factory("tc-3")])


@pytest.fixture
def tracker(state, execution_repository, clock):
    return ExecutionTracker(
        state=state,
        execution_repository=execution_repository,
        acting_user="tester-1",
        default_environment="staging",
        clock=clock,
    )


@pytest.mark.asyncio
async def test_load_without_stored_rows_yields_placeholders(tracker, execution_repository):
    loaded = await tracker.load_executions(["tc-1", "tc-2", "tc-3"])

    assert set(loaded) == {"tc-1", "tc-2", "tc-3"}
    for record in loaded.values():
        assert record.status == ExecutionStatus.NOT_RUN
        assert record.completed_steps == []
        assert record.failed_steps == []
        assert record.id is None
    assert execution_repository.inserts == 0
    assert execution_repository.updates == 0


@pytest.mark.asyncio
async def test_load_picks_most_recent_row(tracker, execution_repository):
    execution_repository.rows = [
        ExecutionRecord(id="old", test_case_id="tc-1", status=ExecutionStatus.FAILED),
        ExecutionRecord(id="new", test_case_id="tc-1", status=ExecutionStatus.PASSED),
    ]

    loaded = await tracker.load_executions(["tc-1"])

    assert loaded["tc-1"].id == "new"
    assert loaded["tc-1"].status == ExecutionStatus.PASSED


@pytest.mark.asyncio
async def test_failed_load_keeps_displayed_state(tracker, state, execution_repository):
    await tracker.toggle_step("tc-1", 1)
    before = dict(state.executions)
    execution_repository.fail_reads = True

    with pytest.raises(PersistenceError):
        await tracker.load_executions(["tc-1", "tc-2"])
    assert state.executions == before

    assert await tracker.refresh() is False
    assert state.executions == before
    assert state.notifications[-1].title == "Failed to load executions"


@pytest.mark.asyncio
async def test_toggle_step_twice_restores_steps(tracker):
    first = await tracker.toggle_step("tc-1", 2)
    assert first.completed_steps == [2]

    second = await tracker.toggle_step("tc-1", 2)
    assert second.completed_steps == []


@pytest.mark.asyncio
async def test_first_toggle_starts_execution(tracker, clock, execution_repository):
    record = await tracker.toggle_step("tc-1", 1)

    assert record.status == ExecutionStatus.IN_PROGRESS
    assert record.started_at == clock.now
    assert record.executed_by == "tester-1"
    assert record.id is not None
    assert execution_repository.inserts == 1


@pytest.mark.asyncio
async def test_toggle_does_not_change_a_recorded_result(tracker):
    await tracker.mark_passed("tc-1")

    record = await tracker.toggle_step("tc-1", 3)

    assert record.status == ExecutionStatus.PASSED
    assert record.completed_steps == [3]


@pytest.mark.asyncio
async def test_toggle_unknown_step_is_rejected_without_writing(tracker, state, execution_repository):
    record = await tracker.toggle_step("tc-1", 9)

    assert record.status == ExecutionStatus.NOT_RUN
    assert execution_repository.inserts == 0
    assert state.notifications[-1].test_case_id == "tc-1"


@pytest.mark.asyncio
async def test_step_toggle_and_status_change_in_one_action_create_one_row(tracker, execution_repository):
    await asyncio.gather(
        tracker.toggle_step("tc-1", 1),
        tracker.mark_passed("tc-1"),
    )

    assert execution_repository.inserts == 1
    assert execution_repository.updates == 1
    assert len(execution_repository.rows) == 1
    stored = execution_repository.rows[0]
    assert stored.status == ExecutionStatus.PASSED
    assert stored.completed_steps == [1]


@pytest.mark.asyncio
async def test_unserialized_saves_race_on_first_write(state, execution_repository, clock):
    # Without the per-test-case lock both saves see an unsaved execution
    tracker = ExecutionTracker(
        state=state,
        execution_repository=execution_repository,
        acting_user="tester-1",
        serialize_saves=False,
        clock=clock,
    )

    await asyncio.gather(
        tracker.toggle_step("tc-1", 1),
        tracker.mark_passed("tc-1"),
    )

    assert execution_repository.inserts == 2


@pytest.mark.asyncio
async def test_pass_duration_is_rounded_minutes(tracker, clock):
    started = clock.now
    await tracker.toggle_step("tc-1", 1)
    clock.advance(125)

    record = await tracker.mark_passed("tc-1")

    assert record.status == ExecutionStatus.PASSED
    assert record.started_at == started
    assert record.completed_at == clock.now
    assert record.duration_minutes == 2


def test_duration_rounds_halves_up(clock):
    start = clock.now
    clock.advance(90)

    assert duration_in_minutes(start, clock.now) == 2


@pytest.mark.asyncio
async def test_start_given_with_result_counts_towards_duration(tracker, clock):
    started = clock.now - timedelta(seconds=125)

    record = await tracker.save_progress(
        "tc-1", ExecutionUpdate(status=ExecutionStatus.PASSED, started_at=started)
    )

    assert record.started_at == started
    assert record.completed_at == clock.now
    assert record.duration_minutes == 2


@pytest.mark.asyncio
async def test_pass_without_start_omits_duration(tracker, clock):
    record = await tracker.mark_passed("tc-2")

    assert record.status == ExecutionStatus.PASSED
    assert record.completed_at == clock.now
    assert record.duration_minutes is None


@pytest.mark.asyncio
async def test_failed_result_records_details(tracker, clock):
    details = ExecutionDetails(
        environment="staging",
        browser="Firefox 124",
        os_version="macOS 14",
        notes="Tried twice",
        failure_reason="Login button unresponsive",
    )

    record = await tracker.submit_result("tc-1", ExecutionStatus.FAILED, details)

    assert record.status == ExecutionStatus.FAILED
    assert record.completed_at == clock.now
    assert record.failure_reason == "Login button unresponsive"
    assert record.test_environment == "staging"
    assert record.browser == "Firefox 124"
    assert record.os_version == "macOS 14"
    assert record.execution_notes == "Tried twice"
    assert record.duration_minutes is None


@pytest.mark.asyncio
async def test_failed_result_after_start_has_duration(tracker, clock):
    await tracker.toggle_step("tc-1", 1)
    clock.advance(600)

    record = await tracker.submit_result(
        "tc-1", ExecutionStatus.FAILED, ExecutionDetails(failure_reason="Timeout")
    )

    assert record.duration_minutes == 10
    assert record.test_environment == "staging"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [ExecutionStatus.BLOCKED, ExecutionStatus.SKIPPED])
async def test_blocked_and_skipped_also_complete_the_attempt(tracker, clock, status):
    await tracker.toggle_step("tc-1", 1)
    clock.advance(60)

    record = await tracker.submit_result("tc-1", status, ExecutionDetails(notes="env down"))

    assert record.status == status
    assert record.completed_at == clock.now
    assert record.duration_minutes == 1


@pytest.mark.asyncio
async def test_submit_result_rejects_non_result_status(tracker, state, execution_repository):
    record = await tracker.submit_result("tc-1", ExecutionStatus.IN_PROGRESS)

    assert record.status == ExecutionStatus.NOT_RUN
    assert execution_repository.inserts == 0
    assert state.notifications


@pytest.mark.asyncio
async def test_marking_the_current_status_again_is_a_no_op(tracker, clock, execution_repository):
    first = await tracker.mark_passed("tc-1")
    clock.advance(300)

    second = await tracker.mark_passed("tc-1")

    assert second == first
    assert execution_repository.inserts == 1
    assert execution_repository.updates == 0


@pytest.mark.asyncio
async def test_repeated_save_is_idempotent(tracker, clock, execution_repository):
    update = ExecutionUpdate(status=ExecutionStatus.FAILED, failure_reason="Crash on submit")

    first = await tracker.save_progress("tc-1", update)
    clock.advance(120)
    second = await tracker.save_progress("tc-1", update)

    assert len(execution_repository.rows) == 1
    assert second.model_dump(exclude={"updated_at"}) == first.model_dump(exclude={"updated_at"})


@pytest.mark.asyncio
async def test_leaving_a_result_clears_completion(tracker, clock):
    await tracker.toggle_step("tc-1", 1)
    clock.advance(120)
    await tracker.mark_passed("tc-1")

    record = await tracker.save_progress("tc-1", ExecutionUpdate(status=ExecutionStatus.IN_PROGRESS))

    assert record.status == ExecutionStatus.IN_PROGRESS
    assert record.started_at is not None
    assert record.completed_at is None
    assert record.duration_minutes is None


@pytest.mark.asyncio
async def test_reset_clears_progress_and_timing(tracker, execution_repository):
    await tracker.toggle_step("tc-1", 1)
    await tracker.mark_step_failed("tc-1", 2, "Wrong label")
    await tracker.submit_result(
        "tc-1",
        ExecutionStatus.FAILED,
        ExecutionDetails(environment="qa", notes="notes", failure_reason="broken"),
    )

    record = await tracker.reset("tc-1")

    assert record.status == ExecutionStatus.NOT_RUN
    assert record.completed_steps == []
    assert record.failed_steps == []
    assert record.execution_notes is None
    assert record.failure_reason is None
    assert record.started_at is None
    assert record.completed_at is None
    assert record.duration_minutes is None
    # reset updates the row in place
    assert len(execution_repository.rows) == 1
    assert record.id == execution_repository.rows[0].id


@pytest.mark.asyncio
async def test_reset_of_untouched_execution_writes_nothing(tracker, execution_repository):
    await tracker.load_executions(["tc-1"])

    record = await tracker.reset("tc-1")

    assert record.status == ExecutionStatus.NOT_RUN
    assert execution_repository.inserts == 0


@pytest.mark.asyncio
async def test_step_can_be_both_completed_and_failed(tracker):
    # Nothing reconciles the two collections; both flags are kept as set.
    await tracker.toggle_step("tc-1", 2)

    record = await tracker.mark_step_failed("tc-1", 2, "Spinner never stops")

    assert record.completed_steps == [2]
    assert [(s.step_number, s.failure_reason) for s in record.failed_steps] == [(2, "Spinner never stops")]


@pytest.mark.asyncio
async def test_step_failure_is_replaced_and_cleared(tracker, execution_repository):
    await tracker.mark_step_failed("tc-1", 3, "first")
    record = await tracker.mark_step_failed("tc-1", 3, "second")
    assert [(s.step_number, s.failure_reason) for s in record.failed_steps] == [(3, "second")]
    assert record.status == ExecutionStatus.IN_PROGRESS

    record = await tracker.clear_step_failure("tc-1", 3)
    assert record.failed_steps == []

    writes = execution_repository.inserts + execution_repository.updates
    await tracker.clear_step_failure("tc-1", 3)
    assert execution_repository.inserts + execution_repository.updates == writes


@pytest.mark.asyncio
async def test_save_without_acting_user_is_rejected(state, execution_repository, clock):
    tracker = ExecutionTracker(state=state, execution_repository=execution_repository, clock=clock)

    with pytest.raises(ExecutionValidationError):
        await tracker.save_progress("tc-1", ExecutionUpdate(status=ExecutionStatus.PASSED))

    record = await tracker.mark_passed("tc-1")
    assert record.status == ExecutionStatus.NOT_RUN
    assert execution_repository.inserts == 0
    assert state.notifications[-1].title == "Cannot save progress"


@pytest.mark.asyncio
async def test_failed_save_keeps_optimistic_local_state(tracker, state, execution_repository):
    execution_repository.fail_writes = True

    record = await tracker.toggle_step("tc-1", 1)

    assert record.status == ExecutionStatus.IN_PROGRESS
    assert record.completed_steps == [1]
    assert record.id is None
    assert execution_repository.rows == []
    assert state.notifications[-1].level == "error"
    assert state.notifications[-1].title == "Failed to save progress"


@pytest.mark.asyncio
async def test_failed_save_is_retried_as_insert(tracker, execution_repository):
    execution_repository.fail_writes = True
    await tracker.toggle_step("tc-1", 1)
    execution_repository.fail_writes = False

    record = await tracker.toggle_step("tc-1", 2)

    assert record.completed_steps == [1, 2]
    assert execution_repository.inserts == 1


@pytest.mark.asyncio
async def test_rollback_policy_restores_previous_state(state, execution_repository, clock):
    tracker = ExecutionTracker(
        state=state,
        execution_repository=execution_repository,
        acting_user="tester-1",
        write_policy=RollbackOnFailure(),
        clock=clock,
    )
    await tracker.toggle_step("tc-1", 1)
    execution_repository.fail_writes = True

    record = await tracker.mark_passed("tc-1")

    assert record.status == ExecutionStatus.IN_PROGRESS
    assert state.executions["tc-1"].status == ExecutionStatus.IN_PROGRESS
    assert state.notifications[-1].title == "Failed to save progress"


@pytest.mark.asyncio
async def test_session_scope_is_written_with_execution(case_factory, execution_repository, clock):
    state = TrackerState(session_id="session-1", test_cases=[case_factory("tc-1")])
    tracker = ExecutionTracker(state=state, execution_repository=execution_repository, acting_user="tester-1", clock=clock)

    await tracker.toggle_step("tc-1", 1)

    assert execution_repository.rows[0].session_id == "session-1"


@pytest.mark.asyncio
async def test_run_statistics_follow_actions(tracker):
    await tracker.load_executions(["tc-1", "tc-2", "tc-3"])
    stats = tracker.stats()
    assert (stats.total, stats.not_run, stats.passed, stats.in_progress) == (3, 3, 0, 0)

    await tracker.mark_passed("tc-1")
    stats = tracker.stats()
    assert (stats.total, stats.passed, stats.not_run) == (3, 1, 2)

    await tracker.toggle_step("tc-2", 1)
    stats = tracker.stats()
    assert (stats.total, stats.passed, stats.in_progress, stats.not_run) == (3, 1, 1, 1)
    assert stats.failed == stats.blocked == stats.skipped == 0


def test_expanded_case_lives_on_state(tracker, state):
    tracker.set_expanded("tc-2")
    assert state.expanded_case == "tc-2"

    tracker.set_expanded(None)
    assert state.expanded_case is None


OUT_OF_VIEW_ACTIONS = {
    "toggle_step": lambda tracker: tracker.toggle_step("tc-404", 1),
    "mark_step_failed": lambda tracker: tracker.mark_step_failed("tc-404", 1, "Broken"),
    "clear_step_failure": lambda tracker: tracker.clear_step_failure("tc-404", 1),
    "mark_passed": lambda tracker: tracker.mark_passed("tc-404"),
    "submit_result": lambda tracker: tracker.submit_result("tc-404", ExecutionStatus.BLOCKED),
    "reset": lambda tracker: tracker.reset("tc-404"),
}


@pytest.mark.asyncio
@pytest.mark.parametrize("action", sorted(OUT_OF_VIEW_ACTIONS))
async def test_action_on_test_case_outside_view_is_rejected(action, tracker, state, execution_repository):
    record = await OUT_OF_VIEW_ACTIONS[action](tracker)

    assert record.status == ExecutionStatus.NOT_RUN
    assert execution_repository.inserts == 0
    assert execution_repository.updates == 0
    assert "tc-404" not in state.executions
    assert state.notifications[-1].title == "Cannot save progress"
    assert state.notifications[-1].test_case_id == "tc-404"


@pytest.mark.asyncio
async def test_save_progress_outside_view_raises(tracker, execution_repository):
    with pytest.raises(ExecutionValidationError):
        await tracker.save_progress("tc-404", ExecutionUpdate(status=ExecutionStatus.PASSED))
    assert execution_repository.rows == []


@pytest.mark.asyncio
async def test_view_without_test_cases_accepts_none(execution_repository, clock):
    state = TrackerState(test_cases=[])
    tracker = ExecutionTracker(state=state, execution_repository=execution_repository, acting_user="tester-1", clock=clock)

    await tracker.mark_passed("tc-1")

    assert execution_repository.rows == []
    assert state.executions == {}
    assert state.notifications[-1].title == "Cannot save progress"


@pytest.mark.asyncio
async def test_unscoped_state_saves_any_test_case(execution_repository, clock):
    tracker = ExecutionTracker(
        state=TrackerState(), execution_repository=execution_repository, acting_user="tester-1", clock=clock
    )

    record = await tracker.save_progress("tc-9", ExecutionUpdate(status=ExecutionStatus.SKIPPED))

    assert record.status == ExecutionStatus.SKIPPED
    assert execution_repository.inserts == 1
