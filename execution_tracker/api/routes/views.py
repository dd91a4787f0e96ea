from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
import structlog

from execution_tracker.core.errors import NotFoundError
from execution_tracker.models.schemas import (
    ExpandCaseRequest,
    OpenViewRequest,
    ResultSubmission,
    StepFailure,
    TrackerViewSnapshot,
)
from execution_tracker.services.tracker import ExecutionTracker
from execution_tracker.services.tracker_service import TrackerService
from execution_tracker.core.dependencies import get_acting_user, get_tracker_service

logger = structlog.get_logger()

router = APIRouter(prefix="/tracker/views", tags=["tracker"])

# Action endpoints answer 200 with the view snapshot even when the action
# failed to save; the failure is reported in the snapshot's notifications.


def _view_tracker(service: TrackerService, view_id: str, acting_user: Optional[str]) -> ExecutionTracker:
    try:
        return service.view_tracker(view_id, acting_user)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=e.message
        )


@router.post("/", response_model=TrackerViewSnapshot, status_code=status.HTTP_201_CREATED)
async def open_view(
    request: OpenViewRequest,
    acting_user: Optional[str] = Depends(get_acting_user),
    service: TrackerService = Depends(get_tracker_service)
):
    """Open a tracker view for a generation and/or session"""
    try:
        view_id = await service.open_view(request, acting_user)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=e.message
        )
    return service.snapshot(view_id)


@router.get("/{view_id}", response_model=TrackerViewSnapshot)
async def get_view(view_id: str, service: TrackerService = Depends(get_tracker_service)):
    """Current state of an open view"""
    _view_tracker(service, view_id, None)
    return service.snapshot(view_id)


@router.delete("/{view_id}")
async def close_view(view_id: str, service: TrackerService = Depends(get_tracker_service)):
    """Close a view and drop its in-memory state"""
    if not service.close_view(view_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tracker view not found"
        )
    return {"message": "Tracker view closed"}


@router.post("/{view_id}/refresh", response_model=TrackerViewSnapshot)
async def refresh_view(view_id: str, service: TrackerService = Depends(get_tracker_service)):
    """Reload executions from the store"""
    await _view_tracker(service, view_id, None).refresh()
    return service.snapshot(view_id)


@router.put("/{view_id}/expanded", response_model=TrackerViewSnapshot)
async def set_expanded_case(
    view_id: str,
    request: ExpandCaseRequest,
    service: TrackerService = Depends(get_tracker_service)
):
    """Choose which test case is expanded (None collapses all)"""
    _view_tracker(service, view_id, None).set_expanded(request.test_case_id)
    return service.snapshot(view_id)


@router.post("/{view_id}/notifications/clear", response_model=TrackerViewSnapshot)
async def clear_notifications(view_id: str, service: TrackerService = Depends(get_tracker_service)):
    """Dismiss all notifications on the view"""
    _view_tracker(service, view_id, None).state.clear_notifications()
    return service.snapshot(view_id)


@router.post("/{view_id}/cases/{test_case_id}/steps/{step_number}/toggle", response_model=TrackerViewSnapshot)
async def toggle_step(
    view_id: str,
    test_case_id: str,
    step_number: int,
    acting_user: Optional[str] = Depends(get_acting_user),
    service: TrackerService = Depends(get_tracker_service)
):
    """Check or uncheck a step"""
    await _view_tracker(service, view_id, acting_user).toggle_step(test_case_id, step_number)
    return service.snapshot(view_id)


@router.put("/{view_id}/cases/{test_case_id}/steps/{step_number}/failure", response_model=TrackerViewSnapshot)
async def mark_step_failed(
    view_id: str,
    test_case_id: str,
    step_number: int,
    request: StepFailure,
    acting_user: Optional[str] = Depends(get_acting_user),
    service: TrackerService = Depends(get_tracker_service)
):
    """Flag a step as failed with a reason"""
    await _view_tracker(service, view_id, acting_user).mark_step_failed(
        test_case_id, step_number, request.failure_reason
    )
    return service.snapshot(view_id)


@router.delete("/{view_id}/cases/{test_case_id}/steps/{step_number}/failure", response_model=TrackerViewSnapshot)
async def clear_step_failure(
    view_id: str,
    test_case_id: str,
    step_number: int,
    acting_user: Optional[str] = Depends(get_acting_user),
    service: TrackerService = Depends(get_tracker_service)
):
    """Remove the failure flag from a step"""
    await _view_tracker(service, view_id, acting_user).clear_step_failure(test_case_id, step_number)
    return service.snapshot(view_id)


@router.post("/{view_id}/cases/{test_case_id}/pass", response_model=TrackerViewSnapshot)
async def mark_passed(
    view_id: str,
    test_case_id: str,
    acting_user: Optional[str] = Depends(get_acting_user),
    service: TrackerService = Depends(get_tracker_service)
):
    """Record a simple pass"""
    await _view_tracker(service, view_id, acting_user).mark_passed(test_case_id)
    return service.snapshot(view_id)


@router.post("/{view_id}/cases/{test_case_id}/result", response_model=TrackerViewSnapshot)
async def submit_result(
    view_id: str,
    test_case_id: str,
    request: ResultSubmission,
    acting_user: Optional[str] = Depends(get_acting_user),
    service: TrackerService = Depends(get_tracker_service)
):
    """Record a result together with its environment details"""
    await _view_tracker(service, view_id, acting_user).submit_result(test_case_id, request.status, request)
    return service.snapshot(view_id)


@router.post("/{view_id}/cases/{test_case_id}/reset", response_model=TrackerViewSnapshot)
async def reset_execution(
    view_id: str,
    test_case_id: str,
    acting_user: Optional[str] = Depends(get_acting_user),
    service: TrackerService = Depends(get_tracker_service)
):
    """Return a test case's execution to not_run"""
    await _view_tracker(service, view_id, acting_user).reset(test_case_id)
    return service.snapshot(view_id)
