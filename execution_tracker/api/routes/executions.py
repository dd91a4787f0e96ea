from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
import structlog

from execution_tracker.core.errors import ExecutionValidationError, NotFoundError, PersistenceError
from execution_tracker.models.schemas import ExecutionRecord, ExecutionStats, ExecutionUpdate, StatsRequest
from execution_tracker.services.tracker_service import TrackerService
from execution_tracker.core.dependencies import get_acting_user, get_tracker_service

logger = structlog.get_logger()

router = APIRouter(prefix="/executions", tags=["executions"])


@router.get("/", response_model=Dict[str, ExecutionRecord])
async def load_executions(
    test_case_ids: List[str] = Query(..., description="Test cases to load executions for"),
    session_id: Optional[str] = None,
    service: TrackerService = Depends(get_tracker_service)
):
    """Current execution per test case; unsaved not_run placeholders for the rest"""
    try:
        return await service.load_executions(test_case_ids, session_id)
    except PersistenceError as e:
        logger.error("Failed to load executions", session_id=session_id, error=e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load test executions"
        )


@router.put("/{test_case_id}", response_model=ExecutionRecord)
async def save_progress(
    test_case_id: str,
    update: ExecutionUpdate,
    session_id: Optional[str] = None,
    acting_user: Optional[str] = Depends(get_acting_user),
    service: TrackerService = Depends(get_tracker_service)
):
    """Merge a partial update onto the current execution of a test case"""
    try:
        return await service.save_progress(test_case_id, update, session_id=session_id, acting_user=acting_user)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=e.message
        )
    except ExecutionValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )
    except PersistenceError as e:
        logger.error("Failed to save progress", test_case_id=test_case_id, error=e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save test execution"
        )


@router.post("/stats", response_model=ExecutionStats)
async def compute_stats(
    request: StatsRequest,
    service: TrackerService = Depends(get_tracker_service)
):
    """Aggregate execution statuses over a set of test cases"""
    try:
        return await service.compute_stats(request)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except PersistenceError as e:
        logger.error("Failed to compute stats", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load test executions"
        )
