from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
import structlog

from execution_tracker.core.errors import NotFoundError, PersistenceError
from execution_tracker.models.schemas import (
    ExecutionStats,
    SessionStatusUpdate,
    TestSession,
    TestSessionCreate,
)
from execution_tracker.repositories.interfaces.session_repository import ISessionRepository
from execution_tracker.services.tracker_service import TrackerService
from execution_tracker.core.dependencies import get_acting_user, get_session_repository, get_tracker_service

logger = structlog.get_logger()

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("/", response_model=TestSession, status_code=status.HTTP_201_CREATED)
async def create_session(
    request: TestSessionCreate,
    acting_user: Optional[str] = Depends(get_acting_user),
    repository: ISessionRepository = Depends(get_session_repository)
):
    """Create a test session"""
    try:
        session = await repository.create(request, created_by=acting_user)
        logger.info("Created test session", session_id=session.id, name=session.name)
        return session
    except PersistenceError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.message
        )


@router.get("/", response_model=List[TestSession])
async def get_all_sessions(
    skip: int = 0,
    limit: int = 100,
    repository: ISessionRepository = Depends(get_session_repository)
):
    """Get test sessions, newest first"""
    return await repository.get_all(skip=skip, limit=limit)


@router.get("/{session_id}", response_model=TestSession)
async def get_session(
    session_id: str,
    repository: ISessionRepository = Depends(get_session_repository)
):
    """Get a test session by ID"""
    session = await repository.get_by_id(session_id)
    if not session:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Test session not found"
        )
    return session


@router.patch("/{session_id}/status", response_model=TestSession)
async def update_session_status(
    session_id: str,
    request: SessionStatusUpdate,
    repository: ISessionRepository = Depends(get_session_repository)
):
    """Move a test session to a new status"""
    try:
        session = await repository.update_status(session_id, request.status)
    except PersistenceError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.message
        )
    if not session:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Test session not found"
        )
    logger.info("Updated session status", session_id=session_id, status=request.status.value)
    return session


@router.get("/{session_id}/stats", response_model=ExecutionStats)
async def get_session_stats(
    session_id: str,
    generation_id: Optional[str] = None,
    service: TrackerService = Depends(get_tracker_service)
):
    """Execution statistics for a session"""
    try:
        return await service.session_stats(session_id, generation_id=generation_id)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=e.message
        )
    except PersistenceError as e:
        logger.error("Failed to compute session stats", session_id=session_id, error=e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.message
        )
