from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from execution_tracker import __version__
from execution_tracker.config.settings import settings
from execution_tracker.core.database import check_database, get_database
from execution_tracker.core.dependencies import container

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str


@router.get("/", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        environment=settings.environment
    )


@router.get("/readiness")
async def readiness_check(db: Session = Depends(get_database)):
    """Readiness check endpoint"""
    checks = {
        "database": "ok" if check_database(db) else "unavailable",
        "write_policy": container.write_policy().name,
    }

    return {
        "status": "ready" if checks["database"] == "ok" else "not_ready",
        "checks": checks,
        "open_views": len(container.view_registry()),
        "timestamp": datetime.now(timezone.utc)
    }
