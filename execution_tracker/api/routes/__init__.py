from fastapi import APIRouter
from execution_tracker.api.routes import test_cases, sessions, executions, views, health

api_router = APIRouter()

# Include all route modules
api_router.include_router(health.router)
api_router.include_router(test_cases.router)
api_router.include_router(sessions.router)
api_router.include_router(executions.router)
api_router.include_router(views.router)
