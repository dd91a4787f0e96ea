"""
Test Execution Tracker API

FastAPI backend that records manual test execution progress: one current
execution per test case (and session), step-level completion and failure
detail, and aggregate run statistics.

Architecture Overview:
- Routes (execution_tracker/api/routes/) handle HTTP and translate errors
- Services (execution_tracker/services/) hold the tracker state machine,
  write policies, view registry and aggregation
- Repositories (execution_tracker/repositories/) are interface-based data
  access with SQLAlchemy implementations
- Models (execution_tracker/models/) are pydantic schemas and ORM tables
- Core (execution_tracker/core/) wires the database, errors and dependencies
- Configuration (execution_tracker/config/) is environment-based settings

Usage:
1. Configure DATABASE_URL and friends in .env (see config/settings.py)
2. Install: pip install -e .[test]
3. Run: python main.py
4. API docs at: http://localhost:8000/api/v1/docs
"""

__version__ = "1.0.0"
__description__ = "Manual test execution tracking and run statistics"
