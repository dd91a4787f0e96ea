"""
Print execution statistics for test sessions.

Features:
 - List sessions with their status and run window.
 - Report one session's counts (passed/failed/blocked/skipped/in progress/not run),
   pass rate and progress, optionally against every test case of a generation.
 - JSON output for piping into other tools.

Usage examples:
  python scripts/session_report.py --list
  python scripts/session_report.py --session <session-id>
  python scripts/session_report.py --session <session-id> --generation <generation-id> --json

Notes:
 - Uses execution_tracker.config.settings for DATABASE_URL.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Ensure we can import the package when running as a script
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from execution_tracker.core.database import SessionLocal  # noqa: E402
from execution_tracker.core.dependencies import container  # noqa: E402
from execution_tracker.core.errors import TrackerError  # noqa: E402


async def list_sessions(db) -> int:
    sessions = await container.session_repository(db).get_all(limit=1000)
    if not sessions:
        print("No test sessions found.")
        return 0
    for session in sessions:
        start = session.actual_start.isoformat() if session.actual_start else "-"
        end = session.actual_end.isoformat() if session.actual_end else "-"
        print(f"{session.id}  {session.status.value:<12} {start} -> {end}  {session.name}")
    return 0


async def report(db, session_id: str, generation_id: str | None, as_json: bool) -> int:
    service = container.tracker_service(db)
    session = await service.session_repository.get_by_id(session_id)
    stats = await service.session_stats(session_id, generation_id=generation_id)

    if as_json:
        print(json.dumps({"session": session.model_dump(mode="json"), "stats": stats.model_dump()}, indent=2))
        return 0

    print(f"Session:     {session.name} ({session.status.value})")
    if session.environment:
        print(f"Environment: {session.environment}")
    print(f"Total:       {stats.total}")
    print(f"Passed:      {stats.passed}")
    print(f"Failed:      {stats.failed}")
    print(f"Blocked:     {stats.blocked}")
    print(f"Skipped:     {stats.skipped}")
    print(f"In progress: {stats.in_progress}")
    print(f"Not run:     {stats.not_run}")
    print(f"Pass rate:   {stats.pass_rate}%")
    print(f"Progress:    {stats.progress_percentage}%")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Execution statistics for test sessions")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--list", action="store_true", help="List test sessions")
    group.add_argument("--session", help="Session id to report on")
    parser.add_argument("--generation", help="Count every test case of this generation towards the total")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of text")
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        if args.list:
            return asyncio.run(list_sessions(db))
        return asyncio.run(report(db, args.session, args.generation, args.json))
    except TrackerError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
