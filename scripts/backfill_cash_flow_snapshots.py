#!/usr/bin/env python3
"""
Backfill monthly cash flow snapshots from the ledger.

Usage:
    python scripts/backfill_cash_flow_snapshots.py 2024-01-01 2024-12-31               # missing months, all active projects
    python scripts/backfill_cash_flow_snapshots.py 2024-01-01 2024-12-31 --project=P1  # one project
    python scripts/backfill_cash_flow_snapshots.py 2024-01-01 2024-12-31 --rebuild-all # recompute every month
    python scripts/backfill_cash_flow_snapshots.py 2024-01-01 2024-12-31 --dry-run
"""
from pathlib import Path
import os
import sys
from datetime import date

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from cashflow.config import settings
from cashflow.db import get_conn, migrate
from cashflow.logging import setup_logging
from cashflow.models import ACTIVE_PROJECT_STATUSES
from cashflow.pipeline.periods import generate_periods
from cashflow.pipeline.reports import missing_months, snapshot_coverage
from cashflow.pipeline.snapshots import SnapshotStore
from cashflow.repositories.projects import ProjectRepository
import structlog

log = structlog.get_logger()


def backfill_cash_flow_snapshots(
    conn,
    start: date,
    end: date,
    project_ids: list[str] | None = None,
    only_missing: bool = True,
    dry_run: bool = False,
) -> dict:
    """Save a monthly snapshot for each month of [start, end] that lacks one (or all, when rebuilding)."""
    store = SnapshotStore.from_conn(conn)
    projects = ProjectRepository(conn)
    if project_ids is None:
        project_ids = [p.id for p in projects.list_by_status(ACTIVE_PROJECT_STATUSES + ("completed",))]

    saved = 0
    skipped = 0
    failed = 0
    for project_id in project_ids:
        if only_missing:
            stored = store.snapshots.list_for_project(project_id, "monthly", start.replace(day=1), end)
            todo = missing_months(snapshot_coverage(stored, start, end))
        else:
            todo = [b.start for b in generate_periods(start, end, "monthly")]
        skipped += len(generate_periods(start, end, "monthly")) - len(todo)
        for month in todo:
            if dry_run:
                log.info("dry_run_would_save", project_id=project_id, month=f"{month:%Y-%m}")
                saved += 1
                continue
            try:
                store.save_monthly_snapshot(project_id, month.year, month.month)
                saved += 1
            except Exception as exc:
                log.error("backfill_snapshot_failed", project_id=project_id, month=f"{month:%Y-%m}", err=str(exc))
                failed += 1

    log.info("backfill_complete", saved=saved, skipped=skipped, failed=failed, projects=len(project_ids))
    return {"saved": saved, "skipped": skipped, "failed": failed, "projects": len(project_ids)}


if __name__ == '__main__':
    args = [arg for arg in sys.argv[1:] if not arg.startswith('--')]
    flags = [arg for arg in sys.argv[1:] if arg.startswith('--')]
    if len(args) < 2:
        print(__doc__)
        sys.exit(2)

    rebuild_all = '--rebuild-all' in flags
    dry_run = '--dry-run' in flags
    project_ids = [f.split('=', 1)[1] for f in flags if f.startswith('--project=')] or None

    setup_logging()
    conn = get_conn(settings.db_path)
    migrate(conn)
    result = backfill_cash_flow_snapshots(
        conn,
        date.fromisoformat(args[0]),
        date.fromisoformat(args[1]),
        project_ids=project_ids,
        only_missing=not rebuild_all,
        dry_run=dry_run,
    )
    print(f"{'DRY RUN ' if dry_run else ''}saved={result['saved']} skipped={result['skipped']} failed={result['failed']}")
    sys.exit(1 if result['failed'] else 0)
