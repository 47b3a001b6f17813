"""Scheduled batch jobs.

Each job is stateless: it lists its work items, recomputes each one from the
ledger and upserts the result. A failing item is logged and counted and the
loop moves on, so the next scheduled run doubles as the retry.
"""
from __future__ import annotations

import sqlite3
import uuid
from datetime import date, datetime, timedelta

import structlog
from dateutil.relativedelta import relativedelta

from ..billing.dates import update_all_next_payment_dates
from ..billing.mrr import MrrReconciler
from ..config import settings
from ..db import get_conn, migrate
from ..errors import ValidationError
from ..models import ACTIVE_PROJECT_STATUSES, JobSummary
from ..pipeline.locking import acquire_lock, release_lock
from ..pipeline.periods import previous_month
from ..pipeline.snapshots import SnapshotStore
from ..repositories.billing import CustomerRepository
from ..repositories.projects import ProjectRepository
from ..repositories.runs import JobRunRepository
from ..utils import local_midnight_utc, local_today

log = structlog.get_logger()


class SnapshotJobs:
    def __init__(
        self,
        projects: ProjectRepository,
        store: SnapshotStore,
        local_tz: str | None = None,
        retention_years: int | None = None,
    ):
        self.projects = projects
        self.store = store
        self.local_tz = local_tz or settings.local_tz
        self.retention_years = settings.snapshot_retention_years if retention_years is None else retention_years

    @classmethod
    def from_conn(cls, conn: sqlite3.Connection, **kwargs) -> "SnapshotJobs":
        return cls(ProjectRepository(conn), SnapshotStore.from_conn(conn), **kwargs)

    def _today(self, now: datetime | None) -> date:
        return local_today(self.local_tz, now)

    def _snapshot_projects(self, summary: JobSummary, projects, year: int, month: int):
        for project in projects:
            try:
                self.store.save_monthly_snapshot(project.id, year, month)
                summary.success_count += 1
            except Exception as exc:
                summary.record_error(project.id, exc)
                log.error("cash_flow_snapshot_failed", project_id=project.id, err=str(exc))
                continue

    def run_daily_snapshots(self, now: datetime | None = None) -> JobSummary:
        """Refresh the monthly snapshot of yesterday's month for every active/construction project."""
        yesterday = self._today(now) - timedelta(days=1)
        summary = JobSummary(job_name="daily_snapshots")
        projects = self.projects.list_by_status(ACTIVE_PROJECT_STATUSES)
        log.info("daily_snapshots_started", month=f"{yesterday:%Y-%m}", projects=len(projects))
        self._snapshot_projects(summary, projects, yesterday.year, yesterday.month)
        summary.detail.update({"month": f"{yesterday:%Y-%m}", "total": len(projects)})
        log.info(
            "daily_snapshots_finished",
            success=summary.success_count,
            errors=summary.error_count,
        )
        return summary

    def run_monthly_finalization(self, now: datetime | None = None) -> JobSummary:
        """Recompute the previous month, including projects completed since it began."""
        month = previous_month(self._today(now))
        summary = JobSummary(job_name="monthly_finalization")
        projects = self.projects.list_for_finalization(local_midnight_utc(month, self.local_tz))
        log.info("monthly_finalization_started", month=f"{month:%Y-%m}", projects=len(projects))
        self._snapshot_projects(summary, projects, month.year, month.month)
        summary.detail.update(
            {
                "month": f"{month:%Y-%m}",
                "total": len(projects),
                "snapshot_count": self.store.monthly_snapshot_count(month.year, month.month),
            }
        )
        log.info(
            "monthly_finalization_finished",
            success=summary.success_count,
            errors=summary.error_count,
            snapshot_count=summary.detail["snapshot_count"],
        )
        return summary

    def run_snapshot_cleanup(self, now: datetime | None = None) -> JobSummary:
        threshold = self._today(now) - relativedelta(years=self.retention_years)
        summary = JobSummary(job_name="snapshot_cleanup")
        deleted = self.store.cleanup_snapshots(threshold)
        summary.success_count = deleted
        summary.detail.update(
            {
                "threshold": threshold.isoformat(),
                "deleted": deleted,
                "remaining": self.store.snapshot_counts(),
            }
        )
        log.info("snapshot_cleanup_finished", **summary.detail)
        return summary


def _daily_snapshots(conn, now=None):
    return SnapshotJobs.from_conn(conn).run_daily_snapshots(now)


def _monthly_finalization(conn, now=None):
    return SnapshotJobs.from_conn(conn).run_monthly_finalization(now)


def _snapshot_cleanup(conn, now=None):
    return SnapshotJobs.from_conn(conn).run_snapshot_cleanup(now)


def _mrr_reconciliation(conn, now=None):
    return MrrReconciler.from_conn(conn).reconcile(now=now)


def _mrr_snapshots(conn, now=None):
    return MrrReconciler.from_conn(conn).capture_monthly_snapshots(local_today(settings.local_tz, now))


def _next_payment_dates(conn, now=None):
    return update_all_next_payment_dates(CustomerRepository(conn), now=now)


JOBS = {
    "daily_snapshots": _daily_snapshots,
    "monthly_finalization": _monthly_finalization,
    "snapshot_cleanup": _snapshot_cleanup,
    "mrr_reconciliation": _mrr_reconciliation,
    "mrr_snapshots": _mrr_snapshots,
    "next_payment_dates": _next_payment_dates,
}


def run_job(
    conn: sqlite3.Connection,
    job_name: str,
    run_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Run one job under its lease and record the run; returns the job_runs row."""
    if job_name not in JOBS:
        raise ValidationError(f"unknown job {job_name!r}; expected one of {', '.join(JOBS)}")
    run_id = run_id or str(uuid.uuid4())
    # every log line of the run carries job and run_id
    with structlog.contextvars.bound_contextvars(job=job_name, run_id=run_id):
        runs = JobRunRepository(conn)
        runs.start(run_id, job_name)
        lock_name = f"job:{job_name}"
        if not acquire_lock(conn, lock_name, run_id, ttl_seconds=settings.job_lock_ttl_seconds):
            runs.finish(run_id, "skipped", {"job_name": job_name, "reason": "lock_held"})
            log.warning("job_skipped_lock_held")
            return runs.get(run_id)
        try:
            summary = JOBS[job_name](conn, now=now)
        except Exception as exc:
            runs.finish(run_id, "failed", {"job_name": job_name}, error=str(exc))
            log.error("job_failed", err=str(exc))
            raise
        finally:
            release_lock(conn, lock_name, run_id)
        runs.finish(run_id, "succeeded", summary.to_dict())
        log.info("job_finished", success=summary.success_count, errors=summary.error_count)
        return runs.get(run_id)


def run_job_standalone(job_name: str, run_id: str | None = None, db_path: str | None = None) -> dict:
    """Open a private connection, run the job, close. Used from worker threads."""
    conn = get_conn(db_path or settings.db_path)
    try:
        migrate(conn)
        return run_job(conn, job_name, run_id=run_id)
    finally:
        conn.close()


def _background_job(job_name: str, run_id: str, db_path: str | None = None):
    try:
        run_job_standalone(job_name, run_id=run_id, db_path=db_path)
    except Exception as exc:
        # run_job already marked the run failed; nothing is waiting on this task
        log.error("background_job_failed", job=job_name, run_id=run_id, err=str(exc))


def trigger_job(background, job_name: str, db_path: str | None = None) -> str:
    if job_name not in JOBS:
        raise ValidationError(f"unknown job {job_name!r}; expected one of {', '.join(JOBS)}")
    run_id = str(uuid.uuid4())
    background.add_task(_background_job, job_name, run_id, db_path)
    return run_id
