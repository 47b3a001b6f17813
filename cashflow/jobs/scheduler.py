from __future__ import annotations

import asyncio
from zoneinfo import ZoneInfo

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config import settings
from .tasks import run_job_standalone

_log = structlog.get_logger()
_scheduler: AsyncIOScheduler | None = None


def job_crons() -> dict[str, str]:
    return {
        "daily_snapshots": settings.cashflow_daily_cron,
        "monthly_finalization": settings.cashflow_monthly_cron,
        "snapshot_cleanup": settings.cashflow_cleanup_cron,
        "mrr_snapshots": settings.mrr_snapshot_cron,
        "next_payment_dates": settings.next_payment_cron,
        "mrr_reconciliation": settings.mrr_reconcile_cron,
    }


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=ZoneInfo(settings.local_tz))
    return _scheduler


async def run_scheduled(job_name: str):
    # sqlite work runs in a worker thread; the loop keeps serving requests
    try:
        await asyncio.to_thread(run_job_standalone, job_name)
    except Exception as exc:
        _log.error("scheduled_job_failed", job=job_name, err=str(exc))


def schedule_jobs(sched: AsyncIOScheduler | None = None, start: bool = True) -> AsyncIOScheduler:
    sched = sched or get_scheduler()
    tz = ZoneInfo(settings.local_tz)
    for job_name, expr in job_crons().items():
        sched.add_job(
            run_scheduled,
            CronTrigger.from_crontab(expr, timezone=tz),
            args=[job_name],
            id=job_name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=settings.job_misfire_grace_seconds,
        )
    if start:
        sched.start()
        _log.info("cashflow_scheduler_started", jobs=sorted(job_crons()))
    return sched


def shutdown_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _log.info("cashflow_scheduler_stopped")
    _scheduler = None
