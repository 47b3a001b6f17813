from datetime import date
from decimal import Decimal, InvalidOperation

from fastapi import APIRouter, BackgroundTasks, HTTPException

from .schemas import (
    CashFlowResponse,
    JobRun,
    JobRunStatus,
    MrrGrowth,
    MrrTrendPoint,
    NextPayment,
    SnapshotOut,
)
from ..billing.dates import calculate_next_payment_date, days_until_payment, format_next_payment_date
from ..billing.mrr import MrrReconciler
from ..config import settings
from ..db import get_conn, migrate
from ..errors import NotFoundError, TransientStoreError, ValidationError
from ..jobs.tasks import JOBS, trigger_job
from ..models import CashFlowSnapshot
from ..pipeline.cash_flow import CashFlowCalculator, calculate_cumulative_cash_flow
from ..pipeline.periods import PERIOD_TYPES
from ..pipeline.snapshots import SnapshotStore, snapshots_to_buckets
from ..repositories.billing import CustomerRepository
from ..repositories.runs import JobRunRepository
from ..utils import ZERO, to_local_day

router = APIRouter()


def _conn():
    conn = get_conn(settings.db_path)
    migrate(conn)
    return conn


def _parse_day(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(400, f'{name} must be YYYY-MM-DD')


def _raise_http(exc: Exception):
    if isinstance(exc, NotFoundError):
        raise HTTPException(404, exc.message)
    if isinstance(exc, ValidationError):
        raise HTTPException(400, exc.message)
    if isinstance(exc, TransientStoreError):
        raise HTTPException(503, exc.message)
    raise exc


def _snapshot_out(snap: CashFlowSnapshot) -> SnapshotOut:
    return SnapshotOut(
        id=snap.id,
        project_id=snap.project_id,
        period_type=snap.period_type,
        period_start=snap.period_start,
        period_end=snap.period_end,
        total_inflow=snap.total_inflow,
        total_outflow=snap.total_outflow,
        net_cash_flow=snap.net_cash_flow,
        inflow_by_type=snap.inflow_by_type,
        outflow_by_category=snap.outflow_by_category,
        calculated_at=snap.calculated_at,
    )


@router.get(
    '/health',
    summary="Health check",
    description="Returns service and DB connectivity plus the last job run.",
    tags=["Health"],
)
def health():
    try:
        conn = _conn()
        last = JobRunRepository(conn).latest()
        conn.close()
        return {'ok': True, 'db': 'ok', 'last_run': last}
    except Exception as e:
        raise HTTPException(503, f'db_error: {e}')


@router.get(
    '/projects/{project_id}/cash-flow',
    response_model=CashFlowResponse,
    summary="Project cash flow",
    description=(
        "Realized inflow, outflow and net per calendar period for the inclusive day range. "
        "source=live recomputes from the ledger; source=snapshots reads stored snapshots. "
        "cumulative=true adds running totals starting from opening_balance."
    ),
    tags=["Cash flow"],
)
def project_cash_flow(
    project_id: str,
    start_date: str,
    end_date: str,
    period_type: str = 'monthly',
    cumulative: bool = False,
    opening_balance: str = '0',
    source: str = 'live',
):
    start = _parse_day(start_date, 'start_date')
    end = _parse_day(end_date, 'end_date')
    if source not in ('live', 'snapshots'):
        raise HTTPException(400, 'source must be live|snapshots')
    try:
        opening = Decimal(opening_balance)
    except InvalidOperation:
        raise HTTPException(400, 'opening_balance must be a number')
    if not opening.is_finite():
        raise HTTPException(400, 'opening_balance must be a number')
    conn = _conn()
    try:
        if source == 'live':
            buckets = CashFlowCalculator.from_conn(conn).calculate_project_cash_flow(
                project_id, start, end, period_type
            )
        else:
            store = SnapshotStore.from_conn(conn)
            if not store.calculator.projects.exists(project_id):
                raise NotFoundError(f'project {project_id} not found')
            buckets = snapshots_to_buckets(
                store.get_cash_flow_from_snapshots(project_id, start, end, period_type)
            )
    except Exception as e:
        _raise_http(e)
    finally:
        conn.close()
    if cumulative:
        buckets = calculate_cumulative_cash_flow(buckets, opening)
    inflow = sum((b.inflow for b in buckets), ZERO)
    outflow = sum((b.outflow for b in buckets), ZERO)
    return {
        'project_id': project_id,
        'period_type': period_type.strip().lower(),
        'start_date': start,
        'end_date': end,
        'source': source,
        'opening_balance': opening,
        'totals': {'inflow': inflow, 'outflow': outflow, 'net_cash_flow': inflow - outflow},
        'periods': [b.to_dict() for b in buckets],
    }


@router.post(
    '/projects/{project_id}/snapshots/monthly/{year}/{month}',
    response_model=SnapshotOut,
    summary="Save monthly snapshot",
    description="Recomputes the month from the ledger and upserts its snapshot.",
    tags=["Snapshots"],
)
def save_monthly_snapshot(project_id: str, year: int, month: int):
    conn = _conn()
    try:
        snap = SnapshotStore.from_conn(conn).save_monthly_snapshot(project_id, year, month)
    except Exception as e:
        _raise_http(e)
    finally:
        conn.close()
    return _snapshot_out(snap)


@router.get(
    '/projects/{project_id}/snapshots',
    response_model=list[SnapshotOut],
    summary="List stored snapshots",
    description="Stored snapshots for a project, optionally filtered by period type and period_start range.",
    tags=["Snapshots"],
)
def list_snapshots(
    project_id: str,
    period_type: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
):
    if period_type and period_type not in PERIOD_TYPES:
        raise HTTPException(400, f"period_type must be {'|'.join(PERIOD_TYPES)}")
    start = _parse_day(start_date, 'start_date') if start_date else None
    end = _parse_day(end_date, 'end_date') if end_date else None
    conn = _conn()
    try:
        store = SnapshotStore.from_conn(conn)
        snaps = store.snapshots.list_for_project(project_id, period_type, start, end)
    except Exception as e:
        _raise_http(e)
    finally:
        conn.close()
    return [_snapshot_out(s) for s in snaps]


@router.post(
    '/jobs/{job_name}',
    response_model=JobRun,
    status_code=202,
    summary="Trigger job",
    description="Runs a scheduled job in the background and returns its run_id.",
    tags=["Jobs"],
)
def run_job_now(job_name: str, background: BackgroundTasks):
    if job_name not in JOBS:
        raise HTTPException(404, f"job must be one of {'|'.join(JOBS)}")
    run_id = trigger_job(background, job_name, db_path=settings.db_path)
    return JobRun(run_id=run_id, job_name=job_name)


@router.get(
    '/jobs/runs/{run_id}',
    response_model=JobRunStatus,
    summary="Get job run",
    description="Status and summary of a job run.",
    tags=["Jobs"],
)
def job_run_status(run_id: str):
    conn = _conn()
    try:
        run = JobRunRepository(conn).get(run_id)
    finally:
        conn.close()
    if not run:
        raise HTTPException(404, 'run not found')
    return run


@router.get(
    '/billing/mrr/trend',
    response_model=list[MrrTrendPoint],
    summary="MRR trend",
    description="Total snapshot MRR of active and trial customers for the last N months, oldest first.",
    tags=["Billing"],
)
def mrr_trend(months: int = 6):
    if months < 1 or months > 60:
        raise HTTPException(400, 'months must be between 1 and 60')
    conn = _conn()
    try:
        return MrrReconciler.from_conn(conn).get_mrr_trend(months)
    finally:
        conn.close()


@router.get(
    '/billing/mrr/growth',
    response_model=MrrGrowth,
    summary="MRR growth",
    description="Percent change of snapshot MRR between a month (YYYY-MM) and the month before it.",
    tags=["Billing"],
)
def mrr_growth(month: str):
    try:
        current = date.fromisoformat(f'{month}-01')
    except ValueError:
        raise HTTPException(400, 'month must be YYYY-MM')
    conn = _conn()
    try:
        return MrrReconciler.from_conn(conn).get_mrr_growth(current)
    finally:
        conn.close()


@router.get(
    '/billing/customers/{customer_id}/next-payment',
    response_model=NextPayment,
    summary="Next payment date",
    description="Next billing date strictly in the future, with days remaining and a display label.",
    tags=["Billing"],
)
def next_payment(customer_id: str):
    conn = _conn()
    try:
        customer = CustomerRepository(conn).get(customer_id)
    finally:
        conn.close()
    if not customer:
        raise HTTPException(404, 'customer not found')
    next_date = calculate_next_payment_date(
        customer.subscription_start_date,
        customer.billing_cycle,
        customer.next_payment_date,
    )
    return NextPayment(
        customer_id=customer.id,
        billing_cycle=customer.billing_cycle,
        next_payment_date=to_local_day(next_date, settings.local_tz),
        days_until_payment=days_until_payment(next_date),
        display=format_next_payment_date(next_date),
    )
