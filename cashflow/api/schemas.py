from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel


class JobRun(BaseModel):
    run_id: str
    job_name: str


class JobRunStatus(BaseModel):
    run_id: str
    job_name: str
    status: Literal['running', 'succeeded', 'failed', 'skipped']
    started_at_utc: str
    finished_at_utc: Optional[str] = None
    success_count: int = 0
    error_count: int = 0
    detail: Optional[dict] = None
    error_message: Optional[str] = None


class CashFlowPeriod(BaseModel):
    key: str
    label: str
    period_type: str
    period_start: date
    period_end: date
    inflow: Decimal
    outflow: Decimal
    net_cash_flow: Decimal
    inflow_by_type: dict[str, Decimal]
    outflow_by_category: dict[str, Decimal]
    cumulative_inflow: Optional[Decimal] = None
    cumulative_outflow: Optional[Decimal] = None
    cumulative_net: Optional[Decimal] = None


class CashFlowTotals(BaseModel):
    inflow: Decimal
    outflow: Decimal
    net_cash_flow: Decimal


class CashFlowResponse(BaseModel):
    project_id: str
    period_type: str
    start_date: date
    end_date: date
    source: Literal['live', 'snapshots']
    opening_balance: Decimal
    totals: CashFlowTotals
    periods: list[CashFlowPeriod]


class SnapshotOut(BaseModel):
    id: str
    project_id: str
    period_type: str
    period_start: date
    period_end: date
    total_inflow: Decimal
    total_outflow: Decimal
    net_cash_flow: Decimal
    inflow_by_type: dict[str, Decimal]
    outflow_by_category: dict[str, Decimal]
    calculated_at: datetime


class MrrTrendPoint(BaseModel):
    month: date
    mrr: Decimal
    customers: int


class MrrGrowth(BaseModel):
    current_month: date
    previous_month: date
    current_mrr: Decimal
    previous_mrr: Decimal
    growth_percent: Decimal
    current_customers: int
    previous_customers: int


class NextPayment(BaseModel):
    customer_id: str
    billing_cycle: str
    next_payment_date: Optional[date] = None
    days_until_payment: Optional[int] = None
    display: str
