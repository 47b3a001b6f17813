"""Project cash flow: realized funding and paid expenses bucketed into calendar periods."""
from __future__ import annotations

import bisect
import sqlite3
from datetime import date
from decimal import Decimal

import structlog

from ..config import settings
from ..errors import NotFoundError, ValidationError
from ..models import EXPENSE_POLICIES, PeriodBucket
from ..repositories.ledger import ExpenseRepository, FundingRepository
from ..repositories.projects import ProjectRepository
from ..utils import ZERO, to_decimal, to_local_day
from .periods import generate_periods, validate_period_type

log = structlog.get_logger()


def funding_bucket(funding_type: str | None) -> str:
    kind = (funding_type or "").lower()
    if "client" in kind or "payment" in kind:
        return "client_payments"
    if "loan" in kind or "bank" in kind:
        return "loans"
    if "equity" in kind or "investment" in kind:
        return "equity"
    if "grant" in kind:
        return "grants"
    return "other"


def expense_bucket(category: str | None) -> str:
    cat = (category or "").lower()
    if "labor" in cat or "labour" in cat or "payroll" in cat:
        return "labor"
    if "material" in cat:
        return "materials"
    if "equipment" in cat:
        return "equipment"
    if "permit" in cat or "license" in cat:
        return "permits"
    if "professional" in cat or "fee" in cat or "consultant" in cat:
        return "professional_fees"
    if "contingency" in cat:
        return "contingency"
    return "other"


def _require_day(value, name: str, local_tz: str) -> date:
    try:
        day = to_local_day(value, local_tz)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} is not a date: {value!r}") from exc
    if day is None:
        raise ValidationError(f"{name} is required")
    return day


class CashFlowCalculator:
    def __init__(
        self,
        projects: ProjectRepository,
        funding: FundingRepository,
        expenses: ExpenseRepository,
        local_tz: str | None = None,
        include_partial: bool | None = None,
        expense_policy: str | None = None,
    ):
        self.projects = projects
        self.funding = funding
        self.expenses = expenses
        self.local_tz = local_tz or settings.local_tz
        self.include_partial = settings.include_partial_funding if include_partial is None else include_partial
        self.expense_policy = expense_policy or settings.expense_realized_policy
        if self.expense_policy not in EXPENSE_POLICIES:
            raise ValidationError(f"expense policy must be one of {'|'.join(EXPENSE_POLICIES)}")

    @classmethod
    def from_conn(cls, conn: sqlite3.Connection, **kwargs) -> "CashFlowCalculator":
        return cls(ProjectRepository(conn), FundingRepository(conn), ExpenseRepository(conn), **kwargs)

    def calculate_project_cash_flow(
        self,
        project_id: str,
        start_date,
        end_date,
        period_type: str = "monthly",
        include_partial: bool | None = None,
    ) -> list[PeriodBucket]:
        """Dense, chronological buckets covering [start_date, end_date] (both days inclusive).

        Records count toward a bucket only when their calendar day lies in
        both the bucket and the requested window.
        """
        period_type = validate_period_type(period_type)
        start = _require_day(start_date, "start_date", self.local_tz)
        end = _require_day(end_date, "end_date", self.local_tz)
        buckets = generate_periods(start, end, period_type)

        project = self.projects.get(project_id)
        if project is None:
            raise NotFoundError(f"project {project_id} not found")
        partial = self.include_partial if include_partial is None else include_partial
        starts = [bucket.start for bucket in buckets]

        def _bucket_for(day: date) -> PeriodBucket | None:
            if day < start or day > end:
                return None
            return buckets[bisect.bisect_right(starts, day) - 1]

        statuses = ("received", "partial") if partial else ("received",)
        funding_count = 0
        for record in self.funding.list_for_project(project_id, statuses=statuses):
            if not record.is_realized(include_partial=partial):
                continue
            bucket = _bucket_for(to_local_day(record.received_date, self.local_tz))
            if bucket is None:
                continue
            if record.currency != project.currency:
                log.warning(
                    "cash_flow_currency_mismatch",
                    project_id=project_id,
                    record_id=record.id,
                    record_currency=record.currency,
                    project_currency=project.currency,
                )
            bucket.inflow += record.amount
            kind = funding_bucket(record.funding_type)
            bucket.inflow_by_type[kind] = bucket.inflow_by_type[kind] + record.amount
            funding_count += 1

        expense_count = 0
        for record in self.expenses.list_for_project(project_id):
            if not record.is_realized(policy=self.expense_policy):
                continue
            bucket = _bucket_for(to_local_day(record.resolved_date, self.local_tz))
            if bucket is None:
                continue
            if record.currency != project.currency:
                log.warning(
                    "cash_flow_currency_mismatch",
                    project_id=project_id,
                    record_id=record.id,
                    record_currency=record.currency,
                    project_currency=project.currency,
                )
            bucket.outflow += record.total_amount
            kind = expense_bucket(record.category)
            bucket.outflow_by_category[kind] = bucket.outflow_by_category[kind] + record.total_amount
            expense_count += 1

        log.debug(
            "cash_flow_calculated",
            project_id=project_id,
            period_type=period_type,
            start=start.isoformat(),
            end=end.isoformat(),
            periods=len(buckets),
            funding_records=funding_count,
            expense_records=expense_count,
        )
        return buckets


def calculate_cumulative_cash_flow(buckets: list[PeriodBucket], opening_balance=ZERO) -> list[PeriodBucket]:
    """Copies of `buckets` carrying running totals; opening_balance is added before the first bucket."""
    running_net: Decimal = to_decimal(opening_balance)
    running_in = ZERO
    running_out = ZERO
    out = []
    for bucket in buckets:
        running_in += bucket.inflow
        running_out += bucket.outflow
        running_net += bucket.net
        out.append(
            bucket.copy(
                cumulative_inflow=running_in,
                cumulative_outflow=running_out,
                cumulative_net=running_net,
            )
        )
    return out


def calculate_project_cash_flow(
    conn: sqlite3.Connection,
    project_id: str,
    start_date,
    end_date,
    period_type: str = "monthly",
    include_partial: bool | None = None,
) -> list[PeriodBucket]:
    calculator = CashFlowCalculator.from_conn(conn)
    return calculator.calculate_project_cash_flow(
        project_id, start_date, end_date, period_type, include_partial=include_partial
    )
