"""Monthly recurring revenue: nightly reconciliation against plan prices and monthly snapshots."""
from __future__ import annotations

import sqlite3
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

import structlog
from dateutil.relativedelta import relativedelta

from ..config import settings
from ..errors import NotFoundError
from ..models import BILLABLE_CUSTOMER_STATUSES, Customer, JobSummary, MrrChange, MrrSnapshot, Plan
from ..repositories.billing import (
    CustomerRepository,
    MrrHistoryRepository,
    MrrSnapshotRepository,
    PlanRepository,
)
from ..utils import ZERO, local_today, now_utc, to_decimal
from .dates import ANNUAL_CYCLES

log = structlog.get_logger()


def canonical_mrr(customer: Customer, plan: Plan | None) -> Decimal:
    """MRR the customer should carry: plan price normalized to a month, zero unless active/trial."""
    if customer.status not in BILLABLE_CUSTOMER_STATUSES or plan is None:
        return ZERO
    if (customer.billing_cycle or "monthly").strip().lower() in ANNUAL_CYCLES:
        return plan.annual_equivalent / 12
    return plan.monthly_price


def month_start(value: date | datetime | None = None) -> date:
    if value is None:
        value = local_today(settings.local_tz)
    if isinstance(value, datetime):
        value = value.date()
    return value.replace(day=1)


class MrrReconciler:
    def __init__(
        self,
        customers: CustomerRepository,
        plans: PlanRepository,
        history: MrrHistoryRepository,
        snapshots: MrrSnapshotRepository,
        tolerance: float | Decimal | None = None,
    ):
        self.customers = customers
        self.plans = plans
        self.history = history
        self.snapshots = snapshots
        self.tolerance = to_decimal(settings.mrr_tolerance if tolerance is None else tolerance)

    @classmethod
    def from_conn(cls, conn: sqlite3.Connection, **kwargs) -> "MrrReconciler":
        return cls(
            CustomerRepository(conn),
            PlanRepository(conn),
            MrrHistoryRepository(conn),
            MrrSnapshotRepository(conn),
            **kwargs,
        )

    def reconcile(self, include_inactive: bool = False, now: datetime | None = None) -> JobSummary:
        """Bring stored mrr in line with plan prices; a second run in a row writes nothing.

        With include_inactive, suspended and cancelled customers are walked too and
        zeroed.
        """
        now = now or now_utc()
        summary = JobSummary(job_name="mrr_reconciliation")
        customers = self.customers.list_all() if include_inactive else self.customers.list_billable_with_plan()
        plans = self.plans.get_many(c.plan_id for c in customers if c.plan_id)
        missing_plan = 0
        unchanged = 0
        snapshot_failed = 0

        for customer in customers:
            try:
                plan = plans.get(customer.plan_id) if customer.plan_id else None
                if customer.status in BILLABLE_CUSTOMER_STATUSES and plan is None:
                    missing_plan += 1
                    summary.skipped_count += 1
                    log.warning("mrr_plan_missing", customer_id=customer.id, plan_id=customer.plan_id)
                    continue
                target = canonical_mrr(customer, plan)
                stored = customer.mrr if customer.mrr is not None else ZERO
                if abs(stored - target) <= self.tolerance:
                    unchanged += 1
                    continue
                self.customers.update_mrr(customer.id, target)
                self.history.append(
                    MrrChange(
                        customer_id=customer.id,
                        previous_mrr=stored,
                        new_mrr=target,
                        plan_id=customer.plan_id,
                        billing_cycle=customer.billing_cycle,
                        status=customer.status,
                        recorded_at=now,
                    )
                )
                summary.success_count += 1
                log.info(
                    "mrr_corrected",
                    customer_id=customer.id,
                    previous_mrr=str(stored),
                    new_mrr=str(target),
                )
            except Exception as exc:
                summary.record_error(customer.id, exc)
                log.error("mrr_reconcile_failed", customer_id=customer.id, err=str(exc))
                continue
            # the correction is already written; the monthly snapshot job picks up a missed month
            try:
                self.capture_customer_snapshot(customer.id, local_today(settings.local_tz, now))
            except Exception as exc:
                snapshot_failed += 1
                log.error("mrr_snapshot_on_change_failed", customer_id=customer.id, err=str(exc))

        summary.detail.update(
            {
                "checked": len(customers),
                "unchanged": unchanged,
                "missing_plan": missing_plan,
                "snapshot_failed": snapshot_failed,
            }
        )
        log.info("mrr_reconciled", **{k: v for k, v in summary.to_dict().items() if k != "errors"})
        return summary

    def _snapshot_for(self, customer: Customer, month: date, plan_name: str | None) -> MrrSnapshot:
        return MrrSnapshot(
            id="",
            customer_id=customer.id,
            month=month,
            mrr=customer.mrr,
            status=customer.status,
            plan_id=customer.plan_id,
            plan_name=plan_name,
            billing_cycle=customer.billing_cycle,
            captured_at=now_utc(),
        )

    def capture_customer_snapshot(self, customer_id: str, month: date | None = None) -> MrrSnapshot:
        customer = self.customers.get(customer_id)
        if customer is None:
            raise NotFoundError(f"customer {customer_id} not found")
        plan = self.plans.get(customer.plan_id) if customer.plan_id else None
        snapshot = self._snapshot_for(customer, month_start(month), plan.name if plan else None)
        return self.snapshots.upsert(snapshot)

    def capture_monthly_snapshots(self, month: date | None = None) -> JobSummary:
        """Snapshot every customer, cancelled ones included, for `month`."""
        month = month_start(month)
        summary = JobSummary(job_name="mrr_snapshots")
        customers = self.customers.list_all()
        plans = self.plans.get_many(c.plan_id for c in customers if c.plan_id)
        created = 0
        updated = 0
        for customer in customers:
            try:
                existing = self.snapshots.get(customer.id, month)
                if existing and (
                    existing.mrr == customer.mrr
                    and existing.status == customer.status
                    and existing.plan_id == customer.plan_id
                ):
                    summary.skipped_count += 1
                    continue
                plan = plans.get(customer.plan_id) if customer.plan_id else None
                self.snapshots.upsert(self._snapshot_for(customer, month, plan.name if plan else None))
                if existing:
                    updated += 1
                else:
                    created += 1
                summary.success_count += 1
            except Exception as exc:
                summary.record_error(customer.id, exc)
                log.error("mrr_snapshot_failed", customer_id=customer.id, err=str(exc))
                continue
        summary.detail.update(
            {
                "month": month.isoformat(),
                "created": created,
                "updated": updated,
                "skipped": summary.skipped_count,
                "total": len(customers),
            }
        )
        log.info("mrr_snapshots_captured", month=month.isoformat(), created=created, updated=updated,
                 skipped=summary.skipped_count, total=len(customers))
        return summary

    def get_monthly_mrr(self, month: date) -> dict:
        rows = self.snapshots.list_for_month(month_start(month), statuses=BILLABLE_CUSTOMER_STATUSES)
        return {
            "total_mrr": sum((r.mrr for r in rows), ZERO),
            "customer_count": len(rows),
        }

    def get_mrr_growth(self, current_month: date, previous_month: date | None = None) -> dict:
        current_month = month_start(current_month)
        if previous_month is None:
            previous_month = current_month - relativedelta(months=1)
        current = self.get_monthly_mrr(current_month)
        previous = self.get_monthly_mrr(previous_month)
        cur, prev = current["total_mrr"], previous["total_mrr"]
        if prev > 0:
            growth = (cur - prev) / prev * 100
        elif cur > 0:
            growth = Decimal(100)
        else:
            growth = ZERO
        return {
            "current_month": current_month,
            "previous_month": month_start(previous_month),
            "current_mrr": cur,
            "previous_mrr": prev,
            "growth_percent": growth.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP),
            "current_customers": current["customer_count"],
            "previous_customers": previous["customer_count"],
        }

    def get_mrr_trend(self, months: int = 6, now: datetime | None = None) -> list[dict]:
        """Snapshot totals for the last `months` months, oldest first, ending with the current month."""
        this_month = month_start(local_today(settings.local_tz, now))
        trend = []
        for back in range(months - 1, -1, -1):
            month = this_month - relativedelta(months=back)
            data = self.get_monthly_mrr(month)
            trend.append({"month": month, "mrr": data["total_mrr"], "customers": data["customer_count"]})
        return trend
