"""Persisted per-period cash flow snapshots.

Every save recomputes the period from the ledger and upserts one row keyed by
(project_id, period_type, period_start), so repeated saves converge to the
ledger as it stands at call time.
"""
from __future__ import annotations

import sqlite3
from datetime import date, timedelta

import structlog

from ..errors import ValidationError
from ..models import INFLOW_KEYS, OUTFLOW_KEYS, CashFlowSnapshot, PeriodBucket, empty_breakdown
from ..repositories.snapshots import SnapshotRepository
from ..utils import now_utc
from .cash_flow import CashFlowCalculator
from .periods import month_bounds, period_bounds, period_key, period_label, validate_period_type

log = structlog.get_logger()


class SnapshotStore:
    def __init__(self, calculator: CashFlowCalculator, snapshots: SnapshotRepository):
        self.calculator = calculator
        self.snapshots = snapshots

    @classmethod
    def from_conn(cls, conn: sqlite3.Connection, **calculator_kwargs) -> "SnapshotStore":
        return cls(CashFlowCalculator.from_conn(conn, **calculator_kwargs), SnapshotRepository(conn))

    def save_cash_flow_snapshot(self, project_id: str, bucket: PeriodBucket) -> CashFlowSnapshot:
        snapshot = CashFlowSnapshot.from_bucket("", project_id, bucket, now_utc())
        saved = self.snapshots.upsert(snapshot)
        log.info(
            "cash_flow_snapshot_saved",
            project_id=project_id,
            period_type=bucket.period_type,
            period_start=bucket.start.isoformat(),
            net=str(saved.net_cash_flow),
        )
        return saved

    def save_period_snapshot(self, project_id: str, period_type: str, on: date) -> CashFlowSnapshot:
        period_type = validate_period_type(period_type)
        if not isinstance(on, date):
            raise ValidationError(f"expected a date, got {on!r}")
        start, end = period_bounds(period_type, on)
        # the period's last day is the inclusive end of the window
        buckets = self.calculator.calculate_project_cash_flow(
            project_id, start, end - timedelta(days=1), period_type
        )
        return self.save_cash_flow_snapshot(project_id, buckets[0])

    def save_monthly_snapshot(self, project_id: str, year: int, month: int) -> CashFlowSnapshot:
        start, _ = month_bounds(year, month)
        return self.save_period_snapshot(project_id, "monthly", start)

    def get_cash_flow_from_snapshots(
        self,
        project_id: str,
        start_date: date,
        end_date: date,
        period_type: str = "monthly",
    ) -> list[CashFlowSnapshot]:
        period_type = validate_period_type(period_type)
        if start_date > end_date:
            raise ValidationError(f"start_date {start_date} is after end_date {end_date}")
        # a stored period belongs to the window when it overlaps it
        window_start, _ = period_bounds(period_type, start_date)
        return self.snapshots.list_for_project(project_id, period_type, window_start, end_date)

    def cleanup_snapshots(self, before: date) -> int:
        deleted = self.snapshots.delete_before(before)
        log.info("cash_flow_snapshots_deleted", before=before.isoformat(), deleted=deleted)
        return deleted

    def snapshot_counts(self) -> dict[str, int]:
        return self.snapshots.count_by_period_type()

    def monthly_snapshot_count(self, year: int, month: int) -> int:
        start, end = month_bounds(year, month)
        return self.snapshots.count_starting_between(start, end)


def snapshots_to_buckets(snapshots: list[CashFlowSnapshot]) -> list[PeriodBucket]:
    """Stored snapshots in bucket form so the cumulative pass and reports treat both sources alike."""
    return [
        PeriodBucket(
            key=period_key(s.period_type, s.period_start),
            label=period_label(s.period_type, s.period_start),
            period_type=s.period_type,
            start=s.period_start,
            end=s.period_end,
            inflow=s.total_inflow,
            outflow=s.total_outflow,
            inflow_by_type={**empty_breakdown(INFLOW_KEYS), **s.inflow_by_type},
            outflow_by_category={**empty_breakdown(OUTFLOW_KEYS), **s.outflow_by_category},
        )
        for s in snapshots
    ]
