from __future__ import annotations

from datetime import date

import pandas as pd

from ..models import INFLOW_KEYS, OUTFLOW_KEYS, CashFlowSnapshot, PeriodBucket
from .periods import generate_periods

CASH_FLOW_COLUMNS = [
    "period",
    "label",
    "period_start",
    "period_end",
    "inflow",
    "outflow",
    "net_cash_flow",
    "cumulative_net",
    *[f"inflow_{key}" for key in INFLOW_KEYS],
    *[f"outflow_{key}" for key in OUTFLOW_KEYS],
]


def cash_flow_frame(buckets: list[PeriodBucket]) -> pd.DataFrame:
    """One row per bucket; money stays Decimal (object columns) so exports print exact values."""
    rows = []
    for b in buckets:
        row = {
            "period": b.key,
            "label": b.label,
            "period_start": b.start,
            "period_end": b.end,
            "inflow": b.inflow,
            "outflow": b.outflow,
            "net_cash_flow": b.net,
            "cumulative_net": b.cumulative_net,
        }
        for key in INFLOW_KEYS:
            row[f"inflow_{key}"] = b.inflow_by_type.get(key)
        for key in OUTFLOW_KEYS:
            row[f"outflow_{key}"] = b.outflow_by_category.get(key)
        rows.append(row)
    return pd.DataFrame(rows, columns=CASH_FLOW_COLUMNS)


def snapshot_coverage(snapshots: list[CashFlowSnapshot], start: date, end: date) -> pd.DataFrame:
    """Every month of [start, end] with whether a monthly snapshot is stored for it."""
    stored = {
        s.period_start: s.calculated_at
        for s in snapshots
        if s.period_type == "monthly"
    }
    months = generate_periods(start, end, "monthly")
    frame = pd.DataFrame(
        {
            "period": [m.key for m in months],
            "period_start": [m.start for m in months],
            "calculated_at": [stored.get(m.start) for m in months],
        }
    )
    frame["has_snapshot"] = frame["calculated_at"].notna()
    return frame


def missing_months(coverage: pd.DataFrame) -> list[date]:
    return list(coverage.loc[~coverage["has_snapshot"], "period_start"])
