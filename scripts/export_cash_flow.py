#!/usr/bin/env python3
"""
Export a project's cash flow to CSV.

Usage:
    python scripts/export_cash_flow.py P1 2024-01-01 2024-12-31
    python scripts/export_cash_flow.py P1 2024-01-01 2024-12-31 --period=weekly --opening=250000 --out=p1.csv
    python scripts/export_cash_flow.py P1 2024-01-01 2024-12-31 --from-snapshots
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
from cashflow.pipeline.cash_flow import CashFlowCalculator, calculate_cumulative_cash_flow
from cashflow.pipeline.reports import cash_flow_frame
from cashflow.pipeline.snapshots import SnapshotStore, snapshots_to_buckets


def _flag(flags, name, default=None):
    for f in flags:
        if f.startswith(f'--{name}='):
            return f.split('=', 1)[1]
    return default


if __name__ == '__main__':
    args = [arg for arg in sys.argv[1:] if not arg.startswith('--')]
    flags = [arg for arg in sys.argv[1:] if arg.startswith('--')]
    if len(args) < 3:
        print(__doc__)
        sys.exit(2)

    project_id = args[0]
    start = date.fromisoformat(args[1])
    end = date.fromisoformat(args[2])
    period_type = _flag(flags, 'period', 'monthly')
    opening = _flag(flags, 'opening', '0')
    out = Path(_flag(flags, 'out', f'exports/{project_id}_{period_type}_{start}_{end}.csv'))

    conn = get_conn(settings.db_path)
    migrate(conn)
    if '--from-snapshots' in flags:
        store = SnapshotStore.from_conn(conn)
        buckets = snapshots_to_buckets(store.get_cash_flow_from_snapshots(project_id, start, end, period_type))
    else:
        buckets = CashFlowCalculator.from_conn(conn).calculate_project_cash_flow(project_id, start, end, period_type)
    frame = cash_flow_frame(calculate_cumulative_cash_flow(buckets, opening))

    out.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(out, index=False)
    print(f'Wrote {len(frame)} periods to {out}')
