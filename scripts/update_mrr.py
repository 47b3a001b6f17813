#!/usr/bin/env python3
"""
Recalculate MRR for every customer from plan prices.

Unlike the nightly reconciliation this also walks suspended and cancelled
customers and zeroes their MRR.

Usage:
    python scripts/update_mrr.py
    python scripts/update_mrr.py --snapshot    # also capture this month's MRR snapshots
"""
from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from cashflow.billing.mrr import MrrReconciler
from cashflow.config import settings
from cashflow.db import get_conn, migrate
from cashflow.logging import setup_logging

if __name__ == '__main__':
    flags = [arg for arg in sys.argv[1:] if arg.startswith('--')]
    setup_logging()
    conn = get_conn(settings.db_path)
    migrate(conn)
    reconciler = MrrReconciler.from_conn(conn)
    summary = reconciler.reconcile(include_inactive=True)
    print(
        f"Checked {summary.detail['checked']} customers: {summary.success_count} updated, "
        f"{summary.detail['unchanged']} unchanged, {summary.detail['missing_plan']} without plan, "
        f"{summary.error_count} failed"
    )
    if '--snapshot' in flags:
        snap = reconciler.capture_monthly_snapshots()
        print(
            f"Snapshots {snap.detail['month']}: {snap.detail['created']} created, "
            f"{snap.detail['updated']} updated, {snap.detail['skipped']} unchanged"
        )
    sys.exit(1 if summary.error_count else 0)
