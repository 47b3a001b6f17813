#!/usr/bin/env python3
"""
Run one scheduled job immediately, under the same lease and run bookkeeping the scheduler uses.

Usage:
    python scripts/run_job.py daily_snapshots
    python scripts/run_job.py snapshot_cleanup --db ./data/other.db
    python scripts/run_job.py --list
"""
from pathlib import Path
import argparse
import json
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from cashflow.config import settings
from cashflow.jobs.tasks import JOBS, run_job_standalone
from cashflow.logging import setup_logging


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run a cash flow / billing job now.")
    parser.add_argument("job_name", nargs="?", choices=sorted(JOBS))
    parser.add_argument("--db", default=settings.db_path, help="sqlite path (default: DB_PATH)")
    parser.add_argument("--list", action="store_true", help="list job names and exit")
    args = parser.parse_args(argv)

    if args.list or not args.job_name:
        for name in JOBS:
            print(name)
        return 0

    setup_logging()
    run = run_job_standalone(args.job_name, db_path=args.db)
    print(json.dumps(run, indent=2, default=str))
    return 0 if run["status"] in ("succeeded", "skipped") and not run["error_count"] else 1


if __name__ == '__main__':
    sys.exit(main())
