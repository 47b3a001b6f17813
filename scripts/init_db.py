from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from cashflow.db import get_conn, migrate
from cashflow.config import settings

if __name__ == '__main__':
    conn = get_conn(settings.db_path)
    migrate(conn)
    projects = conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0]
    snapshots = conn.execute("SELECT COUNT(*) FROM project_cash_flow_snapshots").fetchone()[0]
    print('DB ready at', settings.db_path, '| projects:', projects, '| cash flow snapshots:', snapshots)
