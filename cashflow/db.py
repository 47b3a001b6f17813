import sqlite3
from pathlib import Path

def get_conn(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, isolation_level=None)  # autocommit
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn

# Money columns are TEXT holding plain decimal strings; sums happen in Python with Decimal.
DDL = [
    """
CREATE TABLE IF NOT EXISTS projects (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  customer_id TEXT,
  status TEXT NOT NULL,       -- 'planning'|'active'|'construction'|'completed'|'on_hold'|'cancelled'
  currency TEXT NOT NULL DEFAULT 'NGN',
  created_at_utc TEXT NOT NULL,
  updated_at_utc TEXT NOT NULL,
  completed_at_utc TEXT
);
""",
    "CREATE INDEX IF NOT EXISTS ix_projects_status ON projects(status);",

    # Funding (inflow); written by the funding intake flow
    """
CREATE TABLE IF NOT EXISTS project_funding (
  id TEXT PRIMARY KEY,
  project_id TEXT NOT NULL REFERENCES projects(id),
  customer_id TEXT,
  amount TEXT NOT NULL,
  currency TEXT NOT NULL,
  funding_type TEXT NOT NULL,
  status TEXT NOT NULL,       -- 'pending'|'received'|'partial'|'cancelled'
  expected_date TEXT,
  received_date TEXT,
  reference_number TEXT,
  description TEXT
);
""",
    "CREATE INDEX IF NOT EXISTS ix_project_funding_project_status ON project_funding(project_id, status);",

    # Expenses (outflow); written by the expense recording flow
    """
CREATE TABLE IF NOT EXISTS project_expenses (
  id TEXT PRIMARY KEY,
  project_id TEXT NOT NULL REFERENCES projects(id),
  amount TEXT NOT NULL,
  tax_amount TEXT NOT NULL DEFAULT '0',
  total_amount TEXT NOT NULL,
  currency TEXT NOT NULL,
  expense_type TEXT,
  category TEXT NOT NULL DEFAULT 'other',
  status TEXT NOT NULL,
  payment_status TEXT NOT NULL DEFAULT 'unpaid',  -- 'unpaid'|'paid'
  paid_date TEXT,
  date TEXT
);
""",
    "CREATE INDEX IF NOT EXISTS ix_project_expenses_project ON project_expenses(project_id, payment_status);",

    # One row per (project, period type, period start); period_end is exclusive
    """
CREATE TABLE IF NOT EXISTS project_cash_flow_snapshots (
  id TEXT PRIMARY KEY,
  project_id TEXT NOT NULL,
  period_type TEXT NOT NULL,  -- 'weekly'|'monthly'|'quarterly'
  period_start TEXT NOT NULL,
  period_end TEXT NOT NULL,
  total_inflow TEXT NOT NULL,
  total_outflow TEXT NOT NULL,
  net_cash_flow TEXT NOT NULL,
  inflow_by_type TEXT,
  outflow_by_category TEXT,
  calculated_at_utc TEXT NOT NULL
);
""",
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_cash_flow_snapshots_period ON project_cash_flow_snapshots(project_id, period_type, period_start);",
    "CREATE INDEX IF NOT EXISTS ix_cash_flow_snapshots_start ON project_cash_flow_snapshots(period_start);",

    """
CREATE TABLE IF NOT EXISTS plans (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  monthly_price TEXT NOT NULL,
  annual_price TEXT,
  features TEXT
);
""",

    """
CREATE TABLE IF NOT EXISTS customers (
  id TEXT PRIMARY KEY,
  company TEXT NOT NULL,
  plan_id TEXT,               -- plans may be retired while customers still point at them
  billing_cycle TEXT NOT NULL DEFAULT 'monthly',
  mrr TEXT NOT NULL DEFAULT '0',
  status TEXT NOT NULL,       -- 'active'|'trial'|'suspended'|'cancelled'
  subscription_start_date TEXT,
  next_payment_date TEXT,
  trial_ends_at TEXT,
  updated_at_utc TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_customers_status ON customers(status);",

    # Append-only record of every MRR correction
    """
CREATE TABLE IF NOT EXISTS mrr_history (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  customer_id TEXT NOT NULL,
  previous_mrr TEXT NOT NULL,
  new_mrr TEXT NOT NULL,
  plan_id TEXT,
  billing_cycle TEXT,
  status TEXT,
  recorded_at_utc TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_mrr_history_customer ON mrr_history(customer_id, recorded_at_utc);",

    """
CREATE TABLE IF NOT EXISTS mrr_snapshots (
  id TEXT PRIMARY KEY,
  customer_id TEXT NOT NULL,
  month TEXT NOT NULL,
  mrr TEXT NOT NULL,
  plan_id TEXT,
  plan_name TEXT,
  status TEXT NOT NULL,
  billing_cycle TEXT,
  captured_at_utc TEXT NOT NULL
);
""",
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_mrr_snapshots_customer_month ON mrr_snapshots(customer_id, month);",

    """
CREATE TABLE IF NOT EXISTS job_runs (
  run_id TEXT PRIMARY KEY,
  job_name TEXT NOT NULL,
  started_at_utc TEXT NOT NULL,
  finished_at_utc TEXT,
  status TEXT NOT NULL,       -- 'running'|'succeeded'|'failed'|'skipped'
  success_count INTEGER NOT NULL DEFAULT 0,
  error_count INTEGER NOT NULL DEFAULT 0,
  detail_json TEXT,
  error_message TEXT
);
""",
    "CREATE INDEX IF NOT EXISTS ix_job_runs_name_time ON job_runs(job_name, started_at_utc DESC);",

    """
CREATE TABLE IF NOT EXISTS locks (
  name TEXT PRIMARY KEY,
  owner TEXT NOT NULL,
  acquired_at_utc TEXT NOT NULL,
  expires_at_utc TEXT NOT NULL
);
""",
]

def migrate(conn: sqlite3.Connection):
    cur = conn.cursor()
    for stmt in DDL:
        cur.execute(stmt)
    cols = {row[1] for row in cur.execute("PRAGMA table_info(projects)").fetchall()}
    if cols and "completed_at_utc" not in cols:
        cur.execute("ALTER TABLE projects ADD COLUMN completed_at_utc TEXT")
    snap_cols = {row[1] for row in cur.execute("PRAGMA table_info(project_cash_flow_snapshots)").fetchall()}
    if snap_cols:
        if "inflow_by_type" not in snap_cols:
            cur.execute("ALTER TABLE project_cash_flow_snapshots ADD COLUMN inflow_by_type TEXT")
        if "outflow_by_category" not in snap_cols:
            cur.execute("ALTER TABLE project_cash_flow_snapshots ADD COLUMN outflow_by_category TEXT")
    conn.commit()
