from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

# Load .env from repo root for local development and scripts.
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, populate_by_name=True)
    db_path: str = Field(default="./data/cashflow.db", alias="DB_PATH")
    local_tz: str = Field(default="Africa/Lagos", alias="LOCAL_TZ")
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    cashflow_daily_cron: str = Field(default="30 0 * * *", alias="CASHFLOW_DAILY_CRON")
    cashflow_monthly_cron: str = Field(default="0 2 1 * *", alias="CASHFLOW_MONTHLY_CRON")
    # APScheduler numbers weekdays from Monday, so name the day.
    cashflow_cleanup_cron: str = Field(default="0 3 * * sun", alias="CASHFLOW_CLEANUP_CRON")
    mrr_reconcile_cron: str = Field(default="20 0 * * *", alias="MRR_RECONCILE_CRON")
    mrr_snapshot_cron: str = Field(default="10 0 * * *", alias="MRR_SNAPSHOT_CRON")
    next_payment_cron: str = Field(default="15 0 * * *", alias="NEXT_PAYMENT_CRON")
    snapshot_retention_years: int = Field(default=2, alias="SNAPSHOT_RETENTION_YEARS")
    include_partial_funding: bool = Field(default=False, alias="INCLUDE_PARTIAL_FUNDING")
    expense_realized_policy: str = Field(default="payment_status", alias="EXPENSE_REALIZED_POLICY")
    job_lock_ttl_seconds: int = Field(default=7200, alias="JOB_LOCK_TTL_SECONDS")
    job_misfire_grace_seconds: int = Field(default=3600, alias="JOB_MISFIRE_GRACE_SECONDS")
    mrr_tolerance: float = Field(default=0.0001, alias="MRR_TOLERANCE")

settings = Settings()
