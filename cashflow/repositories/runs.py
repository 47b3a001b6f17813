from __future__ import annotations

import json

from ..utils import now_utc_iso
from .base import SqliteRepository


class JobRunRepository(SqliteRepository):
    def start(self, run_id: str, job_name: str):
        self._execute(
            "INSERT OR REPLACE INTO job_runs(run_id, job_name, started_at_utc, status) VALUES(?,?,?,?)",
            (run_id, job_name, now_utc_iso(), "running"),
        )

    def finish(self, run_id: str, status: str, summary: dict | None = None, error: str | None = None):
        summary = summary or {}
        self._execute(
            """
            UPDATE job_runs
            SET finished_at_utc=?, status=?, success_count=?, error_count=?, detail_json=?, error_message=?
            WHERE run_id=?
            """,
            (
                now_utc_iso(),
                status,
                int(summary.get("success_count") or 0),
                int(summary.get("error_count") or 0),
                json.dumps(summary, default=str),
                error[:1000] if error else None,
                run_id,
            ),
        )

    def get(self, run_id: str) -> dict | None:
        row = self._fetchone(
            """
            SELECT run_id, job_name, started_at_utc, finished_at_utc, status,
                   success_count, error_count, detail_json, error_message
            FROM job_runs WHERE run_id=?
            """,
            (run_id,),
        )
        if not row:
            return None
        return {
            "run_id": row[0],
            "job_name": row[1],
            "started_at_utc": row[2],
            "finished_at_utc": row[3],
            "status": row[4],
            "success_count": row[5],
            "error_count": row[6],
            "detail": json.loads(row[7]) if row[7] else None,
            "error_message": row[8],
        }

    def latest(self, job_name: str | None = None) -> dict | None:
        if job_name:
            row = self._fetchone(
                "SELECT run_id FROM job_runs WHERE job_name=? ORDER BY started_at_utc DESC LIMIT 1",
                (job_name,),
            )
        else:
            row = self._fetchone("SELECT run_id FROM job_runs ORDER BY started_at_utc DESC LIMIT 1")
        return self.get(row[0]) if row else None
