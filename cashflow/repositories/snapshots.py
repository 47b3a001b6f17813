from __future__ import annotations

import json
import uuid
from datetime import date

from ..models import CashFlowSnapshot
from ..utils import decimal_text, parse_iso, to_decimal
from .base import SqliteRepository

_COLUMNS = (
    "id, project_id, period_type, period_start, period_end, total_inflow, total_outflow, "
    "net_cash_flow, inflow_by_type, outflow_by_category, calculated_at_utc"
)


def _dump_breakdown(breakdown: dict) -> str:
    return json.dumps({key: decimal_text(val) for key, val in (breakdown or {}).items()}, sort_keys=True)


def _load_breakdown(text: str | None) -> dict:
    if not text:
        return {}
    return {key: to_decimal(val) for key, val in json.loads(text).items()}


def _row_to_snapshot(row) -> CashFlowSnapshot:
    return CashFlowSnapshot(
        id=row[0],
        project_id=row[1],
        period_type=row[2],
        period_start=date.fromisoformat(row[3]),
        period_end=date.fromisoformat(row[4]),
        total_inflow=to_decimal(row[5]),
        total_outflow=to_decimal(row[6]),
        calculated_at=parse_iso(row[10]),
        inflow_by_type=_load_breakdown(row[8]),
        outflow_by_category=_load_breakdown(row[9]),
    )


class SnapshotRepository(SqliteRepository):
    def get(self, project_id: str, period_type: str, period_start: date) -> CashFlowSnapshot | None:
        row = self._fetchone(
            f"""
            SELECT {_COLUMNS} FROM project_cash_flow_snapshots
            WHERE project_id=? AND period_type=? AND period_start=?
            """,
            (project_id, period_type, period_start.isoformat()),
        )
        return _row_to_snapshot(row) if row else None

    def upsert(self, snapshot: CashFlowSnapshot) -> CashFlowSnapshot:
        """Insert or replace the numbers of the row keyed by (project, period type, period start).

        The row id and key survive a recompute; only totals, breakdowns and
        calculated_at change.
        """
        self._execute(
            f"""
            INSERT INTO project_cash_flow_snapshots({_COLUMNS})
            VALUES(?,?,?,?,?,?,?,?,?,?,?)
            ON CONFLICT(project_id, period_type, period_start) DO UPDATE SET
              period_end=excluded.period_end,
              total_inflow=excluded.total_inflow,
              total_outflow=excluded.total_outflow,
              net_cash_flow=excluded.net_cash_flow,
              inflow_by_type=excluded.inflow_by_type,
              outflow_by_category=excluded.outflow_by_category,
              calculated_at_utc=excluded.calculated_at_utc
            """,
            (
                snapshot.id or str(uuid.uuid4()),
                snapshot.project_id,
                snapshot.period_type,
                snapshot.period_start.isoformat(),
                snapshot.period_end.isoformat(),
                decimal_text(snapshot.total_inflow),
                decimal_text(snapshot.total_outflow),
                decimal_text(snapshot.net_cash_flow),
                _dump_breakdown(snapshot.inflow_by_type),
                _dump_breakdown(snapshot.outflow_by_category),
                snapshot.calculated_at.isoformat(),
            ),
        )
        return self.get(snapshot.project_id, snapshot.period_type, snapshot.period_start)

    def list_for_project(
        self,
        project_id: str,
        period_type: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[CashFlowSnapshot]:
        """Snapshots whose period_start falls inside [start, end], oldest first."""
        sql = f"SELECT {_COLUMNS} FROM project_cash_flow_snapshots WHERE project_id=?"
        params: list = [project_id]
        if period_type:
            sql += " AND period_type=?"
            params.append(period_type)
        if start:
            sql += " AND period_start>=?"
            params.append(start.isoformat())
        if end:
            sql += " AND period_start<=?"
            params.append(end.isoformat())
        rows = self._fetchall(sql + " ORDER BY period_type, period_start", tuple(params))
        return [_row_to_snapshot(row) for row in rows]

    def delete_before(self, threshold: date) -> int:
        cur = self._execute(
            "DELETE FROM project_cash_flow_snapshots WHERE period_start < ?",
            (threshold.isoformat(),),
        )
        return cur.rowcount

    def count_by_period_type(self) -> dict[str, int]:
        rows = self._fetchall(
            "SELECT period_type, COUNT(*) FROM project_cash_flow_snapshots GROUP BY period_type ORDER BY period_type"
        )
        return {row[0]: row[1] for row in rows}

    def count_starting_between(self, start: date, end: date) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) FROM project_cash_flow_snapshots WHERE period_start >= ? AND period_start < ?",
            (start.isoformat(), end.isoformat()),
        )
        return row[0]
