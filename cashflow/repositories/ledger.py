"""Read models over the funding and expense ledgers.

The intake flows own these tables; the cash-flow core only reads them. The
`save` methods exist for those flows, for backfill scripts and for tests.
"""
from __future__ import annotations

import structlog

from ..errors import ValidationError
from ..models import ExpenseRecord, FundingRecord
from ..utils import decimal_text, iso_or_none, parse_iso, to_decimal
from .base import SqliteRepository

log = structlog.get_logger()

_FUNDING_COLUMNS = (
    "id, project_id, customer_id, amount, currency, funding_type, status, "
    "expected_date, received_date, reference_number, description"
)
_EXPENSE_COLUMNS = (
    "id, project_id, amount, tax_amount, total_amount, currency, expense_type, "
    "category, status, payment_status, paid_date, date"
)


def _row_to_funding(row) -> FundingRecord:
    return FundingRecord(
        id=row[0],
        project_id=row[1],
        customer_id=row[2],
        amount=to_decimal(row[3]),
        currency=row[4],
        funding_type=row[5],
        status=row[6],
        expected_date=parse_iso(row[7]),
        received_date=parse_iso(row[8]),
        reference_number=row[9],
        description=row[10],
    )


def _row_to_expense(row) -> ExpenseRecord:
    return ExpenseRecord(
        id=row[0],
        project_id=row[1],
        amount=to_decimal(row[2]),
        tax_amount=to_decimal(row[3]),
        total_amount=to_decimal(row[4]),
        currency=row[5],
        expense_type=row[6],
        category=row[7] or "other",
        status=row[8],
        payment_status=row[9],
        paid_date=parse_iso(row[10]),
        expense_date=parse_iso(row[11]),
    )


class FundingRepository(SqliteRepository):
    def list_for_project(self, project_id: str, statuses=None) -> list[FundingRecord]:
        sql = f"SELECT {_FUNDING_COLUMNS} FROM project_funding WHERE project_id=?"
        params: tuple = (project_id,)
        if statuses:
            sql += f" AND status IN ({','.join('?' for _ in statuses)})"
            params += tuple(statuses)
        rows = self._fetchall(sql + " ORDER BY received_date, id", params)
        return [_row_to_funding(row) for row in rows]

    def save(self, record: FundingRecord) -> FundingRecord:
        self._execute(
            f"""
            INSERT OR REPLACE INTO project_funding({_FUNDING_COLUMNS})
            VALUES(?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                record.id,
                record.project_id,
                record.customer_id,
                decimal_text(record.amount),
                record.currency,
                record.funding_type,
                record.status,
                iso_or_none(record.expected_date),
                iso_or_none(record.received_date),
                record.reference_number,
                record.description,
            ),
        )
        return record


class ExpenseRepository(SqliteRepository):
    def list_for_project(self, project_id: str) -> list[ExpenseRecord]:
        rows = self._fetchall(
            f"SELECT {_EXPENSE_COLUMNS} FROM project_expenses WHERE project_id=? ORDER BY COALESCE(paid_date, date), id",
            (project_id,),
        )
        records = []
        for row in rows:
            try:
                records.append(_row_to_expense(row))
            except ValidationError as exc:
                # intake rows are not validated on insert
                log.warning("expense_row_skipped", project_id=project_id, expense_id=row[0], err=str(exc))
                continue
        return records

    def save(self, record: ExpenseRecord) -> ExpenseRecord:
        self._execute(
            f"""
            INSERT OR REPLACE INTO project_expenses({_EXPENSE_COLUMNS})
            VALUES(?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                record.id,
                record.project_id,
                decimal_text(record.amount),
                decimal_text(record.tax_amount),
                decimal_text(record.total_amount),
                record.currency,
                record.expense_type,
                record.category,
                record.status,
                record.payment_status,
                iso_or_none(record.paid_date),
                iso_or_none(record.expense_date),
            ),
        )
        return record
