from __future__ import annotations

import json
import uuid
from datetime import date

from ..models import BILLABLE_CUSTOMER_STATUSES, Customer, MrrChange, MrrSnapshot, Plan, normalize_features
from ..utils import ZERO, decimal_text, iso_or_none, now_utc_iso, parse_iso, to_decimal
from .base import SqliteRepository

_CUSTOMER_COLUMNS = (
    "id, company, status, plan_id, billing_cycle, mrr, subscription_start_date, "
    "next_payment_date, trial_ends_at"
)


def _row_to_plan(row) -> Plan:
    return Plan(
        id=row[0],
        name=row[1],
        monthly_price=to_decimal(row[2]),
        annual_price=to_decimal(row[3], default=None),
        features=normalize_features(row[4]),
    )


def _row_to_customer(row) -> Customer:
    return Customer(
        id=row[0],
        company=row[1],
        status=row[2],
        plan_id=row[3],
        billing_cycle=row[4] or "monthly",
        mrr=to_decimal(row[5]),
        subscription_start_date=parse_iso(row[6]),
        next_payment_date=parse_iso(row[7]),
        trial_ends_at=parse_iso(row[8]),
    )


class PlanRepository(SqliteRepository):
    def get(self, plan_id: str) -> Plan | None:
        row = self._fetchone(
            "SELECT id, name, monthly_price, annual_price, features FROM plans WHERE id=?",
            (plan_id,),
        )
        return _row_to_plan(row) if row else None

    def get_many(self, plan_ids) -> dict[str, Plan]:
        ids = sorted(set(plan_ids))
        if not ids:
            return {}
        rows = self._fetchall(
            f"SELECT id, name, monthly_price, annual_price, features FROM plans WHERE id IN ({','.join('?' for _ in ids)})",
            tuple(ids),
        )
        return {row[0]: _row_to_plan(row) for row in rows}

    def save(self, plan: Plan, features=None) -> Plan:
        """Store a plan; `features` may be any raw shape and is normalized before it is written."""
        keys = normalize_features(features) if features is not None else plan.features
        self._execute(
            "INSERT OR REPLACE INTO plans(id, name, monthly_price, annual_price, features) VALUES(?,?,?,?,?)",
            (
                plan.id,
                plan.name,
                decimal_text(plan.monthly_price),
                decimal_text(plan.annual_price),
                json.dumps(list(keys)),
            ),
        )
        return self.get(plan.id)


class CustomerRepository(SqliteRepository):
    def get(self, customer_id: str) -> Customer | None:
        row = self._fetchone(f"SELECT {_CUSTOMER_COLUMNS} FROM customers WHERE id=?", (customer_id,))
        return _row_to_customer(row) if row else None

    def list_all(self) -> list[Customer]:
        rows = self._fetchall(f"SELECT {_CUSTOMER_COLUMNS} FROM customers ORDER BY id")
        return [_row_to_customer(row) for row in rows]

    def list_billable_with_plan(self) -> list[Customer]:
        marks = ",".join("?" for _ in BILLABLE_CUSTOMER_STATUSES)
        rows = self._fetchall(
            f"""
            SELECT {_CUSTOMER_COLUMNS} FROM customers
            WHERE plan_id IS NOT NULL AND status IN ({marks})
            ORDER BY id
            """,
            BILLABLE_CUSTOMER_STATUSES,
        )
        return [_row_to_customer(row) for row in rows]

    def list_billable_with_start_date(self) -> list[Customer]:
        marks = ",".join("?" for _ in BILLABLE_CUSTOMER_STATUSES)
        rows = self._fetchall(
            f"""
            SELECT {_CUSTOMER_COLUMNS} FROM customers
            WHERE subscription_start_date IS NOT NULL AND status IN ({marks})
            ORDER BY id
            """,
            BILLABLE_CUSTOMER_STATUSES,
        )
        return [_row_to_customer(row) for row in rows]

    def update_mrr(self, customer_id: str, mrr) -> None:
        self._execute(
            "UPDATE customers SET mrr=?, updated_at_utc=? WHERE id=?",
            (decimal_text(mrr), now_utc_iso(), customer_id),
        )

    def update_next_payment_date(self, customer_id: str, next_payment_date) -> None:
        self._execute(
            "UPDATE customers SET next_payment_date=?, updated_at_utc=? WHERE id=?",
            (iso_or_none(next_payment_date), now_utc_iso(), customer_id),
        )

    def save(self, customer: Customer) -> Customer:
        self._execute(
            f"""
            INSERT OR REPLACE INTO customers({_CUSTOMER_COLUMNS}, updated_at_utc)
            VALUES(?,?,?,?,?,?,?,?,?,?)
            """,
            (
                customer.id,
                customer.company,
                customer.status,
                customer.plan_id,
                customer.billing_cycle,
                decimal_text(customer.mrr if customer.mrr is not None else ZERO),
                iso_or_none(customer.subscription_start_date),
                iso_or_none(customer.next_payment_date),
                iso_or_none(customer.trial_ends_at),
                now_utc_iso(),
            ),
        )
        return self.get(customer.id)


class MrrHistoryRepository(SqliteRepository):
    def append(self, change: MrrChange) -> None:
        self._execute(
            """
            INSERT INTO mrr_history(customer_id, previous_mrr, new_mrr, plan_id, billing_cycle, status, recorded_at_utc)
            VALUES(?,?,?,?,?,?,?)
            """,
            (
                change.customer_id,
                decimal_text(change.previous_mrr),
                decimal_text(change.new_mrr),
                change.plan_id,
                change.billing_cycle,
                change.status,
                change.recorded_at.isoformat(),
            ),
        )

    def list_for_customer(self, customer_id: str) -> list[MrrChange]:
        rows = self._fetchall(
            """
            SELECT customer_id, previous_mrr, new_mrr, plan_id, billing_cycle, status, recorded_at_utc
            FROM mrr_history WHERE customer_id=? ORDER BY id
            """,
            (customer_id,),
        )
        return [
            MrrChange(
                customer_id=row[0],
                previous_mrr=to_decimal(row[1]),
                new_mrr=to_decimal(row[2]),
                plan_id=row[3],
                billing_cycle=row[4],
                status=row[5],
                recorded_at=parse_iso(row[6]),
            )
            for row in rows
        ]

    def count(self) -> int:
        return self._fetchone("SELECT COUNT(*) FROM mrr_history")[0]


def _row_to_mrr_snapshot(row) -> MrrSnapshot:
    return MrrSnapshot(
        id=row[0],
        customer_id=row[1],
        month=date.fromisoformat(row[2]),
        mrr=to_decimal(row[3]),
        plan_id=row[4],
        plan_name=row[5],
        status=row[6],
        billing_cycle=row[7],
        captured_at=parse_iso(row[8]),
    )


class MrrSnapshotRepository(SqliteRepository):
    _COLUMNS = "id, customer_id, month, mrr, plan_id, plan_name, status, billing_cycle, captured_at_utc"

    def get(self, customer_id: str, month: date) -> MrrSnapshot | None:
        row = self._fetchone(
            f"SELECT {self._COLUMNS} FROM mrr_snapshots WHERE customer_id=? AND month=?",
            (customer_id, month.isoformat()),
        )
        return _row_to_mrr_snapshot(row) if row else None

    def upsert(self, snapshot: MrrSnapshot) -> MrrSnapshot:
        self._execute(
            f"""
            INSERT INTO mrr_snapshots({self._COLUMNS}) VALUES(?,?,?,?,?,?,?,?,?)
            ON CONFLICT(customer_id, month) DO UPDATE SET
              mrr=excluded.mrr,
              plan_id=excluded.plan_id,
              plan_name=excluded.plan_name,
              status=excluded.status,
              billing_cycle=excluded.billing_cycle,
              captured_at_utc=excluded.captured_at_utc
            """,
            (
                snapshot.id or str(uuid.uuid4()),
                snapshot.customer_id,
                snapshot.month.isoformat(),
                decimal_text(snapshot.mrr),
                snapshot.plan_id,
                snapshot.plan_name,
                snapshot.status,
                snapshot.billing_cycle,
                iso_or_none(snapshot.captured_at) or now_utc_iso(),
            ),
        )
        return self.get(snapshot.customer_id, snapshot.month)

    def list_for_month(self, month: date, statuses=None) -> list[MrrSnapshot]:
        sql = f"SELECT {self._COLUMNS} FROM mrr_snapshots WHERE month=?"
        params: tuple = (month.isoformat(),)
        if statuses:
            sql += f" AND status IN ({','.join('?' for _ in statuses)})"
            params += tuple(statuses)
        rows = self._fetchall(sql + " ORDER BY customer_id", params)
        return [_row_to_mrr_snapshot(row) for row in rows]
