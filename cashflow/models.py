"""Domain records shared by the calculator, the snapshot store and the billing jobs."""
from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal

from .errors import ValidationError
from .utils import ZERO

EXPENSE_POLICIES = ("payment_status", "status")
ACTIVE_PROJECT_STATUSES = ("active", "construction")
BILLABLE_CUSTOMER_STATUSES = ("active", "trial")

INFLOW_KEYS = ("client_payments", "loans", "equity", "grants", "other")
OUTFLOW_KEYS = ("labor", "materials", "equipment", "permits", "professional_fees", "contingency", "other")


def empty_breakdown(keys) -> dict[str, Decimal]:
    return {key: ZERO for key in keys}


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    status: str
    customer_id: str | None = None
    currency: str = "NGN"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class FundingRecord:
    id: str
    project_id: str
    amount: Decimal
    currency: str
    funding_type: str
    status: str
    customer_id: str | None = None
    expected_date: date | datetime | None = None
    received_date: date | datetime | None = None
    reference_number: str | None = None
    description: str | None = None

    def __post_init__(self):
        if self.amount < 0:
            raise ValidationError(f"funding {self.id} has a negative amount")

    def is_realized(self, include_partial: bool = False) -> bool:
        if self.received_date is None:
            return False
        if self.status == "received":
            return True
        return include_partial and self.status == "partial"


@dataclass(frozen=True)
class ExpenseRecord:
    id: str
    project_id: str
    amount: Decimal
    currency: str
    category: str = "other"
    status: str = "pending"
    payment_status: str = "unpaid"
    tax_amount: Decimal = ZERO
    total_amount: Decimal | None = None
    expense_type: str | None = None
    paid_date: date | datetime | None = None
    expense_date: date | datetime | None = None

    def __post_init__(self):
        expected = self.amount + self.tax_amount
        if self.total_amount is None:
            object.__setattr__(self, "total_amount", expected)
        elif self.total_amount != expected:
            raise ValidationError(
                f"expense {self.id} total_amount {self.total_amount} != amount + tax_amount {expected}"
            )

    @property
    def resolved_date(self):
        return self.paid_date or self.expense_date

    def is_realized(self, policy: str = "payment_status") -> bool:
        if self.resolved_date is None:
            return False
        if policy == "status":
            return self.status in ("paid", "approved")
        return self.payment_status == "paid"


@dataclass
class PeriodBucket:
    """One calendar-aligned slice. `end` is the first day of the next period (exclusive)."""

    key: str
    label: str
    period_type: str
    start: date
    end: date
    inflow: Decimal = ZERO
    outflow: Decimal = ZERO
    inflow_by_type: dict = field(default_factory=lambda: empty_breakdown(INFLOW_KEYS))
    outflow_by_category: dict = field(default_factory=lambda: empty_breakdown(OUTFLOW_KEYS))
    cumulative_inflow: Decimal | None = None
    cumulative_outflow: Decimal | None = None
    cumulative_net: Decimal | None = None

    @property
    def net(self) -> Decimal:
        return self.inflow - self.outflow

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    def copy(self, **changes) -> "PeriodBucket":
        changes.setdefault("inflow_by_type", dict(self.inflow_by_type))
        changes.setdefault("outflow_by_category", dict(self.outflow_by_category))
        return replace(self, **changes)

    def to_dict(self) -> dict:
        out = {
            "key": self.key,
            "label": self.label,
            "period_type": self.period_type,
            "period_start": self.start,
            "period_end": self.end,
            "inflow": self.inflow,
            "outflow": self.outflow,
            "net_cash_flow": self.net,
            "inflow_by_type": dict(self.inflow_by_type),
            "outflow_by_category": dict(self.outflow_by_category),
        }
        if self.cumulative_net is not None:
            out["cumulative_inflow"] = self.cumulative_inflow
            out["cumulative_outflow"] = self.cumulative_outflow
            out["cumulative_net"] = self.cumulative_net
        return out


@dataclass(frozen=True)
class CashFlowSnapshot:
    id: str
    project_id: str
    period_type: str
    period_start: date
    period_end: date
    total_inflow: Decimal
    total_outflow: Decimal
    calculated_at: datetime
    inflow_by_type: dict = field(default_factory=dict)
    outflow_by_category: dict = field(default_factory=dict)

    @property
    def net_cash_flow(self) -> Decimal:
        return self.total_inflow - self.total_outflow

    @classmethod
    def from_bucket(cls, snapshot_id: str, project_id: str, bucket: PeriodBucket, calculated_at: datetime):
        return cls(
            id=snapshot_id,
            project_id=project_id,
            period_type=bucket.period_type,
            period_start=bucket.start,
            period_end=bucket.end,
            total_inflow=bucket.inflow,
            total_outflow=bucket.outflow,
            calculated_at=calculated_at,
            inflow_by_type=dict(bucket.inflow_by_type),
            outflow_by_category=dict(bucket.outflow_by_category),
        )


def normalize_features(raw) -> tuple[str, ...]:
    """Collapse the shapes plan features arrive in (list, flag dict, CSV, JSON text) to ordered keys."""
    if raw is None:
        return ()
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return ()
        if text[0] in "[{":
            try:
                return normalize_features(json.loads(text))
            except json.JSONDecodeError:
                pass
        raw = text.split(",")
    if isinstance(raw, dict):
        raw = [key for key, enabled in raw.items() if enabled]
    keys = []
    for item in raw:
        if isinstance(item, dict):
            item = item.get("key") or item.get("name")
        if item is None:
            continue
        key = str(item).strip()
        if key and key not in keys:
            keys.append(key)
    return tuple(keys)


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    monthly_price: Decimal
    annual_price: Decimal | None = None
    features: tuple[str, ...] = ()

    @property
    def annual_equivalent(self) -> Decimal:
        if self.annual_price is not None:
            return self.annual_price
        return self.monthly_price * 12


@dataclass(frozen=True)
class Customer:
    id: str
    company: str
    status: str
    plan_id: str | None = None
    billing_cycle: str = "monthly"
    mrr: Decimal = ZERO
    subscription_start_date: date | datetime | None = None
    next_payment_date: date | datetime | None = None
    trial_ends_at: date | datetime | None = None


@dataclass(frozen=True)
class MrrChange:
    customer_id: str
    previous_mrr: Decimal
    new_mrr: Decimal
    plan_id: str | None
    billing_cycle: str | None
    status: str
    recorded_at: datetime


@dataclass(frozen=True)
class MrrSnapshot:
    id: str
    customer_id: str
    month: date
    mrr: Decimal
    status: str
    plan_id: str | None = None
    plan_name: str | None = None
    billing_cycle: str | None = None
    captured_at: datetime | None = None


@dataclass
class JobSummary:
    job_name: str
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    errors: list = field(default_factory=list)
    detail: dict = field(default_factory=dict)

    def record_error(self, item_id: str, exc: Exception):
        self.error_count += 1
        self.errors.append({"id": item_id, "error": str(exc)})

    def to_dict(self) -> dict:
        return {
            "job_name": self.job_name,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
            "errors": list(self.errors),
            **self.detail,
        }
