"""Shared builders for tests: an in-memory database and ledger rows."""
from datetime import datetime, timezone
from decimal import Decimal

from cashflow.db import get_conn, migrate
from cashflow.models import Customer, ExpenseRecord, FundingRecord, Plan, Project
from cashflow.repositories.billing import CustomerRepository, PlanRepository
from cashflow.repositories.ledger import ExpenseRepository, FundingRepository
from cashflow.repositories.projects import ProjectRepository

_counter = {"n": 0}


def _next_id(prefix: str) -> str:
    _counter["n"] += 1
    return f"{prefix}{_counter['n']}"


def memory_db():
    conn = get_conn(":memory:")
    migrate(conn)
    return conn


def add_project(conn, project_id="P1", status="active", created_at=None, completed_at=None, updated_at=None):
    return ProjectRepository(conn).save(
        Project(
            id=project_id,
            name=f"Project {project_id}",
            status=status,
            currency="NGN",
            created_at=created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
            updated_at=updated_at,
            completed_at=completed_at,
        )
    )


def add_funding(conn, project_id, amount, received_date, status="received", funding_type="client_payment", **kw):
    record = FundingRecord(
        id=kw.pop("id", None) or _next_id("F"),
        project_id=project_id,
        amount=Decimal(str(amount)),
        currency=kw.pop("currency", "NGN"),
        funding_type=funding_type,
        status=status,
        received_date=received_date,
        **kw,
    )
    return FundingRepository(conn).save(record)


def add_expense(conn, project_id, amount, paid_date=None, payment_status="paid", category="materials", **kw):
    record = ExpenseRecord(
        id=kw.pop("id", None) or _next_id("E"),
        project_id=project_id,
        amount=Decimal(str(amount)),
        currency=kw.pop("currency", "NGN"),
        category=category,
        status=kw.pop("status", "approved"),
        payment_status=payment_status,
        tax_amount=Decimal(str(kw.pop("tax_amount", "0"))),
        paid_date=paid_date,
        **kw,
    )
    return ExpenseRepository(conn).save(record)


def add_plan(conn, plan_id="basic", monthly="100", annual=None, features=None):
    plan = Plan(
        id=plan_id,
        name=plan_id.title(),
        monthly_price=Decimal(monthly),
        annual_price=Decimal(annual) if annual is not None else None,
    )
    return PlanRepository(conn).save(plan, features=features)


def add_customer(conn, customer_id="C1", plan_id="basic", status="active", billing_cycle="monthly", mrr="0", **kw):
    return CustomerRepository(conn).save(
        Customer(
            id=customer_id,
            company=f"Company {customer_id}",
            status=status,
            plan_id=plan_id,
            billing_cycle=billing_cycle,
            mrr=Decimal(mrr),
            **kw,
        )
    )
