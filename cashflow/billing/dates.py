"""Next-payment-date arithmetic for subscriptions."""
from __future__ import annotations

from datetime import datetime, timezone

import structlog
from dateutil.relativedelta import relativedelta

from ..config import settings
from ..models import JobSummary
from ..repositories.billing import CustomerRepository
from ..utils import local_today, now_utc, to_local_day

log = structlog.get_logger()

ANNUAL_CYCLES = ("annual", "yearly")


def billing_step(billing_cycle: str | None) -> relativedelta:
    if (billing_cycle or "").strip().lower() in ANNUAL_CYCLES:
        return relativedelta(years=1)
    # unknown cycles bill monthly
    return relativedelta(months=1)


def _clock_for(value, now: datetime):
    """`now` expressed in the same kind of value as `value` so the two compare."""
    if not isinstance(value, datetime):
        return local_today(settings.local_tz, now)
    if value.tzinfo is None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def calculate_next_payment_date(
    subscription_start,
    billing_cycle: str | None,
    current_next_payment_date=None,
    now: datetime | None = None,
):
    """First billing date strictly after `now`, keeping a current next date that is still ahead.

    Candidates are start + n periods, so a start on the 31st lands on each
    month's last day without drifting earlier in later months.
    """
    if subscription_start is None:
        return None
    now = now or now_utc()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if current_next_payment_date is not None:
        if current_next_payment_date > _clock_for(current_next_payment_date, now):
            return current_next_payment_date

    clock = _clock_for(subscription_start, now)
    step = billing_step(billing_cycle)
    months_per_step = step.years * 12 + step.months
    elapsed = (clock.year - subscription_start.year) * 12 + (clock.month - subscription_start.month)
    # jump close to the answer, then walk
    n = max(0, elapsed // months_per_step - 1)
    candidate = subscription_start + step * n
    while candidate <= clock:
        n += 1
        candidate = subscription_start + step * n
    return candidate


def days_until_payment(next_payment_date, now: datetime | None = None) -> int | None:
    if next_payment_date is None:
        return None
    today = local_today(settings.local_tz, now)
    return (to_local_day(next_payment_date, settings.local_tz) - today).days


def format_next_payment_date(next_payment_date, now: datetime | None = None) -> str:
    if next_payment_date is None:
        return "N/A"
    day = to_local_day(next_payment_date, settings.local_tz)
    formatted = f"{day.strftime('%b')} {day.day}, {day.year}"
    days = days_until_payment(next_payment_date, now)
    if days < 0:
        return f"{formatted} (Overdue)"
    if days == 0:
        return f"{formatted} (Today)"
    if days == 1:
        return f"{formatted} (Tomorrow)"
    if days <= 7:
        return f"{formatted} ({days} days)"
    return formatted


def update_all_next_payment_dates(customers: CustomerRepository, now: datetime | None = None) -> JobSummary:
    """Refresh next_payment_date for active/trial customers that have a subscription start."""
    summary = JobSummary(job_name="next_payment_dates")
    rows = customers.list_billable_with_start_date()
    for customer in rows:
        try:
            next_date = calculate_next_payment_date(
                customer.subscription_start_date,
                customer.billing_cycle,
                customer.next_payment_date,
                now=now,
            )
            if next_date is None or next_date == customer.next_payment_date:
                summary.skipped_count += 1
                continue
            customers.update_next_payment_date(customer.id, next_date)
            summary.success_count += 1
        except Exception as exc:
            summary.record_error(customer.id, exc)
            log.error("next_payment_date_failed", customer_id=customer.id, err=str(exc))
            continue
    summary.detail["total"] = len(rows)
    log.info(
        "next_payment_dates_updated",
        updated=summary.success_count,
        unchanged=summary.skipped_count,
        errors=summary.error_count,
        total=len(rows),
    )
    return summary
