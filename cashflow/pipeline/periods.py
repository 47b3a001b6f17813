from __future__ import annotations

from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from ..errors import ValidationError
from ..models import PeriodBucket

PERIOD_TYPES = ("weekly", "monthly", "quarterly")


def validate_period_type(period_type: str) -> str:
    normalized = (period_type or "").strip().lower()
    if normalized not in PERIOD_TYPES:
        raise ValidationError(f"period_type must be one of {'|'.join(PERIOD_TYPES)}, got {period_type!r}")
    return normalized


def period_bounds(period_type: str, on: date):
    """First day of the period containing `on` and first day of the following period."""
    if period_type == "weekly":
        # ISO weeks start on Monday
        start = on - timedelta(days=on.weekday())
        end = start + timedelta(days=7)
    elif period_type == "monthly":
        start = on.replace(day=1)
        end = start + relativedelta(months=1)
    elif period_type == "quarterly":
        start = date(on.year, 1 + ((on.month - 1) // 3) * 3, 1)
        end = start + relativedelta(months=3)
    else:
        raise ValidationError(f"unknown period_type {period_type}")
    return start, end


def period_key(period_type: str, on: date) -> str:
    if period_type == "weekly":
        iso = on.isocalendar()
        return f"{iso[0]}-W{iso[1]:02d}"
    if period_type == "monthly":
        return f"{on.year}-{on.month:02d}"
    if period_type == "quarterly":
        return f"{on.year}-Q{(on.month - 1) // 3 + 1}"
    return on.isoformat()


def period_label(period_type: str, start: date) -> str:
    if period_type == "weekly":
        iso = start.isocalendar()
        return f"Week {iso[1]} {iso[0]}"
    if period_type == "monthly":
        return start.strftime("%b %Y")
    if period_type == "quarterly":
        return f"Q{(start.month - 1) // 3 + 1} {start.year}"
    return start.isoformat()


def generate_periods(start: date, end: date, period_type: str = "monthly") -> list[PeriodBucket]:
    """Every calendar period overlapping the inclusive day range [start, end], zero-filled, oldest first."""
    period_type = validate_period_type(period_type)
    if start > end:
        raise ValidationError(f"start_date {start} is after end_date {end}")
    buckets = []
    current, _ = period_bounds(period_type, start)
    while current <= end:
        period_start, period_end = period_bounds(period_type, current)
        buckets.append(
            PeriodBucket(
                key=period_key(period_type, period_start),
                label=period_label(period_type, period_start),
                period_type=period_type,
                start=period_start,
                end=period_end,
            )
        )
        current = period_end
    return buckets


def month_bounds(year: int, month: int):
    if not isinstance(year, int) or not 1 <= year <= 9999:
        raise ValidationError(f"year must be a calendar year, got {year!r}")
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise ValidationError(f"month must be 1..12, got {month!r}")
    return period_bounds("monthly", date(year, month, 1))


def previous_month(on: date) -> date:
    return on.replace(day=1) - relativedelta(months=1)
