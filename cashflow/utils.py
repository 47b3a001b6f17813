from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation
from dateutil import tz

ZERO = Decimal("0")

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def now_utc_iso() -> str:
    return now_utc().isoformat()

def local_today(local_tz: str, now: datetime | None = None) -> date:
    now = now or now_utc()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz.gettz(local_tz)).date()

def local_midnight_utc(day: date, local_tz: str) -> datetime:
    """Start of `day` in local_tz as a UTC instant."""
    local = datetime(day.year, day.month, day.day, tzinfo=tz.gettz(local_tz))
    return local.astimezone(timezone.utc)

def to_local_day(value, local_tz: str) -> date | None:
    """Calendar day of a date, datetime or ISO string; aware datetimes are shifted into local_tz first."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if len(text) == 10:
            return date.fromisoformat(text)
        value = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz.gettz(local_tz))
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"cannot read a calendar day from {type(value).__name__}")

def parse_iso(value: str | None) -> datetime | date | None:
    if not value:
        return None
    text = str(value).strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return datetime.fromisoformat(text.replace("Z", "+00:00"))

def iso_or_none(value) -> str | None:
    if value is None:
        return None
    return value.isoformat()

def to_decimal(value, default: Decimal | None = ZERO) -> Decimal | None:
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats keep their printed value, not their binary expansion
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default

def decimal_text(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(value, "f")

