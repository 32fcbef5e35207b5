from datetime import datetime, date, timedelta, timezone
from typing import Iterator
from zoneinfo import ZoneInfo


_MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_naive() -> datetime:
    """UTC now without tzinfo, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def today_for_tz(tz_name: str | None) -> date:
    """Return today's date in the given timezone."""
    if tz_name:
        try:
            return datetime.now(ZoneInfo(tz_name)).date()
        except Exception:
            pass
    return today_utc()


def start_of_day(d: date) -> datetime:
    """Naive UTC datetime at 00:00:00 of d."""
    return datetime(d.year, d.month, d.day)


def end_of_day(d: date) -> datetime:
    """Naive UTC datetime at 23:59:59.999999 of d."""
    return datetime(d.year, d.month, d.day, 23, 59, 59, 999999)


def start_of_week(d: date) -> date:
    """Return Monday of the week containing d."""
    return d - timedelta(days=d.weekday())


def end_of_week(d: date) -> date:
    """Return Sunday of the week containing d."""
    return start_of_week(d) + timedelta(days=6)


def week_label(d: date) -> str:
    """Short chart label, e.g. '12 Jan'."""
    return f"{d.day:02d} {_MONTH_ABBR[d.month - 1]}"


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def parse_iso_date(value: str | date | None, field: str = "date") -> date:
    """Accept a date or YYYY-MM-DD string; raise ValueError otherwise."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        raise ValueError(f"{field} is required")
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise ValueError(f"{field} must be YYYY-MM-DD") from None
