"""
Business-day arithmetic for SLA deadlines.

All inputs are reduced to UTC calendar dates before any counting. Naive
datetimes are taken to be UTC already. Saturday and Sunday are the only
non-business days; there is no holiday calendar.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

DateLike = date | datetime | str
Clock = Callable[[], datetime]

SATURDAY = 5


def utc_now() -> datetime:
    return datetime.now(UTC)


def is_business_day(day: date) -> bool:
    return day.weekday() < SATURDAY


def to_utc_date(value: DateLike) -> date:
    """Reduce a date, datetime or ISO string to its UTC calendar date."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text:
            try:
                return to_utc_date(datetime.fromisoformat(text))
            except ValueError:
                pass
    raise ValueError("Invalid start date.")


def parse_date(value: str) -> date:
    """Parse a payload date (``YYYY-MM-DD`` or an ISO datetime)."""
    try:
        return to_utc_date(value)
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}") from None


def add_business_days(start: DateLike, business_days: int) -> date:
    day = to_utc_date(start)
    added = 0
    while added < business_days:
        day += timedelta(days=1)
        if is_business_day(day):
            added += 1
    return day


def calculate_business_deadline(start: DateLike, business_days: int = 3) -> date:
    return add_business_days(start, business_days)


def business_days_between(start: DateLike, end: DateLike) -> int:
    """
    Signed number of business days stepped over going from start to end.

    The start day itself is not counted, the end day is.
    """
    current = to_utc_date(start)
    target = to_utc_date(end)
    direction = 1 if current <= target else -1
    step = timedelta(days=direction)
    count = 0
    while current != target:
        current += step
        if is_business_day(current):
            count += direction
    return count


def calendar_days_between(start: DateLike, end: DateLike) -> int:
    return max(0, (to_utc_date(end) - to_utc_date(start)).days)
