from __future__ import annotations

import calendar
import datetime
from typing import Any, Iterator, Sequence

from policy_defaults import MONTH_NAMES, WEEKDAY_LABELS


def parse_date(value: Any) -> datetime.date:
    """Accept a date, a datetime (time-of-day dropped) or an ISO string."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        return datetime.date.fromisoformat(value.strip()[:10])
    raise TypeError(f"Cannot interpret {value!r} as a date.")


def days_between(start: Any, end: Any) -> int:
    return (parse_date(end) - parse_date(start)).days


def days_between_inclusive(start: Any, end: Any) -> int:
    return days_between(start, end) + 1


def iso_week_number(value: Any) -> int:
    return parse_date(value).isocalendar()[1]


def weekday_index(value: Any) -> int:
    """Monday is 1, Sunday is 7."""
    return parse_date(value).isoweekday()


def weekday_label(value: Any, labels: Sequence[str] = WEEKDAY_LABELS) -> str:
    return labels[parse_date(value).weekday()]


def is_weekend(value: Any) -> bool:
    return parse_date(value).weekday() >= 5


def is_saturday(value: Any) -> bool:
    return parse_date(value).weekday() == 5


def is_sunday(value: Any) -> bool:
    return parse_date(value).weekday() == 6


def days_in_month(month: int, year: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_name(month: int, names: Sequence[str] = MONTH_NAMES) -> str:
    if not isinstance(month, int) or month < 1 or month > len(names):
        return ""
    return names[month - 1]


def format_date(value: Any) -> str:
    return parse_date(value).strftime("%d/%m/%Y")


def iter_days(start: Any, end: Any) -> Iterator[datetime.date]:
    current = parse_date(start)
    last = parse_date(end)
    step = datetime.timedelta(days=1)
    while current <= last:
        yield current
        current += step


def month_days(month: int, year: int) -> list[datetime.date]:
    return [datetime.date(year, month, day) for day in range(1, days_in_month(month, year) + 1)]
