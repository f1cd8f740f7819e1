"""
Core utilities for ExpenseFlow backend.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timezone
from typing import Any, Optional

RANGE_PRESETS = ("month", "3m", "6m", "12m", "ytd", "custom")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime | date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamped_date(year: int, month: int, day: int) -> date:
    """Build a date, clamping ``day`` to the month's last day (31 -> Feb 28)."""
    return date(year, month, min(day, last_day_of_month(year, month)))


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    """Shift a (year, month) pair by ``count`` months."""
    index = year * 12 + (month - 1) + count
    return index // 12, index % 12 + 1


def month_bounds(value: date) -> tuple[date, date]:
    """Return the first and last day of the month containing ``value``."""
    return (
        date(value.year, value.month, 1),
        date(value.year, value.month, last_day_of_month(value.year, value.month)),
    )


def parse_month(value: Optional[str], today: Optional[date] = None) -> date:
    """Parse a ``YYYY-MM`` selector; invalid or missing input means the current month."""
    fallback = today or utc_now().date()
    if not value:
        return fallback.replace(day=1)
    try:
        parsed = datetime.strptime(value.strip(), "%Y-%m")
    except ValueError:
        return fallback.replace(day=1)
    return parsed.date().replace(day=1)


def resolve_range(
    preset: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """Resolve a range preset into concrete month-aligned start/end dates.

    Unknown presets fall back to the trailing six months.
    """
    today = today or utc_now().date()
    preset = preset or "6m"
    _, month_end = month_bounds(today)

    if preset == "custom" and start and end:
        return {"preset": preset, "start": start, "end": end}

    trailing = {"month": 0, "3m": 2, "6m": 5, "12m": 11}
    if preset in trailing:
        year, month = add_months(today.year, today.month, -trailing[preset])
        return {"preset": preset, "start": date(year, month, 1), "end": month_end}

    if preset == "ytd":
        return {"preset": preset, "start": date(today.year, 1, 1), "end": month_end}

    year, month = add_months(today.year, today.month, -5)
    return {"preset": "6m", "start": date(year, month, 1), "end": month_end}


def coerce_date(value: Any) -> Optional[date]:
    """Read a stored date that may be a ``date``, ``datetime`` or ISO string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
