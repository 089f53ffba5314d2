"""Date utilities for query windows and calendar buckets.

Resolves relative time ranges ("7d", "3m", ...) to concrete local intervals
and provides the calendar arithmetic the bucket skeleton is built from.
Weeks start on Monday (ISO), matching DuckDB's date_trunc('week', ...).
"""

from __future__ import annotations

import calendar
from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from trendline._literal_types import TimeUnit
from trendline.types import ResolvedTimeRange, TimeRange

_RELATIVE_DAYS = {"today": 1, "7d": 7, "30d": 30}
_RELATIVE_MONTHS = {"3m": 3, "6m": 6, "12m": 12, "24m": 24}


def load_zone(name: str) -> ZoneInfo:
    """Look up an IANA timezone.

    Raises:
        ValueError: If the name is not a known timezone.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name!r}") from e


def add_months(d: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the target month.

    Example:
        ```python
        add_months(date(2024, 3, 31), -1)  # date(2024, 2, 29)
        ```
    """
    month_index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def truncate(d: date, unit: TimeUnit) -> date:
    """Start of the bucket containing `d`."""
    if unit == "day":
        return d
    if unit == "week":
        return d - timedelta(days=d.weekday())
    if unit == "month":
        return d.replace(day=1)
    raise ValueError(f"Invalid time unit: {unit!r}")


def next_bucket(d: date, unit: TimeUnit) -> date:
    """Start of the bucket after the one starting at `d`."""
    if unit == "day":
        return d + timedelta(days=1)
    if unit == "week":
        return d + timedelta(days=7)
    if unit == "month":
        return add_months(d, 1)
    raise ValueError(f"Invalid time unit: {unit!r}")


def iter_bucket_starts(first: date, last: date, unit: TimeUnit) -> Iterator[date]:
    """Yield the start of every bucket overlapping [first, last]."""
    current = truncate(first, unit)
    while current <= last:
        yield current
        current = next_bucket(current, unit)


def bucket_label(start: date, unit: TimeUnit) -> str:
    """Display label for a bucket: 'Jan 5' for days and weeks, 'Jan 2024' for months."""
    if unit == "month":
        return f"{start:%b} {start.year}"
    return f"{start:%b} {start.day}"


def resolve_time_range(
    time_range: TimeRange,
    timezone: str,
    now: datetime | None = None,
) -> ResolvedTimeRange:
    """Resolve a time range to a concrete [start, end) local interval.

    Relative ranges end at the close of "today" in the given timezone and
    include today: "7d" covers today and the six days before it; "3m"
    starts on the same day of the month three months earlier.

    Args:
        time_range: Range to resolve.
        timezone: IANA timezone name.
        now: Reference instant (defaults to the current time).

    Returns:
        ResolvedTimeRange with timezone-aware local bounds.

    Raises:
        ValueError: If the timezone is unknown.

    Example:
        ```python
        resolve_time_range(TimeRange.between("2024-01-01", "2024-01-03"), "UTC")
        # start=2024-01-01 00:00+00:00, end=2024-01-04 00:00+00:00
        ```
    """
    zone = load_zone(timezone)
    reference = now if now is not None else datetime.now(UTC)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=UTC)
    today = reference.astimezone(zone).date()

    if time_range.type == "custom":
        # validated by TimeRange
        first = date.fromisoformat(time_range.from_date or "")
        last = date.fromisoformat(time_range.to_date or "")
    elif time_range.type in _RELATIVE_DAYS:
        last = today
        first = today - timedelta(days=_RELATIVE_DAYS[time_range.type] - 1)
    else:
        last = today
        first = add_months(today, -_RELATIVE_MONTHS[time_range.type])

    return ResolvedTimeRange(
        start=datetime.combine(first, time.min, tzinfo=zone),
        end=datetime.combine(last + timedelta(days=1), time.min, tzinfo=zone),
        timezone=timezone,
    )


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC, the stored event_time form."""
    return value.astimezone(UTC).replace(tzinfo=None)
