"""Time-bucketing layer.

Produces the SQL expression that assigns each event to a bucket, the time
window predicate, and the bucket skeleton the densifier fills. The SQL label
and the skeleton lookup key are the same YYYY-MM-DD string of the bucket's
local start date, so rows match skeleton entries by string equality.
"""

from __future__ import annotations

from datetime import timedelta

from trendline._internal.date_utils import (
    bucket_label,
    iter_bucket_starts,
    to_utc_naive,
)
from trendline._internal.query.fragments import EVENT_ALIAS, ParamBinder
from trendline._literal_types import TimeUnit
from trendline.types import BucketHeader, BucketSkeleton, ResolvedTimeRange

BUCKET_FORMAT = "%Y-%m-%d"

_TRUNCATION: dict[str, str] = {"day": "day", "week": "week", "month": "month"}


def local_time_expr(timezone: str, binder: ParamBinder) -> str:
    """Event time as local wall-clock time in the request timezone.

    event_time is stored as naive UTC; it is first marked as UTC, then
    converted to the target zone.
    """
    tz = binder.bind_named("tz", timezone, "VARCHAR")
    return f"timezone({tz}, timezone('UTC', {EVENT_ALIAS}.event_time))"


def bucket_expr(unit: TimeUnit, timezone: str, binder: ParamBinder) -> str:
    """Bucket label for each event: local start of its day, week or month.

    Weeks start on Monday.

    Raises:
        ValueError: If the unit is not day, week or month.
    """
    if unit not in _TRUNCATION:
        raise ValueError(f"Invalid time unit: {unit!r}")
    local = local_time_expr(timezone, binder)
    return f"strftime(date_trunc('{_TRUNCATION[unit]}', {local}), '{BUCKET_FORMAT}')"


def time_window_predicate(time_range: ResolvedTimeRange, binder: ParamBinder) -> str:
    """Half-open [start, end) predicate on the stored UTC event time."""
    start = binder.bind_named("from_ts", to_utc_naive(time_range.start), "TIMESTAMP")
    end = binder.bind_named("to_ts", to_utc_naive(time_range.end), "TIMESTAMP")
    return f"{EVENT_ALIAS}.event_time >= {start} AND {EVENT_ALIAS}.event_time < {end}"


def build_bucket_skeleton(
    time_range: ResolvedTimeRange, unit: TimeUnit
) -> BucketSkeleton:
    """Every bucket overlapping the window, in order, partial ends included.

    Example:
        ```python
        window = TimeRange.between("2024-01-03", "2024-01-16")
        build_bucket_skeleton(resolve_time_range(window, "UTC"), "week").lookups
        # ['2024-01-01', '2024-01-08', '2024-01-15']
        ```
    """
    first = time_range.start.date()
    last = (time_range.end - timedelta(microseconds=1)).date()
    headers = tuple(
        BucketHeader(label=bucket_label(start, unit), lookup=f"{start:{BUCKET_FORMAT}}")
        for start in iter_bucket_starts(first, last, unit)
    )
    return BucketSkeleton(unit=unit, headers=headers)
