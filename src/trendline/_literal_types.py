"""Shared Literal type aliases for parameter validation.

These types are exported from the public API and can be used by
library consumers for their own type hints.

Example:
    from trendline import TimeUnit, Workspace, UniqueUsers

    def weekly(ws: Workspace, unit: TimeUnit = "week") -> None:
        result = ws.insight(UniqueUsers(event="Signup"), unit=unit)
"""

from __future__ import annotations

from typing import Literal

# Granularity of time buckets
TimeUnit = Literal["day", "week", "month"]

# Logical type of a property value, as sampled from stored events/profiles
DataType = Literal["string", "number", "date", "boolean", "array", "other"]

# Where a property lives: on the event row or on the user profile
PropOrigin = Literal["event", "user"]

# Aggregation applied to per-user frequencies and numeric properties
AggFunction = Literal["avg", "median", "sum", "min", "max", "sum_divide_100"]

# Measurement kinds, one per metric variant
Measurement = Literal[
    "event_count", "unique_users", "frequency_per_user", "aggregated_property"
]

# Relative ranges are anchored at "now" in the request timezone
TimeRangeType = Literal["today", "7d", "30d", "3m", "6m", "12m", "24m", "custom"]

# Chart suggestions produced by the text-to-chart translator
ChartType = Literal["line", "bar", "donut", "funnel", "retention"]
ReportType = Literal["insight", "funnel", "retention"]

__all__ = [
    "AggFunction",
    "ChartType",
    "DataType",
    "Measurement",
    "PropOrigin",
    "ReportType",
    "TimeRangeType",
    "TimeUnit",
]
