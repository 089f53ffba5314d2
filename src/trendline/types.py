"""Request and result types for trendline operations.

Request types (metrics, filters, breakdowns, time ranges) describe WHAT to
measure. Result types carry densified series back to the caller.

All types are immutable frozen dataclasses. Result types additionally offer:
- Lazy DataFrame conversion via the `df` property (computed once, then cached)
- JSON serialization via the `to_dict()` method (all values JSON-serializable)

Immutability: a request value can be shared between concurrent queries, and a
result can be handed to several consumers without defensive copies. If you
need a modified value, create a new instance.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, ClassVar, Literal, get_args

import pandas as pd

from trendline._literal_types import (
    AggFunction,
    ChartType,
    DataType,
    Measurement,
    PropOrigin,
    ReportType,
    TimeRangeType,
    TimeUnit,
)

ANY_EVENT = "$*"
"""Event selector sentinel matching every event (the wildcard)."""

ANY_EVENT_LABEL = "All events"
"""Series label used when a metric counts every event."""

OPERATORS: dict[DataType, tuple[str, ...]] = {
    "string": ("is", "is_not", "contains", "not_contains", "is_set", "is_not_set"),
    "number": (
        "equals",
        "not_equal",
        "gt",
        "gte",
        "lt",
        "lte",
        "between",
        "is_set",
        "is_not_set",
    ),
    "date": ("on", "not_on", "before", "after", "between", "is_set", "is_not_set"),
    "boolean": ("is",),
    "array": ("contains", "not_contains", "is_set", "is_not_set"),
    "other": ("is_set", "is_not_set"),
}
"""Operators accepted for each property data type."""

DEFAULT_OPERATORS: dict[DataType, str] = {
    "string": "is",
    "number": "equals",
    "date": "on",
    "boolean": "is",
    "array": "contains",
    "other": "is_set",
}
"""Operator applied when a filter clause names none."""

_VALUELESS_OPERATORS = frozenset({"is_set", "is_not_set"})

LIST_OPERATORS = frozenset({"is", "is_not", "equals", "not_equal", "between"})
"""Operators that take a list of values (any-of, or a between pair)."""

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ONE_MICROSECOND = timedelta(microseconds=1)


# =============================================================================
# Property references and filters
# =============================================================================


@dataclass(frozen=True)
class PropertyRef:
    """A property key plus where it lives (event row or user profile)."""

    name: str
    """Property key as stored in the properties JSON."""

    origin: PropOrigin = "event"
    """'event' for event properties, 'user' for profile properties."""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Property name cannot be empty")
        if self.origin not in get_args(PropOrigin):
            raise ValueError(
                f"Property origin must be 'event' or 'user'. Got: {self.origin!r}"
            )

    @classmethod
    def parse(cls, text: str) -> PropertyRef:
        """Parse 'key' or 'user.key' shorthand.

        Example:
            ```python
            PropertyRef.parse("user.plan")   # PropertyRef("plan", "user")
            PropertyRef.parse("$browser")    # PropertyRef("$browser", "event")
            ```
        """
        if text.startswith("user."):
            return cls(name=text[len("user.") :], origin="user")
        if text.startswith("event."):
            return cls(name=text[len("event.") :], origin="event")
        return cls(name=text)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {"name": self.name, "origin": self.origin}


@dataclass(frozen=True)
class FilterClause:
    """One predicate on a property value.

    The operator must belong to the data type's operator set; when omitted
    the type's default operator is used (a boolean clause also defaults its
    value to True). List values are stored as tuples.

    Example:
        ```python
        FilterClause(PropertyRef("country"), "string", "is", ["US", "CA"])
        FilterClause(PropertyRef("plan", "user"), "string", "is_set")
        FilterClause(PropertyRef("amount"), "number", "between", [10, 20])
        ```
    """

    prop: PropertyRef
    """Property the clause tests."""

    data_type: DataType = "string"
    """Logical type used to pick the comparison."""

    operator: str | None = None
    """Comparison operator; None means the type's default."""

    value: Any = None
    """Comparison operand; unused by is_set / is_not_set."""

    def __post_init__(self) -> None:
        if self.data_type not in OPERATORS:
            valid = ", ".join(OPERATORS)
            raise ValueError(
                f"Invalid data type {self.data_type!r}. Must be one of: {valid}"
            )
        if self.operator is None:
            object.__setattr__(self, "operator", DEFAULT_OPERATORS[self.data_type])
        if self.operator not in OPERATORS[self.data_type]:
            valid = ", ".join(OPERATORS[self.data_type])
            raise ValueError(
                f"Operator {self.operator!r} is not valid for {self.data_type} "
                f"properties. Valid operators: {valid}"
            )

        if isinstance(self.value, list):
            object.__setattr__(self, "value", tuple(self.value))
        if self.data_type == "boolean" and self.value is None:
            object.__setattr__(self, "value", True)

        if self.operator in _VALUELESS_OPERATORS:
            return
        if self.value is None or self.value == ():
            raise ValueError(f"Operator {self.operator!r} requires a value")
        if isinstance(self.value, tuple) and (
            self.operator not in LIST_OPERATORS or self.data_type == "boolean"
        ):
            raise ValueError(
                f"Operator {self.operator!r} takes a single value, "
                f"got {list(self.value)!r}"
            )
        if self.operator == "between" and (
            not isinstance(self.value, tuple) or len(self.value) != 2
        ):
            raise ValueError("Operator 'between' requires a [low, high] pair")

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        value = self.value
        if isinstance(value, tuple):
            value = list(value)
        return {
            "prop": self.prop.to_dict(),
            "data_type": self.data_type,
            "operator": self.operator,
            "value": value,
        }


@dataclass(frozen=True)
class Breakdown:
    """Properties to split series by; empty means a single total series."""

    props: tuple[PropertyRef, ...] = ()
    """Breakdown properties in display order."""

    def __post_init__(self) -> None:
        if isinstance(self.props, list):
            object.__setattr__(self, "props", tuple(self.props))

    @property
    def is_empty(self) -> bool:
        """True when no breakdown property is set."""
        return not self.props

    @property
    def label(self) -> str | None:
        """Human-readable description of the breakdown, or None."""
        if not self.props:
            return None
        return " / ".join(
            f"user.{p.name}" if p.origin == "user" else p.name for p in self.props
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {"props": [p.to_dict() for p in self.props]}


# =============================================================================
# Metrics
# =============================================================================


class _MetricMixin:
    """Shared behaviour of the metric variants."""

    event: str
    filters: tuple[FilterClause, ...]
    measurement: ClassVar[Measurement]

    @property
    def event_label(self) -> str:
        """Display name of the counted event."""
        return ANY_EVENT_LABEL if self.event == ANY_EVENT else self.event

    @property
    def is_wildcard(self) -> bool:
        """True when the metric counts every event."""
        return self.event == ANY_EVENT

    def _check_filters(self) -> None:
        if isinstance(self.filters, list):
            object.__setattr__(self, "filters", tuple(self.filters))
        if not self.event:
            raise ValueError("Event name cannot be empty; use ANY_EVENT for all")

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        data: dict[str, Any] = {
            "measurement": self.measurement,
            "event": self.event,
            "filters": [f.to_dict() for f in self.filters],
        }
        agg = getattr(self, "agg", None)
        if agg is not None:
            data["agg"] = agg
        prop = getattr(self, "prop", None)
        if prop is not None:
            data["prop"] = prop.to_dict()
        return data


def _check_agg(agg: str) -> None:
    if agg not in get_args(AggFunction):
        valid = ", ".join(get_args(AggFunction))
        raise ValueError(f"Invalid aggregation {agg!r}. Must be one of: {valid}")


@dataclass(frozen=True)
class EventCount(_MetricMixin):
    """Total number of matching events per bucket."""

    event: str = ANY_EVENT
    filters: tuple[FilterClause, ...] = ()
    measurement: ClassVar[Measurement] = "event_count"

    def __post_init__(self) -> None:
        self._check_filters()


@dataclass(frozen=True)
class UniqueUsers(_MetricMixin):
    """Distinct users with at least one matching event per bucket."""

    event: str = ANY_EVENT
    filters: tuple[FilterClause, ...] = ()
    measurement: ClassVar[Measurement] = "unique_users"

    def __post_init__(self) -> None:
        self._check_filters()


@dataclass(frozen=True)
class FrequencyPerUser(_MetricMixin):
    """Per-user event counts, aggregated across users per bucket."""

    event: str = ANY_EVENT
    agg: AggFunction = "avg"
    filters: tuple[FilterClause, ...] = ()
    measurement: ClassVar[Measurement] = "frequency_per_user"

    def __post_init__(self) -> None:
        self._check_filters()
        _check_agg(self.agg)


@dataclass(frozen=True)
class AggregatedProperty(_MetricMixin):
    """A numeric property aggregated across matching events per bucket.

    `sum_divide_100` sums the property and divides by 100 (amounts stored
    in cents reported in whole units).
    """

    prop: PropertyRef
    event: str = ANY_EVENT
    agg: AggFunction = "avg"
    filters: tuple[FilterClause, ...] = ()
    measurement: ClassVar[Measurement] = "aggregated_property"

    def __post_init__(self) -> None:
        self._check_filters()
        _check_agg(self.agg)


Metric = EventCount | UniqueUsers | FrequencyPerUser | AggregatedProperty
"""Any of the four metric variants."""


def build_metric(
    measurement: Measurement,
    event: str = ANY_EVENT,
    *,
    prop: PropertyRef | None = None,
    agg: AggFunction | None = None,
    filters: Sequence[FilterClause] = (),
) -> Metric:
    """Construct the metric variant for a measurement kind.

    Args:
        measurement: Measurement kind.
        event: Event name or ANY_EVENT.
        prop: Numeric property (required for aggregated_property).
        agg: Aggregation (frequency_per_user and aggregated_property only).
        filters: Metric-level filters.

    Returns:
        The matching metric variant.

    Raises:
        ValueError: If the measurement is unknown or a required field is missing.
    """
    filter_tuple = tuple(filters)
    if measurement == "event_count":
        return EventCount(event=event, filters=filter_tuple)
    if measurement == "unique_users":
        return UniqueUsers(event=event, filters=filter_tuple)
    if measurement == "frequency_per_user":
        return FrequencyPerUser(event=event, agg=agg or "avg", filters=filter_tuple)
    if measurement == "aggregated_property":
        if prop is None:
            raise ValueError("aggregated_property metrics require a property")
        return AggregatedProperty(
            prop=prop, event=event, agg=agg or "avg", filters=filter_tuple
        )
    valid = ", ".join(get_args(Measurement))
    raise ValueError(f"Invalid measurement {measurement!r}. Must be one of: {valid}")


# =============================================================================
# Time
# =============================================================================


@dataclass(frozen=True)
class TimeRange:
    """A relative or absolute query window.

    Relative types are resolved against "now" in the request timezone.
    `custom` takes inclusive YYYY-MM-DD bounds.
    """

    type: TimeRangeType = "30d"
    from_date: str | None = None
    to_date: str | None = None

    def __post_init__(self) -> None:
        if self.type not in get_args(TimeRangeType):
            valid = ", ".join(get_args(TimeRangeType))
            raise ValueError(
                f"Invalid time range {self.type!r}. Must be one of: {valid}"
            )
        if self.type != "custom":
            return
        if self.from_date is None or self.to_date is None:
            raise ValueError("Custom time ranges require from_date and to_date")
        for name, value in (("from_date", self.from_date), ("to_date", self.to_date)):
            if not _DATE_PATTERN.match(value):
                raise ValueError(f"{name} must be YYYY-MM-DD format. Got: {value}")
            date.fromisoformat(value)
        if self.from_date > self.to_date:
            raise ValueError(
                f"from_date ({self.from_date}) must be <= to_date ({self.to_date})"
            )

    @classmethod
    def between(cls, from_date: str, to_date: str) -> TimeRange:
        """Absolute range with inclusive bounds."""
        return cls(type="custom", from_date=from_date, to_date=to_date)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {"type": self.type, "from_date": self.from_date, "to_date": self.to_date}


@dataclass(frozen=True)
class ResolvedTimeRange:
    """A concrete [start, end) interval in a request timezone."""

    start: datetime
    """Inclusive start (timezone-aware, local wall time)."""

    end: datetime
    """Exclusive end (timezone-aware, local wall time)."""

    timezone: str
    """IANA timezone name the bounds are expressed in."""

    @property
    def from_date(self) -> str:
        """First local date covered (YYYY-MM-DD)."""
        return self.start.date().isoformat()

    @property
    def to_date(self) -> str:
        """Last local date covered (YYYY-MM-DD)."""
        return (self.end - _ONE_MICROSECOND).date().isoformat()


@dataclass(frozen=True)
class BucketHeader:
    """One time bucket: its display label and the key rows are matched on."""

    label: str
    """Display label, e.g. 'Jan 5' or 'Jan 2024'."""

    lookup: str
    """Bucket start as YYYY-MM-DD; equals the store's bucket label."""

    def to_dict(self) -> dict[str, str]:
        """Serialize for JSON output."""
        return {"label": self.label, "lookup": self.lookup}


@dataclass(frozen=True)
class BucketSkeleton:
    """The complete, ordered set of buckets a request covers.

    Built once per request and shared read-only; every series starts from
    a fresh copy of `defaults()`.
    """

    unit: TimeUnit
    headers: tuple[BucketHeader, ...]

    @property
    def lookups(self) -> list[str]:
        """Bucket lookup keys in order."""
        return [h.lookup for h in self.headers]

    def defaults(self) -> dict[str, int | float]:
        """A new zero-filled mapping of every bucket lookup key."""
        return {h.lookup: 0 for h in self.headers}

    def __len__(self) -> int:
        return len(self.headers)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class SQLResult:
    """Result from a SQL query with column metadata.

    Attributes:
        columns: List of column names from the query.
        rows: List of row tuples containing the data.

    Example:
        ```python
        result = storage.execute_rows(
            "SELECT event_name, count(*) FROM events GROUP BY 1"
        )
        for row in result.to_dicts():
            print(row)
        ```
    """

    columns: list[str]
    """List of column names from the query."""

    rows: list[tuple[Any, ...]]
    """List of row tuples containing the data."""

    def to_dicts(self) -> list[dict[str, Any]]:
        """Convert rows to list of dicts with column names as keys."""
        return [dict(zip(self.columns, row, strict=True)) for row in self.rows]

    def to_dict(self) -> dict[str, Any]:
        """Serialize result for JSON output.

        Returns:
            Dictionary with columns, rows (as lists), and row_count.
        """
        return {
            "columns": self.columns,
            "rows": [list(row) for row in self.rows],
            "row_count": len(self.rows),
        }

    def __len__(self) -> int:
        """Return number of rows."""
        return len(self.rows)

    def __iter__(self) -> Iterator[tuple[Any, ...]]:
        """Iterate over rows."""
        return iter(self.rows)


@dataclass(frozen=True)
class ResultSeries:
    """One dense time series of a metric, optionally for one breakdown group."""

    id: str
    """Random identifier, fresh per response."""

    event_label: str
    """Display name of the counted event."""

    measurement: Measurement
    """Measurement kind that produced the values."""

    unit: TimeUnit
    """Bucket granularity."""

    breakdown: str | None
    """Breakdown group value (None when the request has no breakdown)."""

    average: float
    """Mean value per bucket, rounded to one decimal place."""

    data: dict[str, int | float] = field(default_factory=dict)
    """Value per bucket lookup key; every skeleton bucket is present."""

    @property
    def total(self) -> float:
        """Sum of the series values."""
        return float(sum(self.data.values()))

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "id": self.id,
            "event_label": self.event_label,
            "measurement": self.measurement,
            "unit": self.unit,
            "breakdown": self.breakdown,
            "average": self.average,
            "data": dict(self.data),
        }


@dataclass(frozen=True)
class InsightResult:
    """Densified time series for one metric request.

    `series` is empty when the store matched no rows. Without a breakdown it
    otherwise holds exactly one series; with a breakdown, one per group in
    descending order of average (at most 500).
    """

    project_id: str
    """Project the query was scoped to."""

    unit: TimeUnit
    """Bucket granularity."""

    timezone: str
    """Timezone the buckets are expressed in."""

    from_date: str
    """First local date covered (YYYY-MM-DD)."""

    to_date: str
    """Last local date covered (YYYY-MM-DD)."""

    headers: tuple[BucketHeader, ...] = ()
    """Ordered bucket headers shared by every series."""

    series: tuple[ResultSeries, ...] = ()
    """Result series."""

    _df_cache: pd.DataFrame | None = field(default=None, repr=False)

    @property
    def is_empty(self) -> bool:
        """True when the query matched no rows."""
        return not self.series

    @property
    def df(self) -> pd.DataFrame:
        """Long DataFrame: series_id, event, breakdown, date, value."""
        if self._df_cache is not None:
            return self._df_cache

        columns = ["series_id", "event", "breakdown", "date", "value"]
        rows: list[dict[str, Any]] = []
        for s in self.series:
            for lookup, value in s.data.items():
                rows.append(
                    {
                        "series_id": s.id,
                        "event": s.event_label,
                        "breakdown": s.breakdown,
                        "date": lookup,
                        "value": value,
                    }
                )

        result_df = pd.DataFrame(rows) if rows else pd.DataFrame(columns=columns)
        object.__setattr__(self, "_df_cache", result_df)
        return result_df

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "project_id": self.project_id,
            "unit": self.unit,
            "timezone": self.timezone,
            "from_date": self.from_date,
            "to_date": self.to_date,
            "headers": [h.to_dict() for h in self.headers],
            "series": [s.to_dict() for s in self.series],
        }

    def __len__(self) -> int:
        return len(self.series)


@dataclass(frozen=True)
class PropertyDefinition:
    """A sampled property: key, inferred type, and origin."""

    key: str
    type: DataType
    origin: PropOrigin

    @property
    def ref(self) -> PropertyRef:
        """Reference usable in filters and breakdowns."""
        return PropertyRef(name=self.key, origin=self.origin)

    def to_dict(self) -> dict[str, str]:
        """Serialize for JSON output."""
        return {"key": self.key, "type": self.type, "origin": self.origin}


@dataclass(frozen=True)
class EventChoice:
    """An event picked by the translator: display name and selector value."""

    name: str
    value: str

    def to_dict(self) -> dict[str, str]:
        """Serialize for JSON output."""
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True)
class ChartSuggestion:
    """Validated output of the text-to-chart translator."""

    chart_type: ChartType
    """Chart to draw."""

    report_type: ReportType
    """Report family the chart belongs to."""

    events: tuple[EventChoice, ...]
    """Chosen events, in order (funnel/retention: step or cohort order)."""

    measurement: Measurement = "unique_users"
    """Measurement kind for insight reports."""

    def metrics(self) -> list[Metric]:
        """Metric definitions for an insight report, one per chosen event.

        Funnel and retention suggestions describe steps, not metrics, and
        return an empty list.
        """
        if self.report_type != "insight":
            return []
        return [build_metric(self.measurement, e.value) for e in self.events]

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "chart_type": self.chart_type,
            "report_type": self.report_type,
            "events": [e.to_dict() for e in self.events],
            "measurement": self.measurement,
        }


@dataclass(frozen=True)
class LoadResult:
    """Summary of an ingestion run."""

    project_id: str
    kind: Literal["events", "people"]
    rows: int
    """Rows actually written (duplicates skipped)."""
    duration_seconds: float

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "project_id": self.project_id,
            "kind": self.kind,
            "rows": self.rows,
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class ProjectSummary:
    """Row counts and event time span stored for one project."""

    project_id: str
    event_count: int
    people_count: int
    event_names: int
    """Number of distinct event names."""
    first_event: datetime | None
    """Earliest event time (UTC), None when no events are stored."""
    last_event: datetime | None
    """Latest event time (UTC), None when no events are stored."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "project_id": self.project_id,
            "event_count": self.event_count,
            "people_count": self.people_count,
            "event_names": self.event_names,
            "first_event": self.first_event.isoformat() if self.first_event else None,
            "last_event": self.last_event.isoformat() if self.last_event else None,
        }


@dataclass(frozen=True)
class WorkspaceInfo:
    """Information about a Workspace instance."""

    path: Path | None
    """Database file path (None for in-memory workspaces)."""

    project_id: str
    """Project the workspace is scoped to."""

    project: str | None
    """Named project used (None if settings came from the environment)."""

    timezone: str
    """Default timezone for queries."""

    summary: ProjectSummary
    """Stored data summary."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "path": str(self.path) if self.path else None,
            "project_id": self.project_id,
            "project": self.project,
            "timezone": self.timezone,
            "summary": self.summary.to_dict(),
        }
