"""Aggregation strategy selection.

Each metric variant maps to one aggregation plan: the aggregate computed in
the base query (always aliased "count"), whether the base query is grouped
per user, and the aggregate the wrapping query applies over those per-user
values. `sum_divide_100` is applied exactly once, at the outermost aggregate.
Aggregated properties read a missing or non-numeric value as 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import singledispatch

from trendline._internal.query.fragments import (
    EVENT_ALIAS,
    ParamBinder,
    property_number,
)
from trendline._literal_types import AggFunction
from trendline.types import (
    AggregatedProperty,
    EventCount,
    FrequencyPerUser,
    Metric,
    UniqueUsers,
)

_AGG_SQL: dict[str, str] = {
    "avg": "avg",
    "median": "median",
    "sum": "sum",
    "min": "min",
    "max": "max",
    "sum_divide_100": "sum",
}


def aggregate(agg: AggFunction, expr: str) -> str:
    """Apply an aggregation function to an expression, scaling cents to units.

    Example:
        ```python
        aggregate("sum_divide_100", "x")   # 'sum(x) / 100'
        aggregate("median", "x")           # 'median(x)'
        ```
    """
    sql = f"{_AGG_SQL[agg]}({expr})"
    if agg == "sum_divide_100":
        return f"{sql} / 100"
    return sql


@dataclass(frozen=True)
class AggregationPlan:
    """How a metric's value is computed."""

    value_sql: str
    """Aggregate selected in the base query."""

    per_user: bool = False
    """Group the base query by user as well as by bucket."""

    outer_sql: str | None = None
    """Aggregate over x."count" applied by the wrapping query."""

    needs_people_join: bool = False
    """The value reads a user (profile) property."""


@singledispatch
def plan_aggregation(metric: Metric, binder: ParamBinder) -> AggregationPlan:
    """Select the aggregation plan for a metric variant.

    Raises:
        TypeError: If the metric type is not supported.
    """
    raise TypeError(f"Unsupported metric type: {type(metric).__name__}")


@plan_aggregation.register(EventCount)
def _event_count(metric: EventCount, binder: ParamBinder) -> AggregationPlan:
    return AggregationPlan(value_sql="CAST(count(*) AS INTEGER)")


@plan_aggregation.register(UniqueUsers)
def _unique_users(metric: UniqueUsers, binder: ParamBinder) -> AggregationPlan:
    return AggregationPlan(
        value_sql=f"CAST(count(DISTINCT {EVENT_ALIAS}.distinct_id) AS INTEGER)"
    )


@plan_aggregation.register(FrequencyPerUser)
def _frequency(metric: FrequencyPerUser, binder: ParamBinder) -> AggregationPlan:
    return AggregationPlan(
        value_sql="CAST(count(*) AS INTEGER)",
        per_user=True,
        outer_sql=aggregate(metric.agg, 'x."count"'),
    )


@plan_aggregation.register(AggregatedProperty)
def _aggregated_property(
    metric: AggregatedProperty, binder: ParamBinder
) -> AggregationPlan:
    value = f"coalesce({property_number(metric.prop, binder)}, 0)"
    return AggregationPlan(
        value_sql=aggregate(metric.agg, value),
        needs_people_join=metric.prop.origin == "user",
    )
