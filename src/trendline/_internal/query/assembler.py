"""Query assembler.

Composes the predicate, aggregation and time-bucket fragments into one
parameterized statement. The statement has up to three layers:

1. base: one row per bucket (per user for frequency metrics, per group when
   broken down) with the aggregate aliased "count";
2. frequency wrap: re-aggregates the per-user counts per bucket;
3. breakdown wrap: one row per group with its average and ordered
   (bucket, count) lists, ranked by average and capped at
   MAX_BREAKDOWN_GROUPS.

Every layer that reads a table is scoped to the project id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from trendline._internal.query.aggregation import plan_aggregation
from trendline._internal.query.fragments import ParamBinder
from trendline._internal.query.predicates import (
    MATCH_ALL,
    PropertySchema,
    build_breakdown,
    build_filter_predicate,
)
from trendline._internal.query.time_buckets import (
    bucket_expr,
    build_bucket_skeleton,
    time_window_predicate,
)
from trendline._internal.storage import EVENTS_TABLE, PEOPLE_TABLE
from trendline._literal_types import TimeUnit
from trendline.types import (
    Breakdown,
    BucketSkeleton,
    FilterClause,
    Metric,
    ResolvedTimeRange,
)

_logger = logging.getLogger(__name__)

MAX_BREAKDOWN_GROUPS = 500

PEOPLE_JOIN = (
    f"LEFT JOIN {PEOPLE_TABLE} AS p "
    "ON p.project_id = e.project_id AND p.distinct_id = e.distinct_id"
)


@dataclass(frozen=True)
class MetricQuery:
    """Everything needed to compile one metric request."""

    project_id: str
    metric: Metric
    time_range: ResolvedTimeRange
    unit: TimeUnit = "day"
    filters: tuple[FilterClause, ...] = ()
    """Global filters, AND-ed with the metric's own filters."""
    breakdown: Breakdown = field(default_factory=Breakdown)


@dataclass(frozen=True)
class CompiledQuery:
    """SQL text, its bound parameters, and the window and buckets it covers."""

    sql: str
    params: dict[str, Any]
    time_range: ResolvedTimeRange
    skeleton: BucketSkeleton
    has_breakdown: bool

    @property
    def bucket_count(self) -> int:
        """Number of buckets in the window."""
        return len(self.skeleton)


def compile_metric_query(query: MetricQuery, schema: PropertySchema) -> CompiledQuery:
    """Compile a metric request into one parameterized DuckDB statement.

    Result columns are (bucket, count) without a breakdown, or
    (breakdown, average_count, buckets, counts) with one.

    Args:
        query: The metric request.
        schema: Sampled property schema for resolving property references.

    Returns:
        CompiledQuery ready for StorageEngine.execute_rows_params().

    Raises:
        ValueError: If a filter value cannot be coerced to its data type.
        TypeError: If the metric type is not supported.

    Example:
        ```python
        compiled = compile_metric_query(
            MetricQuery(project_id="proj-1", metric=UniqueUsers("Signup"),
                        time_range=resolved, unit="week"),
            PropertySchema(definitions),
        )
        storage.execute_rows_params(compiled.sql, compiled.params)
        ```
    """
    binder = ParamBinder()
    skeleton = build_bucket_skeleton(query.time_range, query.unit)
    metric = query.metric

    project = binder.bind_named("project_id", query.project_id, "VARCHAR")
    bucket = bucket_expr(query.unit, query.time_range.timezone, binder)
    plan = plan_aggregation(metric, binder)
    filters = build_filter_predicate(
        (*query.filters, *metric.filters), schema, binder
    )
    breakdown = build_breakdown(query.breakdown, schema, binder, project)

    where = [
        f"e.project_id = {project}",
        time_window_predicate(query.time_range, binder),
    ]
    if not metric.is_wildcard:
        event = binder.bind_named("event", metric.event, "VARCHAR")
        where.append(f"e.event_name = {event}")
    if filters.sql != MATCH_ALL:
        where.append(filters.sql)
    if breakdown is not None and breakdown.guard_sql != MATCH_ALL:
        where.append(breakdown.guard_sql)

    needs_people_join = (
        plan.needs_people_join
        or filters.needs_people_join
        or (breakdown is not None and breakdown.needs_people_join)
    )

    select = [f"{bucket} AS bucket", f'{plan.value_sql} AS "count"']
    group_by = ["bucket"]
    if plan.per_user:
        group_by.append("e.distinct_id")
    ranked = False
    if breakdown is not None:
        select.append(f"{breakdown.select_sql} AS breakdown")
        group_by.append("breakdown")
        if breakdown.rank_sql is not None:
            ranked = True
            select.append(f"min({breakdown.rank_sql}) AS breakdown_rank")

    lines = [
        "SELECT " + ", ".join(select),
        f"FROM {EVENTS_TABLE} AS e",
    ]
    if breakdown is not None and breakdown.range_join_sql is not None:
        lines.append(breakdown.range_join_sql)
    if needs_people_join:
        lines.append(PEOPLE_JOIN)
    lines.append("WHERE " + "\n  AND ".join(where))
    lines.append("GROUP BY " + ", ".join(group_by))
    lines.append("ORDER BY bucket ASC")
    sql = "\n".join(lines)

    if plan.outer_sql is not None:
        sql = _wrap_per_user(
            sql, plan.outer_sql, has_breakdown=breakdown is not None, ranked=ranked
        )
    if breakdown is not None:
        bucket_count = binder.bind_named("bucket_count", len(skeleton), "DOUBLE")
        sql = _wrap_breakdown(sql, bucket_count, ranked=ranked)

    params = binder.params
    _logger.debug("Compiled %s query:\n%s\nparams=%r", metric.measurement, sql, params)
    return CompiledQuery(
        sql=sql,
        params=params,
        time_range=query.time_range,
        skeleton=skeleton,
        has_breakdown=breakdown is not None,
    )


def _wrap_per_user(
    inner: str, outer_sql: str, *, has_breakdown: bool, ranked: bool = False
) -> str:
    """Re-aggregate per-user counts into one value per bucket (and group)."""
    breakdown_select = ", x.breakdown AS breakdown" if has_breakdown else ""
    if ranked:
        breakdown_select += ", min(x.breakdown_rank) AS breakdown_rank"
    breakdown_group = ", x.breakdown" if has_breakdown else ""
    return (
        f'SELECT x.bucket AS bucket, {outer_sql} AS "count"{breakdown_select}\n'
        f"FROM (\n{inner}\n) AS x\n"
        f"GROUP BY x.bucket{breakdown_group}\n"
        "ORDER BY bucket ASC"
    )


def _wrap_breakdown(inner: str, bucket_count: str, *, ranked: bool = False) -> str:
    """One row per group, ranked by average per bucket and capped.

    Ties go to the lower range first for range breakdowns, then to the
    label.
    """
    tie_break = "min(g.breakdown_rank) ASC NULLS LAST, " if ranked else ""
    return (
        "SELECT g.breakdown AS breakdown,\n"
        f'  round(sum(g."count") / {bucket_count}, 1) AS average_count,\n'
        "  list(g.bucket ORDER BY g.bucket) AS buckets,\n"
        '  list(g."count" ORDER BY g.bucket) AS counts\n'
        f"FROM (\n{inner}\n) AS g\n"
        "GROUP BY g.breakdown\n"
        f"ORDER BY average_count DESC, {tie_break}breakdown ASC\n"
        f"LIMIT {MAX_BREAKDOWN_GROUPS}"
    )
