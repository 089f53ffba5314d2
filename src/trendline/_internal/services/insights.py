"""Insight Service: compile, execute and densify metric queries.

Stateless per request. The time range is resolved once, the statement is
compiled against the sampled property schema, executed on the injected
store, and the rows are shaped into dense series. A request either returns
a complete result or raises; it never returns partial series.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from trendline._internal.date_utils import resolve_time_range
from trendline._internal.densify import densify_breakdowns, densify_series
from trendline._internal.query import CompiledQuery, MetricQuery, compile_metric_query
from trendline._internal.services.schema import SchemaService
from trendline._internal.storage import EventStore
from trendline._literal_types import TimeUnit
from trendline.types import (
    Breakdown,
    FilterClause,
    InsightResult,
    Metric,
    TimeRange,
)

_logger = logging.getLogger(__name__)


class InsightService:
    """Metric queries for one project.

    Example:
        ```python
        schema = SchemaService(storage, "proj-1")
        service = InsightService(storage, schema, "proj-1")
        result = service.query(
            UniqueUsers("Signup"),
            time_range=TimeRange("7d"),
            unit="day",
            timezone="Europe/Berlin",
        )
        for series in result.series:
            print(series.breakdown, series.average, series.data)
        ```
    """

    def __init__(
        self,
        storage: EventStore,
        schema: SchemaService,
        project_id: str,
        *,
        query_timeout: float | None = None,
    ) -> None:
        """Initialize insight service.

        Args:
            storage: Store that executes the compiled statements.
            schema: Schema service for the same project.
            project_id: Tenant every statement is scoped to.
            query_timeout: Seconds before a statement is interrupted.
        """
        self._storage = storage
        self._schema = schema
        self._project_id = project_id
        self._query_timeout = query_timeout

    def compile(
        self,
        metric: Metric,
        *,
        time_range: TimeRange | None = None,
        unit: TimeUnit = "day",
        timezone: str = "UTC",
        filters: Sequence[FilterClause] = (),
        breakdown: Breakdown | None = None,
        now: datetime | None = None,
    ) -> CompiledQuery:
        """Compile a metric request without executing it.

        Raises:
            ValueError: If the timezone is unknown or a filter value cannot be
                coerced to its data type.
        """
        resolved = resolve_time_range(time_range or TimeRange(), timezone, now)
        query = MetricQuery(
            project_id=self._project_id,
            metric=metric,
            time_range=resolved,
            unit=unit,
            filters=tuple(filters),
            breakdown=breakdown or Breakdown(),
        )
        return compile_metric_query(query, self._schema.property_schema())

    def query(
        self,
        metric: Metric,
        *,
        time_range: TimeRange | None = None,
        unit: TimeUnit = "day",
        timezone: str = "UTC",
        filters: Sequence[FilterClause] = (),
        breakdown: Breakdown | None = None,
        now: datetime | None = None,
    ) -> InsightResult:
        """Run a metric request and return dense series.

        Args:
            metric: Metric definition.
            time_range: Window to cover (default: last 30 days).
            unit: Bucket granularity.
            timezone: IANA timezone for bucket boundaries.
            filters: Global filters, AND-ed with the metric's own.
            breakdown: Properties to group by (None = no breakdown).
            now: Reference instant for relative ranges (default: current time).

        Returns:
            InsightResult; its series is empty when no rows matched.

        Raises:
            QueryTimeoutError: If the store timed out.
            QueryError: If the store rejected the statement.
            ValueError: If the request itself is invalid.
        """
        compiled = self.compile(
            metric,
            time_range=time_range,
            unit=unit,
            timezone=timezone,
            filters=filters,
            breakdown=breakdown,
            now=now,
        )
        result = self._storage.execute_rows_params(
            compiled.sql, compiled.params, timeout=self._query_timeout
        )
        _logger.info(
            "%s query for %s returned %d rows over %d buckets",
            metric.measurement,
            metric.event_label,
            len(result),
            compiled.bucket_count,
        )

        if compiled.has_breakdown:
            series = densify_breakdowns(result, compiled.skeleton, metric)
        else:
            series = densify_series(result, compiled.skeleton, metric)

        return InsightResult(
            project_id=self._project_id,
            unit=unit,
            timezone=timezone,
            from_date=compiled.time_range.from_date,
            to_date=compiled.time_range.to_date,
            headers=compiled.skeleton.headers,
            series=series,
        )
