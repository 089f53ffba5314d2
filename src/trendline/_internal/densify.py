"""Result densifier.

Turns the sparse rows the store returns into dense series: every bucket of
the skeleton is present in every series, zero when the store had no row
for it. Each series starts from its own copy of the skeleton defaults.
"""

from __future__ import annotations

import logging
import math
import uuid
from decimal import Decimal
from typing import Any

from trendline.types import BucketSkeleton, Metric, ResultSeries, SQLResult

_logger = logging.getLogger(__name__)


def round_half_up(value: float, digits: int = 1) -> float:
    """Round to `digits` decimals with ties rounding up (1.25 -> 1.3)."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def _as_number(value: Any) -> int | float:
    if value is None:
        return 0
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, int | float):
        return value
    return float(value)


def _fill(
    skeleton: BucketSkeleton, pairs: Any, series_label: str | None
) -> dict[str, int | float]:
    data = skeleton.defaults()
    for bucket, value in pairs:
        if bucket not in data:
            _logger.debug(
                "Dropping value for bucket %r outside the window (series %r)",
                bucket,
                series_label,
            )
            continue
        data[bucket] = _as_number(value)
    return data


def densify_series(
    result: SQLResult,
    skeleton: BucketSkeleton,
    metric: Metric,
) -> tuple[ResultSeries, ...]:
    """Densify (bucket, count) rows into exactly one series.

    Returns:
        One-element tuple, or an empty tuple when there are no rows.

    Example:
        ```python
        # skeleton D1..D3, rows [("D2", 5)]
        densify_series(rows, skeleton, metric)[0].data   # {D1: 0, D2: 5, D3: 0}
        # average = round_half_up(5 / 3) = 1.7
        ```
    """
    if not result.rows:
        return ()

    rows = result.to_dicts()
    data = _fill(skeleton, ((r["bucket"], r["count"]) for r in rows), None)
    buckets = len(skeleton)
    average = round_half_up(sum(data.values()) / buckets) if buckets else 0.0
    return (
        ResultSeries(
            id=str(uuid.uuid4()),
            event_label=metric.event_label,
            measurement=metric.measurement,
            unit=skeleton.unit,
            breakdown=None,
            average=average,
            data=data,
        ),
    )


def densify_breakdowns(
    result: SQLResult,
    skeleton: BucketSkeleton,
    metric: Metric,
) -> tuple[ResultSeries, ...]:
    """Densify one row per breakdown group into one series per group.

    Group order and averages are taken from the store as-is (already ranked
    by average_count and capped).
    """
    series: list[ResultSeries] = []
    for row in result.to_dicts():
        group = str(row["breakdown"])
        data = _fill(skeleton, zip(row["buckets"], row["counts"], strict=True), group)
        average = row["average_count"]
        series.append(
            ResultSeries(
                id=str(uuid.uuid4()),
                event_label=metric.event_label,
                measurement=metric.measurement,
                unit=skeleton.unit,
                breakdown=group,
                average=float(average) if average is not None else 0.0,
                data=data,
            )
        )
    return tuple(series)
