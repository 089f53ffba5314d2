"""Metric query compiler: predicates, aggregation, time buckets and assembly."""

from trendline._internal.query.assembler import (
    MAX_BREAKDOWN_GROUPS,
    CompiledQuery,
    MetricQuery,
    compile_metric_query,
)
from trendline._internal.query.predicates import PropertySchema

__all__ = [
    "MAX_BREAKDOWN_GROUPS",
    "CompiledQuery",
    "MetricQuery",
    "PropertySchema",
    "compile_metric_query",
]
