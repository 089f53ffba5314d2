"""Service layer: schema discovery, metric insights, and text-to-chart."""

from trendline._internal.services.insights import InsightService
from trendline._internal.services.schema import SchemaService
from trendline._internal.services.text_to_chart import (
    TextToChartService,
    parse_chart_suggestion,
)

__all__ = [
    "InsightService",
    "SchemaService",
    "TextToChartService",
    "parse_chart_suggestion",
]
