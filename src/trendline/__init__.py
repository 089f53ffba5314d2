"""
trendline - Product-analytics metric queries over a local DuckDB event store.

Load raw events once, then compile metric definitions (event counts, unique
users, per-user frequency, aggregated properties) into parameterized SQL and
get back dense, gap-filled time series per breakdown group.
"""

from trendline._literal_types import (
    AggFunction,
    DataType,
    Measurement,
    PropOrigin,
    TimeRangeType,
    TimeUnit,
)
from trendline.exceptions import (
    APIError,
    AuthenticationError,
    ConfigError,
    DatabaseLockedError,
    DatabaseNotFoundError,
    ProjectExistsError,
    ProjectNotFoundError,
    QueryError,
    QueryTimeoutError,
    RateLimitError,
    TranslationError,
    TrendlineError,
)
from trendline.types import (
    ANY_EVENT,
    AggregatedProperty,
    Breakdown,
    BucketHeader,
    ChartSuggestion,
    EventChoice,
    EventCount,
    FilterClause,
    FrequencyPerUser,
    InsightResult,
    LoadResult,
    Metric,
    ProjectSummary,
    PropertyDefinition,
    PropertyRef,
    ResultSeries,
    SQLResult,
    TimeRange,
    UniqueUsers,
    WorkspaceInfo,
    build_metric,
)
from trendline.workspace import Workspace

__version__ = "0.1.0"

__all__ = [
    # Core
    "Workspace",
    # Type aliases
    "AggFunction",
    "DataType",
    "Measurement",
    "PropOrigin",
    "TimeRangeType",
    "TimeUnit",
    # Exceptions
    "TrendlineError",
    "APIError",
    "AuthenticationError",
    "RateLimitError",
    "ConfigError",
    "ProjectNotFoundError",
    "ProjectExistsError",
    "QueryError",
    "QueryTimeoutError",
    "TranslationError",
    "DatabaseLockedError",
    "DatabaseNotFoundError",
    # Metric definitions
    "ANY_EVENT",
    "Metric",
    "EventCount",
    "UniqueUsers",
    "FrequencyPerUser",
    "AggregatedProperty",
    "build_metric",
    "PropertyRef",
    "FilterClause",
    "Breakdown",
    "TimeRange",
    # Result types
    "InsightResult",
    "ResultSeries",
    "BucketHeader",
    "SQLResult",
    "LoadResult",
    "ProjectSummary",
    "WorkspaceInfo",
    # Discovery and translation
    "PropertyDefinition",
    "ChartSuggestion",
    "EventChoice",
]
