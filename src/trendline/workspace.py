"""Workspace facade for trendline.

The Workspace class is the unified entry point for loading events, exploring
the stored schema and running metric queries, orchestrating SchemaService,
InsightService, TextToChartService and StorageEngine.

Example:
    Basic usage with settings from config:

    ```python
    ws = Workspace()
    result = ws.insight(UniqueUsers("Signup"), time_range=TimeRange("7d"))
    print(result.df)
    ws.close()
    ```

    Ephemeral workspace for temporary analysis:

    ```python
    with Workspace.ephemeral(project_id="proj-1") as ws:
        ws.load_events(records)
        ws.insight(EventCount(), unit="week")
    # Database automatically deleted
    ```
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Literal

from rich.progress import Progress, SpinnerColumn, TextColumn

from trendline._internal.completion_client import CompletionClient
from trendline._internal.config import ConfigManager, ProjectSettings
from trendline._internal.services.insights import InsightService
from trendline._internal.services.schema import SchemaService
from trendline._internal.services.text_to_chart import TextToChartService
from trendline._internal.storage import StorageEngine
from trendline._internal.transforms import transform_event, transform_person
from trendline._literal_types import TimeUnit
from trendline.types import (
    Breakdown,
    ChartSuggestion,
    FilterClause,
    InsightResult,
    LoadResult,
    Metric,
    PropertyDefinition,
    SQLResult,
    TimeRange,
    WorkspaceInfo,
)

_logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".trendline" / "data"


class Workspace:
    """Unified entry point for trendline operations.

    A workspace is scoped to one project id: every load and query it runs
    touches only that project's rows.

    Examples:
        Named project from the config file:

        ```python
        ws = Workspace(project="production")
        ws.events()
        ```

        In-memory workspace for tests:

        ```python
        with Workspace.memory(project_id="proj-1") as ws:
            ws.load_events([{"event": "Signup", "properties": {...}}])
            result = ws.insight(UniqueUsers("Signup"), unit="day")
        ```
    """

    # =========================================================================
    # LIFECYCLE & CONSTRUCTION
    # =========================================================================

    def __init__(
        self,
        project: str | None = None,
        project_id: str | None = None,
        path: str | Path | None = None,
        read_only: bool = False,
        # Dependency injection for testing
        _config_manager: ConfigManager | None = None,
        _storage: StorageEngine | None = None,
        _completion_client: CompletionClient | None = None,
    ) -> None:
        """Create a new Workspace.

        Settings are resolved in priority order:
        1. Explicit project_id (config is not consulted)
        2. Environment variables (TRENDLINE_PROJECT_ID, TRENDLINE_DATABASE, ...)
        3. Named project from config file (if project parameter specified)
        4. Default project from config file

        Args:
            project: Named project from config file to use.
            project_id: Project id to scope to, bypassing config resolution.
            path: Database path override.
            read_only: Open the database read-only.
            _config_manager: Injected ConfigManager for testing.
            _storage: Injected StorageEngine for testing.
            _completion_client: Injected CompletionClient for testing.

        Raises:
            ConfigError: If no settings can be resolved.
            ProjectNotFoundError: If named project doesn't exist.
            DatabaseLockedError: If another process holds the database lock.
            DatabaseNotFoundError: If read_only and the database doesn't exist.
        """
        self._config_manager = _config_manager or ConfigManager()
        self._project_name: str | None = None

        if project_id is not None and project is None:
            db_path = Path(path) if path is not None else _default_path(project_id)
            self._settings = ProjectSettings(project_id=project_id, database=db_path)
        else:
            self._settings = self._config_manager.resolve_settings(project)
            self._project_name = project or self._default_project_name()
            if path is not None:
                self._settings = self._settings.model_copy(
                    update={"database": Path(path).expanduser()}
                )

        if _storage is not None:
            self._storage = _storage
        else:
            self._storage = StorageEngine(
                path=self._settings.database, read_only=read_only
            )
        if not self._storage.read_only:
            self._storage.ensure_schema()

        self._completion_client = _completion_client
        self._schema: SchemaService | None = None
        self._insights: InsightService | None = None
        self._text_to_chart: TextToChartService | None = None

    @classmethod
    @contextmanager
    def ephemeral(
        cls,
        project_id: str = "default",
        *,
        _config_manager: ConfigManager | None = None,
        _completion_client: CompletionClient | None = None,
    ) -> Iterator[Workspace]:
        """Create a temporary workspace that auto-deletes on exit.

        Yields:
            Workspace: A workspace with temporary database.
        """
        ws = cls(
            project_id=project_id,
            _config_manager=_config_manager,
            _storage=StorageEngine.ephemeral(),
            _completion_client=_completion_client,
        )
        try:
            yield ws
        finally:
            ws.close()

    @classmethod
    @contextmanager
    def memory(
        cls,
        project_id: str = "default",
        *,
        _config_manager: ConfigManager | None = None,
        _completion_client: CompletionClient | None = None,
    ) -> Iterator[Workspace]:
        """Create a workspace with a true in-memory database.

        All data is lost when the context manager exits.

        Yields:
            Workspace: A workspace with in-memory database.

        Example:
            ```python
            with Workspace.memory(project_id="proj-1") as ws:
                ws.load_events(records)
                ws.insight(EventCount("Purchase"))
            ```
        """
        ws = cls(
            project_id=project_id,
            _config_manager=_config_manager,
            _storage=StorageEngine.memory(),
            _completion_client=_completion_client,
        )
        try:
            yield ws
        finally:
            ws.close()

    @classmethod
    def open(cls, path: str | Path, project_id: str) -> Workspace:
        """Open an existing database read-only for one project.

        Args:
            path: Path to existing database file.
            project_id: Project to scope queries to.

        Raises:
            FileNotFoundError: If database file doesn't exist.

        Example:
            ```python
            ws = Workspace.open("analytics.duckdb", "proj-1")
            ws.insight(UniqueUsers())
            ws.close()
            ```
        """
        db_path = Path(path) if isinstance(path, str) else path
        storage = StorageEngine.open_existing(db_path)
        return cls(project_id=project_id, path=db_path, _storage=storage)

    def __enter__(self) -> Workspace:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit context manager, closing all resources."""
        self.close()

    def close(self) -> None:
        """Close all resources (database connection, HTTP client).

        This method is idempotent and safe to call multiple times.
        """
        self._storage.close()
        if self._completion_client is not None:
            self._completion_client.close()
            self._completion_client = None
            self._text_to_chart = None

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    def _default_project_name(self) -> str | None:
        for info in self._config_manager.list_projects():
            if info.project_id == self._settings.project_id and info.is_default:
                return info.name
        return None

    @property
    def _schema_service(self) -> SchemaService:
        """Get or create schema service (lazy initialization)."""
        if self._schema is None:
            self._schema = SchemaService(self._storage, self.project_id)
        return self._schema

    @property
    def _insight_service(self) -> InsightService:
        """Get or create insight service (lazy initialization)."""
        if self._insights is None:
            self._insights = InsightService(
                self._storage,
                self._schema_service,
                self.project_id,
                query_timeout=self._settings.query_timeout,
            )
        return self._insights

    @property
    def _text_to_chart_service(self) -> TextToChartService:
        """Get or create text-to-chart service (lazy initialization)."""
        if self._text_to_chart is None:
            if self._completion_client is None:
                self._completion_client = CompletionClient.from_settings(
                    self._settings
                )
            self._text_to_chart = TextToChartService(
                self._schema_service, self._completion_client
            )
        return self._text_to_chart

    # =========================================================================
    # DISCOVERY METHODS
    # =========================================================================

    @property
    def project_id(self) -> str:
        """Project every operation is scoped to."""
        return self._settings.project_id

    @property
    def timezone(self) -> str:
        """Default timezone for queries."""
        return self._settings.timezone

    def events(self) -> list[str]:
        """List all stored event names.

        Returns:
            Alphabetically sorted list of event names.
        """
        return self._schema_service.list_events()

    def properties(
        self, events: Sequence[str] | None = None
    ) -> list[PropertyDefinition]:
        """List sampled property definitions.

        Args:
            events: Limit event properties to these events (None = all).

        Returns:
            Event property definitions followed by user property definitions.
        """
        return self._schema_service.list_properties(events)

    def clear_schema_cache(self) -> None:
        """Clear cached schema results.

        Subsequent discovery calls will sample the store again.
        """
        if self._schema is not None:
            self._schema.clear_cache()

    # =========================================================================
    # LOADING METHODS
    # =========================================================================

    def load_events(
        self,
        records: Iterable[dict[str, Any]],
        *,
        progress: bool = False,
        batch_size: int = 1000,
    ) -> LoadResult:
        """Load raw events into the store.

        Args:
            records: Raw events ({event, properties, distinct_id?, time?}).
            progress: Show a progress spinner.
            batch_size: Rows per commit.

        Returns:
            LoadResult with the number of rows actually written.

        Raises:
            ValueError: If a record is missing its event, distinct_id or time.
        """
        return self._load(
            "events",
            lambda callback: self._storage.insert_events(
                self.project_id,
                (transform_event(r) for r in records),
                progress_callback=callback,
                batch_size=batch_size,
            ),
            progress=progress,
        )

    def load_people(
        self,
        records: Iterable[dict[str, Any]],
        *,
        progress: bool = False,
        batch_size: int = 1000,
    ) -> LoadResult:
        """Load or replace user profiles.

        Args:
            records: Raw profiles ({distinct_id, properties, last_seen?}).
            progress: Show a progress spinner.
            batch_size: Rows per commit.

        Returns:
            LoadResult with the number of new profiles.
        """
        return self._load(
            "people",
            lambda callback: self._storage.upsert_people(
                self.project_id,
                (transform_person(r) for r in records),
                progress_callback=callback,
                batch_size=batch_size,
            ),
            progress=progress,
        )

    def _load(
        self,
        kind: Literal["events", "people"],
        write: Callable[[Callable[[int], None] | None], int],
        *,
        progress: bool,
    ) -> LoadResult:
        start = time.monotonic()
        if progress:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TextColumn("{task.completed} rows"),
                transient=True,
            ) as pbar:
                task = pbar.add_task(f"Loading {kind}...", total=None)
                rows = write(lambda count: pbar.update(task, completed=count))
        else:
            rows = write(None)
        self.clear_schema_cache()
        return LoadResult(
            project_id=self.project_id,
            kind=kind,
            rows=rows,
            duration_seconds=time.monotonic() - start,
        )

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def insight(
        self,
        metric: Metric,
        *,
        time_range: TimeRange | None = None,
        unit: TimeUnit = "day",
        timezone: str | None = None,
        filters: Sequence[FilterClause] = (),
        breakdown: Breakdown | None = None,
    ) -> InsightResult:
        """Run a metric query and return dense series.

        Args:
            metric: Metric definition.
            time_range: Window to cover (default: last 30 days).
            unit: Bucket granularity (day, week, month).
            timezone: IANA timezone (default: the project's timezone).
            filters: Global filters, AND-ed with the metric's own.
            breakdown: Properties to group by.

        Returns:
            InsightResult with one series, one per breakdown group, or none
            when nothing matched.

        Raises:
            QueryTimeoutError: If the query exceeded the project's timeout.
            QueryError: If the store rejected the query.
            ValueError: If the request is invalid.

        Example:
            ```python
            result = ws.insight(
                AggregatedProperty(PropertyRef("amount"), "Purchase", agg="sum"),
                time_range=TimeRange("3m"),
                unit="week",
                breakdown=Breakdown((PropertyRef("plan", "user"),)),
            )
            ```
        """
        return self._insight_service.query(
            metric,
            time_range=time_range,
            unit=unit,
            timezone=timezone or self.timezone,
            filters=filters,
            breakdown=breakdown,
        )

    def sql(self, query: str) -> SQLResult:
        """Execute ad-hoc SQL against the store.

        Raises:
            QueryError: If query is invalid.
        """
        return self._storage.execute_rows_params(
            query, {}, timeout=self._settings.query_timeout
        )

    def text_to_chart(self, text: str) -> ChartSuggestion | None:
        """Suggest a chart for a free-text question.

        Returns:
            ChartSuggestion, or None when the translator's answer is unusable.

        Raises:
            AuthenticationError: If the translator rejected the API key.
            APIError: If the translator endpoint failed.
        """
        return self._text_to_chart_service.suggest(text)

    # =========================================================================
    # INTROSPECTION METHODS
    # =========================================================================

    def info(self) -> WorkspaceInfo:
        """Get metadata about this workspace."""
        return WorkspaceInfo(
            path=self._storage.path,
            project_id=self.project_id,
            project=self._project_name,
            timezone=self.timezone,
            summary=self._storage.project_summary(self.project_id),
        )


def _default_path(project_id: str) -> Path:
    return DEFAULT_DATA_DIR / f"{project_id}.duckdb"

