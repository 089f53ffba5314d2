"""Unit tests for Workspace facade."""

from __future__ import annotations

import json
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import httpx
import pandas as pd
import pytest

from trendline import (
    ConfigError,
    DatabaseNotFoundError,
    ProjectNotFoundError,
    Workspace,
)
from trendline._internal.completion_client import CompletionClient
from trendline._internal.config import ConfigManager
from trendline.types import (
    Breakdown,
    EventCount,
    FilterClause,
    PropertyDefinition,
    PropertyRef,
    TimeRange,
    UniqueUsers,
)

WINDOW = TimeRange.between("2024-01-01", "2024-01-03")


def _raw(
    name: str, distinct_id: str, when: str, insert_id: str, **properties: Any
) -> dict[str, Any]:
    """Build a raw event in export layout."""
    return {
        "event": name,
        "properties": {
            "distinct_id": distinct_id,
            "time": when,
            "$insert_id": insert_id,
            **properties,
        },
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def raw_events() -> list[dict[str, Any]]:
    """Raw events equivalent to the shared sample dataset."""
    return [
        _raw("Signup", "u1", "2024-01-01T09:00:00Z", "s1", country="US"),
        _raw("Signup", "u2", "2024-01-01T15:00:00Z", "s2", country="CA"),
        _raw("Signup", "u3", "2024-01-03T12:00:00Z", "s3", country="US"),
        _raw("Purchase", "u1", "2024-01-02T10:00:00Z", "p1", amount=1250),
        _raw("Purchase", "u1", "2024-01-02T18:00:00Z", "p2", amount=750),
        _raw("Purchase", "u2", "2024-01-03T08:00:00Z", "p3", amount=500),
    ]


@pytest.fixture
def raw_people() -> list[dict[str, Any]]:
    """Raw profiles, one in each accepted layout."""
    return [
        {"distinct_id": "u1", "properties": {"plan": "pro"}},
        {
            "$distinct_id": "u2",
            "$properties": {"plan": "free", "$last_seen": "2024-01-05T00:00:00"},
        },
    ]


@pytest.fixture
def ws(
    raw_events: list[dict[str, Any]], raw_people: list[dict[str, Any]]
) -> Generator[Workspace, None, None]:
    """In-memory workspace loaded with the raw sample data."""
    with Workspace.memory(project_id="proj-1") as workspace:
        workspace.load_events(raw_events)
        workspace.load_people(raw_people)
        yield workspace


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    """Tests for Workspace construction and settings resolution."""

    def test_explicit_project_id_skips_config(
        self, config_manager: ConfigManager, temp_dir: Path
    ) -> None:
        """An explicit project id works without any configured project."""
        with Workspace(
            project_id="proj-1",
            path=temp_dir / "a.duckdb",
            _config_manager=config_manager,
        ) as ws:
            assert ws.project_id == "proj-1"
            assert ws.timezone == "UTC"
            assert ws.info().project is None
        assert (temp_dir / "a.duckdb").exists()

    def test_no_settings_raises(self, config_manager: ConfigManager) -> None:
        """Without config or an explicit id, ConfigError is raised."""
        with pytest.raises(ConfigError, match="No project configured"):
            Workspace(_config_manager=config_manager)

    def test_default_project_from_config(
        self, config_manager: ConfigManager, temp_dir: Path
    ) -> None:
        """The default project supplies id, database and timezone."""
        db_path = temp_dir / "prod.duckdb"
        config_manager.add_project(
            "production", "proj-9", db_path, timezone="Asia/Tokyo"
        )
        with Workspace(_config_manager=config_manager) as ws:
            assert ws.project_id == "proj-9"
            assert ws.timezone == "Asia/Tokyo"
            info = ws.info()
            assert info.project == "production"
            assert info.path == db_path

    def test_named_project_with_path_override(
        self, config_manager: ConfigManager, temp_dir: Path
    ) -> None:
        """A path argument overrides the configured database."""
        config_manager.add_project("a", "proj-a", temp_dir / "a.duckdb")
        config_manager.add_project("b", "proj-b", temp_dir / "b.duckdb")
        override = temp_dir / "other.duckdb"
        with Workspace(
            project="b", path=override, _config_manager=config_manager
        ) as ws:
            assert ws.project_id == "proj-b"
            assert ws.info().path == override
            assert ws.info().project == "b"

    def test_unknown_project(
        self, config_manager: ConfigManager, temp_dir: Path
    ) -> None:
        """Unknown project names raise ProjectNotFoundError."""
        config_manager.add_project("a", "proj-a", temp_dir / "a.duckdb")
        with pytest.raises(ProjectNotFoundError):
            Workspace(project="missing", _config_manager=config_manager)

    def test_env_settings(
        self,
        config_manager: ConfigManager,
        temp_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Environment variables take priority over the config file."""
        config_manager.add_project("a", "proj-a", temp_dir / "a.duckdb")
        monkeypatch.setenv("TRENDLINE_PROJECT_ID", "env-proj")
        monkeypatch.setenv("TRENDLINE_DATABASE", str(temp_dir / "env.duckdb"))
        monkeypatch.setenv("TRENDLINE_TIMEZONE", "Europe/Paris")
        with Workspace(_config_manager=config_manager) as ws:
            assert ws.project_id == "env-proj"
            assert ws.timezone == "Europe/Paris"

    def test_read_only_missing_database(self, temp_dir: Path) -> None:
        """Opening a missing database read-only fails."""
        with pytest.raises(DatabaseNotFoundError):
            Workspace(
                project_id="proj-1", path=temp_dir / "nope.duckdb", read_only=True
            )

    def test_ephemeral_cleans_up(self) -> None:
        """Ephemeral workspaces delete their database on exit."""
        with Workspace.ephemeral(project_id="proj-1") as ws:
            path = ws.info().path
            assert path is not None and path.exists()
        assert not path.exists()

    def test_memory_has_no_path(self) -> None:
        """In-memory workspaces report no database path."""
        with Workspace.memory() as ws:
            assert ws.info().path is None
            assert ws.project_id == "default"

    def test_close_is_idempotent(self) -> None:
        """close() can be called more than once."""
        with Workspace.memory() as ws:
            ws.close()
        ws.close()


class TestOpen:
    """Tests for Workspace.open."""

    def test_open_existing_read_only(
        self, temp_dir: Path, raw_events: list[dict[str, Any]]
    ) -> None:
        """A saved database can be reopened read-only and queried."""
        db_path = temp_dir / "saved.duckdb"
        with Workspace(project_id="proj-1", path=db_path) as ws:
            ws.load_events(raw_events)

        ws = Workspace.open(db_path, "proj-1")
        try:
            assert ws.events() == ["Purchase", "Signup"]
            result = ws.insight(UniqueUsers("Signup"), time_range=WINDOW)
            assert result.series[0].total == 3
        finally:
            ws.close()

    def test_open_missing_file(self, temp_dir: Path) -> None:
        """Opening a nonexistent file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            Workspace.open(temp_dir / "missing.duckdb", "proj-1")


# =============================================================================
# Loading
# =============================================================================


class TestLoading:
    """Tests for load_events and load_people."""

    def test_load_events_result(self, raw_events: list[dict[str, Any]]) -> None:
        """Raw events are transformed and counted."""
        with Workspace.memory(project_id="proj-1") as ws:
            result = ws.load_events(raw_events)
            assert result.kind == "events"
            assert result.rows == 6
            assert result.project_id == "proj-1"
            assert result.duration_seconds >= 0

    def test_reload_skips_duplicates(self, ws: Workspace) -> None:
        """Reloading the same insert ids writes nothing."""
        again = ws.load_events(
            [_raw("Signup", "u1", "2024-01-01T09:00:00Z", "s1", country="US")]
        )
        assert again.rows == 0
        assert ws.info().summary.event_count == 6

    def test_load_people_both_layouts(self, ws: Workspace) -> None:
        """Plain and export-style profiles are both accepted."""
        summary = ws.info().summary
        assert summary.people_count == 2

    def test_load_people_replaces(self, ws: Workspace) -> None:
        """Reloading a profile replaces it without counting it as new."""
        result = ws.load_people([{"distinct_id": "u1", "properties": {"plan": "team"}}])
        assert result.rows == 0
        rows = ws.sql(
            "SELECT properties->>'plan' AS plan FROM people WHERE distinct_id = 'u1'"
        ).to_dicts()
        assert rows == [{"plan": "team"}]

    def test_invalid_record_raises(self) -> None:
        """Records without a distinct_id are rejected."""
        with Workspace.memory() as ws, pytest.raises(ValueError, match="distinct_id"):
            ws.load_events([{"event": "A", "properties": {"time": 1704067200}}])

    def test_load_refreshes_schema(self, ws: Workspace) -> None:
        """Loading clears cached discovery results."""
        assert ws.events() == ["Purchase", "Signup"]
        ws.load_events([_raw("Logout", "u1", "2024-01-03T20:00:00Z", "l1")])
        assert ws.events() == ["Logout", "Purchase", "Signup"]

    def test_load_with_progress(self, raw_events: list[dict[str, Any]]) -> None:
        """The progress spinner doesn't change the result."""
        with Workspace.memory() as ws:
            assert ws.load_events(raw_events, progress=True, batch_size=2).rows == 6


# =============================================================================
# Discovery
# =============================================================================


class TestDiscovery:
    """Tests for events and properties."""

    def test_events(self, ws: Workspace) -> None:
        """Stored event names are listed alphabetically."""
        assert ws.events() == ["Purchase", "Signup"]

    def test_properties(self, ws: Workspace) -> None:
        """Transport keys are stripped; user properties come last."""
        assert ws.properties() == [
            PropertyDefinition("amount", "number", "event"),
            PropertyDefinition("country", "string", "event"),
            PropertyDefinition("plan", "string", "user"),
        ]

    def test_properties_for_event(self, ws: Workspace) -> None:
        """Event properties can be limited to named events."""
        keys = [d.key for d in ws.properties(["Purchase"]) if d.origin == "event"]
        assert keys == ["amount"]


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    """Tests for insight and sql."""

    def test_insight(self, ws: Workspace) -> None:
        """Metric queries return dense series."""
        result = ws.insight(UniqueUsers("Signup"), time_range=WINDOW)
        (series,) = result.series
        assert series.data == {"2024-01-01": 2, "2024-01-02": 0, "2024-01-03": 1}
        assert result.timezone == "UTC"

    def test_insight_dataframe(self, ws: Workspace) -> None:
        """The result converts to a long DataFrame."""
        df = ws.insight(EventCount("Purchase"), time_range=WINDOW).df
        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == ["series_id", "event", "breakdown", "date", "value"]
        assert df["value"].tolist() == [0, 2, 1]

    def test_insight_breakdown_and_filter(self, ws: Workspace) -> None:
        """Filters and breakdowns flow through to the compiler."""
        result = ws.insight(
            EventCount("Signup"),
            time_range=WINDOW,
            filters=[FilterClause(PropertyRef("country"), "string", "is", "US")],
            breakdown=Breakdown((PropertyRef("plan", "user"),)),
        )
        assert sorted(s.breakdown for s in result.series) == ["(none)", "pro"]

    def test_insight_uses_workspace_timezone(
        self, config_manager: ConfigManager, temp_dir: Path
    ) -> None:
        """Queries default to the project's timezone."""
        config_manager.add_project(
            "la", "proj-1", temp_dir / "la.duckdb", timezone="America/Los_Angeles"
        )
        with Workspace(_config_manager=config_manager) as ws:
            # 2024-01-02 03:00 UTC is Jan 1 in Los Angeles
            ws.load_events([_raw("A", "u1", "2024-01-02T03:00:00Z", "a1")])
            result = ws.insight(EventCount("A"), time_range=WINDOW)
            assert result.timezone == "America/Los_Angeles"
            assert result.series[0].data["2024-01-01"] == 1

    def test_sql(self, ws: Workspace) -> None:
        """Ad-hoc SQL runs against the store."""
        result = ws.sql(
            "SELECT event_name, count(*) AS n FROM events "
            "GROUP BY event_name ORDER BY event_name"
        )
        assert result.columns == ["event_name", "n"]
        assert result.to_dicts() == [
            {"event_name": "Purchase", "n": 3},
            {"event_name": "Signup", "n": 3},
        ]


# =============================================================================
# Text to chart
# =============================================================================


class TestTextToChart:
    """Tests for Workspace.text_to_chart."""

    def test_suggestion(
        self,
        raw_events: list[dict[str, Any]],
        mock_completion_factory: Callable[..., CompletionClient],
        completion_body: Callable[[str | None], dict[str, Any]],
    ) -> None:
        """The injected translator is asked with the stored events."""
        prompts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            prompts.append(json.loads(request.content)["messages"][0]["content"])
            return httpx.Response(
                200,
                json=completion_body(
                    '{"reportType": "line", "eventNames": ["Purchase", "Nope"]}'
                ),
            )

        client = mock_completion_factory(handler)
        with Workspace.memory(project_id="proj-1", _completion_client=client) as ws:
            ws.load_events(raw_events)
            suggestion = ws.text_to_chart("purchases over time")

        assert suggestion is not None
        assert [e.name for e in suggestion.events] == ["Purchase"]
        assert "Purchase\nSignup" in prompts[0]

    def test_unusable_answer(
        self,
        mock_completion_factory: Callable[..., CompletionClient],
        completion_body: Callable[[str | None], dict[str, Any]],
    ) -> None:
        """An unusable answer yields None."""
        client = mock_completion_factory(
            lambda request: httpx.Response(200, json=completion_body("dunno"))
        )
        with Workspace.memory(_completion_client=client) as ws:
            assert ws.text_to_chart("anything") is None


# =============================================================================
# Introspection
# =============================================================================


class TestInfo:
    """Tests for Workspace.info."""

    def test_summary(self, ws: Workspace) -> None:
        """info() reports the project's stored data."""
        info = ws.info()
        assert info.project_id == "proj-1"
        summary = info.summary
        assert summary.event_count == 6
        assert summary.event_names == 2
        assert summary.first_event is not None
        assert summary.first_event.isoformat() == "2024-01-01T09:00:00"
        data = info.to_dict()
        assert data["summary"]["people_count"] == 2
        assert data["path"] is None
