"""Shared fixtures for CLI integration tests.

These tests drive the real `trendline` app against a temporary config file
and DuckDB database; nothing is mocked below the command layer except the
translator endpoint.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from trendline.cli.main import app


def _write_jsonl(path: Path, records: list[dict[str, Any]]) -> Path:
    path.write_text("".join(json.dumps(r) + "\n" for r in records))
    return path


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Generator[None, None, None]:
    """Undo the logging setup each CLI invocation performs."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def cli_config(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI at a temporary config file."""
    path = temp_dir / "config.toml"
    monkeypatch.setenv("TRENDLINE_CONFIG_PATH", str(path))
    return path


@pytest.fixture
def database(temp_dir: Path) -> Path:
    """Database path for the test project (not created yet)."""
    return temp_dir / "analytics.duckdb"


@pytest.fixture
def events_file(temp_dir: Path) -> Path:
    """JSONL export with signups and purchases in January 2024."""
    return _write_jsonl(
        temp_dir / "events.jsonl",
        [
            {
                "event": "Signup",
                "properties": {
                    "distinct_id": "u1",
                    "time": 1704099600,
                    "$insert_id": "s1",
                    "country": "US",
                },
            },
            {
                "event": "Signup",
                "properties": {
                    "distinct_id": "u2",
                    "time": "2024-01-01T15:00:00Z",
                    "$insert_id": "s2",
                    "country": "CA",
                },
            },
            {
                "event": "Signup",
                "distinct_id": "u3",
                "time": "2024-01-03T12:00:00+00:00",
                "insert_id": "s3",
                "properties": {"country": "US"},
            },
            {
                "event": "Purchase",
                "properties": {
                    "distinct_id": "u1",
                    "time": 1704189600000,
                    "$insert_id": "p1",
                    "amount": 1250,
                },
            },
            {
                "event": "Purchase",
                "properties": {
                    "distinct_id": "u2",
                    "time": "2024-01-03T08:00:00Z",
                    "$insert_id": "p2",
                    "amount": 500,
                },
            },
        ],
    )


@pytest.fixture
def people_file(temp_dir: Path) -> Path:
    """JSONL profiles for two of the three users."""
    return _write_jsonl(
        temp_dir / "people.jsonl",
        [
            {"distinct_id": "u1", "properties": {"plan": "pro"}},
            {"$distinct_id": "u2", "$properties": {"plan": "free"}},
        ],
    )


@pytest.fixture
def configured_project(cli_runner: CliRunner, cli_config: Path, database: Path) -> str:
    """Add project 'main' (proj-1, UTC) through the CLI."""
    result = cli_runner.invoke(
        app, ["project", "add", "main", "-i", "proj-1", "-d", str(database)]
    )
    assert result.exit_code == 0, result.output
    return "main"


@pytest.fixture
def loaded_project(
    cli_runner: CliRunner,
    configured_project: str,
    events_file: Path,
    people_file: Path,
) -> str:
    """Configured project with events and people loaded through the CLI."""
    for kind, path in (("events", events_file), ("people", people_file)):
        result = cli_runner.invoke(app, ["-q", "load", kind, str(path)])
        assert result.exit_code == 0, result.output
    return configured_project
