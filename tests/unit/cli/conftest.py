"""Shared fixtures for CLI unit tests."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import typer
from typer.testing import CliRunner


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def mock_context() -> MagicMock:
    """Typer context carrying the global options dict."""
    ctx = MagicMock(spec=typer.Context)
    ctx.obj = {
        "project": None,
        "quiet": False,
        "verbose": False,
        "workspace": None,
        "config": None,
    }
    return ctx
