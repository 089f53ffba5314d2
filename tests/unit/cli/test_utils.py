"""Unit tests for CLI utilities."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
import typer

from trendline.cli.utils import (
    ExitCode,
    get_config,
    get_workspace,
    handle_errors,
    output_result,
    status_spinner,
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
    TrendlineError,
)


class TestExitCode:
    """Tests for ExitCode values."""

    def test_values(self) -> None:
        """Exit codes follow the documented numbering."""
        assert [int(c) for c in ExitCode] == [0, 1, 2, 3, 4, 130]


class TestHandleErrors:
    """Tests for the handle_errors decorator."""

    @pytest.mark.parametrize(
        ("error", "code", "message"),
        [
            (AuthenticationError("bad key"), ExitCode.AUTH_ERROR, "Authentication"),
            (RateLimitError("slow down"), ExitCode.GENERAL_ERROR, "Rate limited"),
            (
                ProjectNotFoundError("prod", ["dev", "staging"]),
                ExitCode.NOT_FOUND,
                "dev, staging",
            ),
            (ProjectExistsError("prod"), ExitCode.GENERAL_ERROR, "Project exists"),
            (
                DatabaseLockedError("/tmp/a.duckdb"),
                ExitCode.GENERAL_ERROR,
                "Database locked",
            ),
            (
                DatabaseNotFoundError("/tmp/a.duckdb"),
                ExitCode.NOT_FOUND,
                "trendline load events",
            ),
            (QueryTimeoutError(5.0), ExitCode.GENERAL_ERROR, "timed out"),
            (
                QueryError("syntax", sql="SELECT nope"),
                ExitCode.GENERAL_ERROR,
                "SELECT nope",
            ),
            (ConfigError("missing"), ExitCode.GENERAL_ERROR, "Configuration error"),
            (
                APIError("upstream", status_code=502),
                ExitCode.GENERAL_ERROR,
                "upstream",
            ),
            (TrendlineError("generic"), ExitCode.GENERAL_ERROR, "generic"),
            (ValueError("bad unit"), ExitCode.INVALID_ARGS, "Invalid argument"),
        ],
    )
    def test_error_mapping(
        self,
        capsys: pytest.CaptureFixture[str],
        error: Exception,
        code: ExitCode,
        message: str,
    ) -> None:
        """Library errors map to exit codes with a message on stderr."""

        @handle_errors
        def command() -> None:
            raise error

        with pytest.raises(typer.Exit) as exc_info:
            command()

        assert exc_info.value.exit_code == code
        captured = capsys.readouterr()
        assert message in captured.err
        assert captured.out == ""

    def test_success_passes_through(self) -> None:
        """Return values are passed through."""

        @handle_errors
        def command() -> int:
            return 42

        assert command() == 42

    def test_other_errors_propagate(self) -> None:
        """Unexpected exceptions are not swallowed."""

        @handle_errors
        def command() -> None:
            raise KeyError("x")

        with pytest.raises(KeyError):
            command()


class TestLazyHelpers:
    """Tests for get_workspace and get_config."""

    def test_get_workspace_created_once(self, mock_context: MagicMock) -> None:
        """The workspace is created with --project and cached."""
        mock_context.obj["project"] = "staging"
        with patch("trendline.workspace.Workspace") as workspace_cls:
            first = get_workspace(mock_context, read_only=True)
            second = get_workspace(mock_context)

        workspace_cls.assert_called_once_with(project="staging", read_only=True)
        assert first is second is workspace_cls.return_value
        mock_context.call_on_close.assert_called_once_with(
            workspace_cls.return_value.close
        )

    def test_get_config_cached(self, mock_context: MagicMock) -> None:
        """The config manager is created once per context."""
        with patch("trendline._internal.config.ConfigManager") as manager_cls:
            assert get_config(mock_context) is get_config(mock_context)
        manager_cls.assert_called_once_with()


class TestOutputResult:
    """Tests for output_result."""

    def test_json_default(
        self, mock_context: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """JSON is the default format."""
        output_result(mock_context, {"rows": 3})
        assert json.loads(capsys.readouterr().out) == {"rows": 3}

    def test_jsonl(
        self, mock_context: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """jsonl prints one object per line."""
        output_result(mock_context, [{"a": 1}, {"a": 2}], format="jsonl")
        lines = capsys.readouterr().out.strip().splitlines()
        assert [json.loads(line) for line in lines] == [{"a": 1}, {"a": 2}]

    def test_csv(
        self, mock_context: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """csv prints a header row."""
        output_result(mock_context, [{"a": 1}], format="csv")
        assert capsys.readouterr().out.splitlines() == ["a", "1"]

    def test_table(
        self, mock_context: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """table renders the given columns."""
        output_result(
            mock_context, [{"key": "plan", "type": "string"}], ["key"], format="table"
        )
        out = capsys.readouterr().out
        assert "KEY" in out
        assert "TYPE" not in out


class TestStatusSpinner:
    """Tests for status_spinner."""

    def test_quiet_runs_body(self, mock_context: MagicMock) -> None:
        """The body runs when --quiet is set."""
        mock_context.obj["quiet"] = True
        ran = []
        with status_spinner(mock_context, "Working..."):
            ran.append(True)
        assert ran == [True]

    def test_non_tty_runs_body(
        self, mock_context: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Without a TTY no spinner is drawn."""
        with status_spinner(mock_context, "Working..."):
            pass
        assert "Working" not in capsys.readouterr().err
