"""CLI utility functions and error handling.

This module provides shared utilities for the CLI:
- ExitCode enum for standardized exit codes
- handle_errors decorator for exception-to-exit-code mapping
- Console instances for stdout/stderr separation
- Lazy workspace/config initialization helpers
- status_spinner context manager for long-running operations
"""

from __future__ import annotations

import functools
import os
import sys
from collections.abc import Callable, Generator
from contextlib import contextmanager
from enum import IntEnum
from typing import TYPE_CHECKING, Any, TypeVar

import typer
from rich.console import Console

from trendline.exceptions import (
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

if TYPE_CHECKING:
    from trendline._internal.config import ConfigManager
    from trendline.workspace import Workspace

# Data output goes to stdout; progress, logs and errors go to stderr
console = Console()
err_console = Console(stderr=True, no_color=bool(os.environ.get("NO_COLOR")))


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands.

    Exit codes follow Unix conventions:
    - 0: Success
    - 1-4: Application-specific errors
    - 130: Interrupted by SIGINT (Ctrl+C)
    """

    SUCCESS = 0
    GENERAL_ERROR = 1
    AUTH_ERROR = 2
    INVALID_ARGS = 3
    NOT_FOUND = 4
    INTERRUPTED = 130


F = TypeVar("F", bound=Callable[..., Any])


def handle_errors(func: F) -> F:
    """Decorator to convert library exceptions to CLI exit codes.

    Maps TrendlineError subclasses to exit codes and prints a formatted
    message to stderr.

    Usage:
        @handle_errors
        def my_command(ctx: typer.Context):
            workspace = get_workspace(ctx)
            output_result(ctx, workspace.info().to_dict())
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except AuthenticationError as e:
            err_console.print(f"[red]Authentication error:[/red] {e.message}")
            raise typer.Exit(ExitCode.AUTH_ERROR) from None
        except RateLimitError as e:
            err_console.print(f"[yellow]Rate limited:[/yellow] {e.message}")
            raise typer.Exit(ExitCode.GENERAL_ERROR) from None
        except ProjectNotFoundError as e:
            err_console.print(f"[red]Project not found:[/red] {e.project_name}")
            if e.available_projects:
                err_console.print(
                    f"Available projects: {', '.join(e.available_projects)}"
                )
            raise typer.Exit(ExitCode.NOT_FOUND) from None
        except ProjectExistsError as e:
            err_console.print(f"[red]Project exists:[/red] {e.project_name}")
            raise typer.Exit(ExitCode.GENERAL_ERROR) from None
        except DatabaseLockedError as e:
            err_console.print(f"[yellow]Database locked:[/yellow] {e.db_path}")
            err_console.print(
                "Another trendline command may be running. Try again shortly."
            )
            raise typer.Exit(ExitCode.GENERAL_ERROR) from None
        except DatabaseNotFoundError as e:
            err_console.print(f"[yellow]No data yet:[/yellow] {e.db_path}")
            err_console.print("Run 'trendline load events' to create the database.")
            raise typer.Exit(ExitCode.NOT_FOUND) from None
        except QueryTimeoutError as e:
            err_console.print(f"[red]Query timed out:[/red] {e.message}")
            err_console.print(
                "[yellow]Hint:[/yellow] Narrow the time range or raise "
                "query_timeout for the project."
            )
            raise typer.Exit(ExitCode.GENERAL_ERROR) from None
        except QueryError as e:
            err_console.print(f"[red]Query error:[/red] {e.message}")
            if e.sql:
                err_console.print(f"[dim]{e.sql}[/dim]", highlight=False)
            raise typer.Exit(ExitCode.GENERAL_ERROR) from None
        except ConfigError as e:
            err_console.print(f"[red]Configuration error:[/red] {e.message}")
            raise typer.Exit(ExitCode.GENERAL_ERROR) from None
        except TrendlineError as e:
            err_console.print(f"[red]Error:[/red] {e.message}")
            raise typer.Exit(ExitCode.GENERAL_ERROR) from None
        except ValueError as e:
            # request validation (filters, dates, units)
            err_console.print(f"[red]Invalid argument:[/red] {e}")
            raise typer.Exit(ExitCode.INVALID_ARGS) from None

    return wrapper  # type: ignore[return-value]


def get_workspace(ctx: typer.Context, *, read_only: bool = False) -> Workspace:
    """Get or create workspace from context.

    Lazily initializes a Workspace instance, respecting the --project
    global option. The workspace is cached in the context for reuse.

    Args:
        ctx: Typer context with global options in obj dict.
        read_only: Open the database read-only, allowing concurrent readers.
            Only applies when the workspace is created.

    Returns:
        Configured Workspace instance.

    Raises:
        ProjectNotFoundError: If the specified project doesn't exist.
        ConfigError: If no settings can be resolved.
    """
    from trendline.workspace import Workspace

    if "workspace" not in ctx.obj or ctx.obj["workspace"] is None:
        project = ctx.obj.get("project")
        created = Workspace(project=project, read_only=read_only)
        ctx.obj["workspace"] = created
        # release the database lock when the command finishes
        ctx.call_on_close(created.close)
    workspace: Workspace = ctx.obj["workspace"]
    return workspace


def get_config(ctx: typer.Context) -> ConfigManager:
    """Get or create ConfigManager from context.

    Args:
        ctx: Typer context with global options in obj dict.

    Returns:
        ConfigManager instance cached in the context.
    """
    from trendline._internal.config import ConfigManager

    if "config" not in ctx.obj or ctx.obj["config"] is None:
        ctx.obj["config"] = ConfigManager()
    config: ConfigManager = ctx.obj["config"]
    return config


def output_result(
    ctx: typer.Context,
    data: dict[str, Any] | list[Any],
    columns: list[str] | None = None,
    *,
    format: str | None = None,
) -> None:
    """Output data in the requested format.

    Args:
        ctx: Typer context with global options in obj dict.
        data: Data to output (dict or list).
        columns: Column names for table format (auto-detected if None).
        format: Output format. If None, falls back to ctx.obj["format"] or "json".
    """
    from trendline.cli.formatters import (
        format_csv,
        format_json,
        format_jsonl,
        format_table,
    )

    fmt = format if format is not None else ctx.obj.get("format", "json")

    if fmt == "jsonl":
        console.print(format_jsonl(data), highlight=False, soft_wrap=True)
    elif fmt == "table":
        console.print(format_table(data, columns))
    elif fmt == "csv":
        console.print(format_csv(data), highlight=False, end="", soft_wrap=True)
    else:
        console.print(format_json(data), highlight=False, soft_wrap=True)


@contextmanager
def status_spinner(ctx: typer.Context, message: str) -> Generator[None, None, None]:
    """Context manager to show a spinner for long-running operations.

    Respects --quiet and skips the spinner when stderr is not a TTY.

    Example:
        with status_spinner(ctx, "Running query..."):
            result = workspace.insight(metric)
    """
    quiet = ctx.obj.get("quiet", False) if ctx.obj else False

    if quiet or not sys.stderr.isatty():
        yield
    else:
        with err_console.status(message):
            yield
