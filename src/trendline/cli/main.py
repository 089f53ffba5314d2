"""CLI entry point for trendline.

This module provides the `trendline` command-line interface. It defines
global options, configures logging, and registers command groups.

Usage:
    trendline [OPTIONS] COMMAND [ARGS]...

Examples:
    trendline --help
    trendline project list
    trendline load events signups.jsonl
    trendline --project staging query metric --event Signup --unit week
"""

from __future__ import annotations

import logging
import signal
import sys
from typing import Annotated

import typer
from rich.logging import RichHandler

import trendline
from trendline.cli.utils import ExitCode, err_console

app = typer.Typer(
    name="trendline",
    help="Product-analytics metrics over a local DuckDB event store.",
    epilog="""[dim]Workflow:[/dim] trendline project add → trendline load events \
→ trendline inspect properties → trendline query metric""",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        print(f"trendline version {trendline.__version__}")
        raise typer.Exit()


def _handle_interrupt(_signum: int, _frame: object) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    err_console.print("\n[yellow]Interrupted[/yellow]")
    sys.exit(ExitCode.INTERRUPTED)


signal.signal(signal.SIGINT, _handle_interrupt)


def configure_logging(verbose: bool) -> None:
    """Route library logs to stderr: DEBUG with --verbose, WARNING otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    project: Annotated[
        str | None,
        typer.Option(
            "--project",
            "-p",
            help="Project name to use (overrides default).",
            envvar="TRENDLINE_PROJECT",
        ),
    ] = None,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress progress output.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug output (compiled SQL, row counts).",
        ),
    ] = False,
    _version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Product-analytics metrics over a local DuckDB event store.

    Load events once, then query event counts, unique users, per-user
    frequency and aggregated properties as dense daily, weekly or monthly
    series.
    """
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["project"] = project
    ctx.obj["quiet"] = quiet
    ctx.obj["verbose"] = verbose
    ctx.obj["workspace"] = None
    ctx.obj["config"] = None


def _register_commands() -> None:
    """Register all command groups with the main app."""
    from trendline.cli.commands.inspect import inspect_app
    from trendline.cli.commands.load import load_app
    from trendline.cli.commands.project import project_app
    from trendline.cli.commands.query import query_app

    app.add_typer(project_app, name="project", help="Manage configured projects.")
    app.add_typer(load_app, name="load", help="Load JSONL events and people.")
    app.add_typer(inspect_app, name="inspect", help="Inspect the stored schema.")
    app.add_typer(query_app, name="query", help="Run metric and SQL queries.")


_register_commands()


if __name__ == "__main__":
    app()
