"""Project configuration commands.

This module provides commands for managing configured projects:
- list: List configured projects
- add: Add a new project
- remove: Remove a project
- switch: Set default project
- show: Display project details
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

import typer

from trendline._internal.config import DEFAULT_QUERY_TIMEOUT, ProjectInfo
from trendline.cli.options import FormatOption
from trendline.cli.utils import (
    ExitCode,
    err_console,
    get_config,
    handle_errors,
    output_result,
)

project_app = typer.Typer(
    name="project",
    help="Manage configured projects.",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)

_COLUMNS = ["name", "project_id", "database", "timezone", "is_default"]


@project_app.command("list")
@handle_errors
def list_projects(
    ctx: typer.Context,
    format: FormatOption = "json",
) -> None:
    """List all configured projects.

    Examples:

        trendline project list
        trendline project list --format table
    """
    config = get_config(ctx)
    data = [info.to_dict() for info in config.list_projects()]
    output_result(ctx, data, columns=_COLUMNS, format=format)


@project_app.command("add")
@handle_errors
def add_project(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Project name (identifier).")],
    project_id: Annotated[
        str,
        typer.Option("--project-id", "-i", help="Tenant id stored with each row."),
    ],
    database: Annotated[
        Path,
        typer.Option("--database", "-d", help="DuckDB database file."),
    ],
    timezone: Annotated[
        str,
        typer.Option("--tz", help="Default IANA timezone for queries."),
    ] = "UTC",
    query_timeout: Annotated[
        float,
        typer.Option("--timeout", help="Query timeout in seconds (0 disables)."),
    ] = DEFAULT_QUERY_TIMEOUT,
    default: Annotated[
        bool,
        typer.Option("--default", help="Set as default project."),
    ] = False,
    format: FormatOption = "json",
) -> None:
    """Add a new project to the configuration.

    The translator API key, if any, is read from the
    TRENDLINE_TRANSLATOR_API_KEY environment variable.

    Examples:

        trendline project add prod -i proj-1 -d ~/analytics/prod.duckdb
        trendline project add eu -i proj-2 -d eu.duckdb --tz Europe/Berlin --default
    """
    config = get_config(ctx)
    config.add_project(
        name,
        project_id,
        database,
        timezone=timezone,
        query_timeout=query_timeout if query_timeout > 0 else None,
        translator_api_key=os.environ.get("TRENDLINE_TRANSLATOR_API_KEY"),
    )
    if default:
        config.set_default(name)

    output_result(ctx, {"added": name, "is_default": default}, format=format)


@project_app.command("remove")
@handle_errors
def remove_project(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Project name to remove.")],
    force: Annotated[
        bool,
        typer.Option("--force", help="Skip confirmation prompt."),
    ] = False,
    format: FormatOption = "json",
) -> None:
    """Remove a project from the configuration.

    The database file is left in place.

    Examples:

        trendline project remove staging --force
    """
    if not force:
        confirm = typer.confirm(f"Remove project '{name}'?")
        if not confirm:
            err_console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(ExitCode.GENERAL_ERROR)

    config = get_config(ctx)
    config.remove_project(name)
    output_result(ctx, {"removed": name}, format=format)


@project_app.command("switch")
@handle_errors
def switch_project(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Project name to set as default.")],
    format: FormatOption = "json",
) -> None:
    """Set a project as the default.

    Examples:

        trendline project switch production
    """
    config = get_config(ctx)
    config.set_default(name)
    output_result(ctx, {"default": name}, format=format)


@project_app.command("show")
@handle_errors
def show_project(
    ctx: typer.Context,
    name: Annotated[
        str | None,
        typer.Argument(help="Project name (default if omitted)."),
    ] = None,
    format: FormatOption = "json",
) -> None:
    """Show project details (secrets are never shown).

    Examples:

        trendline project show
        trendline project show production --format table
    """
    config = get_config(ctx)

    info: ProjectInfo | None
    if name is None:
        info = next((p for p in config.list_projects() if p.is_default), None)
        if info is None:
            err_console.print("[red]Error:[/red] No default project configured.")
            raise typer.Exit(ExitCode.NOT_FOUND)
    else:
        info = config.get_project(name)

    output_result(ctx, info.to_dict(), format=format)
