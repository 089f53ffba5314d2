"""Inspection commands for the stored schema.

This module provides commands for exploring stored data:
- events: List stored event names
- properties: List sampled property definitions
- summary: Show workspace and row count summary
"""

from __future__ import annotations

from typing import Annotated

import typer

from trendline.cli.options import FormatOption
from trendline.cli.utils import (
    get_workspace,
    handle_errors,
    output_result,
    status_spinner,
)

inspect_app = typer.Typer(
    name="inspect",
    help="Inspect the stored schema.",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)


@inspect_app.command("events")
@handle_errors
def inspect_events(
    ctx: typer.Context,
    format: FormatOption = "json",
) -> None:
    """List event names stored for the project.

    Examples:

        trendline inspect events
        trendline inspect events --format csv
    """
    workspace = get_workspace(ctx, read_only=True)
    with status_spinner(ctx, "Listing events..."):
        events = workspace.events()
    output_result(ctx, events, format=format)


@inspect_app.command("properties")
@handle_errors
def inspect_properties(
    ctx: typer.Context,
    event: Annotated[
        list[str] | None,
        typer.Option("--event", "-e", help="Limit to these events (repeatable)."),
    ] = None,
    origin: Annotated[
        str | None,
        typer.Option("--origin", help="Only 'event' or 'user' properties."),
    ] = None,
    format: FormatOption = "json",
) -> None:
    """List sampled properties with their inferred types.

    Types are inferred from the newest stored rows.

    Examples:

        trendline inspect properties
        trendline inspect properties -e Purchase --origin event --format table
    """
    workspace = get_workspace(ctx, read_only=True)
    with status_spinner(ctx, "Sampling properties..."):
        definitions = workspace.properties(event or None)
    data = [
        d.to_dict() for d in definitions if origin is None or d.origin == origin
    ]
    output_result(ctx, data, columns=["key", "type", "origin"], format=format)


@inspect_app.command("summary")
@handle_errors
def inspect_summary(
    ctx: typer.Context,
    format: FormatOption = "json",
) -> None:
    """Show the workspace path, project and stored row counts.

    Examples:

        trendline inspect summary
    """
    workspace = get_workspace(ctx, read_only=True)
    output_result(ctx, workspace.info().to_dict(), format=format)
