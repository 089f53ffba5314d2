"""Data loading commands.

This module provides commands for loading JSONL files into the store:
- events: Load raw events
- people: Load or replace user profiles
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Annotated, Any

import typer

from trendline.cli.options import FormatOption
from trendline.cli.utils import get_workspace, handle_errors, output_result

load_app = typer.Typer(
    name="load",
    help="Load JSONL events and people.",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)

FileArgument = Annotated[
    Path,
    typer.Argument(
        help="JSONL file, one object per line.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
]


def read_jsonl(path: Path) -> Iterator[dict[str, Any]]:
    """Yield one object per non-blank line.

    Raises:
        ValueError: If a line is not a JSON object.
    """
    with path.open(encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{line_no}: invalid JSON ({e.msg})") from e
            if not isinstance(record, dict):
                raise ValueError(f"{path}:{line_no}: expected a JSON object")
            yield record


def _show_progress(ctx: typer.Context) -> bool:
    quiet = ctx.obj.get("quiet", False) if ctx.obj else False
    return not quiet and sys.stderr.isatty()


@load_app.command("events")
@handle_errors
def load_events(
    ctx: typer.Context,
    file: FileArgument,
    batch_size: Annotated[
        int,
        typer.Option("--batch-size", min=1, help="Rows per commit."),
    ] = 1000,
    format: FormatOption = "json",
) -> None:
    """Load events from a JSONL file.

    Each line is {"event": ..., "properties": {...}} with distinct_id and
    time either top-level or inside properties. Events whose insert id is
    already stored are skipped.

    Examples:

        trendline load events events.jsonl
        trendline -p staging load events export.jsonl --batch-size 5000
    """
    workspace = get_workspace(ctx)
    result = workspace.load_events(
        read_jsonl(file), progress=_show_progress(ctx), batch_size=batch_size
    )
    output_result(ctx, result.to_dict(), format=format)


@load_app.command("people")
@handle_errors
def load_people(
    ctx: typer.Context,
    file: FileArgument,
    batch_size: Annotated[
        int,
        typer.Option("--batch-size", min=1, help="Rows per commit."),
    ] = 1000,
    format: FormatOption = "json",
) -> None:
    """Load user profiles from a JSONL file.

    Each line is {"distinct_id": ..., "properties": {...}}. A profile that is
    already stored is replaced.

    Examples:

        trendline load people people.jsonl
    """
    workspace = get_workspace(ctx)
    result = workspace.load_people(
        read_jsonl(file), progress=_show_progress(ctx), batch_size=batch_size
    )
    output_result(ctx, result.to_dict(), format=format)
