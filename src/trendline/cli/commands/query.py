"""Query commands.

This module provides commands for querying stored data:
- metric: Metric time series (counts, unique users, frequency, aggregates)
- text: Suggest a chart for a free-text question
- sql: Ad-hoc SQL against the local database
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from trendline._literal_types import PropOrigin
from trendline.cli.formatters import series_rows
from trendline.cli.options import FormatOption
from trendline.cli.utils import (
    ExitCode,
    err_console,
    get_workspace,
    handle_errors,
    output_result,
    status_spinner,
)
from trendline.cli.validators import (
    parse_breakdown_options,
    parse_filter_option,
    parse_time_range,
    validate_agg,
    validate_literal,
    validate_measurement,
    validate_time_unit,
)
from trendline.types import ANY_EVENT, PropertyRef, build_metric

query_app = typer.Typer(
    name="query",
    help="Run metric and SQL queries.",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)


@query_app.command("metric")
@handle_errors
def query_metric(
    ctx: typer.Context,
    measure: Annotated[
        str,
        typer.Option(
            "--measure",
            "-m",
            help="event_count, unique_users, frequency_per_user, "
            "aggregated_property.",
        ),
    ] = "unique_users",
    event: Annotated[
        str,
        typer.Option("--event", "-e", help="Event name ('$*' for all events)."),
    ] = ANY_EVENT,
    prop: Annotated[
        str | None,
        typer.Option("--prop", help="Numeric property for aggregated_property."),
    ] = None,
    prop_origin: Annotated[
        str | None,
        typer.Option("--prop-origin", help="Origin of --prop: event or user."),
    ] = None,
    agg: Annotated[
        str | None,
        typer.Option(
            "--agg",
            "-a",
            help="avg, median, sum, min, max, sum_divide_100.",
        ),
    ] = None,
    where: Annotated[
        list[str] | None,
        typer.Option(
            "--where",
            "-w",
            help="Filter [user.]key:type:operator[:value] (repeatable).",
        ),
    ] = None,
    by: Annotated[
        list[str] | None,
        typer.Option("--by", "-b", help="Breakdown property [user.]key (repeatable)."),
    ] = None,
    unit: Annotated[
        str,
        typer.Option("--unit", "-u", help="Bucket size: day, week, month."),
    ] = "day",
    range_type: Annotated[
        str | None,
        typer.Option("--range", "-r", help="today, 7d, 30d, 3m, 6m, 12m, 24m."),
    ] = None,
    from_date: Annotated[
        str | None,
        typer.Option("--from", help="Start date (YYYY-MM-DD), inclusive."),
    ] = None,
    to_date: Annotated[
        str | None,
        typer.Option("--to", help="End date (YYYY-MM-DD), inclusive."),
    ] = None,
    timezone: Annotated[
        str | None,
        typer.Option("--tz", help="IANA timezone (default: project timezone)."),
    ] = None,
    format: FormatOption = "json",
) -> None:
    """Run a metric query and print dense time series.

    Without --by the result holds one series; with --by one series per
    group, ordered by average and capped at 500. Table and CSV output show
    one row per series with one column per bucket.

    Examples:

        trendline query metric -e Signup --unit week --range 3m
        trendline query metric -m event_count -w country:string:is:US,CA -b user.plan
        trendline query metric -m aggregated_property --prop amount --agg sum
        trendline query metric -m frequency_per_user -e Login --from 2024-01-01 \\
            --to 2024-01-31 --format table
    """
    measurement = validate_measurement(measure)
    time_unit = validate_time_unit(unit)
    agg_fn = validate_agg(agg) if agg is not None else None

    prop_ref: PropertyRef | None = None
    if prop is not None:
        if prop_origin is not None:
            origin: PropOrigin = validate_literal(
                prop_origin, PropOrigin, "--prop-origin"
            )
            prop_ref = PropertyRef(prop, origin)
        else:
            prop_ref = PropertyRef.parse(prop)

    metric = build_metric(measurement, event, prop=prop_ref, agg=agg_fn)
    filters = [parse_filter_option(w) for w in where or []]
    breakdown = parse_breakdown_options(by)
    time_range = parse_time_range(range_type, from_date, to_date)

    workspace = get_workspace(ctx, read_only=True)
    with status_spinner(ctx, "Running query..."):
        result = workspace.insight(
            metric,
            time_range=time_range,
            unit=time_unit,
            timezone=timezone,
            filters=filters,
            breakdown=breakdown,
        )

    data = result.to_dict()
    if format == "json":
        output_result(ctx, data, format=format)
    elif format == "jsonl":
        output_result(ctx, data["series"], format=format)
    else:
        output_result(ctx, series_rows(data), format=format)


@query_app.command("text")
@handle_errors
def query_text(
    ctx: typer.Context,
    text: Annotated[str, typer.Argument(help="Question, e.g. 'weekly signups'.")],
    format: FormatOption = "json",
) -> None:
    """Suggest a chart for a free-text question.

    Uses the project's translator endpoint. Exits with code 1 when the
    translator's answer cannot be used.

    Examples:

        trendline query text "signups per week as bars"
    """
    workspace = get_workspace(ctx, read_only=True)
    with status_spinner(ctx, "Asking translator..."):
        suggestion = workspace.text_to_chart(text)
    if suggestion is None:
        err_console.print("[yellow]No chart suggestion for this question.[/yellow]")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    data = suggestion.to_dict()
    data["metrics"] = [m.to_dict() for m in suggestion.metrics()]
    output_result(ctx, data, format=format)


@query_app.command("sql")
@handle_errors
def query_sql(
    ctx: typer.Context,
    query: Annotated[
        str | None,
        typer.Argument(help="SQL query string."),
    ] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", "-F", help="Read query from file."),
    ] = None,
    format: FormatOption = "json",
) -> None:
    """Execute SQL against the local DuckDB database.

    Tables: events(project_id, insert_id, event_name, event_time,
    distinct_id, properties) and people(project_id, distinct_id,
    properties, last_seen).

    Examples:

        trendline query sql "SELECT event_name, count(*) AS n FROM events GROUP BY 1"
        trendline query sql --file analysis.sql --format csv
    """
    if query is None and file is None:
        err_console.print("[red]Error:[/red] Provide a query or use --file")
        raise typer.Exit(ExitCode.INVALID_ARGS)

    if file is not None:
        if not file.exists():
            err_console.print(f"[red]Error:[/red] File not found: {file}")
            raise typer.Exit(ExitCode.NOT_FOUND)
        sql_query = file.read_text()
    else:
        sql_query = query or ""

    workspace = get_workspace(ctx, read_only=True)
    result = workspace.sql(sql_query)
    output_result(ctx, result.to_dicts(), columns=result.columns, format=format)
