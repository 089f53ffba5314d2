"""CLI parameter validators and option parsers.

Validates string inputs from Typer against Literal types and parses the
compact filter/breakdown syntax before passing values to Workspace methods,
providing early error feedback.
"""

from __future__ import annotations

from typing import Any, cast, get_args

import typer

from trendline._literal_types import (
    AggFunction,
    DataType,
    Measurement,
    TimeRangeType,
    TimeUnit,
)
from trendline.cli.utils import ExitCode, err_console
from trendline.types import (
    DEFAULT_OPERATORS,
    LIST_OPERATORS,
    Breakdown,
    FilterClause,
    PropertyRef,
    TimeRange,
)


def validate_literal(value: str, literal_type: Any, param_name: str) -> Any:
    """Validate a CLI string against a Literal type.

    Raises:
        typer.Exit: With code 3 (INVALID_ARGS) if invalid.
    """
    valid_values = get_args(literal_type)
    if value not in valid_values:
        err_console.print(
            f"[red]Error:[/red] Invalid value for {param_name}: '{value}'"
        )
        err_console.print(f"Valid options: {', '.join(valid_values)}")
        raise typer.Exit(ExitCode.INVALID_ARGS)
    return value


def validate_time_unit(value: str, param_name: str = "--unit") -> TimeUnit:
    """Validate bucket granularity (day, week, month)."""
    validate_literal(value, TimeUnit, param_name)
    return cast(TimeUnit, value)


def validate_measurement(value: str, param_name: str = "--measure") -> Measurement:
    """Validate measurement kind."""
    validate_literal(value, Measurement, param_name)
    return cast(Measurement, value)


def validate_agg(value: str, param_name: str = "--agg") -> AggFunction:
    """Validate aggregation function."""
    validate_literal(value, AggFunction, param_name)
    return cast(AggFunction, value)


def parse_filter_option(text: str) -> FilterClause:
    """Parse `[user.]key:type:operator[:value]` into a FilterClause.

    For list operators (any-of matches and `between`) values containing
    commas become lists (`country:string:is:US,CA`,
    `amount:number:between:10,20`); other operators keep the value as one
    string (`q:string:contains:red,blue`). Everything after the third colon
    is the value, so values may themselves contain colons.

    Raises:
        ValueError: If the text is malformed or the clause invalid.

    Example:
        ```python
        parse_filter_option("user.plan:string:is:pro")
        # FilterClause(PropertyRef("plan", "user"), "string", "is", "pro")
        ```
    """
    parts = text.split(":", 3)
    if len(parts) < 3:
        raise ValueError(
            f"Invalid filter '{text}'. Expected [user.]key:type:operator[:value]"
        )
    key, data_type, operator = parts[0], parts[1], parts[2]
    if data_type not in get_args(DataType):
        valid = ", ".join(get_args(DataType))
        raise ValueError(
            f"Invalid data type '{data_type}' in filter '{text}'. Valid: {valid}"
        )

    value: Any = None
    if len(parts) == 4 and parts[3] != "":
        raw = parts[3]
        resolved = operator or DEFAULT_OPERATORS[cast(DataType, data_type)]
        splits = resolved in LIST_OPERATORS and data_type != "boolean"
        value = [v.strip() for v in raw.split(",")] if splits and "," in raw else raw

    try:
        return FilterClause(
            prop=PropertyRef.parse(key),
            data_type=cast(DataType, data_type),
            operator=operator or None,
            value=value,
        )
    except ValueError as e:
        raise ValueError(f"Invalid filter '{text}': {e}") from e


def parse_breakdown_options(values: list[str] | None) -> Breakdown | None:
    """Build a Breakdown from repeated --by options (None when absent)."""
    if not values:
        return None
    return Breakdown(tuple(PropertyRef.parse(v) for v in values))


def parse_time_range(
    range_type: str | None,
    from_date: str | None,
    to_date: str | None,
) -> TimeRange:
    """Resolve --range / --from / --to into a TimeRange.

    --from and --to together select a custom range and cannot be combined
    with --range.

    Raises:
        typer.Exit: With code 3 (INVALID_ARGS) on conflicting or partial input.
    """
    if from_date is not None or to_date is not None:
        if range_type is not None and range_type != "custom":
            err_console.print(
                "[red]Error:[/red] --range cannot be combined with --from/--to"
            )
            raise typer.Exit(ExitCode.INVALID_ARGS)
        if from_date is None or to_date is None:
            err_console.print("[red]Error:[/red] --from and --to must be used together")
            raise typer.Exit(ExitCode.INVALID_ARGS)
        return TimeRange.between(from_date, to_date)

    if range_type is None:
        return TimeRange()
    validate_literal(range_type, TimeRangeType, "--range")
    if range_type == "custom":
        err_console.print("[red]Error:[/red] --range custom requires --from and --to")
        raise typer.Exit(ExitCode.INVALID_ARGS)
    return TimeRange(type=cast(TimeRangeType, range_type))
