"""Output formatters for CLI commands.

This module provides formatting functions for different output formats:
- JSON: Pretty-printed JSON
- JSONL: Newline-delimited JSON (one object per line)
- Table: Rich table
- CSV: Comma-separated values with headers

Insight results are nested (series of bucket maps); series_rows() flattens
them to one row per series with one column per bucket for table and CSV.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from rich.table import Table


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime | date):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    return str(obj)


def format_json(data: dict[str, Any] | list[Any]) -> str:
    """Pretty-printed JSON with 2-space indentation."""
    return json.dumps(data, indent=2, default=_json_default, ensure_ascii=False)


def format_jsonl(data: dict[str, Any] | list[Any]) -> str:
    """One JSON object per line for lists; a single line for dicts."""
    items = data if isinstance(data, list) else [data]
    return "\n".join(
        json.dumps(item, default=_json_default, ensure_ascii=False) for item in items
    )


def series_rows(result: dict[str, Any]) -> list[dict[str, Any]]:
    """Flatten a serialized InsightResult to one row per series.

    Columns are event, breakdown, average, then one column per bucket
    labelled with its lookup date.

    Example:
        ```python
        series_rows(result.to_dict())
        # [{"event": "Signup", "breakdown": None, "average": 1.7,
        #   "2024-01-01": 0, "2024-01-02": 5, "2024-01-03": 0}]
        ```
    """
    lookups = [h["lookup"] for h in result.get("headers", [])]
    rows = []
    for series in result.get("series", []):
        row: dict[str, Any] = {
            "event": series["event_label"],
            "breakdown": series["breakdown"],
            "average": series["average"],
        }
        for lookup in lookups:
            row[lookup] = series["data"].get(lookup, 0)
        rows.append(row)
    return rows


def format_table(
    data: dict[str, Any] | list[Any],
    columns: list[str] | None = None,
) -> Table:
    """Rich table; columns are auto-detected from the first row if omitted."""
    table = Table(show_header=True, header_style="bold")
    rows = [data] if isinstance(data, dict) else data
    if not rows:
        return table

    if columns is None:
        first = rows[0]
        columns = list(first.keys()) if isinstance(first, dict) else ["value"]

    for col in columns:
        table.add_column(col.upper().replace("_", " "))
    for item in rows:
        if isinstance(item, dict):
            table.add_row(*[_cell(item.get(col)) for col in columns])
        else:
            table.add_row(_cell(item))
    return table


def format_csv(data: dict[str, Any] | list[Any]) -> str:
    """CSV with a header row; non-dict items go in a single "value" column."""
    rows = [data] if isinstance(data, dict) else data
    if not rows:
        return ""

    output = io.StringIO()
    first = rows[0]
    if isinstance(first, dict):
        writer = csv.DictWriter(output, fieldnames=list(first), extrasaction="ignore")
        writer.writeheader()
        for item in rows:
            writer.writerow({k: _csv_value(v) for k, v in item.items()})
    else:
        list_writer = csv.writer(output)
        list_writer.writerow(["value"])
        for item in rows:
            list_writer.writerow([_csv_value(item)])
    return output.getvalue()


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, list | dict):
        return json.dumps(value, default=_json_default, ensure_ascii=False)
    if isinstance(value, datetime | date):
        return value.isoformat()
    return str(value)


def _csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, list | dict):
        return json.dumps(value, default=_json_default, ensure_ascii=False)
    if isinstance(value, datetime | date):
        return value.isoformat()
    return str(value)
