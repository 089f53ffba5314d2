"""Transform functions for ingested records.

Converts raw event and person records (as read from JSONL exports) to the
storage format used by the DuckDB events and people tables.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

_logger = logging.getLogger(__name__)


# Epoch values above this are treated as milliseconds.
_MILLISECOND_THRESHOLD = 100_000_000_000


def parse_timestamp(value: Any) -> datetime:
    """Convert an epoch number, ISO-8601 string or datetime to naive UTC.

    Naive datetimes and offset-less strings are taken as UTC.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    elif isinstance(value, int | float):
        seconds = value / 1000 if abs(value) >= _MILLISECOND_THRESHOLD else value
        parsed = datetime.fromtimestamp(seconds, tz=UTC)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"Invalid timestamp: {value!r}") from e
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def transform_event(event: dict[str, Any]) -> dict[str, Any]:
    """Transform a raw event to storage format.

    Top-level distinct_id, time and insert_id win; otherwise they are
    taken from (and removed from) the properties. A UUID is generated when
    no insert id is present.

    Args:
        event: Raw event with 'event' and 'properties' keys.

    Returns:
        Transformed event dict with event_name, event_time (naive UTC),
        distinct_id, insert_id, and properties keys.

    Raises:
        ValueError: If the event name, distinct_id or time is missing or invalid.

    Example:
        ```python
        raw = {
            "event": "Purchase",
            "properties": {
                "distinct_id": "user123",
                "time": 1704067200,
                "amount": 1250,
            },
        }
        transform_event(raw)
        # {"event_name": "Purchase", "event_time": datetime(2024, 1, 1, 0, 0),
        #  "distinct_id": "user123", "insert_id": "<uuid>",
        #  "properties": {"amount": 1250}}
        ```
    """
    event_name = event.get("event")
    if not event_name:
        raise ValueError("Event record missing required field: event")

    remaining_props = dict(event.get("properties") or {})
    distinct_id = event.get("distinct_id", remaining_props.pop("distinct_id", None))
    remaining_props.pop("distinct_id", None)
    if distinct_id is None or distinct_id == "":
        raise ValueError("Event record missing required field: distinct_id")

    time_raw = event.get("time", remaining_props.pop("time", None))
    remaining_props.pop("time", None)
    if time_raw is None:
        raise ValueError("Event record missing required field: time")

    insert_id = event.get("insert_id") or remaining_props.pop("$insert_id", None)
    remaining_props.pop("$insert_id", None)
    remaining_props.pop("insert_id", None)
    if insert_id is None:
        insert_id = str(uuid.uuid4())
        _logger.debug("Generated insert_id for event missing $insert_id")

    return {
        "event_name": str(event_name),
        "event_time": parse_timestamp(time_raw),
        "distinct_id": str(distinct_id),
        "insert_id": str(insert_id),
        "properties": remaining_props,
    }


def transform_person(person: dict[str, Any]) -> dict[str, Any]:
    """Transform a raw person (user profile) record to storage format.

    Accepts either {'distinct_id', 'properties'} or the export layout
    {'$distinct_id', '$properties'}. `$last_seen` is promoted to a column.

    Raises:
        ValueError: If distinct_id is missing or last_seen is invalid.

    Example:
        ```python
        transform_person({"distinct_id": "u1", "properties": {"plan": "pro"}})
        # {"distinct_id": "u1", "last_seen": None, "properties": {"plan": "pro"}}
        ```
    """
    distinct_id = person.get("distinct_id", person.get("$distinct_id"))
    if distinct_id is None or distinct_id == "":
        raise ValueError("Person record missing required field: distinct_id")

    remaining_props = dict(person.get("properties") or person.get("$properties") or {})
    last_seen_raw = person.get("last_seen", remaining_props.pop("$last_seen", None))
    remaining_props.pop("$last_seen", None)
    last_seen = parse_timestamp(last_seen_raw) if last_seen_raw is not None else None

    return {
        "distinct_id": str(distinct_id),
        "last_seen": last_seen,
        "properties": remaining_props,
    }
