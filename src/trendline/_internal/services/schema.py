"""Schema Service for event and property discovery.

Lists event names and samples stored properties to infer their types, with
session-scoped caching. Types come from the newest rows only, so a schema
can lag behind properties that started being tracked recently.
"""

from __future__ import annotations

import json
import logging
import re
from collections import Counter, defaultdict
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from trendline._internal.query.predicates import PropertySchema
from trendline._literal_types import DataType, PropOrigin
from trendline.types import ANY_EVENT, PropertyDefinition

if TYPE_CHECKING:
    from trendline._internal.storage import StorageEngine

_logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 1000

_ISO_DATE = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"([T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?)?"
    r"(Z|[+-]\d{2}:?\d{2})?$"
)


def infer_type(value: Any) -> DataType | None:
    """Logical type of one JSON property value (None for JSON null).

    Example:
        ```python
        infer_type(True)           # 'boolean'
        infer_type(12.5)           # 'number'
        infer_type("2024-01-05")   # 'date'
        infer_type(["a", "b"])     # 'array'
        ```
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, list):
        return "array"
    if isinstance(value, str):
        return "date" if _ISO_DATE.match(value) else "string"
    return "other"


def infer_definitions(
    samples: Sequence[dict[str, Any]], origin: PropOrigin
) -> list[PropertyDefinition]:
    """Infer one definition per key by majority vote over sampled values.

    Ties resolve to the type seen first. Keys whose sampled values are all
    null are typed 'other'.
    """
    votes: dict[str, Counter[DataType]] = defaultdict(Counter)
    for properties in samples:
        for key, value in properties.items():
            inferred = infer_type(value)
            counter = votes[key]
            if inferred is not None:
                counter[inferred] += 1

    definitions = []
    for key, counter in votes.items():
        data_type: DataType = counter.most_common(1)[0][0] if counter else "other"
        definitions.append(PropertyDefinition(key=key, type=data_type, origin=origin))
    return sorted(definitions, key=lambda d: d.key)


class SchemaService:
    """Discovery of events and property schemas for one project.

    Results are cached for the lifetime of this service instance. Use
    clear_cache() after loading new data to force fresh sampling.

    Example:
        ```python
        schema = SchemaService(storage, "proj-1")
        schema.list_events()             # ['Purchase', 'Signup']
        schema.list_properties(["Purchase"])
        schema.clear_cache()
        ```
    """

    def __init__(
        self,
        storage: StorageEngine,
        project_id: str,
        *,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
    ) -> None:
        """Initialize schema service.

        Args:
            storage: Store holding the events and people tables.
            project_id: Tenant to inspect.
            sample_size: Rows sampled per property listing.
        """
        self._storage = storage
        self._project_id = project_id
        self._sample_size = sample_size
        self._cache: dict[tuple[str | None, ...], list[Any]] = {}

    def list_events(self) -> list[str]:
        """List all event names stored for the project.

        Returns:
            Alphabetically sorted list of event names.
        """
        cache_key = ("list_events",)
        if cache_key in self._cache:
            return list(self._cache[cache_key])

        result = self._storage.execute_rows_params(
            "SELECT DISTINCT event_name FROM events "
            "WHERE project_id = $project_id ORDER BY event_name",
            {"project_id": self._project_id},
        )
        events = [row[0] for row in result.rows]
        self._cache[cache_key] = events
        return list(events)

    def list_properties(
        self, events: Sequence[str] | None = None
    ) -> list[PropertyDefinition]:
        """List event properties (of the given events) and user properties.

        Args:
            events: Event names to sample; None or the wildcard samples all.

        Returns:
            Event properties sorted by key, followed by user properties
            sorted by key.
        """
        wanted = None
        if events is not None and ANY_EVENT not in events:
            wanted = sorted(set(events))
        cache_key = ("list_properties", *(wanted if wanted is not None else [None]))
        if cache_key in self._cache:
            return list(self._cache[cache_key])

        definitions = self._sample_event_properties(wanted)
        definitions += self._sample_user_properties()
        _logger.debug(
            "Sampled %d property definitions for project %s",
            len(definitions),
            self._project_id,
        )
        self._cache[cache_key] = definitions
        return list(definitions)

    def property_schema(self, events: Sequence[str] | None = None) -> PropertySchema:
        """Property lookup used by the query compiler."""
        return PropertySchema(self.list_properties(events))

    def clear_cache(self) -> None:
        """Clear all cached discovery results."""
        self._cache = {}

    def _sample_event_properties(
        self, events: list[str] | None
    ) -> list[PropertyDefinition]:
        params: dict[str, Any] = {
            "project_id": self._project_id,
            "sample_size": self._sample_size,
        }
        event_filter = ""
        if events is not None:
            event_filter = (
                "AND list_contains(CAST($events AS VARCHAR[]), event_name) "
            )
            params["events"] = events
        result = self._storage.execute_rows_params(
            "SELECT properties FROM events "
            f"WHERE project_id = $project_id {event_filter}"
            "ORDER BY event_time DESC LIMIT CAST($sample_size AS BIGINT)",
            params,
        )
        return infer_definitions(_decode(result.rows), "event")

    def _sample_user_properties(self) -> list[PropertyDefinition]:
        result = self._storage.execute_rows_params(
            "SELECT properties FROM people WHERE project_id = $project_id "
            "ORDER BY last_seen DESC NULLS LAST LIMIT CAST($sample_size AS BIGINT)",
            {"project_id": self._project_id, "sample_size": self._sample_size},
        )
        return infer_definitions(_decode(result.rows), "user")


def _decode(rows: list[tuple[Any, ...]]) -> list[dict[str, Any]]:
    decoded: list[dict[str, Any]] = []
    for (raw,) in rows:
        if raw is None:
            continue
        value = json.loads(raw) if isinstance(raw, str) else raw
        if isinstance(value, dict):
            decoded.append(value)
    return decoded
