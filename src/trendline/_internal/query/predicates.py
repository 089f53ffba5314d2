"""Filter and breakdown predicate builder.

Turns filter clauses and breakdown properties into SQL fragments against the
events table (alias `e`) and, for user properties, the people table (alias
`p`). A fragment reports whether it needs the people join; the assembler adds
the join once.

A property missing from the sampled schema does not raise: its filter clause
compiles to a predicate that matches nothing, so the request returns no rows.
Schemas are sampled and can lag behind newly tracked properties, which makes
this the expected outcome for a brand-new key.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

from trendline._internal.query.fragments import (
    ParamBinder,
    property_json,
    property_number,
    property_text,
    table_alias,
)
from trendline._literal_types import DataType
from trendline.types import (
    Breakdown,
    FilterClause,
    PropertyDefinition,
    PropertyRef,
)

_logger = logging.getLogger(__name__)

MATCH_ALL = "1 = 1"
MATCH_NOTHING = "1 = 0"
NULL_BREAKDOWN_LABEL = "(none)"
RANGE_BUCKETS = 10
BREAKDOWN_SEPARATOR = " / "


class PropertySchema:
    """Lookup of sampled property definitions by (key, origin)."""

    def __init__(self, definitions: Iterable[PropertyDefinition] = ()) -> None:
        self._by_ref: dict[tuple[str, str], PropertyDefinition] = {
            (d.key, d.origin): d for d in definitions
        }

    def lookup(self, prop: PropertyRef) -> PropertyDefinition | None:
        """Definition for a property, or None if it was never sampled."""
        return self._by_ref.get((prop.name, prop.origin))

    def __contains__(self, prop: object) -> bool:
        if not isinstance(prop, PropertyRef):
            return False
        return (prop.name, prop.origin) in self._by_ref

    def __len__(self) -> int:
        return len(self._by_ref)


@dataclass(frozen=True)
class FilterFragment:
    """AND-combined filter predicate."""

    sql: str
    needs_people_join: bool = False


@dataclass(frozen=True)
class BreakdownFragment:
    """Scalar breakdown expression plus what it needs from the FROM clause."""

    select_sql: str
    """Expression selected AS breakdown; never NULL."""

    guard_sql: str = MATCH_ALL
    """Extra WHERE predicate (MATCH_NOTHING when a property is unknown)."""

    range_join_sql: str | None = None
    """CROSS JOIN sub-query computing bounds for range bucketing."""

    rank_sql: str | None = None
    """Numeric sort key for groups (range index, NULL for missing values)."""

    needs_people_join: bool = False


# =============================================================================
# Filters
# =============================================================================


def build_filter_predicate(
    filters: Sequence[FilterClause],
    schema: PropertySchema,
    binder: ParamBinder,
) -> FilterFragment:
    """AND-combine filter clauses into one predicate.

    Args:
        filters: Clauses to combine (global and metric-level).
        schema: Sampled property schema used to resolve references.
        binder: Parameter binder for the statement being built.

    Returns:
        FilterFragment; `1 = 1` when there are no clauses.

    Raises:
        ValueError: If a clause value cannot be coerced to its data type.
    """
    if not filters:
        return FilterFragment(MATCH_ALL)

    parts: list[str] = []
    needs_join = False
    for clause in filters:
        if clause.prop not in schema:
            _logger.debug(
                "Unknown %s property %r in filter; clause matches nothing",
                clause.prop.origin,
                clause.prop.name,
            )
            parts.append(MATCH_NOTHING)
            continue
        needs_join = needs_join or clause.prop.origin == "user"
        parts.append(_CLAUSE_BUILDERS[clause.data_type](clause, binder))

    return FilterFragment(
        sql=" AND ".join(f"({part})" for part in parts),
        needs_people_join=needs_join,
    )


def _presence(text_sql: str, operator: str | None) -> str | None:
    if operator == "is_set":
        return f"{text_sql} IS NOT NULL"
    if operator == "is_not_set":
        return f"{text_sql} IS NULL"
    return None


def _as_tuple(value: Any) -> tuple[Any, ...]:
    return value if isinstance(value, tuple) else (value,)


def _number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Expected a number, got {value!r}") from e


def _date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise ValueError(f"Expected a YYYY-MM-DD date, got {value!r}") from e


def _boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise ValueError(f"Expected a boolean, got {value!r}")


def _string_clause(clause: FilterClause, binder: ParamBinder) -> str:
    text = property_text(clause.prop, binder)
    presence = _presence(text, clause.operator)
    if presence is not None:
        return presence

    if clause.operator in ("is", "is_not"):
        values = [str(v) for v in _as_tuple(clause.value)]
        match = f"list_contains({binder.bind(values, 'VARCHAR[]')}, {text})"
        if clause.operator == "is":
            return match
        return f"{text} IS NULL OR NOT {match}"

    needle = binder.bind(str(clause.value), "VARCHAR")
    match = f"contains(lower({text}), lower({needle}))"
    if clause.operator == "contains":
        return match
    return f"{text} IS NULL OR NOT {match}"


_NUMBER_COMPARISONS = {"gt": ">", "gte": ">=", "lt": "<", "lte": "<="}


def _number_clause(clause: FilterClause, binder: ParamBinder) -> str:
    presence = _presence(property_text(clause.prop, binder), clause.operator)
    if presence is not None:
        return presence

    number = property_number(clause.prop, binder)
    if clause.operator == "between":
        low, high = (_number(v) for v in clause.value)
        return (
            f"{number} BETWEEN {binder.bind(low, 'DOUBLE')} "
            f"AND {binder.bind(high, 'DOUBLE')}"
        )
    if clause.operator in ("equals", "not_equal"):
        values = [_number(v) for v in _as_tuple(clause.value)]
        match = f"list_contains({binder.bind(values, 'DOUBLE[]')}, {number})"
        if clause.operator == "equals":
            return match
        return f"{number} IS NULL OR NOT {match}"

    comparison = _NUMBER_COMPARISONS[clause.operator or ""]
    return f"{number} {comparison} {binder.bind(_number(clause.value), 'DOUBLE')}"


_DATE_COMPARISONS = {"on": "=", "before": "<", "after": ">"}


def _date_clause(clause: FilterClause, binder: ParamBinder) -> str:
    text = property_text(clause.prop, binder)
    presence = _presence(text, clause.operator)
    if presence is not None:
        return presence

    day = f"CAST(TRY_CAST({text} AS TIMESTAMP) AS DATE)"
    if clause.operator == "between":
        low, high = (_date(v) for v in clause.value)
        return (
            f"{day} BETWEEN {binder.bind(low, 'DATE')} "
            f"AND {binder.bind(high, 'DATE')}"
        )
    target = binder.bind(_date(clause.value), "DATE")
    if clause.operator == "not_on":
        return f"{day} IS NULL OR {day} <> {target}"
    return f"{day} {_DATE_COMPARISONS[clause.operator or '']} {target}"


def _boolean_clause(clause: FilterClause, binder: ParamBinder) -> str:
    text = property_text(clause.prop, binder)
    expected = binder.bind(_boolean(clause.value), "BOOLEAN")
    return f"TRY_CAST({text} AS BOOLEAN) = {expected}"


def _array_clause(clause: FilterClause, binder: ParamBinder) -> str:
    presence = _presence(property_text(clause.prop, binder), clause.operator)
    if presence is not None:
        return presence

    items = f"TRY_CAST({property_json(clause.prop, binder)} AS VARCHAR[])"
    match = f"list_contains({items}, {binder.bind(str(clause.value), 'VARCHAR')})"
    if clause.operator == "contains":
        return f"coalesce({match}, false)"
    return f"NOT coalesce({match}, false)"


def _other_clause(clause: FilterClause, binder: ParamBinder) -> str:
    presence = _presence(property_text(clause.prop, binder), clause.operator)
    # other only allows is_set / is_not_set
    return presence or MATCH_NOTHING


_CLAUSE_BUILDERS: dict[DataType, Callable[[FilterClause, ParamBinder], str]] = {
    "string": _string_clause,
    "number": _number_clause,
    "date": _date_clause,
    "boolean": _boolean_clause,
    "array": _array_clause,
    "other": _other_clause,
}


# =============================================================================
# Breakdowns
# =============================================================================


def build_breakdown(
    breakdown: Breakdown,
    schema: PropertySchema,
    binder: ParamBinder,
    project_sql: str,
) -> BreakdownFragment | None:
    """Build the breakdown expression for a request.

    A single number- or date-typed property is pre-bucketed into
    RANGE_BUCKETS equal-width ranges between the project's min and max
    values. Several properties are joined with ' / '. Missing values label
    as '(none)'.

    Args:
        breakdown: Breakdown properties (empty means no breakdown).
        schema: Sampled property schema used to resolve references.
        binder: Parameter binder for the statement being built.
        project_sql: Bound project id placeholder for the bounds sub-query.

    Returns:
        BreakdownFragment, or None when the breakdown is empty.
    """
    if breakdown.is_empty:
        return None

    unknown = [p for p in breakdown.props if p not in schema]
    if unknown:
        for prop in unknown:
            _logger.debug(
                "Unknown %s property %r in breakdown; request matches nothing",
                prop.origin,
                prop.name,
            )
        return BreakdownFragment(
            select_sql=f"'{NULL_BREAKDOWN_LABEL}'", guard_sql=MATCH_NOTHING
        )

    needs_join = any(p.origin == "user" for p in breakdown.props)

    if len(breakdown.props) == 1:
        prop = breakdown.props[0]
        definition = schema.lookup(prop)
        if definition is not None and definition.type in ("number", "date"):
            return _range_breakdown(prop, definition.type, binder, project_sql)
        return BreakdownFragment(
            select_sql=_labelled(property_text(prop, binder)),
            needs_people_join=needs_join,
        )

    labels = ", ".join(_labelled(property_text(p, binder)) for p in breakdown.props)
    return BreakdownFragment(
        select_sql=f"concat_ws('{BREAKDOWN_SEPARATOR}', {labels})",
        needs_people_join=needs_join,
    )


def _labelled(expr: str) -> str:
    return f"coalesce({expr}, '{NULL_BREAKDOWN_LABEL}')"


def _range_breakdown(
    prop: PropertyRef,
    data_type: DataType,
    binder: ParamBinder,
    project_sql: str,
) -> BreakdownFragment:
    """Equal-width range buckets between the tenant's min and max values."""
    if data_type == "date":
        value = f"epoch(TRY_CAST({property_text(prop, binder)} AS TIMESTAMP))"

        def fmt(expr: str) -> str:
            micros = f"CAST(round({expr} * 1000000) AS BIGINT)"
            return f"strftime(make_timestamp({micros}), '%Y-%m-%d')"

    else:
        value = property_number(prop, binder)

        def fmt(expr: str) -> str:
            return f"CAST(round({expr}, 2) AS VARCHAR)"

    alias = table_alias(prop)
    table = "people" if prop.origin == "user" else "events"
    range_join_sql = (
        f"CROSS JOIN (SELECT min({value}) AS lo, max({value}) AS hi "
        f"FROM {table} AS {alias} WHERE {alias}.project_id = {project_sql}) AS bounds"
    )

    width = f"((bounds.hi - bounds.lo) / {RANGE_BUCKETS})"
    index = (
        f"least(CAST(floor(({value} - bounds.lo) / {width}) AS BIGINT), "
        f"{RANGE_BUCKETS - 1})"
    )
    lower = f"(bounds.lo + {index} * {width})"
    upper = f"(bounds.lo + ({index} + 1) * {width})"
    rank = (
        f"CASE WHEN {value} IS NULL THEN NULL "
        f"WHEN bounds.hi = bounds.lo THEN 0 ELSE {index} END"
    )
    label = (
        f"CASE WHEN {value} IS NULL THEN NULL "
        f"WHEN bounds.hi = bounds.lo THEN {fmt('bounds.lo')} "
        f"ELSE {fmt(lower)} || ' - ' || {fmt(upper)} END"
    )
    return BreakdownFragment(
        select_sql=_labelled(label),
        range_join_sql=range_join_sql,
        rank_sql=rank,
        needs_people_join=prop.origin == "user",
    )
