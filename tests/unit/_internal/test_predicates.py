"""Unit tests for the filter and breakdown predicate builder.

Fragments are evaluated against an in-memory DuckDB store so the tests check
which rows match rather than the exact SQL text.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import pytest

from trendline._internal.query.assembler import PEOPLE_JOIN
from trendline._internal.query.fragments import ParamBinder, json_pointer
from trendline._internal.query.predicates import (
    MATCH_ALL,
    MATCH_NOTHING,
    PropertySchema,
    build_breakdown,
    build_filter_predicate,
)
from trendline._internal.storage import StorageEngine
from trendline.types import (
    Breakdown,
    FilterClause,
    PropertyDefinition,
    PropertyRef,
)

SCHEMA = PropertySchema(
    [
        PropertyDefinition("country", "string", "event"),
        PropertyDefinition("amount", "number", "event"),
        PropertyDefinition("renewal", "date", "event"),
        PropertyDefinition("paid", "boolean", "event"),
        PropertyDefinition("tags", "array", "event"),
        PropertyDefinition("meta", "other", "event"),
        PropertyDefinition("plan", "string", "user"),
    ]
)


@pytest.fixture
def store(
    loaded_storage: StorageEngine, make_event: Callable[..., dict[str, Any]]
) -> StorageEngine:
    """Sample store plus Renew events carrying date, boolean and array values."""
    loaded_storage.insert_events(
        "proj-1",
        [
            make_event(
                "Renew",
                "u1",
                datetime(2024, 1, 4, 9),
                renewal="2024-02-01T10:00:00",
                paid=True,
                tags=["beta", "mobile"],
                meta={"k": 1},
            ),
            make_event(
                "Renew",
                "u2",
                datetime(2024, 1, 4, 10),
                renewal="2024-03-15",
                paid=False,
                tags=["web"],
            ),
        ],
    )
    return loaded_storage


def _matches(
    storage: StorageEngine, *clauses: FilterClause
) -> list[tuple[str, str]]:
    """(event_name, distinct_id) of proj-1 rows matching all clauses."""
    binder = ParamBinder()
    fragment = build_filter_predicate(clauses, SCHEMA, binder)
    project = binder.bind_named("project_id", "proj-1", "VARCHAR")
    join = PEOPLE_JOIN if fragment.needs_people_join else ""
    sql = (
        f"SELECT e.event_name, e.distinct_id FROM events AS e {join} "
        f"WHERE e.project_id = {project} AND ({fragment.sql}) "
        "ORDER BY e.event_time"
    )
    return storage.execute_rows_params(sql, binder.params).rows


def _string(name: str, op: str, value: Any = None) -> FilterClause:
    return FilterClause(PropertyRef(name), "string", op, value)


# =============================================================================
# Filters
# =============================================================================


class TestFilterCombination:
    """Tests for clause combination and unknown properties."""

    def test_no_filters_match_all(self) -> None:
        """An empty filter list is 1 = 1."""
        fragment = build_filter_predicate([], SCHEMA, ParamBinder())
        assert fragment.sql == MATCH_ALL
        assert not fragment.needs_people_join

    def test_unknown_property_matches_nothing(self, store: StorageEngine) -> None:
        """A property missing from the schema matches no rows."""
        clause = _string("browser", "is", "Chrome")
        fragment = build_filter_predicate([clause], SCHEMA, ParamBinder())
        assert fragment.sql == f"({MATCH_NOTHING})"
        assert _matches(store, clause) == []

    def test_unknown_user_property_needs_no_join(self) -> None:
        """Unknown user properties don't pull in the people table."""
        clause = FilterClause(PropertyRef("tier", "user"), "string", "is", "gold")
        fragment = build_filter_predicate([clause], SCHEMA, ParamBinder())
        assert not fragment.needs_people_join

    def test_clauses_are_and_combined(self, store: StorageEngine) -> None:
        """All clauses must hold."""
        rows = _matches(
            store,
            _string("country", "is", "US"),
            FilterClause(PropertyRef("plan", "user"), "string", "is", "pro"),
        )
        assert rows == [("Signup", "u1")]

    def test_values_are_bound_not_inlined(self) -> None:
        """User values only reach the SQL as parameters."""
        binder = ParamBinder()
        fragment = build_filter_predicate(
            [_string("country", "is", "x'; DROP TABLE events; --")], SCHEMA, binder
        )
        assert "DROP" not in fragment.sql
        assert "x'; DROP TABLE events; --" in binder.params["v0"]

    def test_property_key_bound_once(self) -> None:
        """Repeated properties reuse one key parameter."""
        binder = ParamBinder()
        build_filter_predicate(
            [_string("country", "is_set"), _string("country", "is", "US")],
            SCHEMA,
            binder,
        )
        keys = [name for name in binder.params if name.startswith("k")]
        assert keys == ["k0"]
        assert binder.params["k0"] == json_pointer("country")


class TestStringFilters:
    """Tests for string operators."""

    def test_is_single_value(self, store: StorageEngine) -> None:
        """'is' matches the exact value."""
        rows = _matches(store, _string("country", "is", "US"))
        assert rows == [("Signup", "u1"), ("Signup", "u3")]

    def test_is_any_of_list(self, store: StorageEngine) -> None:
        """A list value matches any of its items."""
        rows = _matches(store, _string("country", "is", ["US", "CA"]))
        assert len(rows) == 3

    def test_is_not_includes_missing(self, store: StorageEngine) -> None:
        """'is_not' also matches rows without the property."""
        rows = _matches(store, _string("country", "is_not", "US"))
        assert ("Signup", "u2") in rows
        assert ("Purchase", "u1") in rows
        assert ("Signup", "u1") not in rows
        assert len(rows) == 6

    def test_contains_case_insensitive(self, store: StorageEngine) -> None:
        """'contains' ignores case."""
        rows = _matches(store, _string("country", "contains", "c"))
        assert rows == [("Signup", "u2")]

    def test_not_contains_includes_missing(self, store: StorageEngine) -> None:
        """'not_contains' matches rows without the property."""
        rows = _matches(store, _string("country", "not_contains", "us"))
        assert ("Signup", "u1") not in rows
        assert ("Purchase", "u2") in rows

    def test_is_set_and_is_not_set(self, store: StorageEngine) -> None:
        """Presence operators test whether the key exists."""
        assert len(_matches(store, _string("country", "is_set"))) == 3
        assert len(_matches(store, _string("country", "is_not_set"))) == 5


class TestNumberFilters:
    """Tests for number operators."""

    @pytest.mark.parametrize(
        ("operator", "value", "expected"),
        [
            ("equals", 500, 1),
            ("equals", [500, 750], 2),
            ("gt", 750, 1),
            ("gte", 750, 2),
            ("lt", 750, 1),
            ("lte", "750", 2),
            ("between", [600, 1300], 2),
        ],
    )
    def test_comparisons(
        self, store: StorageEngine, operator: str, value: Any, expected: int
    ) -> None:
        """Numeric comparisons cast the property to DOUBLE."""
        clause = FilterClause(PropertyRef("amount"), "number", operator, value)
        assert len(_matches(store, clause)) == expected

    def test_not_equal_includes_missing(self, store: StorageEngine) -> None:
        """'not_equal' also matches rows without a numeric value."""
        clause = FilterClause(PropertyRef("amount"), "number", "not_equal", 500)
        assert len(_matches(store, clause)) == 7

    def test_non_numeric_value_rejected(self) -> None:
        """Operands must coerce to numbers."""
        clause = FilterClause(PropertyRef("amount"), "number", "gt", "lots")
        with pytest.raises(ValueError, match="Expected a number"):
            build_filter_predicate([clause], SCHEMA, ParamBinder())

    def test_boolean_value_rejected(self) -> None:
        """Booleans are not numbers."""
        clause = FilterClause(PropertyRef("amount"), "number", "gt", True)
        with pytest.raises(ValueError, match="Expected a number"):
            build_filter_predicate([clause], SCHEMA, ParamBinder())


class TestDateFilters:
    """Tests for date operators."""

    @pytest.mark.parametrize(
        ("operator", "value", "expected"),
        [
            ("on", "2024-02-01", ["u1"]),
            ("before", "2024-03-01", ["u1"]),
            ("after", "2024-02-01", ["u2"]),
            ("between", ["2024-01-01", "2024-12-31"], ["u1", "u2"]),
        ],
    )
    def test_comparisons(
        self, store: StorageEngine, operator: str, value: Any, expected: list[str]
    ) -> None:
        """Dates compare on the calendar day."""
        clause = FilterClause(PropertyRef("renewal"), "date", operator, value)
        assert [user for _, user in _matches(store, clause)] == expected

    def test_not_on_includes_missing(self, store: StorageEngine) -> None:
        """'not_on' matches rows without a date too."""
        clause = FilterClause(PropertyRef("renewal"), "date", "not_on", "2024-02-01")
        rows = _matches(store, clause)
        assert ("Renew", "u1") not in rows
        assert len(rows) == 7

    def test_invalid_date_rejected(self) -> None:
        """Operands must be YYYY-MM-DD."""
        clause = FilterClause(PropertyRef("renewal"), "date", "on", "soon")
        with pytest.raises(ValueError, match="YYYY-MM-DD"):
            build_filter_predicate([clause], SCHEMA, ParamBinder())


class TestOtherTypes:
    """Tests for boolean, array and other properties."""

    def test_boolean_default_true(self, store: StorageEngine) -> None:
        """Boolean clauses default to matching true."""
        clause = FilterClause(PropertyRef("paid"), "boolean")
        assert _matches(store, clause) == [("Renew", "u1")]

    def test_boolean_false_from_text(self, store: StorageEngine) -> None:
        """Text operands like 'false' are coerced."""
        clause = FilterClause(PropertyRef("paid"), "boolean", "is", "false")
        assert _matches(store, clause) == [("Renew", "u2")]

    def test_array_contains(self, store: StorageEngine) -> None:
        """'contains' tests list membership."""
        clause = FilterClause(PropertyRef("tags"), "array", "contains", "beta")
        assert _matches(store, clause) == [("Renew", "u1")]

    def test_array_not_contains(self, store: StorageEngine) -> None:
        """'not_contains' matches rows without the item or the list."""
        clause = FilterClause(PropertyRef("tags"), "array", "not_contains", "beta")
        rows = _matches(store, clause)
        assert ("Renew", "u1") not in rows
        assert ("Renew", "u2") in rows
        assert len(rows) == 7

    def test_other_is_set(self, store: StorageEngine) -> None:
        """'other' properties support presence checks."""
        clause = FilterClause(PropertyRef("meta"), "other", "is_set")
        assert _matches(store, clause) == [("Renew", "u1")]

    def test_user_property_joins_people(self, store: StorageEngine) -> None:
        """User properties are read from the people table."""
        clause = FilterClause(PropertyRef("plan", "user"), "string", "is", "pro")
        fragment = build_filter_predicate([clause], SCHEMA, ParamBinder())
        assert fragment.needs_people_join
        assert {user for _, user in _matches(store, clause)} == {"u1"}

    def test_user_property_missing_profile(self, store: StorageEngine) -> None:
        """Users without a profile have no user properties."""
        clause = FilterClause(PropertyRef("plan", "user"), "string", "is_not_set")
        assert {user for _, user in _matches(store, clause)} == {"u3"}


# =============================================================================
# Breakdowns
# =============================================================================


def _labels(storage: StorageEngine, breakdown: Breakdown) -> list[tuple[str, int]]:
    """(label, row count) per breakdown group over all proj-1 rows."""
    binder = ParamBinder()
    project = binder.bind_named("project_id", "proj-1", "VARCHAR")
    fragment = build_breakdown(breakdown, SCHEMA, binder, project)
    assert fragment is not None
    lines = ["SELECT " + fragment.select_sql + " AS label, count(*) FROM events AS e"]
    if fragment.range_join_sql:
        lines.append(fragment.range_join_sql)
    if fragment.needs_people_join:
        lines.append(PEOPLE_JOIN)
    lines.append(f"WHERE e.project_id = {project} AND {fragment.guard_sql}")
    lines.append("GROUP BY 1 ORDER BY 1")
    return storage.execute_rows_params("\n".join(lines), binder.params).rows


class TestBreakdown:
    """Tests for build_breakdown."""

    def test_empty_breakdown(self) -> None:
        """No properties means no breakdown."""
        binder = ParamBinder()
        assert build_breakdown(Breakdown(), SCHEMA, binder, "'p'") is None

    def test_string_groups_with_none_label(self, store: StorageEngine) -> None:
        """Rows without the property fall into '(none)'."""
        labels = _labels(store, Breakdown((PropertyRef("country"),)))
        assert labels == [("(none)", 5), ("CA", 1), ("US", 2)]

    def test_user_property_groups(self, store: StorageEngine) -> None:
        """User property breakdowns join people."""
        labels = _labels(store, Breakdown((PropertyRef("plan", "user"),)))
        assert labels == [("(none)", 1), ("free", 3), ("pro", 4)]

    def test_multiple_properties_joined(self, store: StorageEngine) -> None:
        """Several properties combine with ' / '."""
        labels = _labels(
            store, Breakdown((PropertyRef("country"), PropertyRef("plan", "user")))
        )
        assert ("US / pro", 1) in labels
        assert ("(none) / free", 2) in labels
        assert ("US / (none)", 1) in labels

    def test_number_range_buckets(self, store: StorageEngine) -> None:
        """A single number breakdown buckets values between min and max."""
        labels = dict(_labels(store, Breakdown((PropertyRef("amount"),))))
        # min 500, max 1250: width 75
        assert labels["500.0 - 575.0"] == 1
        assert labels["725.0 - 800.0"] == 1
        assert labels["1175.0 - 1250.0"] == 1
        assert labels["(none)"] == 5

    def test_date_range_buckets(self, store: StorageEngine) -> None:
        """Date breakdowns label ranges by day."""
        labels = dict(_labels(store, Breakdown((PropertyRef("renewal"),))))
        assert labels["(none)"] == 6
        assert sum(labels.values()) == 8
        assert any(label.startswith("2024-02-01 - ") for label in labels)

    def test_single_value_range(
        self,
        storage: StorageEngine,
        make_event: Callable[..., dict[str, Any]],
    ) -> None:
        """When min equals max the label is the value itself."""
        storage.insert_events(
            "proj-1", [make_event("Purchase", "u1", datetime(2024, 1, 1), amount=10)]
        )
        assert _labels(storage, Breakdown((PropertyRef("amount"),))) == [
            ("10.0", 1)
        ]

    def test_range_bounds_scoped_to_project(
        self,
        store: StorageEngine,
        make_event: Callable[..., dict[str, Any]],
    ) -> None:
        """Other projects' values don't stretch the ranges."""
        store.insert_events(
            "proj-2", [make_event("Purchase", "x", datetime(2024, 1, 1), amount=10**9)]
        )
        labels = dict(_labels(store, Breakdown((PropertyRef("amount"),))))
        assert "500.0 - 575.0" in labels

    def test_unknown_property_matches_nothing(self, store: StorageEngine) -> None:
        """An unknown breakdown property produces no groups."""
        binder = ParamBinder()
        fragment = build_breakdown(
            Breakdown((PropertyRef("browser"),)), SCHEMA, binder, "'proj-1'"
        )
        assert fragment is not None
        assert fragment.guard_sql == MATCH_NOTHING
        assert _labels(store, Breakdown((PropertyRef("browser"),))) == []
