"""Parameter binding and property access shared by the query builders.

Every user-supplied value reaches DuckDB as a named parameter; the SQL text
only ever contains placeholders, column references and fixed keywords.
Placeholders are wrapped in explicit casts so DuckDB can resolve overloaded
functions without knowing the parameter types up front.
"""

from __future__ import annotations

from typing import Any

from trendline.types import PropertyRef

EVENT_ALIAS = "e"
PEOPLE_ALIAS = "p"


class ParamBinder:
    """Collects named parameters for one compiled statement.

    Example:
        ```python
        binder = ParamBinder()
        placeholder = binder.bind("US", "VARCHAR")   # 'CAST($v0 AS VARCHAR)'
        binder.params                                # {'v0': 'US'}
        ```
    """

    def __init__(self) -> None:
        self._params: dict[str, Any] = {}
        self._counters: dict[str, int] = {}
        self._keys: dict[str, str] = {}

    @property
    def params(self) -> dict[str, Any]:
        """A copy of the bound parameters, keyed by name (without '$')."""
        return dict(self._params)

    def bind(self, value: Any, sql_type: str, prefix: str = "v") -> str:
        """Bind a value under a fresh generated name.

        Returns:
            Cast placeholder expression to splice into SQL.
        """
        index = self._counters.get(prefix, 0)
        self._counters[prefix] = index + 1
        name = f"{prefix}{index}"
        self._params[name] = value
        return f"CAST(${name} AS {sql_type})"

    def bind_named(self, name: str, value: Any, sql_type: str) -> str:
        """Bind a value under a fixed name; rebinding the same value is a no-op.

        Raises:
            ValueError: If the name is already bound to a different value.
        """
        if name in self._params and self._params[name] != value:
            raise ValueError(f"Parameter {name!r} is already bound to another value")
        self._params[name] = value
        return f"CAST(${name} AS {sql_type})"

    def bind_key(self, key: str) -> str:
        """Bind a JSON pointer for a property key, reusing it on repeat lookups."""
        pointer = json_pointer(key)
        if pointer not in self._keys:
            self._keys[pointer] = self.bind(pointer, "VARCHAR", prefix="k")
        return self._keys[pointer]


def json_pointer(key: str) -> str:
    """RFC 6901 pointer addressing a top-level key of a JSON object.

    Example:
        ```python
        json_pointer("a/b")   # '/a~1b'
        ```
    """
    return "/" + key.replace("~", "~0").replace("/", "~1")


def table_alias(prop: PropertyRef) -> str:
    """Alias of the table a property is read from."""
    return PEOPLE_ALIAS if prop.origin == "user" else EVENT_ALIAS


def property_json(prop: PropertyRef, binder: ParamBinder) -> str:
    """Expression yielding the property's raw JSON value."""
    return f"json_extract({table_alias(prop)}.properties, {binder.bind_key(prop.name)})"


def property_text(prop: PropertyRef, binder: ParamBinder) -> str:
    """Expression yielding the property value as text (NULL when absent)."""
    return (
        f"json_extract_string({table_alias(prop)}.properties, "
        f"{binder.bind_key(prop.name)})"
    )


def property_number(prop: PropertyRef, binder: ParamBinder) -> str:
    """Expression yielding the property value as DOUBLE (NULL when not numeric)."""
    return f"TRY_CAST({property_text(prop, binder)} AS DOUBLE)"
