"""Column lookup helpers for rows materialized as strings.

Rows returned by ``get_query_results`` hold database nulls as empty
strings. ``get_column_value`` turns those strings back into typed values,
returning the caller's default for empty or unparseable text.
"""

from __future__ import annotations

import datetime
from collections.abc import Mapping, Sequence
from typing import TypeVar, overload

from resilient_db.core.exceptions import ColumnNotFoundError

T = TypeVar("T")

_TRUE_TEXT = frozenset({"true", "t", "yes", "y", "1"})
_FALSE_TEXT = frozenset({"false", "f", "no", "n", "0"})


def get_column_mapping(columns: Sequence[str]) -> dict[str, int]:
    """Map each column name to its index."""
    return {name: index for index, name in enumerate(columns)}


def get_column_index(column_map: Mapping[str, int], column_name: str) -> int:
    """Index of *column_name*, trying an exact match before a case-insensitive one.

    Raises:
        ColumnNotFoundError: If the column is not in the map.
    """
    if column_name in column_map:
        return column_map[column_name]

    wanted = column_name.lower()
    for name, index in column_map.items():
        if name.lower() == wanted:
            return index

    raise ColumnNotFoundError(column_name, list(column_map))


def _parse(text: str, default: T) -> T:
    # bool before int, datetime before date: both are subclasses
    if isinstance(default, bool):
        lowered = text.lower()
        if lowered in _TRUE_TEXT:
            return True  # type: ignore[return-value]
        if lowered in _FALSE_TEXT:
            return False  # type: ignore[return-value]
        return default
    try:
        if isinstance(default, int):
            return int(text)  # type: ignore[return-value]
        if isinstance(default, float):
            return float(text)  # type: ignore[return-value]
        if isinstance(default, datetime.datetime):
            return datetime.datetime.fromisoformat(text)  # type: ignore[return-value]
        if isinstance(default, datetime.date):
            return datetime.date.fromisoformat(text)  # type: ignore[return-value]
    except ValueError:
        return default
    return text  # type: ignore[return-value]


@overload
def get_column_value(
    row: Sequence[str], column_map: Mapping[str, int], column_name: str
) -> str: ...


@overload
def get_column_value(
    row: Sequence[str], column_map: Mapping[str, int], column_name: str, default: T
) -> T: ...


def get_column_value(row, column_map, column_name, default=None):  # type: ignore[no-untyped-def]
    """Value of a column in a string row.

    Without a default the raw text is returned. With a default, the text is
    parsed to the default's type (bool, int, float, datetime, date or str);
    empty or unparseable text yields the default.
    """
    index = get_column_index(column_map, column_name)
    text = row[index] if index < len(row) else ""

    if default is None:
        return text
    if not text.strip():
        return default
    return _parse(text.strip(), default)
