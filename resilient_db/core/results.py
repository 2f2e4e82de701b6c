"""Result materialization.

Turns a DB-API cursor into the shape a caller asked for: a scalar, rows of
strings with their column names, a table of native values, a set of
tables, or a lazy sequence of row dicts. Readers stop fetching as soon as
the row limit is reached.
"""

from __future__ import annotations

import datetime
import re
from collections import Counter
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from resilient_db.core.columns import get_column_index, get_column_mapping, get_column_value
from resilient_db.core.constants import RET_VAL_OK


class ExecutionResult(NamedTuple):
    """Outcome of an execution entry point.

    ``data`` holds the materialized result (scalar, RowSet, DataTable,
    DataSet or server version); ``message`` holds the last error message
    when the call failed.
    """

    success: bool
    data: Any = None
    return_code: int = RET_VAL_OK
    message: str = ""


@dataclass
class RowSet:
    """Rows of strings plus the column names captured from the cursor."""

    columns: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[list[str]]:
        return iter(self.rows)

    def column_map(self) -> dict[str, int]:
        return get_column_mapping(self.columns)

    def get_value(self, row: Sequence[str], column_name: str, default: Any = None) -> Any:
        """See :func:`resilient_db.core.columns.get_column_value`."""
        return get_column_value(row, self.column_map(), column_name, default)


@dataclass
class DataTable:
    """Rows of native values, as returned by the driver."""

    columns: list[str] = field(default_factory=list)
    rows: list[tuple[Any, ...]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def column(self, name: str) -> list[Any]:
        index = get_column_index(self.column_map(), name)
        return [row[index] for row in self.rows]

    def column_map(self) -> dict[str, int]:
        return get_column_mapping(self.columns)

    def to_dicts(self) -> list[dict[str, Any]]:
        return [dict(zip(self.columns, row, strict=True)) for row in self.rows]


@dataclass
class DataSet:
    """Every result set produced by one command."""

    tables: list[DataTable] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.tables)

    def __getitem__(self, index: int) -> DataTable:
        return self.tables[index]

    def __iter__(self) -> Iterator[DataTable]:
        return iter(self.tables)


def value_to_string(value: Any) -> str:
    """Textual form of a cell; database null becomes an empty string."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, datetime.datetime):
        return value.isoformat(sep=" ")
    return str(value)


def column_names(cursor: Any) -> list[str]:
    if cursor.description is None:
        return []
    return [desc[0] for desc in cursor.description]


def fetch_limited(cursor: Any, max_rows: int = 0) -> Iterator[Sequence[Any]]:
    """Yield rows one at a time, never fetching past *max_rows* (0 = no limit)."""
    if cursor.description is None:
        return
    count = 0
    while True:
        row = cursor.fetchone()
        if row is None:
            return
        yield row
        count += 1
        if 0 < max_rows <= count:
            return


def read_scalar(cursor: Any) -> Any:
    """First column of the first row, or None."""
    if cursor.description is None:
        return None
    row = cursor.fetchone()
    if row is None:
        return None
    return row[0]


def read_string_rows(cursor: Any, max_rows: int = 0) -> RowSet:
    result = RowSet(columns=column_names(cursor))
    for row in fetch_limited(cursor, max_rows):
        result.rows.append([value_to_string(value) for value in row])
    return result


def read_table(cursor: Any, max_rows: int = 0) -> DataTable:
    result = DataTable(columns=column_names(cursor))
    for row in fetch_limited(cursor, max_rows):
        result.rows.append(tuple(row))
    return result


def read_data_set(cursor: Any) -> DataSet:
    """Read the current result set and every following one."""
    result = DataSet()
    while True:
        if cursor.description is not None:
            result.tables.append(read_table(cursor))
        if not cursor.nextset():
            return result


def to_row_set(table: DataTable) -> RowSet:
    return RowSet(
        columns=list(table.columns),
        rows=[[value_to_string(value) for value in row] for row in table.rows],
    )


def iter_rows(
    cursor: Any, max_rows: int = 0, columns: list[str] | None = None
) -> Iterator[dict[str, Any]]:
    """Lazily convert rows to dicts keyed by column name.

    *columns* overrides the names reported by the cursor.
    """
    if columns is None:
        columns = column_names(cursor)
    for row in fetch_limited(cursor, max_rows):
        yield dict(zip(columns, row, strict=True))


# ---------------------------------------------------------------------------
# Column name capitalization (PostgreSQL folds unquoted names to lower case)
# ---------------------------------------------------------------------------

_SELECT_LIST = re.compile(
    r"^\s*SELECT\s+(?:DISTINCT\s+|ALL\s+)?(?P<columns>.+?)\s+FROM\s",
    re.IGNORECASE | re.DOTALL,
)
_ALIAS = re.compile(r"\s+AS\s+(\w+)\s*$", re.IGNORECASE)
_IDENTIFIER = re.compile(r"^[A-Za-z_]\w*$")


def _split_select_list(text: str) -> list[str]:
    """Split on commas that are not inside parentheses or quotes."""
    items: list[str] = []
    depth = 0
    quote: str | None = None
    start = 0
    for index, char in enumerate(text):
        if quote is not None:
            if char == quote:
                quote = None
        elif char in "'\"":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == "," and depth == 0:
            items.append(text[start:index])
            start = index + 1
    items.append(text[start:])
    return items


def _select_item_name(item: str) -> str | None:
    item = item.strip()
    # Double-quoted identifiers already keep their case
    if not item or '"' in item:
        return None
    alias = _ALIAS.search(item)
    candidate = alias.group(1) if alias else item.split()[-1]
    candidate = candidate.rsplit(".", 1)[-1]
    return candidate if _IDENTIFIER.match(candidate) else None


def capitalize_column_names(sql: str, columns: list[str]) -> list[str]:
    """Restore the capitalization used in the query's SELECT list.

    Only names with an upper-case letter that appear exactly once in the
    SELECT list are rewritten; duplicates keep the engine's casing.
    """
    match = _SELECT_LIST.match(sql)
    if match is None:
        return columns

    names = [
        name
        for name in (_select_item_name(item) for item in _split_select_list(match["columns"]))
        if name is not None
    ]
    counts = Counter(name.lower() for name in names)
    renames = {
        name.lower(): name
        for name in names
        if counts[name.lower()] == 1 and name != name.lower()
    }
    if not renames:
        return columns
    return [renames.get(column, column) for column in columns]
