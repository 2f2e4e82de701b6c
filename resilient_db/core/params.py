"""SQL parameter marker normalization.

Command text marks parameters as ``@name``. Before execution the markers
are converted to the driver's paramstyle: ``%(name)s`` for psycopg,
``?`` for pyodbc. Only markers naming a parameter attached to the command
are converted, so T-SQL local variables and ``@@`` system functions are
left alone. String literals and quoted identifiers are never touched.
"""

from __future__ import annotations

import re
from functools import lru_cache

# Matches @name but not @@name and not inside words
_PARAM_PATTERN = re.compile(r"(?<![@\w])@([a-zA-Z_]\w*)")

# Matches single-quoted string literals and double-quoted identifiers ('' and "" escapes)
_QUOTED_PATTERN = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"")


def normalize_params(
    sql: str,
    paramstyle: str,
    parameter_names: tuple[str, ...],
) -> tuple[str, tuple[str, ...]]:
    """Convert @name markers to the target param style.

    Args:
        sql: SQL text with @name markers.
        paramstyle: 'pyformat' (%(name)s) or 'qmark' (?).
        parameter_names: Names of the parameters attached to the command.

    Returns:
        Tuple of (converted SQL, parameter names in marker order). The order
        only matters for 'qmark', where a name repeats once per marker.
    """
    if not parameter_names:
        return sql, ()
    return _convert(sql, paramstyle, tuple(parameter_names))


def bind_key(name: str) -> str:
    """Key under which a parameter value is passed to psycopg."""
    return name.lstrip("@")


def _lookup_name(marker: str, parameter_names: tuple[str, ...]) -> str | None:
    lowered = marker.lower()
    for name in parameter_names:
        if name.lstrip("@").lower() == lowered:
            return name
    return None


@lru_cache(maxsize=256)
def _convert(
    sql: str,
    paramstyle: str,
    parameter_names: tuple[str, ...],
) -> tuple[str, tuple[str, ...]]:
    order: list[str] = []

    def replace(match: re.Match[str]) -> str:
        name = _lookup_name(match.group(1), parameter_names)
        if name is None:
            return escape(match.group())
        order.append(name)
        if paramstyle == "qmark":
            return "?"
        return f"%({bind_key(name)})s"

    def escape(text: str) -> str:
        # psycopg treats every % as a placeholder prefix once parameters are passed
        return text.replace("%", "%%") if paramstyle == "pyformat" else text

    # Tokenize: split into quoted segments and code segments
    parts: list[str] = []
    last_end = 0

    for match in _QUOTED_PATTERN.finditer(sql):
        start, end = match.span()
        if start > last_end:
            parts.append(_substitute(sql[last_end:start], replace, escape))
        parts.append(escape(match.group()))
        last_end = end

    if last_end < len(sql):
        parts.append(_substitute(sql[last_end:], replace, escape))

    return "".join(parts), tuple(order)


def _substitute(segment: str, replace, escape) -> str:  # type: ignore[no-untyped-def]
    """Escape plain text and replace markers within one code segment."""
    pieces: list[str] = []
    last_end = 0
    for match in _PARAM_PATTERN.finditer(segment):
        pieces.append(escape(segment[last_end : match.start()]))
        pieces.append(replace(match))
        last_end = match.end()
    pieces.append(escape(segment[last_end:]))
    return "".join(pieces)
