"""Neutral SQL types and conversions to each engine's type system.

SqlType uses the commonly understood database names rather than Python
types, so callers can say VARCHAR or DATE without caring which server the
command is sent to. The lookup tables below are module-level and never
mutated after import.
"""

from __future__ import annotations

import datetime
import decimal
import uuid
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from resilient_db.core.exceptions import UnsupportedTypeError


class SqlType(Enum):
    """Commonly used SQL types, converted by each executor to native types."""

    BIT = "bit"
    BOOLEAN = "boolean"
    TINYINT = "tinyint"
    SMALLINT = "smallint"
    INT = "int"
    BIGINT = "bigint"
    REAL = "real"
    FLOAT = "float"
    DECIMAL = "decimal"
    MONEY = "money"
    CHAR = "char"
    VARCHAR = "varchar"
    TEXT = "text"
    CITEXT = "citext"
    NAME = "name"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    TIMESTAMPTZ = "timestamptz"
    UUID = "uuid"
    XML = "xml"
    INTERVAL = "interval"
    JSON = "json"


@dataclass(frozen=True)
class TypeNameInfo:
    """Result of resolving a free-text data type name."""

    sql_type: SqlType
    supports_size: bool = False


_NAME_TO_TYPE: MappingProxyType[str, TypeNameInfo] = MappingProxyType(
    {
        "bit": TypeNameInfo(SqlType.BOOLEAN),
        "bool": TypeNameInfo(SqlType.BOOLEAN),
        "boolean": TypeNameInfo(SqlType.BOOLEAN),
        "tinyint": TypeNameInfo(SqlType.TINYINT),
        "byte": TypeNameInfo(SqlType.TINYINT),
        "smallint": TypeNameInfo(SqlType.SMALLINT),
        "int16": TypeNameInfo(SqlType.SMALLINT),
        "int2": TypeNameInfo(SqlType.SMALLINT),
        "int": TypeNameInfo(SqlType.INT),
        "int32": TypeNameInfo(SqlType.INT),
        "integer": TypeNameInfo(SqlType.INT),
        "int4": TypeNameInfo(SqlType.INT),
        "oid": TypeNameInfo(SqlType.INT),
        "bigint": TypeNameInfo(SqlType.BIGINT),
        "int64": TypeNameInfo(SqlType.BIGINT),
        "long": TypeNameInfo(SqlType.BIGINT),
        "int8": TypeNameInfo(SqlType.BIGINT),
        "real": TypeNameInfo(SqlType.REAL),
        "single": TypeNameInfo(SqlType.REAL),
        "float": TypeNameInfo(SqlType.FLOAT),
        "double": TypeNameInfo(SqlType.FLOAT),
        "double precision": TypeNameInfo(SqlType.FLOAT),
        "numeric": TypeNameInfo(SqlType.DECIMAL),
        "decimal": TypeNameInfo(SqlType.DECIMAL),
        "money": TypeNameInfo(SqlType.MONEY),
        # information_schema.parameters reports the PostgreSQL char type as "char"
        '"char"': TypeNameInfo(SqlType.CHAR, supports_size=True),
        "char": TypeNameInfo(SqlType.CHAR, supports_size=True),
        "character": TypeNameInfo(SqlType.CHAR, supports_size=True),
        "nchar": TypeNameInfo(SqlType.CHAR, supports_size=True),
        "varchar": TypeNameInfo(SqlType.VARCHAR),
        "character varying": TypeNameInfo(SqlType.VARCHAR),
        "nvarchar": TypeNameInfo(SqlType.VARCHAR),
        "string": TypeNameInfo(SqlType.VARCHAR),
        "regclass": TypeNameInfo(SqlType.VARCHAR),
        "inet": TypeNameInfo(SqlType.VARCHAR),
        "text": TypeNameInfo(SqlType.TEXT),
        "ntext": TypeNameInfo(SqlType.TEXT),
        "citext": TypeNameInfo(SqlType.CITEXT),
        "name": TypeNameInfo(SqlType.NAME),
        "json": TypeNameInfo(SqlType.JSON),
        "interval": TypeNameInfo(SqlType.INTERVAL),
        "date": TypeNameInfo(SqlType.DATE, supports_size=True),
        "time": TypeNameInfo(SqlType.TIME, supports_size=True),
        "datetime": TypeNameInfo(SqlType.DATETIME, supports_size=True),
        "timestamp": TypeNameInfo(SqlType.DATETIME, supports_size=True),
        "timestamp without time zone": TypeNameInfo(SqlType.DATETIME, supports_size=True),
        "datetimeoffset": TypeNameInfo(SqlType.TIMESTAMPTZ, supports_size=True),
        "timestamptz": TypeNameInfo(SqlType.TIMESTAMPTZ, supports_size=True),
        "timestamp with time zone": TypeNameInfo(SqlType.TIMESTAMPTZ, supports_size=True),
        "uuid": TypeNameInfo(SqlType.UUID),
        "uniqueidentifier": TypeNameInfo(SqlType.UUID),
        "xml": TypeNameInfo(SqlType.XML),
    }
)

# Database types that are recognized but have no neutral equivalent
_UNMAPPED_TYPE_NAMES = frozenset({"blob", "binary", "bytea", "refcursor", "sql_variant"})

_POSTGRES_TYPES: MappingProxyType[SqlType, str] = MappingProxyType(
    {
        SqlType.BIT: "bit",
        SqlType.BOOLEAN: "boolean",
        SqlType.TINYINT: "smallint",
        SqlType.SMALLINT: "smallint",
        SqlType.INT: "integer",
        SqlType.BIGINT: "bigint",
        SqlType.REAL: "real",
        SqlType.FLOAT: "double precision",
        SqlType.DECIMAL: "numeric",
        SqlType.MONEY: "money",
        SqlType.CHAR: "char",
        SqlType.VARCHAR: "varchar",
        SqlType.TEXT: "text",
        SqlType.CITEXT: "citext",
        SqlType.NAME: "name",
        SqlType.DATE: "date",
        SqlType.TIME: "time",
        SqlType.DATETIME: "timestamp",
        SqlType.TIMESTAMPTZ: "timestamptz",
        SqlType.UUID: "uuid",
        SqlType.XML: "xml",
        SqlType.INTERVAL: "interval",
        SqlType.JSON: "json",
    }
)

_SQLSERVER_TYPES: MappingProxyType[SqlType, str] = MappingProxyType(
    {
        SqlType.BIT: "bit",
        SqlType.BOOLEAN: "bit",
        SqlType.TINYINT: "tinyint",
        SqlType.SMALLINT: "smallint",
        SqlType.INT: "int",
        SqlType.BIGINT: "bigint",
        SqlType.REAL: "real",
        SqlType.FLOAT: "float",
        SqlType.DECIMAL: "decimal",
        SqlType.MONEY: "money",
        SqlType.CHAR: "char",
        SqlType.VARCHAR: "varchar",
        SqlType.TEXT: "varchar(max)",
        SqlType.CITEXT: "varchar(max)",
        SqlType.NAME: "sysname",
        SqlType.DATE: "date",
        SqlType.TIME: "time",
        SqlType.DATETIME: "datetime",
        SqlType.TIMESTAMPTZ: "datetimeoffset",
        SqlType.UUID: "uniqueidentifier",
        SqlType.XML: "xml",
        SqlType.JSON: "nvarchar(max)",
    }
)


def get_sql_type_by_name(type_name: str) -> TypeNameInfo | None:
    """Resolve a data type name such as "int4" or "character varying".

    Returns None when the name is not recognized, or names a type with no
    neutral equivalent (bytea, refcursor, ...).
    """
    key = type_name.strip().lower()
    if key in _UNMAPPED_TYPE_NAMES:
        return None
    return _NAME_TO_TYPE.get(key)


def sql_type_name(sql_type: SqlType) -> str:
    """Canonical textual name of a SqlType, e.g. "bigint"."""
    return sql_type.value


def to_postgres_type(sql_type: SqlType) -> str:
    """PostgreSQL type name used when casting a parameter."""
    try:
        return _POSTGRES_TYPES[sql_type]
    except KeyError:
        raise UnsupportedTypeError(sql_type, "PostgreSQL") from None


def to_sqlserver_type(
    sql_type: SqlType,
    size: int = 0,
    precision: int | None = None,
    scale: int | None = None,
) -> str:
    """SQL Server type declaration, including size or precision where relevant."""
    try:
        name = _SQLSERVER_TYPES[sql_type]
    except KeyError:
        raise UnsupportedTypeError(sql_type, "SQL Server") from None

    if sql_type is SqlType.VARCHAR:
        return f"{name}({size})" if size > 0 else f"{name}(max)"
    if sql_type is SqlType.CHAR:
        return f"{name}({size})" if size > 0 else name
    if sql_type is SqlType.DECIMAL and precision is not None:
        return f"{name}({precision}, {scale or 0})"
    return name


def sql_type_for_python_type(python_type: type) -> SqlType:
    """Preferred SqlType for values of the given Python type."""
    # bool is a subclass of int; check it first
    if issubclass(python_type, bool):
        return SqlType.BOOLEAN
    if issubclass(python_type, int):
        return SqlType.INT
    if issubclass(python_type, float):
        return SqlType.FLOAT
    if issubclass(python_type, decimal.Decimal):
        return SqlType.DECIMAL
    # datetime is a subclass of date; check it first
    if issubclass(python_type, datetime.datetime):
        return SqlType.DATETIME
    if issubclass(python_type, datetime.date):
        return SqlType.DATE
    if issubclass(python_type, datetime.time):
        return SqlType.TIME
    if issubclass(python_type, uuid.UUID):
        return SqlType.UUID
    return SqlType.VARCHAR


def sql_type_for_value(value: Any) -> SqlType:
    """Preferred SqlType for a value; None maps to VARCHAR."""
    if value is None:
        return SqlType.VARCHAR
    return sql_type_for_python_type(type(value))
