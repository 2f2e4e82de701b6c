"""Executor selection from a connection string."""

from __future__ import annotations

from typing import Any

from resilient_db.adapters.postgresql import PostgresDBTools
from resilient_db.adapters.protocol import DBTools
from resilient_db.adapters.sqlserver import SqlServerDBTools
from resilient_db.core.connection import get_server_type_from_connection_string
from resilient_db.core.constants import DEFAULT_SP_TIMEOUT_SEC
from resilient_db.core.enums import ServerType
from resilient_db.core.exceptions import ConfigurationError
from resilient_db.core.sql_types import sql_type_for_python_type

__all__ = [
    "get_db_tools",
    "get_server_type_from_connection_string",
    "sql_type_for_python_type",
]


def get_db_tools(
    connection_string: str,
    timeout_seconds: int = DEFAULT_SP_TIMEOUT_SEC,
    debug: bool = False,
    **options: Any,
) -> DBTools:
    """Create the executor matching the server a connection string targets.

    Args:
        connection_string: SQL Server or PostgreSQL connection string. A
            ``DbServerType=Postgres;`` token forces the server type.
        timeout_seconds: Default command timeout.
        debug: Raise debug events.
        **options: Passed to the executor (e.g. ``connect``).

    Raises:
        ConfigurationError: If the connection string is empty.
    """
    if not connection_string or not connection_string.strip():
        raise ConfigurationError("Connection string cannot be empty")

    server_type = get_server_type_from_connection_string(connection_string)
    if server_type is ServerType.POSTGRESQL:
        return PostgresDBTools(connection_string, timeout_seconds, debug, **options)
    return SqlServerDBTools(connection_string, timeout_seconds, debug, **options)
