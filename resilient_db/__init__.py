"""resilient_db - retrying query and stored procedure execution for SQL Server and PostgreSQL."""

from __future__ import annotations

from resilient_db.adapters.postgresql import PostgresDBTools
from resilient_db.adapters.protocol import DBTools
from resilient_db.adapters.sqlserver import SqlServerDBTools
from resilient_db.core.columns import get_column_index, get_column_mapping, get_column_value
from resilient_db.core.command import Command, Parameter, PostgresCommand, SqlServerCommand
from resilient_db.core.connection import (
    ConnectionDescriptor,
    mask_connection_string_password,
)
from resilient_db.core.constants import (
    RET_VAL_DEADLOCK,
    RET_VAL_EXCESSIVE_RETRIES,
    RET_VAL_OK,
    RET_VAL_UNDEFINED_ERROR,
)
from resilient_db.core.enums import (
    CommandType,
    ErrorKind,
    EventLevel,
    ParameterDirection,
    ServerType,
)
from resilient_db.core.events import Event, EventHandler
from resilient_db.core.exceptions import (
    ColumnMismatchError,
    ColumnNotFoundError,
    CommandTypeError,
    ConfigurationError,
    ExecutionError,
    MappingError,
    ResilientDbError,
    StreamInterruptedError,
    TransactionError,
    TransactionStateError,
    UnsupportedTypeError,
)
from resilient_db.core.factory import (
    get_db_tools,
    get_server_type_from_connection_string,
    sql_type_for_python_type,
)
from resilient_db.core.results import DataSet, DataTable, ExecutionResult, RowSet
from resilient_db.core.retry import RetrySettings
from resilient_db.core.sql_types import SqlType, get_sql_type_by_name
from resilient_db.mapping.model import ModelMapper

__all__ = [
    # Factory
    "get_db_tools",
    "get_server_type_from_connection_string",
    "sql_type_for_python_type",
    # Executors
    "DBTools",
    "PostgresDBTools",
    "SqlServerDBTools",
    # Configuration
    "ConnectionDescriptor",
    "RetrySettings",
    "mask_connection_string_password",
    # Commands
    "Command",
    "PostgresCommand",
    "SqlServerCommand",
    "Parameter",
    "SqlType",
    "get_sql_type_by_name",
    # Results
    "ExecutionResult",
    "RowSet",
    "DataTable",
    "DataSet",
    "get_column_mapping",
    "get_column_index",
    "get_column_value",
    # Mapping
    "ModelMapper",
    # Events
    "Event",
    "EventHandler",
    # Enums
    "CommandType",
    "ErrorKind",
    "EventLevel",
    "ParameterDirection",
    "ServerType",
    # Return codes
    "RET_VAL_OK",
    "RET_VAL_UNDEFINED_ERROR",
    "RET_VAL_DEADLOCK",
    "RET_VAL_EXCESSIVE_RETRIES",
    # Exceptions
    "ResilientDbError",
    "ConfigurationError",
    "CommandTypeError",
    "UnsupportedTypeError",
    "ExecutionError",
    "StreamInterruptedError",
    "MappingError",
    "ColumnMismatchError",
    "ColumnNotFoundError",
    "TransactionError",
    "TransactionStateError",
]
