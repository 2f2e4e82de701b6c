"""SQL Server executor using pyodbc.

pyodbc has no output parameters, so a stored procedure runs as a T-SQL
batch: output parameters become local variables, the procedure is called
with ``EXEC``, and a final ``SELECT`` returns the return value and the
output variables. That last result set is copied back into the command's
Parameter objects.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from enum import Enum
from typing import Any, TypeVar

from pydantic import ValidationError

from resilient_db.core.classifier import SQLSERVER_CLASSIFIER
from resilient_db.core.command import (
    UNSET,
    Command,
    Parameter,
    SqlServerCommand,
    get_return_code,
)
from resilient_db.core.connection import (
    ConnectionDescriptor,
    normalize_timeout,
    parse_connection_string,
    strip_server_type,
)
from resilient_db.core.constants import (
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_DELAY_SEC,
    DEFAULT_SP_RETRY_COUNT,
    DEFAULT_SP_RETRY_DELAY_SEC,
    DEFAULT_SP_TIMEOUT_SEC,
    RET_VAL_OK,
)
from resilient_db.core.enums import CommandType, ParameterDirection, ServerType
from resilient_db.core.events import EventNotifier
from resilient_db.core.exceptions import (
    CommandTypeError,
    ConfigurationError,
    StreamInterruptedError,
)
from resilient_db.core.params import normalize_params
from resilient_db.core.results import (
    DataSet,
    DataTable,
    ExecutionResult,
    RowSet,
    iter_rows,
    read_data_set,
    read_scalar,
    read_string_rows,
    read_table,
    to_row_set,
)
from resilient_db.core.retry import RetryOutcome, RetrySettings, run_with_retries
from resilient_db.core.sql_types import (
    SqlType,
    get_sql_type_by_name,
    sql_type_for_value,
    to_sqlserver_type,
)

T = TypeVar("T")

LOGGER_NAME = "resilient_db.sqlserver"

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

RETURN_VALUE_COLUMN = "__return_value"

# ADO.NET connection string keywords mapped to ODBC keywords
_ODBC_KEYS: dict[str, str] = {
    "driver": "DRIVER",
    "server": "SERVER",
    "data source": "SERVER",
    "address": "SERVER",
    "addr": "SERVER",
    "network address": "SERVER",
    "database": "DATABASE",
    "initial catalog": "DATABASE",
    "user id": "UID",
    "uid": "UID",
    "user": "UID",
    "password": "PWD",
    "pwd": "PWD",
    "application name": "APP",
    "app": "APP",
    "encrypt": "Encrypt",
    "trustservercertificate": "TrustServerCertificate",
    "trust server certificate": "TrustServerCertificate",
    "multisubnetfailover": "MultiSubnetFailover",
    "multi subnet failover": "MultiSubnetFailover",
}

_INTEGRATED_SECURITY_KEYS = ("integrated security", "trusted_connection")
_TRUE_VALUES = frozenset({"true", "yes", "sspi"})

ConnectFunction = Callable[[str, int], Any]


def _odbc_value(value: str) -> str:
    if any(char in value for char in ";{}") or value != value.strip():
        return "{" + value.replace("}", "}}") + "}"
    return value


def build_odbc_connection_string(connection_string: str) -> str:
    """Translate an ADO.NET style connection string for pyodbc.

    Adds the default ODBC driver and TrustServerCertificate=yes unless the
    connection string names them.
    """
    odbc: dict[str, str] = {}
    for key, value in strip_server_type(parse_connection_string(connection_string)).items():
        if key in _INTEGRATED_SECURITY_KEYS:
            if value.lower() in _TRUE_VALUES:
                odbc["Trusted_Connection"] = "yes"
            continue
        odbc_key = _ODBC_KEYS.get(key)
        if odbc_key is not None and value:
            odbc[odbc_key] = value

    driver = odbc.pop("DRIVER", DEFAULT_ODBC_DRIVER).strip("{}")
    odbc.setdefault("TrustServerCertificate", "yes")

    parts = [f"DRIVER={{{driver}}}"]
    parts.extend(f"{key}={_odbc_value(value)}" for key, value in odbc.items())
    return ";".join(parts) + ";"


def connect_sqlserver(odbc_connection_string: str, timeout_seconds: int) -> Any:
    """Open an autocommit pyodbc connection with a query timeout."""
    import pyodbc

    connection = pyodbc.connect(odbc_connection_string, autocommit=True)
    connection.timeout = timeout_seconds
    return connection


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _variable_name(name: str) -> str:
    return name if name.startswith("@") else f"@{name}"


def _output_column(index: int) -> str:
    return f"__p{index}"


def build_procedure_batch(command: Command) -> tuple[str, list[Any]]:
    """T-SQL batch calling the command's procedure, plus its ``?`` values.

    Returns:
        Tuple of (batch text, values in placeholder order).
    """
    declarations: list[str] = []
    declaration_values: list[Any] = []
    arguments: list[str] = []
    argument_values: list[Any] = []
    selected = [f"@__ret AS [{RETURN_VALUE_COLUMN}]"]

    for index, parameter in enumerate(command.parameters):
        if parameter.direction is ParameterDirection.RETURN_VALUE:
            continue
        name = _variable_name(parameter.name)
        if parameter.is_output:
            variable = f"@__p{index}"
            sql_type = to_sqlserver_type(
                parameter.sql_type, parameter.size, parameter.precision, parameter.scale
            )
            declarations.append(f"DECLARE {variable} {sql_type} = ?;")
            declaration_values.append(parameter.value)
            arguments.append(f"{name} = {variable} OUTPUT")
            selected.append(f"{variable} AS [{_output_column(index)}]")
        else:
            arguments.append(f"{name} = ?")
            argument_values.append(parameter.value)

    call = f"EXEC @__ret = {command.text}"
    if arguments:
        call += " " + ", ".join(arguments)

    statements = ["SET NOCOUNT ON;", "DECLARE @__ret int;", *declarations, f"{call};"]
    statements.append(f"SELECT {', '.join(selected)};")
    batch = " ".join(statements)
    return batch, declaration_values + argument_values


def store_procedure_outputs(command: Command, outputs: DataTable) -> None:
    """Copy the batch's final SELECT row into the command's parameters."""
    if not outputs.rows:
        return
    values = dict(zip(outputs.columns, outputs.rows[0], strict=True))
    for index, parameter in enumerate(command.parameters):
        if parameter.direction is ParameterDirection.RETURN_VALUE:
            column = RETURN_VALUE_COLUMN
        elif parameter.is_output:
            column = _output_column(index)
        else:
            continue
        if column in values:
            parameter.value = values[column]


class SqlServerDBTools(EventNotifier):
    """Retrying executor for SQL Server.

    Args:
        connection_string: ADO.NET style connection string.
        timeout_seconds: Default command timeout (floor 10, default 30).
        debug: Raise debug events (procedure timings).
        connect: Replacement for :func:`connect_sqlserver`, taking the ODBC
            connection string and the timeout.
    """

    def __init__(
        self,
        connection_string: str,
        timeout_seconds: int = DEFAULT_SP_TIMEOUT_SEC,
        debug: bool = False,
        *,
        connect: ConnectFunction | None = None,
    ) -> None:
        super().__init__(LOGGER_NAME)
        try:
            self._descriptor = ConnectionDescriptor(
                connection_string=connection_string, timeout_seconds=timeout_seconds
            )
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e
        self._connect = connect or connect_sqlserver
        self.debug_messages_enabled = debug

    # --- configuration ---

    @property
    def server_type(self) -> ServerType:
        return ServerType.SQLSERVER

    @property
    def descriptor(self) -> ConnectionDescriptor:
        return self._descriptor

    @property
    def connection_string(self) -> str:
        return self._descriptor.connection_string

    @connection_string.setter
    def connection_string(self, value: str) -> None:
        try:
            self._descriptor.connection_string = value
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

    @property
    def server_name(self) -> str:
        return self._descriptor.server_name

    @property
    def database_name(self) -> str:
        return self._descriptor.database_name

    @property
    def timeout_seconds(self) -> int:
        return self._descriptor.timeout_seconds

    def _debug(self, message: str) -> None:
        if self.debug_messages_enabled:
            self.on_debug_event(message)

    # --- command builder ---

    def create_command(
        self, text: str, command_type: CommandType = CommandType.TEXT
    ) -> SqlServerCommand:
        return SqlServerCommand(text, command_type, timeout_seconds=self.timeout_seconds)

    def add_parameter(
        self,
        command: Command,
        name: str,
        sql_type: SqlType,
        size: int = 0,
        value: Any = UNSET,
        direction: ParameterDirection = ParameterDirection.INPUT,
    ) -> Parameter:
        """Append a parameter; text and sizeless varchar values default to ""."""
        command = self._require_command(command)
        if value is UNSET:
            is_text = sql_type is SqlType.TEXT or (sql_type is SqlType.VARCHAR and size == 0)
            value = "" if is_text else None
        return command.add(Parameter(name, sql_type, size, direction, value))

    def add_parameter_by_type_name(
        self,
        command: Command,
        name: str,
        type_name: str,
        size: int = 0,
        direction: ParameterDirection = ParameterDirection.INPUT,
    ) -> Parameter | None:
        info = get_sql_type_by_name(type_name)
        if info is None:
            self.on_warning_event(
                f"Unsupported data type '{type_name}' for parameter {name}; parameter not added"
            )
            return None
        value = "" if info.sql_type is SqlType.CHAR else UNSET
        return self.add_parameter(
            command, name, info.sql_type, size if info.supports_size else 0, value, direction
        )

    def add_typed_parameter(
        self,
        command: Command,
        name: str,
        value: Any,
        sql_type: SqlType | None = None,
        size: int = 0,
        direction: ParameterDirection = ParameterDirection.INPUT,
    ) -> Parameter:
        if sql_type is None:
            sql_type = sql_type_for_value(value)
        return self.add_parameter(command, name, sql_type, size, value, direction)

    def _require_command(self, command: Any) -> SqlServerCommand:
        if not isinstance(command, SqlServerCommand):
            raise CommandTypeError("SqlServerCommand", command)
        return command

    def _as_command(
        self, sql_or_command: str | Command, timeout_seconds: int | None
    ) -> SqlServerCommand:
        if isinstance(sql_or_command, str):
            command = self.create_command(sql_or_command)
            if timeout_seconds is not None:
                command.timeout_seconds = normalize_timeout(timeout_seconds)
            return command
        return self._require_command(sql_or_command)

    def _execute(self, cursor: Any, command: SqlServerCommand) -> None:
        if command.command_type is CommandType.STORED_PROCEDURE:
            command.procedure_name = command.text
            sql, values = build_procedure_batch(command)
        else:
            names = tuple(parameter.name for parameter in command.parameters)
            sql, order = normalize_params(command.text, "qmark", names)
            values = [command.get_parameter(name).value for name in order]  # type: ignore[union-attr]

        if values:
            cursor.execute(sql, [_db_value(value) for value in values])
        else:
            cursor.execute(sql)

    # --- connections ---

    @contextmanager
    def _attempt_cursor(self, timeout_seconds: int) -> Iterator[Any]:
        """Fresh autocommit connection and cursor for one attempt."""
        connection = self._connect(
            build_odbc_connection_string(self.connection_string), timeout_seconds
        )
        try:
            cursor = connection.cursor()
            try:
                yield cursor
            finally:
                cursor.close()
        finally:
            connection.close()

    def _retry(
        self,
        attempt: Callable[[], Any],
        settings: RetrySettings,
        action: str,
        calling_function: str,
        command: Command,
    ) -> RetryOutcome:
        return run_with_retries(
            attempt,
            settings=settings,
            classifier=SQLSERVER_CLASSIFIER,
            notifier=self,
            action=action,
            calling_function=calling_function,
            masked_connection_string=self._descriptor.masked_connection_string,
            command_text=command.text,
        )

    # --- text queries ---

    def _run_query(
        self,
        command: SqlServerCommand,
        reader: Callable[[Any], Any],
        settings: RetrySettings,
        calling_function: str,
        empty: Any,
    ) -> ExecutionResult:
        def attempt() -> Any:
            with self._attempt_cursor(command.timeout_seconds) as cursor:
                self._execute(cursor, command)
                return reader(cursor)

        try:
            outcome = self._retry(attempt, settings, "querying database", calling_function, command)
        finally:
            command.close()

        if outcome.success:
            return ExecutionResult(True, outcome.value, RET_VAL_OK)
        return ExecutionResult(False, empty, outcome.failure_code, outcome.message)

    def test_database_connection(
        self,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SEC,
    ) -> ExecutionResult:
        """Connect and read the server version."""
        result = self.get_query_scalar(
            "SELECT @@VERSION",
            retry_count,
            retry_delay_seconds,
            calling_function="test_database_connection",
        )
        if result.success:
            self.on_status_event(
                f"Connected to {self.server_name}/{self.database_name}: {result.data}"
            )
        return result

    def get_query_scalar(
        self,
        sql_or_command: str | Command,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SEC,
        timeout_seconds: int | None = None,
        calling_function: str = "",
    ) -> ExecutionResult:
        command = self._as_command(sql_or_command, timeout_seconds)
        settings = RetrySettings(retry_count=retry_count, retry_delay_seconds=retry_delay_seconds)
        return self._run_query(
            command, read_scalar, settings, calling_function or "get_query_scalar", None
        )

    def get_query_results(
        self,
        sql_or_command: str | Command,
        retry_count: int = DEFAULT_RETRY_COUNT,
        max_rows: int = 0,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SEC,
        timeout_seconds: int | None = None,
        calling_function: str = "",
    ) -> ExecutionResult:
        """Rows as strings (null becomes "") plus column names."""
        command = self._as_command(sql_or_command, timeout_seconds)
        settings = RetrySettings(
            retry_count=retry_count, retry_delay_seconds=retry_delay_seconds, max_rows=max_rows
        )
        return self._run_query(
            command,
            lambda cursor: read_string_rows(cursor, settings.max_rows),
            settings,
            calling_function or "get_query_results",
            RowSet(),
        )

    def get_query_results_table(
        self,
        sql_or_command: str | Command,
        retry_count: int = DEFAULT_RETRY_COUNT,
        max_rows: int = 0,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SEC,
        timeout_seconds: int | None = None,
        calling_function: str = "",
    ) -> ExecutionResult:
        command = self._as_command(sql_or_command, timeout_seconds)
        settings = RetrySettings(
            retry_count=retry_count, retry_delay_seconds=retry_delay_seconds, max_rows=max_rows
        )
        return self._run_query(
            command,
            lambda cursor: read_table(cursor, settings.max_rows),
            settings,
            calling_function or "get_query_results_table",
            DataTable(),
        )

    def get_query_results_dataset(
        self,
        sql_or_command: str | Command,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SEC,
        timeout_seconds: int | None = None,
        calling_function: str = "",
    ) -> ExecutionResult:
        command = self._as_command(sql_or_command, timeout_seconds)
        settings = RetrySettings(retry_count=retry_count, retry_delay_seconds=retry_delay_seconds)
        return self._run_query(
            command,
            read_data_set,
            settings,
            calling_function or "get_query_results_dataset",
            DataSet(),
        )

    def get_query_results_lazy(
        self,
        sql_or_command: str | Command,
        row_mapper: Callable[[dict[str, Any]], T],
        retry_count: int = DEFAULT_RETRY_COUNT,
        max_rows: int = 0,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SEC,
        timeout_seconds: int | None = None,
        calling_function: str = "",
    ) -> Iterator[T]:
        """Single-pass sequence of ``row_mapper(row)`` for each row dict.

        Retried only until the first row is read; see
        :meth:`PostgresDBTools.get_query_results_lazy`.
        """
        command = self._as_command(sql_or_command, timeout_seconds)
        settings = RetrySettings(
            retry_count=retry_count, retry_delay_seconds=retry_delay_seconds, max_rows=max_rows
        )
        return self._stream(
            command, row_mapper, settings, calling_function or "get_query_results_lazy"
        )

    def _stream(
        self,
        command: SqlServerCommand,
        row_mapper: Callable[[dict[str, Any]], T],
        settings: RetrySettings,
        calling_function: str,
    ) -> Iterator[T]:
        end = object()

        def attempt() -> tuple[ExitStack, Iterator[dict[str, Any]], Any]:
            with ExitStack() as stack:
                cursor = stack.enter_context(self._attempt_cursor(command.timeout_seconds))
                self._execute(cursor, command)
                rows = iter_rows(cursor, settings.max_rows)
                first = next(rows, end)
                return stack.pop_all(), rows, first

        try:
            outcome = self._retry(attempt, settings, "querying database", calling_function, command)
            if not outcome.success:
                return
            stack, rows, row = outcome.value
            with stack:
                yielded = 0
                while row is not end:
                    yield row_mapper(row)
                    yielded += 1
                    try:
                        row = next(rows, end)
                    except Exception as e:
                        self.on_error_event(
                            f"Exception reading results (called from {calling_function}): {e}", e
                        )
                        raise StreamInterruptedError(yielded, str(e)) from e
        finally:
            command.close()

    # --- procedures ---

    def _read_procedure_results(
        self, cursor: Any, command: SqlServerCommand, max_rows: int
    ) -> list[DataTable]:
        """Read every result set; the last one carries the output values."""
        tables: list[DataTable] = []
        while True:
            if cursor.description is not None:
                tables.append(read_table(cursor, max_rows))
            if not cursor.nextset():
                break
        if tables and command.command_type is CommandType.STORED_PROCEDURE:
            store_procedure_outputs(command, tables.pop())
        return tables

    def _run_procedure(
        self,
        command: Command,
        settings: RetrySettings,
        calling_function: str,
    ) -> tuple[RetryOutcome, int]:
        command = self._require_command(command)
        name = command.text

        def attempt() -> list[DataTable]:
            started = time.perf_counter()
            try:
                with self._attempt_cursor(command.timeout_seconds) as cursor:
                    self._execute(cursor, command)
                    return self._read_procedure_results(cursor, command, settings.max_rows)
            finally:
                self._debug(f"{name} finished in {time.perf_counter() - started:.3f} seconds")

        try:
            if command.command_type is CommandType.STORED_PROCEDURE:
                # unsupported output types raise here, before any connection is opened
                build_procedure_batch(command)
            outcome = self._retry(
                attempt, settings, f"calling stored procedure {name}", calling_function, command
            )
        finally:
            command.close()

        if outcome.success:
            return outcome, get_return_code(command.parameters)
        return outcome, outcome.failure_code

    def execute_sp_data(
        self,
        command: Command,
        retry_count: int = DEFAULT_RETRY_COUNT,
        max_rows: int = 0,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SEC,
    ) -> ExecutionResult:
        """Call a procedure; data is its first result set as strings."""
        settings = RetrySettings(
            retry_count=retry_count, retry_delay_seconds=retry_delay_seconds, max_rows=max_rows
        )
        outcome, return_code = self._run_procedure(command, settings, "execute_sp_data")
        tables = outcome.value if outcome.success else []
        data = to_row_set(tables[0]) if tables else RowSet()
        return ExecutionResult(outcome.success, data, return_code, outcome.message)

    def execute_sp_data_table(
        self,
        command: Command,
        retry_count: int = DEFAULT_RETRY_COUNT,
        max_rows: int = 0,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SEC,
    ) -> ExecutionResult:
        settings = RetrySettings(
            retry_count=retry_count, retry_delay_seconds=retry_delay_seconds, max_rows=max_rows
        )
        outcome, return_code = self._run_procedure(command, settings, "execute_sp_data_table")
        tables = outcome.value if outcome.success else []
        data = tables[0] if tables else DataTable()
        return ExecutionResult(outcome.success, data, return_code, outcome.message)

    def execute_sp_data_set(
        self,
        command: Command,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SEC,
    ) -> ExecutionResult:
        settings = RetrySettings(retry_count=retry_count, retry_delay_seconds=retry_delay_seconds)
        outcome, return_code = self._run_procedure(command, settings, "execute_sp_data_set")
        data = DataSet(outcome.value) if outcome.success else DataSet()
        return ExecutionResult(outcome.success, data, return_code, outcome.message)

    def execute_sp(
        self,
        command: Command,
        max_retry_count: int = DEFAULT_SP_RETRY_COUNT,
        retry_delay_seconds: int = DEFAULT_SP_RETRY_DELAY_SEC,
    ) -> ExecutionResult:
        """Call a procedure that returns no data; the message holds the last error."""
        settings = RetrySettings(retry_count=max_retry_count, retry_delay_seconds=retry_delay_seconds)
        outcome, return_code = self._run_procedure(command, settings, "execute_sp")
        return ExecutionResult(outcome.success, None, return_code, outcome.message)
