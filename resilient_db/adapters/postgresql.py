"""PostgreSQL executor using psycopg (v3+).

Procedures are called with ``CALL name(arg => value, ...)``. Output values
come back as the single row produced by CALL; a procedure that opens a
refcursor returns its name in that row, and the cursor's rows are read
with ``FETCH ALL`` in the same transaction before it is committed.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from enum import Enum
from typing import Any, TypeVar

from pydantic import ValidationError

from resilient_db.core.classifier import POSTGRES_CLASSIFIER
from resilient_db.core.command import (
    UNSET,
    Command,
    Parameter,
    PostgresCommand,
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
    POSTGRES_RETURN_CODE_PARAMETER,
    RET_VAL_OK,
)
from resilient_db.core.enums import CommandType, ParameterDirection, ServerType
from resilient_db.core.events import EventNotifier
from resilient_db.core.exceptions import (
    CommandTypeError,
    ConfigurationError,
    StreamInterruptedError,
)
from resilient_db.core.params import bind_key, normalize_params
from resilient_db.core.results import (
    DataSet,
    DataTable,
    ExecutionResult,
    RowSet,
    capitalize_column_names,
    column_names,
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
    to_postgres_type,
)
from resilient_db.core.transaction import AttemptTransaction

T = TypeVar("T")

LOGGER_NAME = "resilient_db.postgresql"

# pg_type OID of refcursor
REFCURSOR_OID = 1790

# Name of the legacy return-value parameter rewritten before a CALL
LEGACY_RETURN_PARAMETER = "@return"

# Server routine raising "... does not exist, skipping" notices for DROP IF EXISTS
_DROP_NON_EXISTENT_ROUTINE = "DropErrorMsgNonExistent"

# Npgsql / libpq connection string keywords mapped to libpq parameter names
_LIBPQ_KEYS: dict[str, str] = {
    "host": "host",
    "server": "host",
    "hostaddr": "hostaddr",
    "port": "port",
    "database": "dbname",
    "dbname": "dbname",
    "user": "user",
    "username": "user",
    "user id": "user",
    "userid": "user",
    "uid": "user",
    "password": "password",
    "pwd": "password",
    "passfile": "passfile",
    "application name": "application_name",
    "application_name": "application_name",
    "ssl mode": "sslmode",
    "sslmode": "sslmode",
    "timeout": "connect_timeout",
    "connect_timeout": "connect_timeout",
    "options": "options",
}

ConnectFunction = Callable[[dict[str, str], int], Any]


def build_conninfo_params(connection_string: str) -> dict[str, str]:
    """Translate a connection string into libpq connection parameters.

    Keywords libpq does not know (Npgsql pooling options, the server type
    override) are dropped.
    """
    params: dict[str, str] = {}
    for key, value in strip_server_type(parse_connection_string(connection_string)).items():
        libpq_key = _LIBPQ_KEYS.get(key)
        if libpq_key is None or not value:
            continue
        params[libpq_key] = value.lower() if libpq_key == "sslmode" else value
    return params


def connect_postgres(params: dict[str, str], timeout_seconds: int) -> Any:
    """Open an autocommit psycopg connection with a statement timeout."""
    import psycopg

    kwargs = dict(params)
    statement_timeout = f"-c statement_timeout={timeout_seconds * 1000}"
    kwargs["options"] = f"{kwargs['options']} {statement_timeout}" if "options" in kwargs else statement_timeout
    return psycopg.connect(autocommit=True, **kwargs)


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class PostgresDBTools(EventNotifier):
    """Retrying executor for PostgreSQL.

    Args:
        connection_string: Npgsql-style, libpq or postgresql:// connection string.
        timeout_seconds: Default command timeout (floor 10, default 30).
        debug: Raise debug events (procedure timings, notices).
        connect: Replacement for :func:`connect_postgres`, taking the libpq
            parameters and the timeout.
        capitalize_column_names: Restore SELECT-list capitalization of
            column names for text queries.
    """

    def __init__(
        self,
        connection_string: str,
        timeout_seconds: int = DEFAULT_SP_TIMEOUT_SEC,
        debug: bool = False,
        *,
        connect: ConnectFunction | None = None,
        capitalize_column_names: bool = True,
    ) -> None:
        super().__init__(LOGGER_NAME)
        try:
            self._descriptor = ConnectionDescriptor(
                connection_string=connection_string, timeout_seconds=timeout_seconds
            )
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e
        self._connect = connect or connect_postgres
        self.debug_messages_enabled = debug
        self.capitalize_column_names = capitalize_column_names

    # --- configuration ---

    @property
    def server_type(self) -> ServerType:
        return ServerType.POSTGRESQL

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
    ) -> PostgresCommand:
        return PostgresCommand(text, command_type, timeout_seconds=self.timeout_seconds)

    def add_parameter(
        self,
        command: Command,
        name: str,
        sql_type: SqlType,
        size: int = 0,
        value: Any = UNSET,
        direction: ParameterDirection = ParameterDirection.INPUT,
    ) -> Parameter:
        """Append a parameter; text and varchar values default to ""."""
        command = self._require_command(command)
        if value is UNSET:
            value = "" if sql_type in (SqlType.TEXT, SqlType.VARCHAR) else None
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

    def _require_command(self, command: Any) -> PostgresCommand:
        if not isinstance(command, PostgresCommand):
            raise CommandTypeError("PostgresCommand", command)
        return command

    def _as_command(
        self, sql_or_command: str | Command, timeout_seconds: int | None
    ) -> PostgresCommand:
        if isinstance(sql_or_command, str):
            command = self.create_command(sql_or_command)
            if timeout_seconds is not None:
                command.timeout_seconds = normalize_timeout(timeout_seconds)
            return command
        return self._require_command(sql_or_command)

    # --- translation ---

    def prepare_command(self, command: PostgresCommand) -> None:
        """Rewrite parameters and procedure calls for PostgreSQL.

        Safe to call more than once: renamed parameters no longer carry the
        ``@`` prefix and a translated procedure keeps its original name in
        ``procedure_name``.
        """
        is_procedure = command.command_type is CommandType.STORED_PROCEDURE

        for parameter in command.parameters:
            if (
                parameter.name.lower() == LEGACY_RETURN_PARAMETER
                and parameter.direction is ParameterDirection.RETURN_VALUE
            ):
                parameter.name = POSTGRES_RETURN_CODE_PARAMETER
                parameter.sql_type = SqlType.TEXT
                parameter.direction = ParameterDirection.INPUT_OUTPUT
                parameter.value = ""
            elif is_procedure and parameter.name.startswith("@"):
                parameter.name = "_" + parameter.name[1:]

            if isinstance(parameter.value, Enum):
                parameter.value = parameter.value.value

        if is_procedure and command.procedure_name is None:
            arguments = ", ".join(
                f"{parameter.name} => @{parameter.name}::{to_postgres_type(parameter.sql_type)}"
                for parameter in command.parameters
            )
            command.procedure_name = command.text
            command.text = f"CALL {command.text}({arguments})"

    def _execute(self, cursor: Any, command: PostgresCommand) -> None:
        self.prepare_command(command)
        if not command.parameters:
            cursor.execute(command.text)
            return
        names = tuple(parameter.name for parameter in command.parameters)
        sql, _ = normalize_params(command.text, "pyformat", names)
        values = {bind_key(parameter.name): parameter.value for parameter in command.parameters}
        cursor.execute(sql, values)

    # --- connections ---

    def _on_notice(self, diagnostic: Any) -> None:
        if diagnostic.source_function == _DROP_NON_EXISTENT_ROUTINE:
            return
        severity = (diagnostic.severity_nonlocalized or diagnostic.severity or "").upper()
        message = diagnostic.message_primary or ""
        if severity == "NOTICE":
            self.on_debug_event(message)
        elif severity == "INFO":
            self.on_status_event(message)
        elif severity == "WARNING":
            self.on_warning_event(message)
        else:
            self.on_error_event(message)

    def _open_connection(self, timeout_seconds: int) -> Any:
        connection = self._connect(build_conninfo_params(self.connection_string), timeout_seconds)
        connection.add_notice_handler(self._on_notice)
        return connection

    @contextmanager
    def _attempt_cursor(self, timeout_seconds: int, transactional: bool = True) -> Iterator[Any]:
        """Fresh connection and cursor for one attempt.

        Results are read inside a transaction so that refcursors stay open
        until they are fetched. Procedures that return no data run in
        autocommit mode, which lets them COMMIT or ROLLBACK themselves.
        """
        with ExitStack() as stack:
            connection = self._open_connection(timeout_seconds)
            stack.callback(connection.close)
            if transactional:
                stack.enter_context(AttemptTransaction(connection))
            cursor = connection.cursor()
            stack.callback(cursor.close)
            yield cursor

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
            classifier=POSTGRES_CLASSIFIER,
            notifier=self,
            action=action,
            calling_function=calling_function,
            masked_connection_string=self._descriptor.masked_connection_string,
            command_text=command.text,
        )

    # --- text queries ---

    def _column_names(self, command: Command, columns: list[str]) -> list[str]:
        if self.capitalize_column_names and command.command_type is CommandType.TEXT:
            return capitalize_column_names(command.text, columns)
        return columns

    def _run_query(
        self,
        command: PostgresCommand,
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
            "SELECT version()",
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

        def reader(cursor: Any) -> RowSet:
            result = read_string_rows(cursor, settings.max_rows)
            result.columns = self._column_names(command, result.columns)
            return result

        return self._run_query(
            command, reader, settings, calling_function or "get_query_results", RowSet()
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

        def reader(cursor: Any) -> DataTable:
            result = read_table(cursor, settings.max_rows)
            result.columns = self._column_names(command, result.columns)
            return result

        return self._run_query(
            command, reader, settings, calling_function or "get_query_results_table", DataTable()
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

        Attempts are retried only until the first row has been read. A
        failure after that raises StreamInterruptedError from the iterator.
        If every attempt fails, the sequence is empty and the failures are
        reported as error events.
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
        command: PostgresCommand,
        row_mapper: Callable[[dict[str, Any]], T],
        settings: RetrySettings,
        calling_function: str,
    ) -> Iterator[T]:
        end = object()

        def attempt() -> tuple[ExitStack, Iterator[dict[str, Any]], Any]:
            with ExitStack() as stack:
                cursor = stack.enter_context(self._attempt_cursor(command.timeout_seconds))
                self._execute(cursor, command)
                columns = self._column_names(command, column_names(cursor))
                rows = iter_rows(cursor, settings.max_rows, columns)
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

    def _read_call_results(
        self, cursor: Any, command: PostgresCommand, max_rows: int, fetch_cursor: bool
    ) -> list[DataTable]:
        """Store output values and read the first refcursor, if any."""
        if cursor.description is None:
            return []
        row = cursor.fetchone()
        if row is None:
            return []

        cursor_name: str | None = None
        for index, column in enumerate(cursor.description):
            name, type_code = column[0], column[1]
            if type_code == REFCURSOR_OID:
                if cursor_name is None:
                    cursor_name = row[index]
                else:
                    self.on_warning_event(
                        f"Procedure {command.procedure_name} returned more than one refcursor; "
                        f"ignoring {name}"
                    )
                continue
            parameter = command.get_parameter(name)
            if parameter is not None and parameter.is_output:
                parameter.value = row[index]

        if cursor_name is None or not fetch_cursor:
            return []
        cursor.execute(f"FETCH ALL FROM {_quote_identifier(cursor_name)}")
        return [read_table(cursor, max_rows)]

    def _run_procedure(
        self,
        command: Command,
        settings: RetrySettings,
        fetch_cursor: bool,
        calling_function: str,
    ) -> tuple[RetryOutcome, int]:
        command = self._require_command(command)
        name = command.procedure_name or command.text

        def attempt() -> list[DataTable]:
            started = time.perf_counter()
            try:
                with self._attempt_cursor(command.timeout_seconds, fetch_cursor) as cursor:
                    self._execute(cursor, command)
                    return self._read_call_results(
                        cursor, command, settings.max_rows, fetch_cursor
                    )
            finally:
                self._debug(f"{name} finished in {time.perf_counter() - started:.3f} seconds")

        try:
            # type errors surface here, before any connection is opened
            self.prepare_command(command)
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
        """Call a procedure; data is the refcursor's rows as strings."""
        settings = RetrySettings(
            retry_count=retry_count, retry_delay_seconds=retry_delay_seconds, max_rows=max_rows
        )
        outcome, return_code = self._run_procedure(command, settings, True, "execute_sp_data")
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
        outcome, return_code = self._run_procedure(
            command, settings, True, "execute_sp_data_table"
        )
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
        outcome, return_code = self._run_procedure(command, settings, True, "execute_sp_data_set")
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
        outcome, return_code = self._run_procedure(command, settings, False, "execute_sp")
        return ExecutionResult(outcome.success, None, return_code, outcome.message)
