"""Executor protocol.

Both executors MUST implement this protocol, so callers obtained through
``get_db_tools`` can switch engines without changing code.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any, Protocol, TypeVar, runtime_checkable

from resilient_db.core.command import Command, Parameter
from resilient_db.core.enums import CommandType, ParameterDirection, ServerType
from resilient_db.core.events import EventHandler
from resilient_db.core.results import ExecutionResult
from resilient_db.core.sql_types import SqlType

T = TypeVar("T")


@runtime_checkable
class DBTools(Protocol):
    """Retrying query and procedure executor for one database."""

    @property
    def server_type(self) -> ServerType:
        ...

    @property
    def connection_string(self) -> str:
        ...

    @property
    def database_name(self) -> str:
        ...

    @property
    def server_name(self) -> str:
        ...

    @property
    def debug_messages_enabled(self) -> bool:
        ...

    def add_event_handler(self, handler: EventHandler) -> None:
        """Subscribe to debug, status, warning and error events."""
        ...

    # --- command builder ---

    def create_command(self, text: str, command_type: CommandType = CommandType.TEXT) -> Command:
        """Create a command with the executor's default timeout."""
        ...

    def add_parameter(
        self,
        command: Command,
        name: str,
        sql_type: SqlType,
        size: int = 0,
        value: Any = ...,
        direction: ParameterDirection = ParameterDirection.INPUT,
    ) -> Parameter:
        """Append a typed parameter and return it."""
        ...

    def add_parameter_by_type_name(
        self,
        command: Command,
        name: str,
        type_name: str,
        size: int = 0,
        direction: ParameterDirection = ParameterDirection.INPUT,
    ) -> Parameter | None:
        """Append a parameter whose type is given as text; None if unrecognized."""
        ...

    def add_typed_parameter(
        self,
        command: Command,
        name: str,
        value: Any,
        sql_type: SqlType | None = None,
        size: int = 0,
        direction: ParameterDirection = ParameterDirection.INPUT,
    ) -> Parameter:
        """Append a parameter, inferring its type from the value when not given."""
        ...

    # --- execution ---

    def test_database_connection(
        self, retry_count: int = ..., retry_delay_seconds: int = ...
    ) -> ExecutionResult:
        """Connect and return the server version as data."""
        ...

    def get_query_scalar(
        self,
        sql_or_command: str | Command,
        retry_count: int = ...,
        retry_delay_seconds: int = ...,
        timeout_seconds: int | None = None,
        calling_function: str = "",
    ) -> ExecutionResult:
        """First column of the first row."""
        ...

    def get_query_results(
        self,
        sql_or_command: str | Command,
        retry_count: int = ...,
        max_rows: int = 0,
        retry_delay_seconds: int = ...,
        timeout_seconds: int | None = None,
        calling_function: str = "",
    ) -> ExecutionResult:
        """Rows of strings plus column names (RowSet)."""
        ...

    def get_query_results_table(
        self,
        sql_or_command: str | Command,
        retry_count: int = ...,
        max_rows: int = 0,
        retry_delay_seconds: int = ...,
        timeout_seconds: int | None = None,
        calling_function: str = "",
    ) -> ExecutionResult:
        """Rows of native values (DataTable)."""
        ...

    def get_query_results_dataset(
        self,
        sql_or_command: str | Command,
        retry_count: int = ...,
        retry_delay_seconds: int = ...,
        timeout_seconds: int | None = None,
        calling_function: str = "",
    ) -> ExecutionResult:
        """Every result set (DataSet)."""
        ...

    def get_query_results_lazy(
        self,
        sql_or_command: str | Command,
        row_mapper: Callable[[dict[str, Any]], T],
        retry_count: int = ...,
        max_rows: int = 0,
        retry_delay_seconds: int = ...,
        timeout_seconds: int | None = None,
        calling_function: str = "",
    ) -> Iterator[T]:
        """Single-pass sequence of mapped rows."""
        ...

    def execute_sp_data(
        self,
        command: Command,
        retry_count: int = ...,
        max_rows: int = 0,
        retry_delay_seconds: int = ...,
    ) -> ExecutionResult:
        """Call a procedure; data is a RowSet."""
        ...

    def execute_sp_data_table(
        self,
        command: Command,
        retry_count: int = ...,
        max_rows: int = 0,
        retry_delay_seconds: int = ...,
    ) -> ExecutionResult:
        """Call a procedure; data is a DataTable."""
        ...

    def execute_sp_data_set(
        self,
        command: Command,
        retry_count: int = ...,
        retry_delay_seconds: int = ...,
    ) -> ExecutionResult:
        """Call a procedure; data is a DataSet."""
        ...

    def execute_sp(
        self,
        command: Command,
        max_retry_count: int = ...,
        retry_delay_seconds: int = ...,
    ) -> ExecutionResult:
        """Call a procedure that returns no data."""
        ...
