"""Unit tests for the SQL Server executor, driven by fake connections."""

from __future__ import annotations

import enum

import pytest
from conftest import SQLSERVER_CONNECTION_STRING, FakeResult, FakeServer

from resilient_db.adapters.sqlserver import (
    RETURN_VALUE_COLUMN,
    SqlServerDBTools,
    build_odbc_connection_string,
    build_procedure_batch,
    store_procedure_outputs,
)
from resilient_db.core.command import PostgresCommand, SqlServerCommand
from resilient_db.core.constants import RET_VAL_DEADLOCK
from resilient_db.core.enums import CommandType, EventLevel, ParameterDirection
from resilient_db.core.events import Event
from resilient_db.core.exceptions import CommandTypeError, UnsupportedTypeError
from resilient_db.core.results import DataTable
from resilient_db.core.sql_types import SqlType


class Priority(enum.IntEnum):
    LOW = 1
    HIGH = 3


class ODBCDeadlock(Exception):
    """Shaped like pyodbc.Error: args are (SQLSTATE, message)."""


def add_job_command(tools: SqlServerDBTools) -> SqlServerCommand:
    command = tools.create_command("add_job", CommandType.STORED_PROCEDURE)
    tools.add_parameter(command, "@jobName", SqlType.VARCHAR, 64, "Job 1")
    tools.add_parameter(command, "@message", SqlType.VARCHAR, 256, "", ParameterDirection.OUTPUT)
    tools.add_parameter(command, "@Return", SqlType.INT, direction=ParameterDirection.RETURN_VALUE)
    return command


class TestOdbcConnectionString:
    def test_translates_keywords(self) -> None:
        odbc = build_odbc_connection_string(
            "Data Source=sqlhost,1433;Initial Catalog=DMS5;User ID=svc;Password=p{w};"
        )
        assert odbc == (
            "DRIVER={ODBC Driver 18 for SQL Server};SERVER=sqlhost,1433;DATABASE=DMS5;"
            "UID=svc;PWD={p{w}}};TrustServerCertificate=yes;"
        )

    def test_integrated_security(self) -> None:
        odbc = build_odbc_connection_string("Server=sqlhost;Database=DMS5;Integrated Security=SSPI")
        assert "Trusted_Connection=yes;" in odbc
        assert "UID=" not in odbc

    def test_explicit_driver_and_certificate(self) -> None:
        odbc = build_odbc_connection_string(
            "Driver={ODBC Driver 17 for SQL Server};Server=sqlhost;TrustServerCertificate=no"
        )
        assert odbc.startswith("DRIVER={ODBC Driver 17 for SQL Server};")
        assert "TrustServerCertificate=no;" in odbc

    def test_server_type_override_is_dropped(self) -> None:
        odbc = build_odbc_connection_string("DbServerType=SqlServer;Server=sqlhost;Database=DMS5")
        assert "DbServerType" not in odbc


class TestProcedureBatch:
    def test_batch_text_and_values(self, sqlserver_tools: SqlServerDBTools) -> None:
        batch, values = build_procedure_batch(add_job_command(sqlserver_tools))

        assert batch == (
            "SET NOCOUNT ON; DECLARE @__ret int; DECLARE @__p1 varchar(256) = ?; "
            "EXEC @__ret = add_job @jobName = ?, @message = @__p1 OUTPUT; "
            f"SELECT @__ret AS [{RETURN_VALUE_COLUMN}], @__p1 AS [__p1];"
        )
        assert values == ["", "Job 1"]

    def test_no_parameters(self) -> None:
        batch, values = build_procedure_batch(
            SqlServerCommand("refresh_cache", CommandType.STORED_PROCEDURE)
        )
        assert "EXEC @__ret = refresh_cache;" in batch
        assert values == []

    def test_store_outputs(self, sqlserver_tools: SqlServerDBTools) -> None:
        command = add_job_command(sqlserver_tools)
        outputs = DataTable(columns=[RETURN_VALUE_COLUMN, "__p1"], rows=[(53, "Job exists")])

        store_procedure_outputs(command, outputs)

        assert command.get_parameter("@message").value == "Job exists"  # type: ignore[union-attr]
        assert command.get_parameter("@Return").value == 53  # type: ignore[union-attr]
        assert command.get_parameter("@jobName").value == "Job 1"  # type: ignore[union-attr]


class TestCommandBuilder:
    def test_parameter_defaults(self, sqlserver_tools: SqlServerDBTools) -> None:
        command = sqlserver_tools.create_command("SELECT 1")
        assert sqlserver_tools.add_parameter(command, "@a", SqlType.VARCHAR).value == ""
        assert sqlserver_tools.add_parameter(command, "@b", SqlType.VARCHAR, 50).value is None
        assert sqlserver_tools.add_parameter(command, "@c", SqlType.TEXT).value == ""
        assert sqlserver_tools.add_parameter(command, "@d", SqlType.INT).value is None

    def test_parameter_by_type_name(self, sqlserver_tools: SqlServerDBTools) -> None:
        command = sqlserver_tools.create_command("SELECT 1")
        parameter = sqlserver_tools.add_parameter_by_type_name(command, "@name", "nvarchar", 128)
        assert parameter is not None
        assert parameter.sql_type is SqlType.VARCHAR

    def test_rejects_other_engine_command(self, sqlserver_tools: SqlServerDBTools) -> None:
        with pytest.raises(CommandTypeError, match="SqlServerCommand"):
            sqlserver_tools.add_parameter(PostgresCommand("SELECT 1"), "@a", SqlType.INT)


class TestQueries:
    def test_qmark_parameters(
        self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer
    ) -> None:
        command = sqlserver_tools.create_command(
            "SELECT * FROM T_Jobs WHERE Job = @job AND Priority = @priority AND Comment <> '@job'"
        )
        sqlserver_tools.add_parameter(command, "@job", SqlType.INT, value=5)
        sqlserver_tools.add_parameter(command, "@priority", SqlType.INT, value=Priority.HIGH)
        fake_server.respond(FakeResult(["Job"], [(5,)]))

        result = sqlserver_tools.get_query_results(command)

        assert result.data.rows == [["5"]]
        assert fake_server.executed == [
            (
                "SELECT * FROM T_Jobs WHERE Job = ? AND Priority = ? AND Comment <> '@job'",
                [5, 3],
            )
        ]

    def test_connects_with_odbc_string(
        self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer
    ) -> None:
        fake_server.respond(FakeResult(["n"], [(1,)]))
        sqlserver_tools.get_query_scalar("SELECT 1")
        target = fake_server.connections[0].target
        assert "SERVER=sqlhost;" in target
        assert "DATABASE=DMS5;" in target

    def test_test_database_connection(
        self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer, events: list[Event]
    ) -> None:
        fake_server.respond(FakeResult([""], [("Microsoft SQL Server 2022",)]))

        result = sqlserver_tools.test_database_connection()

        assert result.data == "Microsoft SQL Server 2022"
        assert fake_server.executed[0] == ("SELECT @@VERSION", None)
        assert events[-1].level is EventLevel.STATUS

    def test_column_names_are_not_rewritten(
        self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer
    ) -> None:
        fake_server.respond(FakeResult(["job"], [(1,)]))
        result = sqlserver_tools.get_query_results_table("SELECT Job FROM T_Jobs")
        assert result.data.columns == ["job"]

    def test_lazy(self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer) -> None:
        fake_server.respond(FakeResult(["Job"], [(1,), (2,)]))
        rows = sqlserver_tools.get_query_results_lazy("SELECT Job FROM T_Jobs", lambda row: row["Job"])
        assert list(rows) == [1, 2]
        assert (fake_server.connections[0].commits, fake_server.connections[0].rollbacks) == (0, 0)


class TestProcedures:
    def test_data_and_outputs(
        self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer
    ) -> None:
        fake_server.respond(
            [
                FakeResult(["Job", "State"], [(1, "New"), (2, None)]),
                FakeResult([RETURN_VALUE_COLUMN, "__p1"], [(0, "Added 2 jobs")]),
            ]
        )
        command = add_job_command(sqlserver_tools)

        result = sqlserver_tools.execute_sp_data(command)

        assert result.success
        assert result.return_code == 0
        assert result.data.columns == ["Job", "State"]
        assert result.data.rows == [["1", "New"], ["2", ""]]
        assert command.get_parameter("@message").value == "Added 2 jobs"  # type: ignore[union-attr]
        assert command.closed

    def test_return_value(self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer) -> None:
        fake_server.respond([FakeResult([RETURN_VALUE_COLUMN, "__p1"], [(53, "")])])

        result = sqlserver_tools.execute_sp(add_job_command(sqlserver_tools))

        assert result.success
        assert result.return_code == 53

    def test_data_set(self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer) -> None:
        fake_server.respond(
            [
                FakeResult(["a"], [(1,)]),
                FakeResult(["b"], [(2,)]),
                FakeResult([RETURN_VALUE_COLUMN], [(0,)]),
            ]
        )
        command = sqlserver_tools.create_command("get_two", CommandType.STORED_PROCEDURE)

        result = sqlserver_tools.execute_sp_data_set(command)

        assert [table.columns for table in result.data] == [["a"], ["b"]]

    def test_deadlock(self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer) -> None:
        fake_server.respond(
            *[
                ODBCDeadlock(
                    "40001",
                    "[40001] Transaction (Process ID 52) was deadlocked on lock resources (1205)",
                )
                for _ in range(3)
            ]
        )

        result = sqlserver_tools.execute_sp(add_job_command(sqlserver_tools), max_retry_count=3)

        assert not result.success
        assert result.return_code == RET_VAL_DEADLOCK
        assert len(fake_server.connections) == 3
        assert all(connection.rollbacks == 0 for connection in fake_server.connections)

    def test_debug_timing(self, fake_server: FakeServer) -> None:
        tools = SqlServerDBTools(SQLSERVER_CONNECTION_STRING, debug=True, connect=fake_server.connect)
        captured: list[Event] = []
        tools.add_event_handler(captured.append)
        fake_server.respond([FakeResult([RETURN_VALUE_COLUMN], [(0,)])])

        tools.execute_sp(tools.create_command("refresh_cache", CommandType.STORED_PROCEDURE))

        assert any(event.message.startswith("refresh_cache finished in") for event in captured)

    def test_debug_timing_on_failed_attempt(self, fake_server: FakeServer) -> None:
        tools = SqlServerDBTools(SQLSERVER_CONNECTION_STRING, debug=True, connect=fake_server.connect)
        captured: list[Event] = []
        tools.add_event_handler(captured.append)
        fake_server.respond(ODBCDeadlock("40001", "[40001] deadlocked (1205)"))

        result = tools.execute_sp(
            tools.create_command("refresh_cache", CommandType.STORED_PROCEDURE), max_retry_count=1
        )

        assert not result.success
        assert any(event.message.startswith("refresh_cache finished in") for event in captured)

    def test_runs_without_transaction(
        self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer
    ) -> None:
        fake_server.respond([FakeResult([RETURN_VALUE_COLUMN, "__p1"], [(0, "")])])

        result = sqlserver_tools.execute_sp(add_job_command(sqlserver_tools))

        assert result.success
        connection = fake_server.connections[0]
        assert (connection.commits, connection.rollbacks) == (0, 0)
        assert connection.autocommit is True

    def test_unsupported_output_type_is_not_retried(
        self, sqlserver_tools: SqlServerDBTools, fake_server: FakeServer, sleeps: list[float]
    ) -> None:
        command = sqlserver_tools.create_command("get_elapsed", CommandType.STORED_PROCEDURE)
        sqlserver_tools.add_parameter(
            command, "@elapsed", SqlType.INTERVAL, direction=ParameterDirection.OUTPUT
        )

        with pytest.raises(UnsupportedTypeError, match="SQL Server"):
            sqlserver_tools.execute_sp(command, max_retry_count=3)

        assert fake_server.connections == []
        assert sleeps == []
        assert command.closed
