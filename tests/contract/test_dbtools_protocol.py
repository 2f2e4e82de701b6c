"""Contract tests for executor protocol compliance."""

from __future__ import annotations

import pytest
from conftest import PG_CONNECTION_STRING, SQLSERVER_CONNECTION_STRING, FakeServer

from resilient_db.adapters.postgresql import PostgresDBTools
from resilient_db.adapters.protocol import DBTools
from resilient_db.adapters.sqlserver import SqlServerDBTools
from resilient_db.core.command import PostgresCommand, SqlServerCommand
from resilient_db.core.enums import CommandType, ServerType

ENTRY_POINTS = [
    "test_database_connection",
    "get_query_scalar",
    "get_query_results",
    "get_query_results_table",
    "get_query_results_dataset",
    "get_query_results_lazy",
    "execute_sp_data",
    "execute_sp_data_table",
    "execute_sp_data_set",
    "execute_sp",
]


@pytest.fixture(params=["postgres", "sqlserver"])
def tools(request: pytest.FixtureRequest, fake_server: FakeServer) -> DBTools:
    if request.param == "postgres":
        return PostgresDBTools(PG_CONNECTION_STRING, connect=fake_server.connect)
    return SqlServerDBTools(SQLSERVER_CONNECTION_STRING, connect=fake_server.connect)


class TestDBToolsProtocol:
    def test_implements_protocol(self, tools: DBTools) -> None:
        assert isinstance(tools, DBTools)

    @pytest.mark.parametrize("name", ENTRY_POINTS)
    def test_entry_points(self, tools: DBTools, name: str) -> None:
        assert callable(getattr(tools, name))

    def test_command_matches_server_type(self, tools: DBTools) -> None:
        command = tools.create_command("get_jobs", CommandType.STORED_PROCEDURE)
        expected = PostgresCommand if tools.server_type is ServerType.POSTGRESQL else SqlServerCommand
        assert isinstance(command, expected)
        assert command.server_type is tools.server_type
        assert command.timeout_seconds == 30

    def test_descriptor_names(self, tools: DBTools) -> None:
        assert tools.server_name in ("pgdb", "sqlhost")
        assert tools.database_name in ("dms", "DMS5")
        assert tools.debug_messages_enabled is False
