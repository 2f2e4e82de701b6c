"""Unit tests for commands, parameters and return codes."""

from __future__ import annotations

import pytest

from resilient_db.core.command import (
    Parameter,
    PostgresCommand,
    SqlServerCommand,
    get_return_code,
    return_code_from_value,
)
from resilient_db.core.enums import CommandType, ParameterDirection, ServerType
from resilient_db.core.sql_types import SqlType


class TestParameter:
    def test_decimal_gets_default_precision(self) -> None:
        parameter = Parameter("@amount", SqlType.DECIMAL)
        assert (parameter.precision, parameter.scale) == (9, 5)

    def test_decimal_precision_override(self) -> None:
        parameter = Parameter("@amount", SqlType.DECIMAL, precision=18, scale=2)
        assert (parameter.precision, parameter.scale) == (18, 2)

    def test_other_types_have_no_precision(self) -> None:
        parameter = Parameter("@id", SqlType.INT)
        assert parameter.precision is None

    def test_is_output(self) -> None:
        assert not Parameter("@a", SqlType.INT).is_output
        assert Parameter("@a", SqlType.INT, direction=ParameterDirection.OUTPUT).is_output
        assert Parameter("@a", SqlType.INT, direction=ParameterDirection.RETURN_VALUE).is_output


class TestCommand:
    def test_server_types(self) -> None:
        assert PostgresCommand("SELECT 1").server_type is ServerType.POSTGRESQL
        assert SqlServerCommand("SELECT 1").server_type is ServerType.SQLSERVER

    def test_get_parameter_is_case_insensitive(self) -> None:
        command = SqlServerCommand("add_job", CommandType.STORED_PROCEDURE)
        parameter = command.add(Parameter("@JobID", SqlType.INT))
        assert command.get_parameter("@jobid") is parameter
        assert command.get_parameter("@missing") is None

    def test_context_manager_closes(self) -> None:
        with PostgresCommand("SELECT 1") as command:
            assert not command.closed
        assert command.closed

    def test_str_is_text(self) -> None:
        assert str(PostgresCommand("SELECT 1")) == "SELECT 1"


class TestReturnCodeFromValue:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("", 0),
            (None, 0),
            ("0", 0),
            ("22P06", 22),
            ("U5201", 5201),
            ("error", -1),
            ("00000", -1),
            (50, 50),
        ],
    )
    def test_values(self, value: object, expected: int) -> None:
        assert return_code_from_value(value) == expected


class TestGetReturnCode:
    def test_no_return_parameters(self) -> None:
        assert get_return_code([Parameter("@a", SqlType.INT, value=5)]) == 0

    def test_return_value_parameter(self) -> None:
        parameters = [
            Parameter("@a", SqlType.INT, value=5),
            Parameter("@Return", SqlType.INT, direction=ParameterDirection.RETURN_VALUE, value=53),
        ]
        assert get_return_code(parameters) == 53

    def test_return_value_unset(self) -> None:
        parameters = [Parameter("@Return", SqlType.INT, direction=ParameterDirection.RETURN_VALUE)]
        assert get_return_code(parameters) == 0

    def test_named_return_code_takes_precedence(self) -> None:
        parameters = [
            Parameter("@Return", SqlType.INT, direction=ParameterDirection.RETURN_VALUE, value=7),
            Parameter(
                "_ReturnCode",
                SqlType.TEXT,
                direction=ParameterDirection.INPUT_OUTPUT,
                value="U5201",
            ),
        ]
        assert get_return_code(parameters) == 5201

    def test_sqlserver_style_name(self) -> None:
        parameters = [
            Parameter("@returnCode", SqlType.VARCHAR, direction=ParameterDirection.OUTPUT, value="")
        ]
        assert get_return_code(parameters) == 0
