"""Commands, parameters and return-code resolution.

A Command is owned by a single call: it is reused unchanged across retry
attempts (so OUTPUT and INPUT_OUTPUT values survive) and closed once the
call finishes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, ClassVar

from resilient_db.core.constants import (
    DEFAULT_SP_TIMEOUT_SEC,
    RET_VAL_OK,
    RET_VAL_UNDEFINED_ERROR,
    RETURN_CODE_PARAMETER_NAMES,
)
from resilient_db.core.enums import CommandType, ParameterDirection, ServerType
from resilient_db.core.sql_types import SqlType

_INTEGER_PATTERN = re.compile(r"\d+")

DEFAULT_DECIMAL_PRECISION = 9
DEFAULT_DECIMAL_SCALE = 5

# Marks a parameter value the caller did not supply
UNSET: Any = object()


@dataclass
class Parameter:
    """A named, typed command parameter."""

    name: str
    sql_type: SqlType
    size: int = 0
    direction: ParameterDirection = ParameterDirection.INPUT
    value: Any = None
    precision: int | None = None
    scale: int | None = None

    def __post_init__(self) -> None:
        if self.sql_type is SqlType.DECIMAL:
            if self.precision is None:
                self.precision = DEFAULT_DECIMAL_PRECISION
            if self.scale is None:
                self.scale = DEFAULT_DECIMAL_SCALE

    @property
    def is_output(self) -> bool:
        """True if the server writes a value back to this parameter."""
        return self.direction is not ParameterDirection.INPUT


@dataclass
class Command:
    """SQL text or a procedure name, plus its parameters."""

    server_type: ClassVar[ServerType]

    text: str
    command_type: CommandType = CommandType.TEXT
    timeout_seconds: int = DEFAULT_SP_TIMEOUT_SEC
    parameters: list[Parameter] = field(default_factory=list)
    procedure_name: str | None = None
    closed: bool = field(default=False, init=False)

    def add(self, parameter: Parameter) -> Parameter:
        self.parameters.append(parameter)
        return parameter

    def get_parameter(self, name: str) -> Parameter | None:
        """Case-insensitive lookup by parameter name."""
        wanted = name.lower()
        for parameter in self.parameters:
            if parameter.name.lower() == wanted:
                return parameter
        return None

    def close(self) -> None:
        """Release the command; parameter values remain readable."""
        self.closed = True

    def __enter__(self) -> Command:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __str__(self) -> str:
        return self.text


@dataclass
class PostgresCommand(Command):
    """Command for the PostgreSQL executor."""

    server_type: ClassVar[ServerType] = ServerType.POSTGRESQL


@dataclass
class SqlServerCommand(Command):
    """Command for the SQL Server executor."""

    server_type: ClassVar[ServerType] = ServerType.SQLSERVER


def return_code_from_value(value: Any) -> int:
    """Interpret the value of a return-code parameter.

    Empty or "0" means success. Otherwise the first integer in the text is
    the code (e.g. "22P06" gives 22); text with no non-zero integer gives
    RET_VAL_UNDEFINED_ERROR.
    """
    text = "" if value is None else str(value).strip()
    if not text or text == "0":
        return RET_VAL_OK

    match = _INTEGER_PATTERN.search(text)
    if match:
        number = int(match.group())
        if number != 0:
            return number
    return RET_VAL_UNDEFINED_ERROR


def get_return_code(parameters: list[Parameter]) -> int:
    """Resolve the return code of a procedure call from its parameters.

    A parameter named like a return code wins; then any RETURN_VALUE
    parameter; otherwise RET_VAL_OK.
    """
    names = {name.lower() for name in RETURN_CODE_PARAMETER_NAMES}
    for parameter in parameters:
        if parameter.name.lower() in names:
            return return_code_from_value(parameter.value)

    for parameter in parameters:
        if parameter.direction is ParameterDirection.RETURN_VALUE:
            if parameter.value is None or parameter.value == "":
                return RET_VAL_OK
            try:
                return int(parameter.value)
            except (TypeError, ValueError):
                return return_code_from_value(parameter.value)

    return RET_VAL_OK
