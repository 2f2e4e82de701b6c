"""Enumerations shared by commands, parameters and executors."""

from __future__ import annotations

from enum import Enum


class ServerType(Enum):
    """Supported database servers."""

    SQLSERVER = "sqlserver"
    POSTGRESQL = "postgresql"


class CommandType(Enum):
    """How the command text is interpreted."""

    TEXT = "text"
    STORED_PROCEDURE = "stored_procedure"


class ParameterDirection(Enum):
    """Direction of a command parameter."""

    INPUT = "input"
    OUTPUT = "output"
    INPUT_OUTPUT = "input_output"
    RETURN_VALUE = "return_value"


class ErrorKind(Enum):
    """Outcome of classifying a failed attempt."""

    TRANSIENT = "transient"
    DEADLOCK = "deadlock"
    FATAL = "fatal"


class EventLevel(Enum):
    """Severity of a notification raised by an executor."""

    DEBUG = "debug"
    STATUS = "status"
    WARNING = "warning"
    ERROR = "error"
