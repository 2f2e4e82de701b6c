"""resilient_db exception hierarchy.

Operational database failures (timeouts, deadlocks, missing objects) are
reported through ExecutionResult values and events, never raised from the
execution entry points. The exceptions here signal caller defects or
misuse of helper APIs.
"""

from __future__ import annotations


class ResilientDbError(Exception):
    """Base exception for all resilient_db errors."""


# --- Configuration ---


class ConfigurationError(ResilientDbError):
    """Raised for an invalid connection string or executor configuration."""


# --- Commands ---


class CommandTypeError(ResilientDbError):
    """Raised when a command built for one engine is passed to the other."""

    def __init__(self, expected: str, actual: object) -> None:
        self.expected = expected
        actual_name = "None" if actual is None else type(actual).__name__
        self.actual = actual_name
        super().__init__(
            f"This method requires a command of type {expected}, "
            f"but got an argument of type {actual_name}"
        )


class UnsupportedTypeError(ResilientDbError):
    """Raised when a SqlType has no equivalent in the target engine."""

    def __init__(self, sql_type: object, engine: str) -> None:
        self.sql_type = sql_type
        self.engine = engine
        super().__init__(f"Conversion for SqlType {sql_type} is not defined for {engine}")


# --- Execution ---


class ExecutionError(ResilientDbError):
    """Base for query execution errors."""


class StreamInterruptedError(ExecutionError):
    """Raised when a lazy result sequence fails after rows were yielded."""

    def __init__(self, rows_yielded: int, detail: str) -> None:
        self.rows_yielded = rows_yielded
        super().__init__(f"Result stream failed after {rows_yielded} rows: {detail}")


# --- Mapping ---


class MappingError(ResilientDbError):
    """Base for mapping errors."""


class ColumnMismatchError(MappingError):
    """Raised when required fields cannot be mapped from row columns."""

    def __init__(self, target_class: str, missing_fields: list[str]) -> None:
        self.target_class = target_class
        self.missing_fields = missing_fields
        super().__init__(f"Cannot map to {target_class}: missing fields {missing_fields}")


class ColumnNotFoundError(MappingError):
    """Raised when a column name is not present in a column map."""

    def __init__(self, column_name: str, available: list[str]) -> None:
        self.column_name = column_name
        self.available = available
        super().__init__(
            f"Cannot retrieve value for column {column_name}; "
            f"column not found in {available}"
        )


# --- Transaction ---


class TransactionError(ResilientDbError):
    """Base for transaction errors."""


class TransactionStateError(TransactionError):
    """Raised on invalid transaction state transitions."""

    def __init__(self, current_state: str, attempted_action: str) -> None:
        self.current_state = current_state
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action} transaction in state '{current_state}'")
