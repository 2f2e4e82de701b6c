"""Per-attempt transaction management.

A transaction spans exactly one attempt: it is opened after connecting,
committed after all result data has been read, and rolled back if the
attempt raises. It is never held open across attempts.
"""

from __future__ import annotations

from contextlib import suppress
from enum import Enum
from typing import Any

from resilient_db.core.exceptions import TransactionStateError


class _TxState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class AttemptTransaction:
    """Transaction context manager over a DB-API connection.

    Commits on a clean exit, rolls back on exception. Connections are
    opened in autocommit mode; entering the context switches autocommit
    off, after which psycopg and pyodbc open the transaction implicitly on
    the first statement.
    """

    def __init__(self, connection: Any) -> None:
        self._connection = connection
        self._state = _TxState.IDLE

    @property
    def state(self) -> str:
        return self._state.value

    def __enter__(self) -> AttemptTransaction:
        if self._state != _TxState.IDLE:
            raise TransactionStateError(self._state.value, "begin")
        if getattr(self._connection, "autocommit", False):
            self._connection.autocommit = False
        self._state = _TxState.ACTIVE
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if self._state != _TxState.ACTIVE:
            return
        if exc_type is not None:
            # the attempt's own exception propagates; a failed rollback must not replace it
            with suppress(Exception):
                self.rollback()
            self._state = _TxState.ROLLED_BACK
        else:
            self.commit()

    def commit(self) -> None:
        """Explicitly commit the transaction."""
        if self._state != _TxState.ACTIVE:
            raise TransactionStateError(self._state.value, "commit")
        self._connection.commit()
        self._state = _TxState.COMMITTED

    def rollback(self) -> None:
        """Explicitly rollback the transaction."""
        if self._state == _TxState.COMMITTED:
            raise TransactionStateError("committed", "rollback")
        if self._state == _TxState.ROLLED_BACK:
            return
        self._connection.rollback()
        self._state = _TxState.ROLLED_BACK
