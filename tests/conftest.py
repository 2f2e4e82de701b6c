"""Shared test fixtures.

The executors never import a database driver when a ``connect`` hook is
given, so the tests drive them with the in-memory fakes below. A
FakeServer holds a queue of responses; every ``cursor.execute`` call on
any connection consumes the next one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from resilient_db.adapters.postgresql import PostgresDBTools
from resilient_db.adapters.sqlserver import SqlServerDBTools
from resilient_db.core.events import Event

PG_CONNECTION_STRING = "Host=pgdb;Database=dms;Username=svc;Password=secret"
SQLSERVER_CONNECTION_STRING = "Data Source=sqlhost;Initial Catalog=DMS5;User ID=svc;Password=secret;"

# psycopg OIDs used in descriptions
TEXT_OID = 25
INT4_OID = 23
REFCURSOR_OID = 1790


@dataclass
class FakeResult:
    """One result set: column names (or (name, type_code) pairs) and rows."""

    columns: list[Any]
    rows: list[tuple[Any, ...]] = field(default_factory=list)

    @property
    def description(self) -> list[tuple[Any, ...]]:
        description = []
        for column in self.columns:
            name, type_code = column if isinstance(column, tuple) else (column, TEXT_OID)
            description.append((name, type_code, None, None, None, None, None))
        return description


class FakeCursor:
    def __init__(self, connection: FakeConnection) -> None:
        self._connection = connection
        self._sets: list[FakeResult] = []
        self._index = 0
        self._rows: list[tuple[Any, ...]] = []
        self.closed = False

    def execute(self, sql: str, params: Any = None) -> FakeCursor:
        server = self._connection.server
        server.executed.append((sql, params))
        if not server.responses:
            raise AssertionError(f"unexpected execute: {sql}")
        response = server.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, FakeResult):
            response = [response]
        self._sets = list(response)
        self._index = 0
        self._rows = list(self._sets[0].rows) if self._sets else []
        return self

    @property
    def description(self) -> list[tuple[Any, ...]] | None:
        if self._index >= len(self._sets) or not self._sets[self._index].columns:
            return None
        return self._sets[self._index].description

    def fetchone(self) -> tuple[Any, ...] | None:
        self._connection.server.fetch_count += 1
        failure = self._connection.server.fetch_failures.get(self._connection.server.fetch_count)
        if failure is not None:
            raise failure
        if not self._rows:
            return None
        return self._rows.pop(0)

    def nextset(self) -> bool | None:
        self._index += 1
        if self._index >= len(self._sets):
            return None
        self._rows = list(self._sets[self._index].rows)
        return True

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, server: FakeServer, target: Any, timeout_seconds: int) -> None:
        self.server = server
        self.target = target
        self.timeout_seconds = timeout_seconds
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self.notice_handlers: list[Any] = []
        self.autocommit = True

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True

    def add_notice_handler(self, handler: Any) -> None:
        self.notice_handlers.append(handler)


class FakeServer:
    """Scripted database shared by every connection a test opens."""

    def __init__(self) -> None:
        self.responses: list[Any] = []
        self.connect_failures: list[BaseException] = []
        # fetchone call number -> exception raised by that call
        self.fetch_failures: dict[int, BaseException] = {}
        self.executed: list[tuple[str, Any]] = []
        self.connections: list[FakeConnection] = []
        self.fetch_count = 0

    def respond(self, *responses: Any) -> FakeServer:
        self.responses.extend(responses)
        return self

    def connect(self, target: Any, timeout_seconds: int) -> FakeConnection:
        if self.connect_failures:
            raise self.connect_failures.pop(0)
        connection = FakeConnection(self, target, timeout_seconds)
        self.connections.append(connection)
        return connection


class FakeDriverError(Exception):
    """Stands in for a driver exception carrying an optional SQLSTATE."""

    def __init__(self, message: str, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


@pytest.fixture(autouse=True)
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record retry delays instead of sleeping."""
    calls: list[float] = []
    monkeypatch.setattr("resilient_db.core.retry.time.sleep", calls.append)
    return calls


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def events() -> list[Event]:
    return []


@pytest.fixture
def pg_tools(fake_server: FakeServer, events: list[Event]) -> PostgresDBTools:
    tools = PostgresDBTools(PG_CONNECTION_STRING, connect=fake_server.connect)
    tools.add_event_handler(events.append)
    return tools


@pytest.fixture
def sqlserver_tools(fake_server: FakeServer, events: list[Event]) -> SqlServerDBTools:
    tools = SqlServerDBTools(SQLSERVER_CONNECTION_STRING, connect=fake_server.connect)
    tools.add_event_handler(events.append)
    return tools
