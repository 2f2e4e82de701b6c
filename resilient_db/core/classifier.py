"""Classification of failed attempts into fatal, deadlock and transient.

Each engine has its own classifier instance because SQLSTATE usage and
message text differ by vendor, but every classifier makes the same
decision: fatal errors stop the retry loop, deadlocks are retried and
remembered, everything else is retried.

Structured SQLSTATE codes are checked first; message substrings are the
fallback for drivers or errors that carry no code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from resilient_db.core.enums import ErrorKind

DEADLOCK_PHRASE = "was deadlocked"


@dataclass(frozen=True)
class Classification:
    """How a failed attempt should be treated."""

    kind: ErrorKind
    permission_denied: bool = False
    sqlstate: str | None = None

    @property
    def is_fatal(self) -> bool:
        return self.kind is ErrorKind.FATAL

    @property
    def is_deadlock(self) -> bool:
        return self.kind is ErrorKind.DEADLOCK


def extract_sqlstate(exc: BaseException) -> str | None:
    """Return the SQLSTATE carried by a driver exception, if any.

    psycopg exposes ``sqlstate``; pyodbc puts the SQLSTATE in ``args[0]``.
    """
    for attribute in ("sqlstate", "pgcode"):
        value = getattr(exc, attribute, None)
        if isinstance(value, str) and value:
            return value.upper()

    args = getattr(exc, "args", ())
    if len(args) >= 2 and isinstance(args[0], str) and len(args[0]) == 5 and args[0].isalnum():
        return args[0].upper()
    return None


@dataclass(frozen=True)
class ErrorClassifier:
    """Stateless classifier for one engine's exceptions."""

    engine: str
    fatal_phrases: tuple[str, ...]
    permission_patterns: tuple[re.Pattern[str], ...]
    fatal_sqlstates: frozenset[str] = frozenset()
    permission_sqlstates: frozenset[str] = frozenset()
    deadlock_sqlstates: frozenset[str] = frozenset()

    def is_permission_denied(self, message: str, sqlstate: str | None) -> bool:
        if sqlstate is not None and sqlstate in self.permission_sqlstates:
            return True
        return any(pattern.search(message) for pattern in self.permission_patterns)

    def is_fatal(self, message: str, sqlstate: str | None) -> bool:
        if sqlstate is not None and sqlstate in self.fatal_sqlstates:
            return True
        lowered = message.lower()
        return any(phrase in lowered for phrase in self.fatal_phrases)

    def is_deadlock(self, message: str, sqlstate: str | None) -> bool:
        if sqlstate is not None and sqlstate in self.deadlock_sqlstates:
            return True
        return DEADLOCK_PHRASE in message.lower()

    def classify(self, exc: BaseException) -> Classification:
        message = str(exc)
        sqlstate = extract_sqlstate(exc)
        permission_denied = self.is_permission_denied(message, sqlstate)

        if permission_denied or self.is_fatal(message, sqlstate):
            return Classification(ErrorKind.FATAL, permission_denied, sqlstate)
        if self.is_deadlock(message, sqlstate):
            return Classification(ErrorKind.DEADLOCK, sqlstate=sqlstate)
        return Classification(ErrorKind.TRANSIENT, sqlstate=sqlstate)


POSTGRES_CLASSIFIER = ErrorClassifier(
    engine="PostgreSQL",
    fatal_phrases=(
        "does not exist",
        "no such host is known",
        "could not translate host name",
        "open data reader exists for this command",
        "ldap authentication failed for user",
        "no password has been provided but the backend requires one",
        "password authentication failed for user",
    ),
    permission_patterns=(re.compile(r"permission denied", re.IGNORECASE),),
    fatal_sqlstates=frozenset(
        {
            "28000",  # invalid_authorization_specification
            "28P01",  # invalid_password
            "3D000",  # invalid_catalog_name
            "3F000",  # invalid_schema_name
            "42P01",  # undefined_table
            "42703",  # undefined_column
            "42704",  # undefined_object
            "42883",  # undefined_function
        }
    ),
    permission_sqlstates=frozenset({"42501"}),
    deadlock_sqlstates=frozenset({"40P01"}),
)

SQLSERVER_CLASSIFIER = ErrorClassifier(
    engine="SQL Server",
    fatal_phrases=(
        "does not exist",
        "login failed",
        "invalid object name",
        "invalid column name",
        "could not find stored procedure",
        "no such host is known",
        "open data reader exists for this command",
        "connection is busy with results for another command",
    ),
    permission_patterns=(
        re.compile(r"permission (was )?denied", re.IGNORECASE),
        re.compile(r"user .+ cannot use procedure", re.IGNORECASE),
    ),
    fatal_sqlstates=frozenset(
        {
            "28000",  # login failed
            "42S02",  # invalid object name
            "42S22",  # invalid column name
        }
    ),
    # Error 1205, chosen as the deadlock victim
    deadlock_sqlstates=frozenset({"40001"}),
)
