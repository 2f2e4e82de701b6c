"""Connection descriptor and connection-string helpers.

ConnectionDescriptor is a Pydantic model for type-safe connection config.
Server type, host and database are derived from the connection string on
every access, so assigning a new connection string re-derives all three.
"""

from __future__ import annotations

import re
from types import MappingProxyType
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, field_validator

from resilient_db.core.constants import DEFAULT_SP_TIMEOUT_SEC, MINIMUM_TIMEOUT_SEC
from resilient_db.core.enums import ServerType

# Explicit override, e.g. "DbServerType=Postgres;Host=prismdb2;..."
SERVER_TYPE_KEY = "dbservertype"

_SERVER_TYPE_ALIASES: MappingProxyType[str, ServerType] = MappingProxyType(
    {
        "postgres": ServerType.POSTGRESQL,
        "postgresql": ServerType.POSTGRESQL,
        "pg": ServerType.POSTGRESQL,
        "sqlserver": ServerType.SQLSERVER,
        "mssql": ServerType.SQLSERVER,
        "mssqlserver": ServerType.SQLSERVER,
    }
)

# Keyword table used to sniff the server type; checked in order
_SERVER_KEYWORDS: tuple[tuple[ServerType, tuple[str, ...]], ...] = (
    (ServerType.SQLSERVER, ("data source", "integrated security", "initial catalog")),
    (ServerType.POSTGRESQL, ("host", "hostaddr", "dbname")),
)

_HOST_KEYS = ("host", "server", "data source", "address", "addr", "network address", "hostaddr")
_DATABASE_KEYS = ("database", "initial catalog", "dbname")

_DELIMITED_PASSWORD = re.compile(r"\b(password|pwd)(\s*=\s*)[^;]*", re.IGNORECASE)
_SPACED_PASSWORD = re.compile(r"\b(password|pwd)(\s*=\s*)\S+", re.IGNORECASE)
_URI_PASSWORD = re.compile(r"(://[^:/@\s]*:)[^@\s]+@")

MASKED_PASSWORD = "******"


def _is_uri(connection_string: str) -> bool:
    return connection_string.strip().lower().startswith(("postgresql://", "postgres://"))


def parse_connection_string(connection_string: str) -> dict[str, str]:
    """Split a connection string into lower-cased keys and their values.

    Accepts ``key=value;`` strings (SQL Server and Npgsql style),
    space-separated libpq strings (``host=x dbname=y``) and
    ``postgresql://`` URIs.
    """
    text = connection_string.strip()
    settings: dict[str, str] = {}

    if _is_uri(text):
        parts = urlsplit(text)
        if parts.hostname:
            settings["host"] = parts.hostname
        if parts.port:
            settings["port"] = str(parts.port)
        if parts.username:
            settings["user"] = unquote(parts.username)
        if parts.password:
            settings["password"] = unquote(parts.password)
        if parts.path.strip("/"):
            settings["dbname"] = parts.path.strip("/")
        return settings

    segments = text.split(";") if ";" in text else text.split()
    for segment in segments:
        if "=" not in segment:
            continue
        key, _, value = segment.partition("=")
        key = " ".join(key.split()).lower()
        if key:
            settings[key] = value.strip()
    return settings


def get_server_type_from_connection_string(connection_string: str) -> ServerType:
    """Decide which engine a connection string targets.

    An explicit ``DbServerType=...`` token wins; otherwise SQL Server keywords
    are checked before PostgreSQL keywords. Defaults to SQL Server.
    """
    settings = parse_connection_string(connection_string)

    override = settings.get(SERVER_TYPE_KEY)
    if override:
        server_type = _SERVER_TYPE_ALIASES.get(override.strip().lower())
        if server_type is not None:
            return server_type

    if _is_uri(connection_string):
        return ServerType.POSTGRESQL

    for server_type, keywords in _SERVER_KEYWORDS:
        if any(keyword in settings for keyword in keywords):
            return server_type

    return ServerType.SQLSERVER


def mask_connection_string_password(connection_string: str) -> str:
    """Replace any password in a connection string with asterisks."""
    if _is_uri(connection_string):
        return _URI_PASSWORD.sub(rf"\g<1>{MASKED_PASSWORD}@", connection_string)
    pattern = _DELIMITED_PASSWORD if ";" in connection_string else _SPACED_PASSWORD
    return pattern.sub(rf"\g<1>\g<2>{MASKED_PASSWORD}", connection_string)


def strip_server_type(settings: dict[str, str]) -> dict[str, str]:
    """Copy of *settings* without the server type override token."""
    return {key: value for key, value in settings.items() if key != SERVER_TYPE_KEY}


def normalize_timeout(timeout_seconds: int | None) -> int:
    """Command timeout with the default and floor applied."""
    if timeout_seconds is None or timeout_seconds <= 0:
        return DEFAULT_SP_TIMEOUT_SEC
    return max(timeout_seconds, MINIMUM_TIMEOUT_SEC)


def _first_value(settings: dict[str, str], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = settings.get(key)
        if value:
            return value
    return ""


class ConnectionDescriptor(BaseModel):
    """Connection string plus the values derived from it."""

    model_config = ConfigDict(validate_assignment=True)

    connection_string: str
    timeout_seconds: int = DEFAULT_SP_TIMEOUT_SEC

    @field_validator("connection_string")
    @classmethod
    def _require_connection_string(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Connection string cannot be empty")
        return value

    @field_validator("timeout_seconds")
    @classmethod
    def _floor_timeout(cls, value: int) -> int:
        return normalize_timeout(value)

    @property
    def settings(self) -> dict[str, str]:
        return parse_connection_string(self.connection_string)

    @property
    def server_type(self) -> ServerType:
        return get_server_type_from_connection_string(self.connection_string)

    @property
    def server_name(self) -> str:
        host = _first_value(self.settings, _HOST_KEYS)
        # SQL Server allows "host,port" and "host\instance"
        return host.split(",")[0]

    @property
    def database_name(self) -> str:
        return _first_value(self.settings, _DATABASE_KEYS)

    @property
    def masked_connection_string(self) -> str:
        return mask_connection_string_password(self.connection_string)
