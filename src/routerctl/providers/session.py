"""Connection to the InnoDB cluster metadata server.

The session wraps a single SQLAlchemy connection (PyMySQL driver). Reads run
outside of any explicit transaction; :meth:`MetadataSession.transaction`
groups the mutations of one bootstrap so they are committed together.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import NullPool

LOGGER = logging.getLogger(__name__)

DEFAULT_PORT = 3306
DEFAULT_USER = "root"
URL_SCHEME = "mysql://"

Row = tuple[object, ...]
Params = Mapping[str, object]


class MetadataError(RuntimeError):
    """Raised when the metadata server rejects or fails a statement.

    ``code`` carries the server error number when one is available (for
    example ``1062`` for a duplicate key).
    """

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class InvalidServerUrl(ValueError):
    """Raised when a ``[mysql://][user[:password]@]host[:port]`` URL is malformed."""


@dataclass(slots=True, frozen=True)
class ServerAddress:
    """Where and as whom to connect to the metadata server."""

    host: str
    port: int = DEFAULT_PORT
    user: str = DEFAULT_USER
    password: str | None = field(default=None, repr=False)

    def display(self) -> str:
        """Return ``user@host:port`` without the password."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{self.user}@{host}:{self.port}"

    def with_password(self, password: str) -> ServerAddress:
        return ServerAddress(host=self.host, port=self.port, user=self.user, password=password)


def parse_server_url(url: str) -> ServerAddress:
    """Parse a server URL as accepted on the command line.

    ``localhost`` is mapped to ``127.0.0.1`` so the connection uses TCP rather
    than the local socket.
    """
    remainder = url.strip()
    if remainder.lower().startswith(URL_SCHEME):
        remainder = remainder[len(URL_SCHEME) :]
    elif "://" in remainder:
        raise InvalidServerUrl(f"Unsupported URL scheme in '{url}'.")
    remainder = remainder.rstrip("/")

    user = DEFAULT_USER
    password: str | None = None
    if "@" in remainder:
        credentials, remainder = remainder.rsplit("@", 1)
        user, sep, secret = credentials.partition(":")
        if sep:
            password = secret
        if not user:
            raise InvalidServerUrl(f"Missing user name in '{url}'.")

    host, port = _split_host_port(remainder, url)
    if host == "localhost":
        host = "127.0.0.1"
    return ServerAddress(host=host, port=port, user=user, password=password)


def _split_host_port(value: str, url: str) -> tuple[str, int]:
    if value.startswith("["):
        closing = value.find("]")
        if closing == -1:
            raise InvalidServerUrl(f"Unterminated IPv6 address in '{url}'.")
        host = value[1:closing]
        rest = value[closing + 1 :]
        if rest and not rest.startswith(":"):
            raise InvalidServerUrl(f"Invalid address in '{url}'.")
        port_text = rest[1:] if rest else ""
    elif value.count(":") > 1:
        host, port_text = value, ""
    else:
        host, _, port_text = value.partition(":")
    if not host:
        raise InvalidServerUrl(f"Missing host in '{url}'.")
    if not port_text:
        return host, DEFAULT_PORT
    if not port_text.isdigit() or not 0 < int(port_text) <= 65535:
        raise InvalidServerUrl(f"Invalid port '{port_text}' in '{url}'.")
    return host, int(port_text)


class SessionProtocol(Protocol):
    """What the bootstrap needs from a metadata connection."""

    def query(self, statement: str, params: Params | None = None) -> list[Row]: ...

    def query_one(self, statement: str, params: Params | None = None) -> Row | None: ...

    def execute(self, statement: str, params: Params | None = None) -> int: ...

    def last_insert_id(self) -> int: ...

    def rollback(self) -> None: ...

    def transaction(self) -> AbstractContextManager[object]: ...


class MetadataSession:
    """A live connection to one metadata server."""

    def __init__(self, engine: Engine, connection: Connection, address: ServerAddress) -> None:
        self._engine = engine
        self._connection = connection
        self.address = address

    @classmethod
    def connect(cls, address: ServerAddress, *, connect_timeout: float = 5.0) -> MetadataSession:
        """Open a connection or raise :class:`MetadataError`."""
        url = URL.create(
            "mysql+pymysql",
            username=address.user,
            password=address.password,
            host=address.host,
            port=address.port,
        )
        engine = create_engine(
            url,
            poolclass=NullPool,
            connect_args={"connect_timeout": max(1, int(connect_timeout))},
        )
        try:
            connection = engine.connect()
        except SQLAlchemyError as exc:
            engine.dispose()
            raise MetadataError(
                f"Unable to connect to the metadata server: {_describe(exc)}",
                code=_error_code(exc),
            ) from exc
        LOGGER.debug("Connected to metadata server %s", address.display())
        return cls(engine, connection, address)

    def query(self, statement: str, params: Params | None = None) -> list[Row]:
        """Run a SELECT and return all rows as tuples."""
        try:
            result = self._connection.execute(text(statement), dict(params or {}))
            return [tuple(row) for row in result]
        except DBAPIError as exc:
            raise MetadataError(_describe(exc), code=_error_code(exc)) from exc

    def query_one(self, statement: str, params: Params | None = None) -> Row | None:
        rows = self.query(statement, params)
        return rows[0] if rows else None

    def execute(self, statement: str, params: Params | None = None) -> int:
        """Run a statement that returns no rows; return the affected row count."""
        try:
            result = self._connection.execute(text(statement), dict(params or {}))
            return int(result.rowcount or 0)
        except DBAPIError as exc:
            raise MetadataError(_describe(exc), code=_error_code(exc)) from exc

    def last_insert_id(self) -> int:
        row = self.query_one("SELECT LAST_INSERT_ID()")
        if row is None or row[0] is None:
            raise MetadataError("Server did not report an insert id.")
        return int(str(row[0]))

    def rollback(self) -> None:
        """Roll back the open transaction, logging instead of raising."""
        try:
            self._connection.rollback()
        except SQLAlchemyError as exc:
            LOGGER.warning("Rollback on metadata server failed: %s", _describe(exc))

    @contextmanager
    def transaction(self) -> Iterator[MetadataSession]:
        """Run the enclosed statements in one transaction.

        The transaction commits when the block exits normally and rolls back
        when it raises.
        """
        if self._connection.in_transaction():
            self._connection.commit()
        transaction = self._connection.begin()
        try:
            yield self
        except BaseException:
            if transaction.is_active:
                try:
                    transaction.rollback()
                except SQLAlchemyError as exc:
                    LOGGER.warning("Rollback on metadata server failed: %s", _describe(exc))
            raise
        if transaction.is_active:
            try:
                transaction.commit()
            except DBAPIError as exc:
                raise MetadataError(_describe(exc), code=_error_code(exc)) from exc

    def close(self) -> None:
        try:
            self._connection.close()
        finally:
            self._engine.dispose()

    def __enter__(self) -> MetadataSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _error_code(exc: SQLAlchemyError) -> int | None:
    args = getattr(getattr(exc, "orig", None), "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _describe(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    args = getattr(orig, "args", ())
    if len(args) >= 2 and isinstance(args[0], int):
        return f"{args[1]} ({args[0]})"
    if orig is not None:
        return str(orig)
    return str(exc)


__all__ = [
    "DEFAULT_PORT",
    "DEFAULT_USER",
    "InvalidServerUrl",
    "MetadataError",
    "MetadataSession",
    "ServerAddress",
    "SessionProtocol",
    "parse_server_url",
]
