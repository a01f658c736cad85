from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping, Optional

import psycopg
from psycopg.pq import TransactionStatus

from cocklock.application.errors import BackendError, ConfigurationError, TransientBackendError
from cocklock.domain.schema import LockStatement

logger = logging.getLogger(__name__)

# admin_shutdown, crash_shutdown, cannot_connect_now
SHUTDOWN_SQLSTATES = frozenset({"57P01", "57P02", "57P03"})
# Class 08: connection exception
CONNECTION_SQLSTATE_CLASS = "08"

# A connection mid-transaction would turn each statement into an uncommitted savepoint.
BUSY_TRANSACTION_STATUSES = frozenset({TransactionStatus.ACTIVE, TransactionStatus.INTRANS, TransactionStatus.INERROR})


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    DEFINITIVE = "definitive"


def classify_error(exc: BaseException, connection: Optional[psycopg.Connection] = None) -> ErrorKind:
    """Decide whether a driver error means "backend unreachable" or a real answer."""
    sqlstate = getattr(exc, "sqlstate", None)
    if sqlstate in SHUTDOWN_SQLSTATES:
        return ErrorKind.TRANSIENT
    if sqlstate and sqlstate.startswith(CONNECTION_SQLSTATE_CLASS):
        return ErrorKind.TRANSIENT
    if isinstance(exc, psycopg.InterfaceError):
        return ErrorKind.TRANSIENT
    if isinstance(exc, psycopg.OperationalError):
        # Lost connections surface without a SQLSTATE; the server never answered.
        if sqlstate is None or (connection is not None and connection.closed):
            return ErrorKind.TRANSIENT
    return ErrorKind.DEFINITIVE


def describe_connection(connection: psycopg.Connection) -> str:
    """host:port/dbname, never including credentials."""
    try:
        info = connection.info
        return f"{info.host}:{info.port}/{info.dbname}"
    except psycopg.Error:
        return f"postgres@{id(connection):x}"


class PostgresLockBackend:
    """Lock backend over a single psycopg connection."""

    def __init__(self, connection: psycopg.Connection, name: Optional[str] = None) -> None:
        if connection.info.transaction_status in BUSY_TRANSACTION_STATUSES:
            raise ConfigurationError(
                "Lock backend connections must not be inside a transaction; "
                "commit or roll back before handing the connection over, or use autocommit"
            )
        self._connection = connection
        self.name = name or describe_connection(connection)

    @classmethod
    def connect(
        cls,
        conninfo: str,
        tls_root_cert: Optional[str] = None,
        connect_timeout_seconds: int = 10,
        statement_timeout_ms: int = 5000,
    ) -> "PostgresLockBackend":
        """Open an autocommit connection with transport timeouts applied."""
        connection_params: dict[str, Any] = {
            "autocommit": True,
            "connect_timeout": connect_timeout_seconds,
            "options": f"-c statement_timeout={statement_timeout_ms}",
        }
        if tls_root_cert:
            connection_params["sslmode"] = "verify-full"
            connection_params["sslrootcert"] = tls_root_cert

        connection = psycopg.connect(conninfo, **connection_params)
        backend = cls(connection)
        logger.info(f"Connected to lock backend {backend.name}", extra=backend._get_log_extra())
        return backend

    def _get_log_extra(self) -> dict[str, str]:
        return {"backend": self.name}

    def _translate(self, exc: psycopg.Error, statement: LockStatement) -> BackendError:
        sqlstate = getattr(exc, "sqlstate", None)
        message = f"{statement} failed on {self.name}: {exc}"
        if classify_error(exc, self._connection) is ErrorKind.TRANSIENT:
            return TransientBackendError(message, backend=self.name, sqlstate=sqlstate)
        return BackendError(message, backend=self.name, sqlstate=sqlstate)

    def execute_conditional(self, statement: LockStatement, params: Mapping[str, Any]) -> int:
        """
        Execute one conditional write and return the number of rows it touched.

        Args:
            statement: Composed statement with named placeholders
            params: Values for the placeholders

        Raises:
            TransientBackendError: The backend is closed or shutting down
            BackendError: Any other failure
        """
        logger.debug(f"Executing {statement} on {self.name}", extra=self._get_log_extra())
        try:
            with self._connection.transaction():
                cursor = self._connection.execute(statement.query, params)
                return cursor.rowcount
        except psycopg.Error as e:
            raise self._translate(e, statement) from e

    def execute_schema(self, statement: LockStatement) -> None:
        logger.debug(f"Executing {statement} on {self.name}", extra=self._get_log_extra())
        try:
            with self._connection.transaction():
                self._connection.execute(statement.query)
        except psycopg.Error as e:
            raise self._translate(e, statement) from e

    def close(self) -> None:
        """Close the connection."""
        if self._connection.closed:
            return
        try:
            self._connection.close()
            logger.info(f"Closed lock backend {self.name}", extra=self._get_log_extra())
        except psycopg.Error as e:
            logger.warning(f"Error closing lock backend {self.name}: {e}", extra=self._get_log_extra())
