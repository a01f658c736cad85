from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

import psycopg

from cocklock.adapters.postgres.backend import PostgresLockBackend
from cocklock.application.errors import ConfigurationError
from cocklock.application.lock_manager import CockLock
from cocklock.ports.lock_backend import LockBackend
from cocklock.settings import DEFAULT_TABLE_NAME

logger = logging.getLogger(__name__)


class CockLockBuilder:
    """Chainable construction of a ``CockLock`` from connection strings or ready connections.

    Injected backends and connections come first in the failover order,
    followed by connection strings in the order they were added.
    """

    def __init__(self) -> None:
        self._backends: list[LockBackend] = []
        self._connection_strings: list[str] = []
        self._table_name = DEFAULT_TABLE_NAME
        self._tls_root_cert: Optional[str] = None
        self._connect_timeout_seconds = 10
        self._statement_timeout_ms = 5000
        self._owner_id: Optional[str] = None

    def with_connection_strings(self, connection_strings: Iterable[str]) -> "CockLockBuilder":
        self._connection_strings.extend(str(value) for value in connection_strings)
        return self

    def with_connections(self, connections: Iterable[psycopg.Connection]) -> "CockLockBuilder":
        self._backends.extend(PostgresLockBackend(connection) for connection in connections)
        return self

    def with_backends(self, backends: Iterable[LockBackend]) -> "CockLockBuilder":
        self._backends.extend(backends)
        return self

    def with_table_name(self, table_name: str) -> "CockLockBuilder":
        self._table_name = table_name
        return self

    def with_tls_root_cert(self, cert_file_path: str | Path) -> "CockLockBuilder":
        path = Path(cert_file_path)
        if not path.is_file():
            raise ConfigurationError(f"TLS root certificate not found: {path}")
        self._tls_root_cert = str(path)
        return self

    def with_connect_timeout(self, seconds: int) -> "CockLockBuilder":
        if seconds <= 0:
            raise ValueError(f"connect timeout must be > 0, got {seconds}")
        self._connect_timeout_seconds = seconds
        return self

    def with_statement_timeout(self, milliseconds: int) -> "CockLockBuilder":
        if milliseconds < 0:
            raise ValueError(f"statement timeout must be >= 0, got {milliseconds}")
        self._statement_timeout_ms = milliseconds
        return self

    def with_owner_id(self, owner_id: str) -> "CockLockBuilder":
        self._owner_id = owner_id
        return self

    def _connect(self, conninfo: str) -> PostgresLockBackend:
        try:
            return PostgresLockBackend.connect(
                conninfo,
                tls_root_cert=self._tls_root_cert,
                connect_timeout_seconds=self._connect_timeout_seconds,
                statement_timeout_ms=self._statement_timeout_ms,
            )
        except psycopg.Error as e:
            raise ConfigurationError(f"Could not connect to lock backend: {e}") from e

    def build(self, provision: bool = True) -> CockLock:
        """Connect, construct the manager and, by default, provision every backend."""
        backends = list(self._backends)
        try:
            for conninfo in self._connection_strings:
                backends.append(self._connect(conninfo))
            manager = CockLock(backends, table_name=self._table_name, owner_id=self._owner_id)
            if provision:
                manager.provision()
        except Exception:
            for backend in backends:
                backend.close()
            raise
        logger.info(f"Lock manager {manager.owner_id} ready with {len(backends)} backend(s)")
        return manager
