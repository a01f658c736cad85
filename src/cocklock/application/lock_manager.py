from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator, Mapping, Optional, Sequence

from cocklock.application.errors import (
    BackendError,
    CockLockError,
    ConfigurationError,
    NoBackendsAvailable,
    NotAvailable,
    ProvisioningError,
    TransientBackendError,
)
from cocklock.domain.lock import Lease, OwnerId, Ttl, normalize_lock_name, normalize_ttl
from cocklock.domain.schema import ALREADY_EXISTS_SQLSTATES, LockQueries, LockStatement
from cocklock.ports.lock_backend import LockBackend
from cocklock.settings import DEFAULT_TABLE_NAME

if TYPE_CHECKING:
    from cocklock.app.builder import CockLockBuilder

logger = logging.getLogger(__name__)


class CockLock:
    """Distributed lock manager over an ordered list of lock backends.

    Every operation walks the backends in the order they were supplied. The
    first backend that answers decides the outcome: a row written is success,
    zero rows is ``NotAvailable``. Backends that are unreachable are skipped;
    if none answers the operation raises ``NoBackendsAvailable``.

    The manager holds no lock state of its own and does not serialize its own
    calls. Construct it once per owner identity.
    """

    def __init__(
        self,
        backends: Sequence[LockBackend],
        table_name: str = DEFAULT_TABLE_NAME,
        owner_id: Optional[str] = None,
    ) -> None:
        if not backends:
            raise ConfigurationError("No lock backends provided to CockLock")
        self.owner_id = OwnerId(owner_id or str(uuid.uuid4()))
        self.queries = LockQueries.for_table(table_name)
        self._backends: list[LockBackend] = list(backends)

    @staticmethod
    def builder() -> "CockLockBuilder":
        from cocklock.app.builder import CockLockBuilder

        return CockLockBuilder()

    @property
    def table_name(self) -> str:
        return self.queries.table_name

    @property
    def backends(self) -> tuple[LockBackend, ...]:
        return tuple(self._backends)

    def _params(self, lock_name: str, ttl_ms: Optional[int] = None) -> dict[str, Any]:
        return {"owner_id": self.owner_id, "lock_name": lock_name, "ttl_ms": ttl_ms}

    def _execute_with_failover(
        self, operation: str, statement: LockStatement, params: Mapping[str, Any]
    ) -> tuple[int, LockBackend]:
        """Run ``statement`` on the first backend that answers.

        Returns the affected row count and the backend that produced it.
        """
        attempted: list[str] = []
        for backend in self._backends:
            attempted.append(backend.name)
            try:
                rows = backend.execute_conditional(statement, params)
            except TransientBackendError as e:
                logger.warning(f"{operation} skipped unreachable backend {backend.name}: {e}")
                continue
            return rows, backend
        raise NoBackendsAvailable(operation, attempted)

    def provision(self) -> None:
        """Create the lock table, reaper function and reaper trigger on every backend.

        Safe to call repeatedly. Every backend must be reachable.
        """
        for backend in self._backends:
            for statement in self.queries.provision:
                try:
                    backend.execute_schema(statement)
                except TransientBackendError as e:
                    raise ProvisioningError(
                        f"Backend {backend.name} is unreachable, cannot provision {self.table_name}: {e}",
                        table_name=self.table_name,
                        backend=backend.name,
                    ) from e
                except BackendError as e:
                    if e.sqlstate in ALREADY_EXISTS_SQLSTATES:
                        logger.debug(f"{statement} already in place on {backend.name}")
                        continue
                    raise ProvisioningError(
                        f"Backend {backend.name} rejected {statement} for {self.table_name}: {e}",
                        table_name=self.table_name,
                        backend=backend.name,
                    ) from e
            logger.info(f"Provisioned lock table {self.table_name} on {backend.name}")

    def clean_up(self) -> None:
        """Drop the reaper trigger, reaper function and lock table on every reachable backend."""
        reached = 0
        for backend in self._backends:
            try:
                for statement in self.queries.clean_up:
                    backend.execute_schema(statement)
            except TransientBackendError as e:
                logger.warning(f"clean_up skipped unreachable backend {backend.name}: {e}")
                continue
            except BackendError as e:
                raise ProvisioningError(
                    f"Backend {backend.name} rejected clean up of {self.table_name}: {e}",
                    table_name=self.table_name,
                    backend=backend.name,
                ) from e
            reached += 1
            logger.info(f"Dropped lock table {self.table_name} on {backend.name}")
        if not reached:
            raise NoBackendsAvailable("clean_up", [backend.name for backend in self._backends])

    def acquire(self, lock_name: str, ttl: Ttl = None) -> Lease:
        """
        Acquire ``lock_name``, or renew it if this manager already holds it.

        Args:
            lock_name: Name of the contended resource
            ttl: Lease length in milliseconds or as a timedelta; 0 or None never expires

        Returns:
            The lease, naming the backend that granted it

        Raises:
            NotAvailable: Another owner holds a live lock with this name
            NoBackendsAvailable: Every backend was unreachable
            BackendError: A backend failed for any other reason
        """
        lock_name = normalize_lock_name(lock_name)
        ttl_ms = normalize_ttl(ttl)
        rows, backend = self._execute_with_failover("acquire", self.queries.acquire, self._params(lock_name, ttl_ms))
        if rows == 0:
            raise NotAvailable(lock_name, "acquire")
        logger.debug(f"Acquired {lock_name!r} on {backend.name} (ttl_ms={ttl_ms})")
        return Lease(lock_name=lock_name, owner_id=self.owner_id, ttl_ms=ttl_ms, backend=backend.name)

    def extend(self, lock_name: str, ttl: Ttl = None) -> Lease:
        """Reset the expiry of a lock this manager still holds. Never takes a free lock."""
        lock_name = normalize_lock_name(lock_name)
        ttl_ms = normalize_ttl(ttl)
        rows, backend = self._execute_with_failover("extend", self.queries.extend, self._params(lock_name, ttl_ms))
        if rows == 0:
            raise NotAvailable(lock_name, "extend")
        return Lease(lock_name=lock_name, owner_id=self.owner_id, ttl_ms=ttl_ms, backend=backend.name)

    def release(self, lock_name: str) -> None:
        """Release a lock held by this manager.

        Raises ``NotAvailable`` if the lock is not held by this manager, which
        includes a lease that already expired.
        """
        lock_name = normalize_lock_name(lock_name)
        rows, backend = self._execute_with_failover("release", self.queries.release, self._params(lock_name))
        if rows == 0:
            raise NotAvailable(lock_name, "release")
        logger.debug(f"Released {lock_name!r} on {backend.name}")

    @contextmanager
    def locked(self, lock_name: str, ttl: Ttl = None) -> Iterator[Lease]:
        lease = self.acquire(lock_name, ttl)
        try:
            yield lease
        except BaseException:
            # The body's exception wins over any release failure.
            try:
                self.release(lock_name)
            except CockLockError as e:
                logger.warning(f"Could not release {lock_name!r} after failure: {e}")
            raise
        try:
            self.release(lock_name)
        except NotAvailable:
            logger.warning(f"Lock {lock_name!r} expired before it was released")

    def close(self) -> None:
        for backend in self._backends:
            backend.close()

    def __enter__(self) -> "CockLock":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
