from __future__ import annotations

from typing import Optional, Sequence


class CockLockError(Exception):
    """Base class for every error raised by cocklock."""


class ConfigurationError(CockLockError):
    """Raised when a lock manager cannot be built from the supplied configuration."""


class ProvisioningError(CockLockError):
    """Raised when the lock table, reaper function or trigger cannot be created or dropped."""

    def __init__(self, message: str, table_name: str | None = None, backend: str | None = None) -> None:
        super().__init__(message)
        self.table_name = table_name
        self.backend = backend


class NotAvailable(CockLockError):
    """The lock is held by another owner, or is not held by this one."""

    def __init__(self, lock_name: str, operation: str = "acquire") -> None:
        if operation == "acquire":
            message = f"Lock {lock_name!r} is already held by another owner"
        else:
            message = f"Lock {lock_name!r} is not held by this owner ({operation})"
        super().__init__(message)
        self.lock_name = lock_name
        self.operation = operation


class NoBackendsAvailable(CockLockError):
    """Every configured backend was unreachable for the whole operation."""

    def __init__(self, operation: str, backends: Optional[Sequence[str]] = None) -> None:
        self.operation = operation
        self.backends = list(backends or [])
        super().__init__(f"No backend was reachable for {operation} (tried: {', '.join(self.backends) or 'none'})")


class BackendError(CockLockError):
    """A backend rejected a statement for a reason other than a lock conflict."""

    def __init__(self, message: str, backend: str | None = None, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.backend = backend
        self.sqlstate = sqlstate


class TransientBackendError(BackendError):
    """Backend is closed, shutting down or otherwise unreachable. Drives failover."""
