from __future__ import annotations

from typing import Any, Mapping, Protocol

from cocklock.domain.schema import LockStatement


class LockBackend(Protocol):
    """One connection to one lock-store.

    Implementations raise ``TransientBackendError`` when the store is
    unreachable and ``BackendError`` for every other failure. They never retry.
    """

    name: str

    def execute_conditional(self, statement: LockStatement, params: Mapping[str, Any]) -> int: ...

    def execute_schema(self, statement: LockStatement) -> None: ...

    def close(self) -> None: ...
