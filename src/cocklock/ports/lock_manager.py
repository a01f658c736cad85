from __future__ import annotations

from typing import Protocol

from cocklock.domain.lock import Lease, Ttl


class LockManager(Protocol):
    def acquire(self, lock_name: str, ttl: Ttl = None) -> Lease: ...

    def extend(self, lock_name: str, ttl: Ttl = None) -> Lease: ...

    def release(self, lock_name: str) -> None: ...
