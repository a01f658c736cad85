from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from cocklock.application.errors import BackendError, TransientBackendError
from cocklock.domain.schema import LockStatement, StatementKind

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LockRecord:
    owner_id: str
    lock_name: str
    expires_at: Optional[datetime]

    def is_live(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


class InMemoryLockStore:
    """A single process-local lock table, standing in for one database.

    Several ``InMemoryLockBackend`` objects may share a store, the same way
    several clients share one Postgres instance.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock
        self.records: Dict[str, LockRecord] = {}
        self.table_exists = False
        self.reaper_exists = False
        self.trigger_exists = False
        self._mutex = threading.Lock()

    def _reap(self, now: datetime) -> None:
        if not self.trigger_exists:
            return
        for lock_name in [name for name, record in self.records.items() if not record.is_live(now)]:
            del self.records[lock_name]

    def _expiry(self, now: datetime, ttl_ms: Optional[int]) -> Optional[datetime]:
        if ttl_ms is None:
            return None
        return now + timedelta(milliseconds=ttl_ms)

    def apply(self, kind: StatementKind, params: Mapping[str, Any]) -> int:
        with self._mutex:
            now = self.clock()
            if kind is StatementKind.CREATE_TABLE:
                self.table_exists = True
                return 0
            if kind is StatementKind.CREATE_REAPER:
                self.reaper_exists = True
                return 0
            if kind is StatementKind.CREATE_REAPER_TRIGGER:
                if not self.table_exists:
                    raise BackendError("relation does not exist", sqlstate="42P01")
                if not self.reaper_exists:
                    raise BackendError("reaper function does not exist", sqlstate="42883")
                self.trigger_exists = True
                return 0
            if kind is StatementKind.DROP_TABLE:
                self.records.clear()
                self.table_exists = False
                self.trigger_exists = False
                return 0
            if kind is StatementKind.DROP_REAPER:
                self.reaper_exists = False
                return 0

            if not self.table_exists:
                raise BackendError("relation does not exist", sqlstate="42P01")

            owner_id = params["owner_id"]
            lock_name = params["lock_name"]
            record = self.records.get(lock_name)

            if kind is StatementKind.ACQUIRE:
                self._reap(now)
                record = self.records.get(lock_name)
                if record is not None and record.owner_id != owner_id:
                    return 0
                self.records[lock_name] = LockRecord(owner_id, lock_name, self._expiry(now, params["ttl_ms"]))
                return 1
            if kind is StatementKind.EXTEND:
                self._reap(now)
                record = self.records.get(lock_name)
                if record is None or record.owner_id != owner_id or not record.is_live(now):
                    return 0
                record.expires_at = self._expiry(now, params["ttl_ms"])
                return 1
            if kind is StatementKind.RELEASE:
                if record is None or record.owner_id != owner_id or not record.is_live(now):
                    return 0
                del self.records[lock_name]
                return 1
            raise BackendError(f"Unsupported statement {kind.value}")

    def holder(self, lock_name: str) -> Optional[str]:
        """Owner of the live record for ``lock_name``, if any."""
        with self._mutex:
            record = self.records.get(lock_name)
            if record is None or not record.is_live(self.clock()):
                return None
            return record.owner_id


class InMemoryLockBackend:
    """Lock backend over an ``InMemoryLockStore``, with a switch to simulate outages."""

    def __init__(self, store: Optional[InMemoryLockStore] = None, name: str = "memory") -> None:
        self.store = store or InMemoryLockStore()
        self.name = name
        self.available = True
        self.calls: list[StatementKind] = []

    def simulate_outage(self, down: bool = True) -> None:
        self.available = not down

    def _run(self, statement: LockStatement, params: Mapping[str, Any]) -> int:
        self.calls.append(statement.kind)
        if not self.available:
            raise TransientBackendError(f"{statement} failed on {self.name}: connection is closed", backend=self.name)
        try:
            return self.store.apply(statement.kind, params)
        except BackendError as e:
            raise BackendError(f"{statement} failed on {self.name}: {e}", backend=self.name, sqlstate=e.sqlstate) from e

    def execute_conditional(self, statement: LockStatement, params: Mapping[str, Any]) -> int:
        return self._run(statement, params)

    def execute_schema(self, statement: LockStatement) -> None:
        self._run(statement, {})

    def close(self) -> None:
        self.available = False
        logger.debug(f"Closed lock backend {self.name}")
