from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from cocklock.adapters.memory.in_memory_backend import InMemoryLockBackend, InMemoryLockStore


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, milliseconds: int) -> None:
        self.now += timedelta(milliseconds=milliseconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryLockStore:
    """One shared lock table, as if every manager reached the same database."""
    return InMemoryLockStore(clock=clock)


@pytest.fixture
def make_backend(store: InMemoryLockStore):
    def _make(name: str = "memory", backing_store: InMemoryLockStore | None = None) -> InMemoryLockBackend:
        return InMemoryLockBackend(backing_store or store, name=name)

    return _make
