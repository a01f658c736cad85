from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import NewType, Optional, Union

OwnerId = NewType("OwnerId", str)

Ttl = Union[int, timedelta, None]


@dataclass(frozen=True)
class Lease:
    """A lock held by ``owner_id`` on the backend named ``backend``.

    ``ttl_ms`` is ``None`` for an indefinite hold. The expiry itself lives on
    the backend and is computed from the backend clock, so it is not kept here.
    """

    lock_name: str
    owner_id: OwnerId
    ttl_ms: Optional[int]
    backend: str

    @property
    def indefinite(self) -> bool:
        return self.ttl_ms is None


def normalize_lock_name(lock_name: str) -> str:
    """Validate a caller-supplied lock name.

    Any non-empty ``str`` is accepted except one containing NUL, which Postgres
    text columns cannot store.
    """
    if not isinstance(lock_name, str):
        raise TypeError(f"lock_name must be a str, got {type(lock_name).__name__}")
    if not lock_name:
        raise ValueError("lock_name cannot be empty")
    if "\x00" in lock_name:
        raise ValueError("lock_name cannot contain NUL characters")
    return lock_name


def normalize_ttl(ttl: Ttl) -> Optional[int]:
    """Return ttl in whole milliseconds, or ``None`` for "never expires"."""
    if ttl is None:
        return None
    if isinstance(ttl, timedelta):
        if ttl < timedelta(0):
            raise ValueError(f"ttl must be >= 0, got {ttl}")
        # Round up so a positive sub-millisecond lease never becomes "no expiry".
        ttl_ms = -(-ttl // timedelta(milliseconds=1))
    elif isinstance(ttl, int) and not isinstance(ttl, bool):
        ttl_ms = ttl
    else:
        raise TypeError(f"ttl must be milliseconds (int) or a timedelta, got {type(ttl).__name__}")
    if ttl_ms < 0:
        raise ValueError(f"ttl must be >= 0, got {ttl_ms}ms")
    return ttl_ms or None
