from __future__ import annotations

import os
from typing import Optional

from cocklock.adapters.memory.in_memory_backend import InMemoryLockBackend
from cocklock.app.builder import CockLockBuilder
from cocklock.application.errors import ConfigurationError
from cocklock.application.lock_manager import CockLock
from cocklock.settings import Settings, get_settings


def create_lock_manager(
    settings: Optional[Settings] = None,
    owner_id: Optional[str] = None,
    provision: bool = True,
) -> CockLock:
    """
    Factory function to create a lock manager based on COCKLOCK_ADAPTERS environment variable.

    If COCKLOCK_ADAPTERS=memory, the manager uses a process-local in-memory backend.
    Otherwise, it connects to every backend in COCKLOCK_CONNECTION_STRINGS (default).
    """
    settings = settings or get_settings()
    runtime_adapters = os.getenv("COCKLOCK_ADAPTERS", "").lower()

    builder = CockLockBuilder().with_table_name(settings.table_name)
    if owner_id:
        builder = builder.with_owner_id(owner_id)

    if runtime_adapters == "memory":
        builder = builder.with_backends([InMemoryLockBackend()])
    else:
        if not settings.connection_strings:
            raise ConfigurationError("Missing required setting: COCKLOCK_CONNECTION_STRINGS")
        builder = (
            builder.with_connection_strings(settings.connection_strings)
            .with_connect_timeout(settings.connect_timeout_seconds)
            .with_statement_timeout(settings.statement_timeout_ms)
        )
        if settings.tls_root_cert:
            builder = builder.with_tls_root_cert(settings.tls_root_cert)

    return builder.build(provision=provision)
