from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_TABLE_NAME = "_cocklock_locks"


# ";" separated: commas belong to libpq multi-host URIs and spaces to key=value conninfo.
def _split_connection_strings(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(";") if part.strip())


@dataclass(frozen=True)
class Settings:
    """Runtime settings sourced from environment variables."""

    log_level: str = "INFO"
    connection_strings: tuple[str, ...] = field(default_factory=tuple)
    table_name: str = DEFAULT_TABLE_NAME
    # PEM file holding the root certificate(s) used to verify backend TLS
    tls_root_cert: Optional[str] = None
    # Transport limits; unrelated to lock ttl
    connect_timeout_seconds: int = 10
    statement_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            connection_strings=_split_connection_strings(os.getenv("COCKLOCK_CONNECTION_STRINGS", "")),
            table_name=os.getenv("COCKLOCK_TABLE_NAME", cls.table_name),
            tls_root_cert=os.getenv("COCKLOCK_TLS_ROOT_CERT") or None,
            connect_timeout_seconds=int(os.getenv("COCKLOCK_CONNECT_TIMEOUT_SECONDS", cls.connect_timeout_seconds)),
            statement_timeout_ms=int(os.getenv("COCKLOCK_STATEMENT_TIMEOUT_MS", cls.statement_timeout_ms)),
        )


def get_settings(_cache: dict[str, Settings] = {}) -> Settings:
    """Provide a simple cached settings object."""

    if "settings" not in _cache:
        _cache["settings"] = Settings.from_env()
    return _cache["settings"]
