"""Unit tests for CockLockBuilder and the settings-driven factory."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import psycopg
import pytest
from psycopg.pq import TransactionStatus

from cocklock.adapters.memory.in_memory_backend import InMemoryLockBackend
from cocklock.adapters.postgres.backend import PostgresLockBackend
from cocklock.app.builder import CockLockBuilder
from cocklock.app.factory import create_lock_manager
from cocklock.application.errors import ConfigurationError, ProvisioningError
from cocklock.application.lock_manager import CockLock
from cocklock.settings import Settings


def _mock_connection() -> MagicMock:
    conn = MagicMock()
    conn.closed = False
    return conn


def test_builder_from_lock_manager() -> None:
    assert isinstance(CockLock.builder(), CockLockBuilder)


def test_build_without_backends_fails() -> None:
    with pytest.raises(ConfigurationError):
        CockLockBuilder().build()


def test_build_provisions_by_default(make_backend, store) -> None:
    manager = CockLockBuilder().with_backends([make_backend()]).with_table_name("job_locks").build()

    assert manager.table_name == "job_locks"
    assert store.table_exists
    assert store.trigger_exists


def test_build_without_provisioning(make_backend, store) -> None:
    CockLockBuilder().with_backends([make_backend()]).build(provision=False)
    assert not store.table_exists


def test_build_uses_owner_id(make_backend) -> None:
    manager = CockLockBuilder().with_backends([make_backend()]).with_owner_id("worker-7").build()
    assert manager.owner_id == "worker-7"


def test_invalid_table_name_fails_before_io(make_backend) -> None:
    backend = make_backend()
    with pytest.raises(ConfigurationError):
        CockLockBuilder().with_backends([backend]).with_table_name("bad name").build()
    assert backend.calls == []


def test_missing_tls_root_cert(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        CockLockBuilder().with_tls_root_cert(tmp_path / "missing.pem")


def test_tls_root_cert_passed_to_connect(tmp_path) -> None:
    cert = tmp_path / "root.pem"
    cert.write_text("-----BEGIN CERTIFICATE-----\n")

    with patch("cocklock.adapters.postgres.backend.psycopg.connect") as mock_connect:
        mock_connect.return_value = _mock_connection()
        manager = (
            CockLockBuilder()
            .with_connection_strings(["postgresql://db-1/locks"])
            .with_tls_root_cert(cert)
            .with_connect_timeout(4)
            .with_statement_timeout(1500)
            .build(provision=False)
        )

    kwargs = mock_connect.call_args.kwargs
    assert kwargs["sslrootcert"] == str(cert)
    assert kwargs["sslmode"] == "verify-full"
    assert kwargs["connect_timeout"] == 4
    assert kwargs["options"] == "-c statement_timeout=1500"
    assert isinstance(manager.backends[0], PostgresLockBackend)


def test_injected_backends_come_before_connection_strings(make_backend) -> None:
    injected = make_backend("injected")
    with patch("cocklock.adapters.postgres.backend.psycopg.connect") as mock_connect:
        mock_connect.return_value = _mock_connection()
        manager = (
            CockLockBuilder()
            .with_connection_strings(["postgresql://db-1/locks"])
            .with_backends([injected])
            .build(provision=False)
        )

    assert manager.backends[0] is injected
    assert isinstance(manager.backends[1], PostgresLockBackend)


def test_with_connections_wraps_each_connection() -> None:
    connections = [_mock_connection(), _mock_connection()]
    manager = CockLockBuilder().with_connections(connections).build(provision=False)

    assert len(manager.backends) == 2
    assert all(isinstance(backend, PostgresLockBackend) for backend in manager.backends)


def test_connection_failure_closes_opened_backends() -> None:
    first = _mock_connection()
    with patch("cocklock.adapters.postgres.backend.psycopg.connect") as mock_connect:
        mock_connect.side_effect = [first, psycopg.OperationalError("connection refused")]
        with pytest.raises(ConfigurationError):
            CockLockBuilder().with_connection_strings(["postgresql://db-1/locks", "postgresql://db-2/locks"]).build()

    first.close.assert_called_once()


def test_provisioning_failure_closes_backends(make_backend) -> None:
    down = make_backend("down")
    down.simulate_outage()
    with pytest.raises(ProvisioningError):
        CockLockBuilder().with_backends([down]).build()


@pytest.mark.parametrize("seconds", [0, -1])
def test_connect_timeout_must_be_positive(seconds: int) -> None:
    with pytest.raises(ValueError):
        CockLockBuilder().with_connect_timeout(seconds)


def test_factory_memory_adapters(monkeypatch) -> None:
    monkeypatch.setenv("COCKLOCK_ADAPTERS", "memory")

    manager = create_lock_manager(Settings(table_name="job_locks"), owner_id="worker-1")

    assert manager.table_name == "job_locks"
    assert manager.owner_id == "worker-1"
    assert isinstance(manager.backends[0], InMemoryLockBackend)
    manager.acquire("task", 1000)


def test_factory_requires_connection_strings(monkeypatch) -> None:
    monkeypatch.delenv("COCKLOCK_ADAPTERS", raising=False)
    with pytest.raises(ConfigurationError):
        create_lock_manager(Settings())


def test_factory_connects_every_backend(monkeypatch) -> None:
    monkeypatch.delenv("COCKLOCK_ADAPTERS", raising=False)
    settings = Settings(
        connection_strings=("postgresql://db-1/locks", "postgresql://db-2/locks"),
        connect_timeout_seconds=2,
        statement_timeout_ms=750,
    )
    with patch("cocklock.adapters.postgres.backend.psycopg.connect") as mock_connect:
        mock_connect.return_value = _mock_connection()
        manager = create_lock_manager(settings, provision=False)

    assert mock_connect.call_count == 2
    assert [c.args[0] for c in mock_connect.call_args_list] == list(settings.connection_strings)
    assert len(manager.backends) == 2


def test_with_connections_rejects_connection_in_transaction() -> None:
    busy = _mock_connection()
    busy.info.transaction_status = TransactionStatus.INTRANS

    with pytest.raises(ConfigurationError):
        CockLockBuilder().with_connections([busy])
