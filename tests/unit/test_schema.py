"""Unit tests for lock statement composition."""

from __future__ import annotations

import pytest

from cocklock.application.errors import ConfigurationError
from cocklock.domain.schema import LockQueries, StatementKind, validate_table_name


def _render(statement) -> str:
    return statement.query.as_string(None)


@pytest.mark.parametrize("name", ["_cocklock_locks", "locks", "Job_Locks_2", "a" * 50])
def test_valid_table_names(name: str) -> None:
    assert validate_table_name(name) == name


@pytest.mark.parametrize(
    "name",
    ["", "1locks", "locks-table", "locks; drop table users", 'lo"cks', "public.locks", "a" * 51, None],
)
def test_invalid_table_names(name) -> None:
    with pytest.raises(ConfigurationError):
        validate_table_name(name)


def test_identifiers_are_quoted() -> None:
    queries = LockQueries.for_table("job_locks")

    create_table = _render(queries.provision[0])
    reaper = _render(queries.provision[1])
    trigger = _render(queries.provision[2])

    assert 'create table if not exists "job_locks"' in create_table
    assert "lock_name text not null unique" in create_table
    assert "expires_at timestamptz" in create_table
    assert 'function "job_locks_reap"()' in reaper
    assert 'delete from "job_locks"' in reaper
    assert 'create trigger "job_locks_reap_trigger"' in trigger
    assert "before insert or update" in trigger
    assert "for each statement" in trigger


def test_values_are_bound_parameters() -> None:
    queries = LockQueries.for_table("job_locks")

    for statement in (queries.acquire, queries.extend, queries.release):
        rendered = _render(statement)
        assert "%(owner_id)s" in rendered
        assert "%(lock_name)s" in rendered

    assert "%(ttl_ms)s" in _render(queries.acquire)
    assert "%(ttl_ms)s" in _render(queries.extend)


def test_acquire_only_overwrites_own_record() -> None:
    rendered = _render(LockQueries.for_table("job_locks").acquire)

    assert "on conflict (lock_name) do update" in rendered
    assert "where held.owner_id = excluded.owner_id" in rendered


def test_release_and_extend_ignore_expired_records() -> None:
    queries = LockQueries.for_table("job_locks")
    for statement in (queries.extend, queries.release):
        assert "expires_at is null or expires_at > now()" in _render(statement)


def test_statement_kinds() -> None:
    queries = LockQueries.for_table("job_locks")

    assert [s.kind for s in queries.provision] == [
        StatementKind.CREATE_TABLE,
        StatementKind.CREATE_REAPER,
        StatementKind.CREATE_REAPER_TRIGGER,
    ]
    assert [s.kind for s in queries.clean_up] == [StatementKind.DROP_TABLE, StatementKind.DROP_REAPER]
    assert str(queries.acquire) == "acquire"
    assert 'drop table if exists "job_locks"' == _render(queries.clean_up[0])
    assert 'drop function if exists "job_locks_reap"()' == _render(queries.clean_up[1])
