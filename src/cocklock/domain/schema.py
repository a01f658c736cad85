from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from psycopg import sql

from cocklock.application.errors import ConfigurationError

# Leaves room for the "_reap_trigger" suffix within Postgres' 63 byte identifier limit.
TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,49}$")

# SQLSTATEs that mean a provisioning statement found its object already in place.
# 23505 shows up when two clients create the same table at the same moment (pg_type race).
ALREADY_EXISTS_SQLSTATES = frozenset({"42P07", "42710", "42723", "23505"})


class StatementKind(str, Enum):
    CREATE_TABLE = "create_table"
    CREATE_REAPER = "create_reaper"
    CREATE_REAPER_TRIGGER = "create_reaper_trigger"
    ACQUIRE = "acquire"
    EXTEND = "extend"
    RELEASE = "release"
    DROP_TABLE = "drop_table"
    DROP_REAPER = "drop_reaper"


@dataclass(frozen=True)
class LockStatement:
    kind: StatementKind
    query: sql.Composed

    def __str__(self) -> str:
        return self.kind.value


def validate_table_name(table_name: str) -> str:
    if not isinstance(table_name, str) or not TABLE_NAME_PATTERN.match(table_name):
        raise ConfigurationError(
            f"Invalid lock table name {table_name!r}: expected a letter or underscore followed by "
            "up to 49 letters, digits or underscores"
        )
    return table_name


_CREATE_TABLE = """
create table if not exists {table} (
    owner_id text not null,
    lock_name text not null unique,
    expires_at timestamptz
)
"""

# Statement level: runs once, before the insert/update evaluates its conflict check.
_CREATE_REAPER = """
create or replace function {reaper}() returns trigger
language plpgsql as $$
begin
    delete from {table}
    where expires_at is not null
        and expires_at <= now();
    return null;
end;
$$
"""

_CREATE_REAPER_TRIGGER = """
create trigger {trigger}
    before insert or update on {table}
    for each statement
    execute function {reaper}()
"""

_ACQUIRE = """
insert into {table} as held (owner_id, lock_name, expires_at)
values (
    %(owner_id)s,
    %(lock_name)s,
    now() + interval '1 millisecond' * %(ttl_ms)s::bigint
)
on conflict (lock_name) do update
    set expires_at = excluded.expires_at
    where held.owner_id = excluded.owner_id
"""

_EXTEND = """
update {table}
set expires_at = now() + interval '1 millisecond' * %(ttl_ms)s::bigint
where owner_id = %(owner_id)s
    and lock_name = %(lock_name)s
    and (expires_at is null or expires_at > now())
"""

# No trigger fires on delete, so liveness is checked here.
_RELEASE = """
delete from {table}
where owner_id = %(owner_id)s
    and lock_name = %(lock_name)s
    and (expires_at is null or expires_at > now())
"""

# Dropping the table drops its reaper trigger with it.
_DROP_TABLE = "drop table if exists {table}"

_DROP_REAPER = "drop function if exists {reaper}()"


@dataclass(frozen=True)
class LockQueries:
    """Every statement the lock manager issues, composed once for one table."""

    table_name: str
    provision: tuple[LockStatement, ...]
    acquire: LockStatement
    extend: LockStatement
    release: LockStatement
    clean_up: tuple[LockStatement, ...]

    @classmethod
    def for_table(cls, table_name: str) -> "LockQueries":
        table_name = validate_table_name(table_name)
        identifiers = {
            "table": sql.Identifier(table_name),
            "reaper": sql.Identifier(f"{table_name}_reap"),
            "trigger": sql.Identifier(f"{table_name}_reap_trigger"),
        }

        def compose(kind: StatementKind, template: str) -> LockStatement:
            return LockStatement(kind=kind, query=sql.SQL(template.strip()).format(**identifiers))

        return cls(
            table_name=table_name,
            provision=(
                compose(StatementKind.CREATE_TABLE, _CREATE_TABLE),
                compose(StatementKind.CREATE_REAPER, _CREATE_REAPER),
                compose(StatementKind.CREATE_REAPER_TRIGGER, _CREATE_REAPER_TRIGGER),
            ),
            acquire=compose(StatementKind.ACQUIRE, _ACQUIRE),
            extend=compose(StatementKind.EXTEND, _EXTEND),
            release=compose(StatementKind.RELEASE, _RELEASE),
            clean_up=(
                compose(StatementKind.DROP_TABLE, _DROP_TABLE),
                compose(StatementKind.DROP_REAPER, _DROP_REAPER),
            ),
        )
