from __future__ import annotations

from alembic import op
from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection


def get_connection() -> Connection:
    bind = op.get_bind()
    assert bind is not None, "Alembic op has no bind connection"
    return bind


def get_dialect_name() -> str:
    return get_connection().dialect.name


def table_exists(table_name: str) -> bool:
    return inspect(get_connection()).has_table(table_name)


def index_exists(table_name: str, index_name: str) -> bool:
    if not table_exists(table_name):
        return False
    return any(index['name'] == index_name for index in inspect(get_connection()).get_indexes(table_name))


def sqlite_cleanup_temp_tables(verbose: bool = True) -> None:
    """Drop `_alembic_tmp_*` tables left behind by a crashed SQLite batch migration."""
    if get_dialect_name() != "sqlite":
        return
    conn = get_connection()
    leftovers = [name for name in inspect(conn).get_table_names() if name.startswith("_alembic_tmp_")]
    for table in sorted(leftovers):
        if verbose:
            print(f"🧹 Dropping leftover SQLite temp table: {table}")
        conn.execute(text(f'DROP TABLE IF EXISTS "{table}"'))
