from __future__ import annotations

from typing import Sequence

from psycopg import sql as psql

from .models import LoadFormat

COPY_MODES = ("AUTO", "DIRECT", "TRICKLE")
LOAD_MODES = ("DIRECT_COPY",)
SAMPLE_LIMIT = 10


def qualified(schema: str, table: str) -> psql.Composed:
    return psql.SQL("{}.{}").format(psql.Identifier(schema), psql.Identifier(table))


def copy_from_stdin(
    schema: str, table: str, columns: Sequence[str], fmt: LoadFormat
) -> psql.Composed:
    """COPY ... FROM STDIN in the warehouse dialect.

    NO COMMIT keeps the loaded rows inside the connection's transaction so that a
    stream can be discarded after its COPY ended; the worker commits explicitly.
    """
    if fmt.copy_mode not in COPY_MODES:
        raise ValueError(f"unknown copy mode {fmt.copy_mode!r}")
    parts = [
        psql.SQL("COPY {} ({}) FROM STDIN DELIMITER {} NULL {}").format(
            qualified(schema, table),
            psql.SQL(", ").join(psql.Identifier(c) for c in columns),
            psql.Literal(fmt.delimiter),
            psql.Literal(""),
        ),
        psql.SQL(fmt.copy_mode),
    ]
    if fmt.abort_on_error:
        parts.append(psql.SQL("ABORT ON ERROR"))
    parts.append(psql.SQL("NO COMMIT"))
    return psql.SQL(" ").join(parts)


def count_rows(schema: str, table: str) -> psql.Composed:
    return psql.SQL("SELECT COUNT(*) FROM {}").format(qualified(schema, table))


def sample_rows(schema: str, table: str, limit: int = SAMPLE_LIMIT) -> psql.Composed:
    return psql.SQL("SELECT * FROM {} LIMIT {}").format(
        qualified(schema, table), psql.Literal(limit)
    )


def set_resource_pool(pool: str) -> psql.Composed:
    return psql.SQL("SET SESSION RESOURCE_POOL = {}").format(psql.Literal(pool))


def create_table(
    schema: str, table: str, columns: Sequence[tuple[str, str]]
) -> psql.Composed:
    """CREATE TABLE IF NOT EXISTS with already-mapped (name, sql_type) pairs."""
    return psql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(
        qualified(schema, table),
        psql.SQL(", ").join(
            psql.SQL("{} {}").format(psql.Identifier(name), psql.SQL(sql_type))
            for name, sql_type in columns
        ),
    )
