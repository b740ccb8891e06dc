"""
Logical column type -> warehouse SQL type mapping and CREATE TABLE generation.

Unmapped types fail here, at schema-preparation time, never during a load.
"""

from __future__ import annotations

from typing import Mapping, Optional

from psycopg import sql as psql

from . import sql as q
from .errors import NotSupportedType
from .models import ColumnOption, ColumnType, Schema

SQL_TYPES: dict[ColumnType, str] = {
    ColumnType.BOOLEAN: "BOOLEAN",
    ColumnType.LONG: "INT",  # BIGINT is a synonym for INT in the warehouse
    ColumnType.DOUBLE: "FLOAT",  # DOUBLE PRECISION is a synonym for FLOAT
    ColumnType.STRING: "VARCHAR",
    ColumnType.TIMESTAMP: "TIMESTAMP",
}

LOAD_TIME_SQL_TYPE = "TIMESTAMP"


def sql_type_from_column_type(type_name: str) -> str:
    try:
        return SQL_TYPES[ColumnType(type_name.lower())]
    except ValueError:
        raise NotSupportedType(f"cannot load column type {type_name!r}") from None


def sql_schema(
    schema: Schema,
    column_options: Optional[Mapping[str, ColumnOption]] = None,
    load_time_col: Optional[str] = None,
) -> list[tuple[str, str]]:
    """(name, sql_type) pairs; column_options[name].type wins over the mapping."""
    column_options = column_options or {}
    pairs = []
    for column in schema.columns:
        option = column_options.get(column.name)
        if option is not None and option.type:
            sql_type = option.type
        else:
            sql_type = sql_type_from_column_type(column.type)
        pairs.append((column.name, sql_type))
    if load_time_col:
        pairs.append((load_time_col, LOAD_TIME_SQL_TYPE))
    return pairs


def create_table_statement(
    schema_name: str,
    table: str,
    schema: Schema,
    column_options: Optional[Mapping[str, ColumnOption]] = None,
    load_time_col: Optional[str] = None,
) -> psql.Composed:
    return q.create_table(
        schema_name, table, sql_schema(schema, column_options, load_time_col)
    )
