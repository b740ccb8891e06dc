"""
Warehouse client for COPY-from-stream loads.

Usage:
    from copy_client import ConnectionParams, LoadFormat, connect

    conn = await connect(ConnectionParams(user="dbadmin", database="vdb"))
    stream = await conn.begin_load("public", "events", ["id", "name"], LoadFormat())
    await stream.write(b"1|a\\n", rows=1)
    await stream.finish()
    await conn.close()
"""

from .client import LoadStream, WarehouseConnection, connect, connection
from .ddl import create_table_statement, sql_schema, sql_type_from_column_type
from .encoder import RowEncoder
from .errors import (
    ConfigurationError,
    ConnectivityError,
    CopySinkError,
    LoadTimeoutError,
    NotSupportedType,
    PoolAbortedError,
    ReconciliationError,
    StreamFailure,
)
from .models import (
    Column,
    ColumnOption,
    ColumnType,
    ConnectionParams,
    LoadFormat,
    RecordBatch,
    Schema,
)

__version__ = "0.1.0"
__all__ = [
    # client
    "connect",
    "connection",
    "WarehouseConnection",
    "LoadStream",
    # schema / encoding
    "create_table_statement",
    "sql_schema",
    "sql_type_from_column_type",
    "RowEncoder",
    # models
    "Column",
    "ColumnOption",
    "ColumnType",
    "ConnectionParams",
    "LoadFormat",
    "RecordBatch",
    "Schema",
    # errors
    "CopySinkError",
    "ConfigurationError",
    "ConnectivityError",
    "LoadTimeoutError",
    "NotSupportedType",
    "PoolAbortedError",
    "ReconciliationError",
    "StreamFailure",
]
