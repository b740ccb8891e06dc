from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence, Union

import psycopg
from loguru import logger
from psycopg import sql as psql
from psycopg.rows import dict_row

from . import sql as q
from .errors import StreamFailure, map_db_error
from .models import ConnectionParams, LoadFormat

Query = Union[str, psql.Composable]


def _render(sql: Query) -> str:
    return sql if isinstance(sql, str) else sql.as_string()


class LoadStream:
    """One in-flight COPY ... FROM STDIN on a dedicated connection.

    The stream is finalized exactly once: either ``finish()`` (COPY end + commit)
    or ``discard()`` (COPY fail + rollback). Both leave ``is_open`` False.
    """

    def __init__(self, conn: psycopg.AsyncConnection, cursor, copy_cm, copy):
        self._conn = conn
        self._cur = cursor
        self._cm = copy_cm
        self._copy = copy
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    async def write(self, data: bytes, rows: int) -> int:
        """Push one chunk; returns the rows accepted into the stream."""
        if not self._open:
            raise StreamFailure("load stream is closed")
        try:
            await self._copy.write(data)
        except psycopg.Error as e:
            raise map_db_error(e, in_copy=True) from e
        return rows

    async def finish(self) -> Optional[int]:
        """End the COPY and commit. Returns the server-reported row count."""
        if not self._open:
            raise StreamFailure("load stream is closed")
        self._open = False
        try:
            await self._cm.__aexit__(None, None, None)
            loaded = self._cur.rowcount
            await self._conn.commit()
        except psycopg.Error as e:
            await self._rollback()
            raise map_db_error(e, in_copy=True) from e
        return loaded if loaded is not None and loaded >= 0 else None

    async def discard(self, reason: Optional[BaseException] = None) -> None:
        """Fail the COPY and roll back; never raises."""
        if not self._open:
            return
        self._open = False
        exc = reason or StreamFailure("load stream discarded")
        try:
            await self._cm.__aexit__(type(exc), exc, exc.__traceback__)
        except Exception as e:
            # the server answers a failed COPY with QueryCanceled
            logger.debug(f"COPY teardown: {type(e).__name__}: {e}")
        await self._rollback()

    async def _rollback(self) -> None:
        try:
            await self._conn.rollback()
        except Exception as e:
            logger.debug(f"rollback after COPY failed: {type(e).__name__}: {e}")


class WarehouseConnection:
    def __init__(self, conn: psycopg.AsyncConnection):
        self._conn = conn

    @property
    def raw(self) -> psycopg.AsyncConnection:
        return self._conn

    async def query(self, sql: Query) -> list[dict[str, Any]]:
        logger.info(f"copy_client: {_render(sql)}")
        try:
            async with self._conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(sql)
                if cur.description is None:
                    return []
                return await cur.fetchall()
        except psycopg.Error as e:
            raise map_db_error(e) from e

    async def begin_load(
        self, schema: str, table: str, columns: Sequence[str], fmt: LoadFormat
    ) -> LoadStream:
        statement = q.copy_from_stdin(schema, table, columns, fmt)
        logger.info(f"copy_client: {_render(statement)}")
        cur = self._conn.cursor()
        cm = cur.copy(statement)
        try:
            copy = await cm.__aenter__()
        except psycopg.Error as e:
            await cur.close()
            raise map_db_error(e, in_copy=True) from e
        return LoadStream(self._conn, cur, cm, copy)

    async def close(self) -> None:
        try:
            await self._conn.close()
        except Exception as e:
            logger.debug(f"connection close failed: {type(e).__name__}: {e}")

    async def __aenter__(self) -> "WarehouseConnection":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def connect(params: ConnectionParams) -> WarehouseConnection:
    try:
        raw = await psycopg.AsyncConnection.connect(
            host=params.host,
            port=params.port,
            user=params.user,
            password=params.password,
            dbname=params.database,
            connect_timeout=max(1, int(params.connect_timeout)),
        )
    except (psycopg.Error, OSError) as e:
        raise map_db_error(e) from e
    conn = WarehouseConnection(raw)
    if params.resource_pool:
        try:
            await conn.query(q.set_resource_pool(params.resource_pool))
        except Exception:
            await conn.close()
            raise
    return conn


@asynccontextmanager
async def connection(params: ConnectionParams) -> AsyncIterator[WarehouseConnection]:
    """Short-lived connection closed on exit (connectivity check, count, diagnostics)."""
    conn = await connect(params)
    try:
        yield conn
    finally:
        await conn.close()
