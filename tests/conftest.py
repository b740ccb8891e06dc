"""
Pytest configuration and fixtures for copy-stream-sink.

Provides an in-memory warehouse (connections + load streams) so the pool,
workers and transaction can be exercised without a database.
"""

import asyncio
import sys
from typing import Optional

import pytest

from copy_client.errors import ConnectivityError, StreamFailure
from copy_client.models import Schema
from copy_sink.config import TaskConfig
from copy_sink.coordinator import CoordinatorRuntimeSettings

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class FakeLoadStream:
    """Load stream that records chunks and flags whether it is still open."""

    def __init__(
        self,
        warehouse: "FakeWarehouse",
        index: int,
        *,
        write_delay: float = 0.0,
        fail_on_write: Optional[int] = None,
        finish_delay: float = 0.0,
        finish_error: bool = False,
        rejected: int = 0,
        discard_delay: float = 0.0,
    ):
        self._wh = warehouse
        self.index = index
        self.chunks: list[bytes] = []
        self.rows = 0
        self.finished = False
        self.discarded = False
        self._open = True
        self._write_delay = write_delay
        self._fail_on_write = fail_on_write
        self._finish_delay = finish_delay
        self._finish_error = finish_error
        self._rejected = rejected
        self._discard_delay = discard_delay

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def lines(self) -> list[str]:
        return [ln for chunk in self.chunks for ln in chunk.decode().splitlines()]

    async def write(self, data: bytes, rows: int) -> int:
        if not self._open:
            raise StreamFailure("stream closed")
        if self._write_delay:
            await asyncio.sleep(self._write_delay)
        if self._fail_on_write is not None and len(self.chunks) + 1 >= self._fail_on_write:
            raise StreamFailure(f"stream {self.index}: connection reset by warehouse")
        self.chunks.append(data)
        self.rows += rows
        return rows

    async def finish(self) -> Optional[int]:
        if not self._open:
            raise StreamFailure("stream closed")
        self._open = False
        if self._finish_delay:
            await asyncio.sleep(self._finish_delay)
        if self._finish_error:
            raise StreamFailure(f"stream {self.index}: COPY rejected at commit")
        self.finished = True
        loaded = self.rows - self._rejected
        self._wh.committed_rows += loaded
        return loaded

    async def discard(self, reason=None) -> None:
        if not self._open:
            return
        self._open = False
        self.discarded = True
        if self._discard_delay:
            await asyncio.sleep(self._discard_delay)


class FakeConnection:
    def __init__(self, warehouse: "FakeWarehouse"):
        self._wh = warehouse
        self.closed = False

    async def query(self, sql) -> list[dict]:
        text = sql if isinstance(sql, str) else sql.as_string()
        self._wh.queries.append(text)
        if text.startswith("SELECT COUNT(*)"):
            return [{"count": self._wh.row_count()}]
        if text.startswith("SELECT *"):
            if self._wh.fail_sample:
                raise ConnectivityError("sample read failed")
            return [{"id": 1}]
        return []

    async def begin_load(self, schema, table, columns, fmt):
        index = len(self._wh.streams)
        if index in self._wh.fail_begin:
            raise StreamFailure(f"stream {index}: table {schema}.{table} is locked")
        stream = FakeLoadStream(self._wh, index, **self._wh.stream_options.get(index, {}))
        self._wh.streams.append(stream)
        self._wh.columns = list(columns)
        self._wh.formats.append(fmt)
        return stream

    async def close(self) -> None:
        self.closed = True


class FakeWarehouse:
    def __init__(self):
        self.streams: list[FakeLoadStream] = []
        self.connections: list[FakeConnection] = []
        self.queries: list[str] = []
        self.formats = []
        self.columns: list[str] = []
        self.committed_rows = 0
        self.count_override: Optional[int] = None
        self.stream_options: dict[int, dict] = {}
        self.fail_begin: set[int] = set()
        self.fail_connect = False
        self.fail_sample = False
        self.connect_calls = 0

    def row_count(self) -> int:
        if self.count_override is not None:
            return self.count_override
        return self.committed_rows

    async def connect(self, params=None) -> FakeConnection:
        self.connect_calls += 1
        if self.fail_connect:
            raise ConnectivityError("could not connect to server: Connection refused")
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    @property
    def open_streams(self) -> list[FakeLoadStream]:
        return [s for s in self.streams if s.is_open]


@pytest.fixture
def warehouse():
    return FakeWarehouse()


@pytest.fixture
def schema():
    return Schema.of(("id", "long"), ("name", "string"))


@pytest.fixture
def job():
    """Minimal valid job mapping."""
    return {"user": "dbadmin", "table": "events"}


@pytest.fixture
def make_config(job):
    def _make(**overrides) -> TaskConfig:
        return TaskConfig.from_mapping({**job, **overrides}, partition_count=2)

    return _make


@pytest.fixture
def runtime_settings():
    return CoordinatorRuntimeSettings(queue_capacity=4)


@pytest.fixture
def make_rows():
    def _rows(n: int, start: int = 0) -> list[tuple[int, str]]:
        return [(i, f"row-{i}") for i in range(start, start + n)]

    return _rows
