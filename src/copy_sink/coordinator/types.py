from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from copy_client.models import LoadFormat

BackpressureCallback = Callable[[], Awaitable[None]]


class WorkerStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINISHING = "finishing"
    COMMITTED = "committed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (WorkerStatus.COMMITTED, WorkerStatus.ABORTED, WorkerStatus.FAILED)


class PoolState(str, Enum):
    NEW = "new"
    RUNNING = "running"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ABORTED = "aborted"


class Stream(Protocol):
    """Load stream as seen by a worker (see copy_client.LoadStream)."""

    @property
    def is_open(self) -> bool: ...

    async def write(self, data: bytes, rows: int) -> int: ...

    async def finish(self) -> Optional[int]: ...

    async def discard(self, reason: Optional[BaseException] = None) -> None: ...


class Connection(Protocol):
    """Warehouse connection as seen by the pool and orchestrator."""

    async def query(self, sql) -> list[dict]: ...

    async def begin_load(
        self, schema: str, table: str, columns: Sequence[str], fmt: LoadFormat
    ) -> Stream: ...

    async def close(self) -> None: ...


Connector = Callable[[], Awaitable[Connection]]


@dataclass(frozen=True)
class WorkerReport:
    """Produced once per worker, at commit or abort."""

    worker_id: int
    status: WorkerStatus
    num_input_rows: int
    num_output_rows: int
    duration_ms: float
    error: Optional[str] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d


class QueueInterrupted(Exception):
    """A blocked put/get was woken by its cancel event."""
