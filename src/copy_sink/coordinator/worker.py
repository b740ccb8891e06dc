from __future__ import annotations

import asyncio
from time import monotonic, perf_counter
from typing import Optional

from loguru import logger

from copy_client.encoder import RowEncoder
from copy_client.errors import (
    CopySinkError,
    LoadTimeoutError,
    PoolAbortedError,
    StreamFailure,
)
from copy_client.models import RecordBatch

from ..config import TaskConfig
from ..metrics.registry import metrics_registry as m
from .feedback import BackpressureLevel, FeedbackBus, FeedbackEvent
from .queue import BoundedQueue
from .types import (
    Connection,
    Connector,
    QueueInterrupted,
    Stream,
    WorkerReport,
    WorkerStatus,
)


class LoadWorker:
    """Owns one warehouse connection, one load stream and one batch queue.

    Lifecycle: ``open()`` (connect + begin COPY) -> ``start()`` (consume loop) ->
    ``request_finish()`` -> drained -> ``commit_stream()`` -> Committed. Cancelling
    the task (``abort()``) discards the queue and the stream. Nothing but this
    worker's task touches the stream.
    """

    def __init__(
        self,
        worker_id: int,
        config: TaskConfig,
        connect: Connector,
        encoder: RowEncoder,
        *,
        queue_capacity: int = 8,
        high_watermark: Optional[int] = None,
        low_watermark: Optional[int] = None,
        feedback: Optional[FeedbackBus] = None,
    ):
        self.worker_id = worker_id
        self._cfg = config
        self._connect = connect
        self._encoder = encoder
        self._feedback = feedback
        self._label = str(worker_id)
        self.name = f"{config.schema_name}.{config.table}#{worker_id}"

        self.queue: BoundedQueue[RecordBatch] = BoundedQueue(
            capacity=queue_capacity,
            high_watermark=high_watermark,
            low_watermark=low_watermark,
            on_high=self._on_high,
            on_low=self._on_low,
        )

        self.status = WorkerStatus.IDLE
        self.rows_in = 0
        self.rows_out = 0
        self.error: Optional[BaseException] = None
        self.report: Optional[WorkerReport] = None

        self._conn: Optional[Connection] = None
        self._stream: Optional[Stream] = None
        self._task: Optional[asyncio.Task] = None
        self._t0: Optional[float] = None
        self._finish = asyncio.Event()
        self._commit = asyncio.Event()
        self._drained: asyncio.Future = asyncio.get_running_loop().create_future()

    # --------------------------- lifecycle

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def stream(self) -> Optional[Stream]:
        return self._stream

    async def open(self) -> None:
        """Connect and open the COPY stream against the target table."""
        self._conn = await self._connect()
        self._stream = await self._conn.begin_load(
            self._cfg.schema_name,
            self._cfg.table,
            self._encoder.columns,
            self._cfg.load_format,
        )
        logger.debug(f"worker {self.name}: load stream open")

    def start(self) -> None:
        if self._stream is None:
            raise RuntimeError(f"worker {self.name} started before open()")
        self._t0 = monotonic()
        self.status = WorkerStatus.RUNNING
        self._task = asyncio.create_task(self._run(), name=f"copy-worker-{self.worker_id}")

    def request_finish(self) -> None:
        """Stop waiting for new batches; drain what is queued."""
        self._finish.set()

    async def wait_drained(self, timeout: Optional[float] = None) -> None:
        """Wait until every queued batch has been written (raises on failure)."""
        try:
            err = await asyncio.wait_for(asyncio.shield(self._drained), timeout=timeout)
        except asyncio.TimeoutError:
            raise LoadTimeoutError(
                f"worker {self.name} did not drain within finish_timeout={timeout}s"
            ) from None
        if err is not None:
            raise err

    def commit_stream(self) -> None:
        """Allow a drained worker to finalize its stream."""
        self._commit.set()

    async def abort(self) -> None:
        """Discard queued batches and tear the stream down. Idempotent."""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            await asyncio.wait({self._task})
        # covers workers never started and tasks cancelled before their first step
        if not self.status.terminal:
            await self._abort_cleanup()

    # --------------------------- consume loop

    async def _run(self) -> Optional[WorkerReport]:
        try:
            await self._consume()
            self._resolve_drained(None)
            await self._commit.wait()
            await self._finalize()
        except asyncio.CancelledError:
            await self._abort_cleanup()
            raise
        except Exception as exc:
            await self._fail(exc)
        return self.report

    async def _consume(self) -> None:
        while True:
            try:
                batch = await self.queue.get(
                    timeout=self._cfg.dequeue_timeout, cancel=self._finish
                )
            except QueueInterrupted:
                break
            except asyncio.TimeoutError:
                raise LoadTimeoutError(
                    f"worker {self.name}: no batch within "
                    f"dequeue_timeout={self._cfg.dequeue_timeout}s"
                ) from None
            await self._write(batch)

        self.status = WorkerStatus.FINISHING
        for batch in await self.queue.drain():
            await self._write(batch)
        m.queue_depth.labels(worker=self._label).set(0)

    async def _write(self, batch: RecordBatch) -> None:
        data, rows = self._encoder.render(batch)
        self.rows_in += rows
        t0 = perf_counter()
        try:
            accepted = await asyncio.wait_for(
                self._stream.write(data, rows), timeout=self._cfg.write_timeout
            )
        except asyncio.TimeoutError:
            raise LoadTimeoutError(
                f"worker {self.name}: write exceeded write_timeout={self._cfg.write_timeout}s"
            ) from None
        m.write_latency_seconds.labels(worker=self._label).observe(perf_counter() - t0)
        m.rows_written_total.labels(worker=self._label).inc(accepted)
        m.queue_depth.labels(worker=self._label).set(self.queue.size)
        self.rows_out += accepted
        logger.trace(f"worker {self.name}: wrote {accepted}/{rows} rows ({len(data)} bytes)")

    async def _finalize(self) -> None:
        try:
            loaded = await asyncio.wait_for(
                self._stream.finish(), timeout=self._cfg.finish_timeout
            )
        except asyncio.TimeoutError:
            raise LoadTimeoutError(
                f"worker {self.name}: finish exceeded finish_timeout={self._cfg.finish_timeout}s"
            ) from None
        if loaded is not None:
            self.rows_out = loaded
        await self._close_connection()
        self._settle(WorkerStatus.COMMITTED)
        logger.info(f"worker {self.name}: committed {self.rows_out}/{self.rows_in} rows")

    # --------------------------- teardown

    async def _fail(self, exc: Exception) -> None:
        if not isinstance(exc, CopySinkError):
            wrapped = StreamFailure(f"worker {self.name}: {type(exc).__name__}: {exc}")
            wrapped.__cause__ = exc
            exc = wrapped
        self.error = exc
        m.worker_failures_total.labels(reason=type(exc).__name__).inc()
        logger.warning(f"worker {self.name} failed: {exc}")
        try:
            await self._teardown(exc)
        finally:
            # a pool abort may cancel the teardown; the failure still stands
            self._resolve_drained(exc)
            self._settle(WorkerStatus.FAILED)

    async def _abort_cleanup(self) -> None:
        if self.status.terminal:
            return
        discarded = await self.queue.drain()
        if discarded:
            logger.debug(f"worker {self.name}: discarded {len(discarded)} queued batches")
        await self._teardown(PoolAbortedError("load aborted"))
        self._resolve_drained(PoolAbortedError(f"worker {self.name} aborted"))
        self._settle(WorkerStatus.ABORTED)

    async def _teardown(self, reason: BaseException) -> None:
        try:
            if self._stream is not None:
                await self._stream.discard(reason)
        finally:
            await self._close_connection()

    async def _close_connection(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await conn.close()

    def _resolve_drained(self, err: Optional[BaseException]) -> None:
        if not self._drained.done():
            self._drained.set_result(err)

    def _settle(self, status: WorkerStatus) -> None:
        self.status = status
        elapsed = (monotonic() - self._t0) * 1000.0 if self._t0 is not None else 0.0
        self.report = WorkerReport(
            worker_id=self.worker_id,
            status=status,
            num_input_rows=self.rows_in,
            num_output_rows=self.rows_out,
            duration_ms=round(elapsed, 3),
            error=str(self.error) if self.error is not None else None,
        )

    # --------------------------- backpressure

    async def _on_high(self) -> None:
        logger.warning(
            f"worker {self.name}: backpressure HIGH "
            f"({self.queue.size}/{self.queue.capacity} batches queued)"
        )
        await self._publish(BackpressureLevel.HARD)

    async def _on_low(self) -> None:
        logger.debug(f"worker {self.name}: backpressure recovered")
        await self._publish(BackpressureLevel.OK)

    async def _publish(self, level: BackpressureLevel) -> None:
        if self._feedback is None:
            return
        await self._feedback.publish(
            FeedbackEvent(
                coordinator_id=self.name,
                queue_size=self.queue.size,
                capacity=self.queue.capacity,
                level=level,
            )
        )
