from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from loguru import logger

import copy_client
from copy_client.encoder import RowEncoder
from copy_client.errors import (
    ConnectivityError,
    CopySinkError,
    LoadTimeoutError,
    PoolAbortedError,
)
from copy_client.models import RecordBatch, Schema

from ..config import TaskConfig
from .feedback import FeedbackBus
from .settings import CoordinatorRuntimeSettings, get_settings
from .types import Connector, PoolState, QueueInterrupted, WorkerReport, WorkerStatus
from .worker import LoadWorker


class WorkerPool:
    """Fixed set of LoadWorkers, one load stream each, for one transaction.

    Batches are routed by ``partition_index % pool_size`` so every batch of a
    partition lands on the same stream in dispatch order. Any worker failure
    aborts the whole pool; after ``commit()`` or ``abort()`` returns no load
    stream is left open.

    Example:
        pool = WorkerPool(config, schema)
        await pool.start()
        await pool.dispatch(RecordBatch(partition_index=0, rows=rows))
        reports = await pool.commit()
    """

    def __init__(
        self,
        config: TaskConfig,
        schema: Schema,
        connect: Optional[Connector] = None,
        *,
        settings: Optional[CoordinatorRuntimeSettings] = None,
        load_time: Optional[datetime] = None,
    ):
        self._cfg = config
        self._size = config.resolved_pool_size
        self._settings = settings or get_settings()
        self._connect = connect or (lambda: copy_client.connect(config.connection_params))
        self._encoder = RowEncoder(
            schema,
            delimiter=config.delimiter,
            default_timezone=config.default_timezone,
            csv_payload=config.csv_payload,
            load_time_col=config.load_time_col,
            load_time=load_time,
        )
        self.feedback = FeedbackBus()
        self.name = f"{config.schema_name}.{config.table}"
        self._workers: list[LoadWorker] = []
        self._state = PoolState.NEW
        self._aborted = asyncio.Event()
        self._abort_cause: Optional[BaseException] = None
        self._abort_task: Optional[asyncio.Future] = None

    # --------------------------- introspection

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def size(self) -> int:
        return self._size

    @property
    def workers(self) -> list[LoadWorker]:
        return list(self._workers)

    def reports(self) -> list[WorkerReport]:
        """Reports of every worker that reached a terminal state."""
        return [w.report for w in self._workers if w.report is not None]

    def worker_for(self, partition_index: int) -> LoadWorker:
        if partition_index < 0:
            raise ValueError(f"partition_index must be >= 0, got {partition_index}")
        return self._workers[partition_index % self._size]

    # --------------------------- lifecycle

    async def start(self) -> None:
        """Open every stream; any failure tears down the ones already open."""
        if self._state is not PoolState.NEW:
            raise RuntimeError(f"pool {self.name} cannot start from state {self._state.value}")

        workers = [
            LoadWorker(
                i,
                self._cfg,
                self._connect,
                self._encoder,
                queue_capacity=self._settings.queue_capacity,
                high_watermark=self._settings.high_watermark,
                low_watermark=self._settings.low_watermark,
                feedback=self.feedback,
            )
            for i in range(self._size)
        ]
        self._workers = workers
        results = await asyncio.gather(*(w.open() for w in workers), return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            self._state = PoolState.ABORTED
            self._aborted.set()
            await asyncio.gather(*(w.abort() for w in workers))
            err = failures[0]
            logger.error(
                f"pool {self.name}: start failed on {len(failures)}/{self._size} streams: {err}"
            )
            if isinstance(err, CopySinkError):
                raise err
            raise ConnectivityError(f"pool {self.name}: cannot open load stream: {err}") from err

        for w in workers:
            w.start()
            w.task.add_done_callback(lambda _t, w=w: self._on_worker_done(w))
        self._state = PoolState.RUNNING
        logger.info(f"pool {self.name}: started {self._size} load streams")

    async def dispatch(self, batch: RecordBatch) -> None:
        """Hand a batch to its partition's worker; blocks while that queue is full."""
        if self._state is not PoolState.RUNNING:
            await self._raise_unavailable()
        worker = self.worker_for(batch.partition_index)
        try:
            await worker.queue.put(batch, timeout=self._cfg.write_timeout, cancel=self._aborted)
        except QueueInterrupted:
            await self._raise_unavailable()
        except asyncio.TimeoutError:
            err = LoadTimeoutError(
                f"dispatch to worker {worker.name} blocked longer than "
                f"write_timeout={self._cfg.write_timeout}s"
            )
            logger.error(f"pool {self.name}: {err}")
            self._schedule_abort(err)
            raise err from None

    async def commit(self) -> list[WorkerReport]:
        """Drain every worker, then finalize every stream.

        Streams are only committed once all workers drained cleanly; a failure
        before that point aborts the whole pool and is re-raised.
        """
        if self._state is not PoolState.RUNNING:
            await self._raise_unavailable()
        self._state = PoolState.COMMITTING
        logger.info(f"pool {self.name}: commit requested")

        for w in self._workers:
            w.request_finish()

        waiters = [
            asyncio.ensure_future(w.wait_drained(self._cfg.finish_timeout))
            for w in self._workers
        ]
        done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_EXCEPTION)
        errors = [f.exception() for f in done if not f.cancelled()]
        failure = next((e for e in errors if e is not None), None)
        if failure is not None:
            for f in pending:
                f.cancel()
            logger.error(f"pool {self.name}: commit failed while draining: {failure}")
            await self._schedule_abort(failure)
            await self._raise_unavailable()

        for w in self._workers:
            w.commit_stream()
        await asyncio.wait([w.task for w in self._workers])

        reports = self.reports()
        failed = [w for w in self._workers if w.status is not WorkerStatus.COMMITTED]
        if failed:
            self._state = PoolState.ABORTED
            first = failed[0].error or PoolAbortedError(f"worker {failed[0].name} did not commit")
            logger.error(
                f"pool {self.name}: {len(failed)}/{self._size} streams failed to finalize: {first}"
            )
            raise first
        self._state = PoolState.COMMITTED
        logger.info(f"pool {self.name}: committed {len(reports)} load streams")
        return reports

    async def abort(self) -> list[WorkerReport]:
        """Tear down every stream without committing. No-op once committed or aborted."""
        if self._state is PoolState.NEW:
            self._state = PoolState.ABORTED
            return []
        if self._state is PoolState.COMMITTED:
            return self.reports()
        if self._state is PoolState.ABORTED and self._abort_task is None:
            return self.reports()
        await self._schedule_abort(None)
        return self.reports()

    # --------------------------- internals

    def _on_worker_done(self, worker: LoadWorker) -> None:
        if worker.status is WorkerStatus.FAILED and self._state is PoolState.RUNNING:
            logger.warning(f"pool {self.name}: worker {worker.name} failed, aborting pool")
            self._schedule_abort(worker.error)

    def _schedule_abort(self, cause: Optional[BaseException]) -> asyncio.Future:
        if self._abort_task is None:
            self._abort_cause = cause
            self._state = PoolState.ABORTED
            self._aborted.set()
            self._abort_task = asyncio.ensure_future(self._abort_workers())
        return self._abort_task

    async def _abort_workers(self) -> None:
        logger.warning(f"pool {self.name}: aborting {len(self._workers)} load streams")
        await asyncio.gather(*(w.abort() for w in self._workers))
        for r in self.reports():
            logger.info(f"pool {self.name}: worker report {r.to_dict()}")

    async def _raise_unavailable(self) -> None:
        if self._state is not PoolState.ABORTED:
            raise RuntimeError(f"pool {self.name} is {self._state.value}")
        if self._abort_task is not None:
            await asyncio.shield(self._abort_task)
        cause = self._abort_cause
        if isinstance(cause, CopySinkError):
            # keep the failure category (a stalled write stays a timeout)
            raise type(cause)(f"worker pool aborted: {cause}") from cause
        raise PoolAbortedError(f"worker pool {self.name} aborted") from cause
