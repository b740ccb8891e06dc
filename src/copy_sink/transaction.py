"""
Transaction orchestration: one call per load job.

validate config -> check connection -> pool.start() -> produce -> pool.commit()
-> count target rows -> reconcile -> (always) log a few target rows.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from loguru import logger

import copy_client
from copy_client import sql as q
from copy_client.errors import (
    ConfigurationError,
    ConnectivityError,
    CopySinkError,
    ReconciliationError,
)
from copy_client.models import ConnectionParams, RecordBatch, Schema

from .config import TaskConfig
from .coordinator import CoordinatorRuntimeSettings, WorkerPool, WorkerReport
from .coordinator.types import Connection
from .metrics.registry import metrics_registry as m

Produce = Callable[[WorkerPool], Awaitable[None]]
ConnectFn = Callable[[ConnectionParams], Awaitable[Connection]]
Partition = Union[Iterable[Sequence[Any]], AsyncIterable[Sequence[Any]]]

_DONE = object()  # end of a sync partition


@dataclass(frozen=True)
class TransactionReport:
    num_input_rows: int
    num_total_rows: int
    num_output_rows: int
    num_rejected_rows: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TransactionResult:
    report: TransactionReport
    worker_reports: list[WorkerReport]
    # nothing is carried between runs; kept for drivers that chain configs
    next_config: dict = field(default_factory=dict)


def build_report(
    worker_reports: Sequence[WorkerReport], verified_rows: int
) -> TransactionReport:
    """Aggregate worker reports against the warehouse-verified row count."""
    num_input_rows = sum(r.num_input_rows for r in worker_reports)
    num_total_rows = sum(r.num_output_rows for r in worker_reports)
    return TransactionReport(
        num_input_rows=num_input_rows,
        num_total_rows=num_total_rows,
        num_output_rows=verified_rows,
        num_rejected_rows=num_input_rows - verified_rows,
    )


async def run_transaction(
    config: Union[Mapping[str, Any], TaskConfig],
    schema: Schema,
    partition_count: int,
    produce: Produce,
    *,
    connect: Optional[ConnectFn] = None,
    settings: Optional[CoordinatorRuntimeSettings] = None,
) -> TransactionResult:
    """Load everything ``produce`` dispatches into the target table.

    ``produce`` receives the started pool and must return once every upstream
    partition has dispatched its batches. Raises ConfigurationError before any
    I/O, ConnectivityError when the warehouse is unreachable, the first worker
    failure (LoadTimeoutError / StreamFailure) and ReconciliationError when
    ``abort_on_error`` is set and the verified count differs from the input.
    """
    cfg = _resolve_config(config, partition_count)
    connect_fn = connect or copy_client.connect
    params = cfg.connection_params

    async def open_connection() -> Connection:
        try:
            return await connect_fn(params)
        except CopySinkError:
            raise
        except Exception as e:
            raise ConnectivityError(f"cannot connect to {params.host}:{params.port}: {e}") from e

    pool = WorkerPool(cfg, schema, open_connection, settings=settings)
    try:
        async with _session(open_connection):
            logger.info(f"copy_sink: warehouse connection to {params.host}:{params.port} ok")

        try:
            await pool.start()
            await produce(pool)
            worker_reports = await pool.commit()
        except BaseException:
            await pool.abort()
            raise
        logger.info(
            f"copy_sink: task_reports: {[r.to_dict() for r in worker_reports]}"
        )

        async with _session(open_connection) as conn:
            rows = await conn.query(q.count_rows(cfg.schema_name, cfg.table))
        report = build_report(worker_reports, _scalar(rows))
        logger.info(f"copy_sink: transaction_report: {report.to_dict()}")

        if report.num_input_rows != report.num_output_rows:
            if cfg.abort_on_error:
                raise ReconciliationError(
                    f"ABORT: num_input_rows ({report.num_input_rows}) and "
                    f"num_output_rows ({report.num_output_rows}) do not match",
                    report=report,
                )
            logger.warning(
                f"copy_sink: {report.num_rejected_rows} rows rejected "
                f"(input={report.num_input_rows}, verified={report.num_output_rows})"
            )
    except BaseException as e:
        m.transactions_total.labels(outcome="failure").inc()
        logger.error(f"copy_sink: transaction failed: {type(e).__name__}: {e}")
        raise
    finally:
        await _log_sample(open_connection, cfg)

    m.transactions_total.labels(outcome="success").inc()
    return TransactionResult(report=report, worker_reports=worker_reports)


async def dispatch_partitions(pool: WorkerPool, partitions: Sequence[Partition]) -> None:
    """Run one producer per partition; each chunk of rows becomes one batch.

    Plain iterables are advanced in a worker thread so blocking reads (files,
    sockets) do not stall the event loop. The first failing producer cancels
    the others and its error is re-raised.
    """

    async def run(index: int, partition: Partition) -> None:
        if isinstance(partition, AsyncIterable):
            async for rows in partition:
                await pool.dispatch(RecordBatch(partition_index=index, rows=rows))
        else:
            it = iter(partition)
            while True:
                rows = await asyncio.to_thread(next, it, _DONE)
                if rows is _DONE:
                    break
                await pool.dispatch(RecordBatch(partition_index=index, rows=rows))
        logger.debug(f"copy_sink: partition {index} done")

    tasks = [asyncio.ensure_future(run(i, p)) for i, p in enumerate(partitions)]
    if not tasks:
        return
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    for t in pending:
        t.cancel()
    if pending:
        await asyncio.wait(pending)
    errors = [t.exception() for t in tasks if not t.cancelled() and t.exception() is not None]
    if errors:
        raise errors[0]


# --------------------------- internals

Opener = Callable[[], Awaitable[Connection]]


def _resolve_config(
    config: Union[Mapping[str, Any], TaskConfig], partition_count: int
) -> TaskConfig:
    if not isinstance(config, TaskConfig):
        return TaskConfig.from_mapping(config, partition_count)
    if config.pool_size is None:
        if partition_count < 1:
            raise ConfigurationError("partition count must be >= 1")
        return config.model_copy(update={"pool_size": partition_count})
    return config


@asynccontextmanager
async def _session(open_connection: Opener) -> AsyncIterator[Connection]:
    conn = await open_connection()
    try:
        yield conn
    finally:
        await conn.close()


def _scalar(rows: list[dict]) -> int:
    if not rows:
        return 0
    return int(next(iter(rows[0].values())))


async def _log_sample(open_connection: Opener, cfg: TaskConfig) -> None:
    """Log a few target rows for operators; never raises."""
    try:
        async with _session(open_connection) as conn:
            rows = await conn.query(q.sample_rows(cfg.schema_name, cfg.table))
        logger.debug("copy_sink: select result\n" + "\n".join(str(r) for r in rows))
    except Exception as e:
        logger.debug(f"copy_sink: sample read failed: {type(e).__name__}: {e}")
