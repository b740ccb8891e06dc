"""
COPY-from-stream bulk loader.

Usage:
    from copy_sink import run_transaction, dispatch_partitions
    from copy_client import Schema

    schema = Schema.of(("id", "long"), ("name", "string"))
    partitions = [[[(1, "a"), (2, "b")]], [[(3, "c")]]]

    result = await run_transaction(
        {"user": "dbadmin", "table": "events", "copy_mode": "DIRECT"},
        schema,
        partition_count=len(partitions),
        produce=lambda pool: dispatch_partitions(pool, partitions),
    )
    print(result.report.to_dict())
"""

from .config import TaskConfig
from .coordinator import WorkerPool, WorkerReport, WorkerStatus
from .transaction import (
    TransactionReport,
    TransactionResult,
    build_report,
    dispatch_partitions,
    run_transaction,
)

__version__ = "0.1.0"
__all__ = [
    "TaskConfig",
    "WorkerPool",
    "WorkerReport",
    "WorkerStatus",
    "TransactionReport",
    "TransactionResult",
    "build_report",
    "dispatch_partitions",
    "run_transaction",
]
