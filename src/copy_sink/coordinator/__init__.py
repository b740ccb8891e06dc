"""Worker pool coordinator

Producer -> per-worker BoundedQueue -> LoadWorker -> COPY load stream, with:
- partition-affine dispatch (partition_index % pool_size)
- enqueue/dequeue/write/finish deadlines
- two-phase commit across workers (drain all, then finalize all)
- pool-wide abort that wakes every blocked producer
- backpressure feedback bus and Prometheus metrics
"""

from .types import (
    BackpressureCallback,
    Connection,
    Connector,
    PoolState,
    QueueInterrupted,
    Stream,
    WorkerReport,
    WorkerStatus,
)
from .queue import BoundedQueue
from .feedback import BackpressureLevel, FeedbackBus, FeedbackEvent
from .worker import LoadWorker
from .pool import WorkerPool
from .settings import CoordinatorRuntimeSettings, get_settings

__all__ = [
    # types
    "BackpressureCallback",
    "Connection",
    "Connector",
    "PoolState",
    "QueueInterrupted",
    "Stream",
    "WorkerReport",
    "WorkerStatus",
    # runtime
    "BoundedQueue",
    "LoadWorker",
    "WorkerPool",
    "CoordinatorRuntimeSettings",
    "get_settings",
    # feedback
    "BackpressureLevel",
    "FeedbackBus",
    "FeedbackEvent",
]
