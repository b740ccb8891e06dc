from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Generic, Optional, TypeVar

from .types import BackpressureCallback, QueueInterrupted

T = TypeVar("T")


class BoundedQueue(Generic[T]):
    """Bounded FIFO with high/low watermarks, deadlines and a cancel event.

    Every blocking call takes an optional ``timeout`` (seconds, None = unbounded)
    and an optional ``cancel`` event; setting the event wakes all blocked callers
    at once with QueueInterrupted.
    """

    def __init__(
        self,
        capacity: int,
        high_watermark: int | None = None,
        low_watermark: int | None = None,
        *,
        on_high: Optional[BackpressureCallback] = None,
        on_low: Optional[BackpressureCallback] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity = capacity
        self._q: asyncio.Queue[T] = asyncio.Queue(maxsize=capacity)
        self._size = 0  # mirrored for watermark checks

        self._high_wm = (
            high_watermark if high_watermark is not None else max(1, int(0.8 * capacity))
        )
        self._low_wm = low_watermark if low_watermark is not None else int(0.5 * capacity)
        self._on_high = on_high
        self._on_low = on_low

        self._high_fired = False  # avoid duplicate signals

        # Protect _size & signals across concurrent producers/consumers
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._size

    def empty(self) -> bool:
        return self._q.empty()

    async def put(
        self,
        item: T,
        timeout: float | None = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> None:
        """Put item; blocks while full."""
        await _bounded(self._q.put(item), timeout, cancel)
        async with self._lock:
            self._size += 1
            await self._maybe_signal_high()

    async def get(
        self,
        timeout: float | None = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> T:
        """Get item with optional deadline; emits low-watermark when recovering."""
        item = await _bounded(self._q.get(), timeout, cancel)
        async with self._lock:
            self._size -= 1
            await self._maybe_signal_low()
        return item

    async def drain(self) -> list[T]:
        """Remove and return everything currently queued, without blocking."""
        items: list[T] = []
        while True:
            try:
                items.append(self._q.get_nowait())
            except asyncio.QueueEmpty:
                break
        if items:
            async with self._lock:
                self._size -= len(items)
                await self._maybe_signal_low()
        return items

    async def _maybe_signal_high(self) -> None:
        if not self._high_fired and self._size >= self._high_wm:
            self._high_fired = True
            if self._on_high:
                await self._on_high()

    async def _maybe_signal_low(self) -> None:
        if self._high_fired and self._size <= self._low_wm:
            self._high_fired = False
            if self._on_low:
                await self._on_low()


async def _bounded(
    op: Coroutine[Any, Any, T], timeout: float | None, cancel: Optional[asyncio.Event]
) -> T:
    """Await op until it completes, the deadline passes or cancel is set."""
    if cancel is None:
        return await asyncio.wait_for(op, timeout=timeout)
    if cancel.is_set():
        op.close()  # never started
        raise QueueInterrupted()

    op_task = asyncio.ensure_future(op)
    stop = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait(
            {op_task, stop}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        stop.cancel()
        if not op_task.done():
            op_task.cancel()
    if op_task in done:
        return op_task.result()
    if stop in done:
        raise QueueInterrupted()
    raise asyncio.TimeoutError()
