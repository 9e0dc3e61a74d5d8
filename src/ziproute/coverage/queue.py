from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger()


@dataclass
class QueuedTask:
    name: str
    run: Callable[[], Awaitable[Any]]
    key: str | None = None


async def _pause(seconds: float) -> None:
    await asyncio.sleep(seconds)


class OperationQueue:
    """Bounded queue of deferred work drained by a single consumer loop.

    The capacity is the backpressure: ``put`` waits while the queue is full,
    ``offer`` refuses instead of waiting. Tasks sharing a ``key`` are
    collapsed while one is still pending.
    """

    def __init__(self, capacity: int = 50, sub_batch: int = 10, pause_s: float = 0.1):
        self.capacity = capacity
        self.sub_batch = sub_batch
        self.pause_s = pause_s
        self._queue: asyncio.Queue[QueuedTask] = asyncio.Queue(maxsize=capacity)
        self._pending_keys: set[str] = set()
        self.processed = 0
        self.failed = 0
        self.dropped = 0

    def __len__(self) -> int:
        return self._queue.qsize()

    def is_pending(self, key: str) -> bool:
        return key in self._pending_keys

    async def put(self, task: QueuedTask) -> bool:
        if task.key is not None and task.key in self._pending_keys:
            return False
        if task.key is not None:
            self._pending_keys.add(task.key)
        try:
            await self._queue.put(task)
        except BaseException:
            if task.key is not None:
                self._pending_keys.discard(task.key)
            raise
        return True

    def offer(self, task: QueuedTask) -> bool:
        """Enqueue without waiting. Returns False if full or already pending."""
        if task.key is not None and task.key in self._pending_keys:
            return False
        try:
            self._queue.put_nowait(task)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("operation_queue_full", task=task.name, key=task.key, capacity=self.capacity)
            return False
        if task.key is not None:
            self._pending_keys.add(task.key)
        return True

    def _take_batch(self, first: QueuedTask | None = None) -> list[QueuedTask]:
        batch = [first] if first is not None else []
        while len(batch) < self.sub_batch:
            try:
                batch.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    async def _process(self, batch: list[QueuedTask]) -> None:
        outcomes = await asyncio.gather(*(t.run() for t in batch), return_exceptions=True)
        for task, outcome in zip(batch, outcomes):
            if task.key is not None:
                self._pending_keys.discard(task.key)
            if isinstance(outcome, BaseException):
                self.failed += 1
                logger.error("queued_task_failed", task=task.name, key=task.key, error=repr(outcome))
            else:
                self.processed += 1
            self._queue.task_done()

    async def run(self) -> None:
        """Consumer loop. Runs until cancelled."""
        while True:
            first = await self._queue.get()
            batch = self._take_batch(first)
            logger.debug("operation_queue_batch", size=len(batch), remaining=self._queue.qsize())
            await self._process(batch)
            await _pause(self.pause_s)

    async def flush(self) -> int:
        """Drain everything queued right now. Returns the number of tasks run."""
        ran = 0
        while True:
            batch = self._take_batch()
            if not batch:
                return ran
            if ran:
                await _pause(self.pause_s)
            await self._process(batch)
            ran += len(batch)

    def stats(self) -> dict:
        return {
            "queued": self._queue.qsize(),
            "capacity": self.capacity,
            "processed": self.processed,
            "failed": self.failed,
            "dropped": self.dropped,
        }
