"""
Background queue for tracking-model writes.

FSRS and BKT upserts are not ordering-sensitive and must never hold up a
review session. The orchestrator hands them to a TrackingQueue: a bounded
asyncio.Queue drained by a small pool of worker tasks.

- submit() never blocks; when the queue is full the job is dropped
- failures are wrapped in TrackingUpdateError and sent to an
  ObservabilitySink instead of propagating
- drain() waits for everything queued so far; close() stops the workers
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from src.core.errors import TrackingUpdateError


@runtime_checkable
class ObservabilitySink(Protocol):
    """Receives tracking failures the core does not act on."""

    def tracking_failed(self, error: TrackingUpdateError) -> None:
        ...

    def tracking_dropped(self, kind: str, key: str) -> None:
        ...


class LoguruSink:
    """Default sink: log and move on."""

    def tracking_failed(self, error: TrackingUpdateError) -> None:
        logger.warning(f"Tracking update failed (non-blocking): {error}")

    def tracking_dropped(self, kind: str, key: str) -> None:
        logger.error(f"Tracking queue full, dropped {kind} update for {key}")


@dataclass
class TrackingJob:
    kind: str  # "fsrs" or "bkt"
    key: str   # item_id or concept_id
    action: Callable[[], Awaitable[Any]]


@dataclass
class TrackingStats:
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    dropped: int = 0

    @property
    def pending(self) -> int:
        return self.submitted - self.completed - self.failed


class TrackingQueue:
    """Bounded fire-and-forget executor for tracking writes."""

    def __init__(
        self,
        sink: ObservabilitySink | None = None,
        maxsize: int = 256,
        workers: int = 2,
    ):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.sink = sink or LoguruSink()
        self.maxsize = maxsize
        self.worker_count = workers
        self.stats = TrackingStats()
        self._queue: asyncio.Queue[TrackingJob] | None = None
        self._workers: list[asyncio.Task] = []
        self._closed = False

    async def __aenter__(self) -> "TrackingQueue":
        self._ensure_workers()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def _ensure_workers(self) -> asyncio.Queue[TrackingJob]:
        # Created lazily so the queue binds to the running event loop
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        if not self._workers:
            self._workers = [
                asyncio.create_task(self._worker(i), name=f"tracking-worker-{i}")
                for i in range(self.worker_count)
            ]
        return self._queue

    def submit(self, kind: str, key: str, action: Callable[[], Awaitable[Any]]) -> bool:
        """
        Enqueue a tracking write without waiting for it.

        Must be called from inside a running event loop.

        Returns:
            True if queued, False if dropped
        """
        if self._closed:
            raise RuntimeError("TrackingQueue is closed")

        queue = self._ensure_workers()
        try:
            queue.put_nowait(TrackingJob(kind=kind, key=key, action=action))
        except asyncio.QueueFull:
            self.stats.dropped += 1
            self.sink.tracking_dropped(kind, key)
            return False

        self.stats.submitted += 1
        return True

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            try:
                await job.action()
                self.stats.completed += 1
            except Exception as e:
                self.stats.failed += 1
                self.report(TrackingUpdateError(job.kind, job.key, e))
            finally:
                self._queue.task_done()

    def report(self, error: TrackingUpdateError) -> None:
        """Send a tracking failure to the sink."""
        try:
            self.sink.tracking_failed(error)
        except Exception:
            logger.exception(f"Observability sink raised while reporting: {error}")

    async def drain(self) -> None:
        """Wait until every job submitted so far has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self, drain: bool = True) -> None:
        """Stop the workers, optionally finishing queued jobs first."""
        if drain:
            await self.drain()
        self._closed = True
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.debug(
            f"Tracking queue closed: {self.stats.completed} completed, "
            f"{self.stats.failed} failed, {self.stats.dropped} dropped"
        )
