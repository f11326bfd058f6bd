"""FIFO work queue for bulk operations with a global worker limit, using asyncio."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Awaitable

from pressroom.infrastructure.config import BULK_MAX_WORKERS
from pressroom.infrastructure.logger import logger


class BulkQueue:
    """Runs queued operation ids in submission order, at most ``max_workers`` at a time.

    The queue only carries ids; the operation record in the job store is the
    status projection callers poll.
    """

    def __init__(self, max_workers: int = BULK_MAX_WORKERS) -> None:
        self._max_workers = max(1, max_workers)
        self._pending: deque[str] = deque()
        self._active: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._process_fn: Callable[[str], Awaitable[None]] | None = None
        self._shutting_down = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def set_process_fn(self, fn: Callable[[str], Awaitable[None]]) -> None:
        self._process_fn = fn

    def enqueue(self, operation_id: str) -> None:
        if self._shutting_down:
            logger.warning("Bulk queue shutting down, operation not queued", operation_id=operation_id)
            return

        if operation_id in self._active or operation_id in self._pending:
            logger.debug("Operation already queued, skipping", operation_id=operation_id)
            return

        self._idle.clear()
        if len(self._active) >= self._max_workers:
            self._pending.append(operation_id)
            logger.debug("At worker limit, operation queued", operation_id=operation_id, queued=len(self._pending))
            return

        self._start(operation_id)

    def _start(self, operation_id: str) -> None:
        self._active.add(operation_id)
        task = asyncio.create_task(self._run(operation_id), name=f"bulk:{operation_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, operation_id: str) -> None:
        logger.debug("Running bulk operation", operation_id=operation_id, active=len(self._active))
        try:
            if self._process_fn:
                await self._process_fn(operation_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error running bulk operation", operation_id=operation_id)
        finally:
            self._active.discard(operation_id)
            self._drain()

    def _drain(self) -> None:
        while self._pending and len(self._active) < self._max_workers and not self._shutting_down:
            self._start(self._pending.popleft())
        if not self._active and (not self._pending or self._shutting_down):
            self._idle.set()

    async def wait_idle(self) -> None:
        """Wait until nothing is running or queued."""
        await self._idle.wait()

    async def shutdown(self, grace_period_s: float = 5.0) -> None:
        """Stop taking work; give in-flight operations a grace period, then cancel them."""
        self._shutting_down = True
        dropped = len(self._pending)
        self._pending.clear()

        logger.info("BulkQueue shutting down", active_count=len(self._active), dropped_pending=dropped)

        if not self._tasks:
            return
        _, still_running = await asyncio.wait(set(self._tasks), timeout=grace_period_s)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("Bulk operations interrupted by shutdown", count=len(still_running))
