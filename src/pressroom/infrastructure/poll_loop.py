"""Shared async polling loop abstraction."""

from __future__ import annotations

import asyncio
from typing import Callable, Awaitable

from pressroom.infrastructure.logger import logger


class PollLoop:
    """An async loop that calls a function on a fixed period.

    A tick that raises is logged and the loop keeps its period; the next tick
    runs as usual.
    """

    def __init__(self, name: str, interval_s: float, fn: Callable[[], Awaitable[None]]) -> None:
        self._name = name
        self._interval = interval_s
        self._fn = fn
        self._task: asyncio.Task[None] | None = None
        self._stopped = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the polling loop as a background task."""
        self._stopped = False
        self._task = asyncio.create_task(self._loop(), name=f"poll:{self._name}")
        logger.info(f"{self._name} loop started", interval_s=self._interval)

    async def stop(self) -> None:
        """Stop the loop and wait for the current tick to unwind."""
        self._stopped = True
        task, self._task = self._task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(f"{self._name} loop stopped", ticks=self.ticks)

    async def _loop(self) -> None:
        while not self._stopped:
            try:
                await self._fn()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Error in {self._name} loop")
            self.ticks += 1
            if not self._stopped:
                await asyncio.sleep(self._interval)


def start_poll_loop(name: str, interval_s: float, fn: Callable[[], Awaitable[None]]) -> PollLoop:
    """Create and start a polling loop. Returns a handle to stop it."""
    loop = PollLoop(name, interval_s, fn)
    loop.start()
    return loop
