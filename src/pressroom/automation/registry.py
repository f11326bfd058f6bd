"""Schedule registry: live timers for active automation schedules.

The registry is a derived cache of the job store: it maps schedule id to
the asyncio task acting as that schedule's timer and nothing else. It can be
rebuilt at any time with ``reconcile_all()``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable

from pressroom.automation.recurrence import next_fire_time
from pressroom.automation.repository import ScheduleRepository
from pressroom.automation.types import AutomationSchedule
from pressroom.infrastructure.clock import from_iso, utcnow
from pressroom.infrastructure.logger import logger

FireFn = Callable[[str], Awaitable[None]]
FireErrorFn = Callable[[str, str], None]


class ScheduleRegistry:
    """Registered/unregistered state per schedule, with serialized mutations.

    A firing runs as its own task, so unregistering (pause, delete, update)
    stops future firings without interrupting an execution in progress.
    """

    def __init__(
        self,
        repo: ScheduleRepository,
        now: Callable[[], datetime] = utcnow,
        retry_delay_s: float = 60.0,
    ) -> None:
        self._repo = repo
        self._now = now
        self._retry_delay_s = retry_delay_s
        self._on_fire: FireFn | None = None
        self._on_fire_error: FireErrorFn | None = None
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._firings: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()

    def set_fire_fn(self, on_fire: FireFn, on_fire_error: FireErrorFn | None = None) -> None:
        """Callback run when a timer fires, and where to record a firing that raised."""
        self._on_fire = on_fire
        self._on_fire_error = on_fire_error

    # --- State ---

    def is_registered(self, schedule_id: str) -> bool:
        task = self._timers.get(schedule_id)
        return task is not None and not task.done()

    def registered_ids(self) -> set[str]:
        return {sid for sid, task in self._timers.items() if not task.done()}

    # --- Mutations (serialized) ---

    async def register(self, schedule: AutomationSchedule) -> bool:
        async with self._lock:
            return self._register_locked(schedule)

    async def unregister(self, schedule_id: str) -> bool:
        async with self._lock:
            return await self._unregister_locked(schedule_id)

    async def update(self, schedule: AutomationSchedule) -> bool:
        """Drop the old timer and start one for the new settings, as one step."""
        async with self._lock:
            await self._unregister_locked(schedule.id)
            return self._register_locked(schedule)

    async def reconcile_all(self) -> int:
        """Make the live timer set match the active schedules in the job store."""
        async with self._lock:
            active = self._repo.get_active()
            active_ids = {s.id for s in active}
            for schedule_id in list(self._timers):
                if schedule_id not in active_ids:
                    await self._unregister_locked(schedule_id)
            for schedule in active:
                if not self.is_registered(schedule.id):
                    self._register_locked(schedule)
            count = len(self.registered_ids())
        logger.info("Schedules reconciled", active=len(active), registered=count)
        return count

    async def shutdown(self, grace_period_s: float = 5.0) -> None:
        """Stop every timer, then give running firings a grace period."""
        async with self._lock:
            for schedule_id in list(self._timers):
                await self._unregister_locked(schedule_id)
        if self._firings:
            _, pending = await asyncio.wait(self._firings, timeout=grace_period_s)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning("Cancelled running schedule firings at shutdown", count=len(pending))

    async def wait_idle(self) -> None:
        """Wait for every firing started so far to finish."""
        while self._firings:
            await asyncio.gather(*list(self._firings), return_exceptions=True)

    def _register_locked(self, schedule: AutomationSchedule) -> bool:
        if self.is_registered(schedule.id):
            # Same live timer set no matter how often this is called.
            return True
        if not schedule.is_active:
            return False

        if schedule.is_one_shot:
            if not schedule.due_at:
                logger.error("One-shot schedule has no due time, not registering", schedule_id=schedule.id)
                return False
            timer = self._run_one_shot(schedule.id, from_iso(schedule.due_at))
        else:
            if not schedule.recurrence:
                logger.error("Recurring schedule has no recurrence, not registering", schedule_id=schedule.id)
                return False
            timer = self._run_recurring(schedule.id, schedule.kind, schedule.recurrence, schedule.timezone)

        self._timers[schedule.id] = asyncio.create_task(timer, name=f"schedule:{schedule.id}")
        logger.info("Registered schedule timer", schedule_id=schedule.id, name=schedule.name, kind=schedule.kind)
        return True

    async def _unregister_locked(self, schedule_id: str) -> bool:
        task = self._timers.pop(schedule_id, None)
        if task is None:
            return False
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Unregistered schedule timer", schedule_id=schedule_id)
        return True

    # --- Timers ---

    async def _run_one_shot(self, schedule_id: str, due: datetime) -> None:
        delay = (due - self._now()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)
        else:
            logger.info("One-shot schedule is past due, firing now", schedule_id=schedule_id)
        self._start_firing(schedule_id)
        current = self._timers.get(schedule_id)
        if current is asyncio.current_task():
            del self._timers[schedule_id]

    async def _run_recurring(self, schedule_id: str, kind: str, recurrence: str, tz: str) -> None:
        last_fire: datetime | None = None
        while True:
            now = self._now()
            after = max(now, last_fire) if last_fire else now
            try:
                fire_at = next_fire_time(kind, recurrence, tz, after)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Could not compute next fire time, retrying", schedule_id=schedule_id, delay_s=self._retry_delay_s
                )
                await asyncio.sleep(self._retry_delay_s)
                continue
            await asyncio.sleep(max(0.0, (fire_at - self._now()).total_seconds()))
            last_fire = fire_at
            self._start_firing(schedule_id)

    def _start_firing(self, schedule_id: str) -> None:
        task = asyncio.create_task(self._fire(schedule_id), name=f"fire:{schedule_id}")
        self._firings.add(task)
        task.add_done_callback(self._firings.discard)

    async def _fire(self, schedule_id: str) -> None:
        if self._on_fire is None:
            logger.error("No fire function set, dropping firing", schedule_id=schedule_id)
            return
        try:
            await self._on_fire(schedule_id)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            message = str(err) or type(err).__name__
            logger.exception("Schedule firing failed", schedule_id=schedule_id)
            if self._on_fire_error is None:
                return
            try:
                self._on_fire_error(schedule_id, message)
            except Exception:
                logger.exception("Could not record failed schedule firing", schedule_id=schedule_id)
