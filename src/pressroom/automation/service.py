"""Automation schedule manager: validated CRUD that keeps the registry in sync."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pressroom.automation.pipeline import ExecutionPipeline
from pressroom.automation.recurrence import compute_next_run, normalize
from pressroom.automation.registry import ScheduleRegistry
from pressroom.automation.repository import ExecutionRepository, JobRepository, ScheduleRepository
from pressroom.automation.types import (
    AutomationExecution,
    AutomationJob,
    AutomationSchedule,
    JobQueueStats,
    ScheduleStats,
)
from pressroom.collaborators.registry import Collaborators
from pressroom.infrastructure.clock import get_zone, localize, make_id, now_iso, to_iso
from pressroom.infrastructure.config import TIMEZONE
from pressroom.infrastructure.errors import NotFoundError, ScheduleBusyError, ValidationError
from pressroom.infrastructure.logger import logger

PUBLISH_STATES = ("publish", "draft", "pending", "private")
_UPDATABLE = frozenset({
    "name", "description", "kind", "recurrence", "timezone", "due", "feed_url", "topic",
    "auto_publish", "publish_state", "max_items_per_run",
})


class AutomationService:
    def __init__(
        self,
        schedules: ScheduleRepository,
        executions: ExecutionRepository,
        jobs: JobRepository,
        pipeline: ExecutionPipeline,
        registry: ScheduleRegistry,
        collaborators: Collaborators,
    ) -> None:
        self._schedules = schedules
        self._executions = executions
        self._jobs = jobs
        self._pipeline = pipeline
        self._registry = registry
        self._collaborators = collaborators
        registry.set_fire_fn(self.fire, self.record_fire_failure)

    # --- CRUD ---

    async def create(
        self,
        owner: str,
        site_id: str,
        name: str,
        kind: str,
        recurrence: str | None = None,
        timezone: str = TIMEZONE,
        due: datetime | str | None = None,
        feed_url: str | None = None,
        topic: str | None = None,
        description: str | None = None,
        auto_publish: bool = False,
        publish_state: str = "draft",
        max_items_per_run: int | None = None,
        is_active: bool = True,
    ) -> AutomationSchedule:
        fields = self._validate(
            site_id=site_id,
            name=name,
            kind=kind,
            recurrence=recurrence,
            timezone=timezone,
            due=due,
            feed_url=feed_url,
            topic=topic,
            publish_state=publish_state,
            max_items_per_run=max_items_per_run,
        )
        schedule = AutomationSchedule(
            id=make_id("sched"),
            owner=owner,
            site_id=site_id,
            description=description,
            auto_publish=auto_publish,
            is_active=is_active,
            created_at=now_iso(),
            **fields,
        )
        schedule.next_run = self._next_run(schedule) if is_active else None
        self._schedules.create(schedule)
        logger.info("Automation schedule created", schedule_id=schedule.id, kind=schedule.kind, next_run=schedule.next_run)

        if schedule.is_active:
            await self._registry.register(schedule)
        return schedule

    def get(self, owner: str, schedule_id: str) -> AutomationSchedule:
        schedule = self._schedules.get_by_id(schedule_id)
        if not schedule or schedule.owner != owner:
            raise NotFoundError(f"Schedule not found: {schedule_id}")
        return schedule

    def list_for_owner(
        self,
        owner: str,
        site_id: str | None = None,
        is_active: bool | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[AutomationSchedule], int]:
        page = max(1, page)
        per_page = max(1, per_page)
        return self._schedules.list_for_owner(owner, site_id, is_active, limit=per_page, offset=(page - 1) * per_page)

    async def update(self, owner: str, schedule_id: str, **changes: Any) -> AutomationSchedule:
        """Apply changes and re-register the timer so the new timing takes effect."""
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        current = self.get(owner, schedule_id)

        kind = changes.get("kind", current.kind)
        fields = self._validate(
            site_id=current.site_id,
            name=changes.get("name", current.name),
            kind=kind,
            recurrence=changes.get("recurrence", current.recurrence if kind == current.kind else None),
            timezone=changes.get("timezone", current.timezone),
            due=changes.get("due") or (current.due_at if kind == "ONE_SHOT" else None),
            feed_url=changes.get("feed_url", current.feed_url),
            topic=changes.get("topic", current.topic),
            publish_state=changes.get("publish_state", current.publish_state),
            max_items_per_run=changes.get("max_items_per_run", current.max_items_per_run),
        )
        if "description" in changes:
            fields["description"] = changes["description"]
        if "auto_publish" in changes:
            fields["auto_publish"] = bool(changes["auto_publish"])

        updated = current.model_copy(update=fields)
        fields["next_run"] = self._next_run(updated) if updated.is_active else None
        self._schedules.update(schedule_id, fields)
        schedule = self.get(owner, schedule_id)

        if schedule.is_active:
            await self._registry.update(schedule)
        else:
            await self._registry.unregister(schedule_id)
        logger.info("Automation schedule updated", schedule_id=schedule_id, fields=sorted(changes))
        return schedule

    async def pause(self, owner: str, schedule_id: str) -> AutomationSchedule:
        self.get(owner, schedule_id)
        self._schedules.update(schedule_id, {"is_active": False, "next_run": None})
        await self._registry.unregister(schedule_id)
        logger.info("Automation schedule paused", schedule_id=schedule_id)
        return self.get(owner, schedule_id)

    async def resume(self, owner: str, schedule_id: str) -> AutomationSchedule:
        schedule = self.get(owner, schedule_id).model_copy(update={"is_active": True})
        next_run = self._next_run(schedule)
        if schedule.is_one_shot and schedule.due_at:
            # A past-due one-shot fires as soon as it is registered.
            next_run = schedule.due_at
        self._schedules.update(schedule_id, {"is_active": True, "next_run": next_run})
        schedule = self.get(owner, schedule_id)
        await self._registry.update(schedule)
        logger.info("Automation schedule resumed", schedule_id=schedule_id, next_run=next_run)
        return schedule

    async def delete(self, owner: str, schedule_id: str) -> None:
        self.get(owner, schedule_id)
        await self._registry.unregister(schedule_id)
        self._schedules.delete(schedule_id)
        logger.info("Automation schedule deleted", schedule_id=schedule_id)

    # --- Runs ---

    async def run_now(self, owner: str, schedule_id: str) -> AutomationExecution:
        """Run the pipeline immediately, through the same path a timer uses."""
        schedule = self.get(owner, schedule_id)
        if self._executions.get_running(schedule_id):
            raise ScheduleBusyError(f"Schedule is already running: {schedule_id}", {"schedule_id": schedule_id})
        execution = await self._pipeline.run(schedule, trigger="manual")
        if execution is None:
            raise ScheduleBusyError(f"Schedule is already running: {schedule_id}", {"schedule_id": schedule_id})
        if schedule.is_one_shot:
            await self._registry.unregister(schedule_id)
        return execution

    async def fire(self, schedule_id: str) -> None:
        """Timer callback."""
        schedule = self._schedules.get_by_id(schedule_id)
        if not schedule or not schedule.is_active:
            logger.info("Schedule gone or inactive, skipping firing", schedule_id=schedule_id)
            return
        await self._pipeline.run(schedule, trigger="timer")

    def record_fire_failure(self, schedule_id: str, error: str) -> None:
        """Audit a firing that raised.

        The firing's own RUNNING execution is closed FAILED when there is one.
        A synthetic FAILED execution is written only when the firing raised
        before it could open one.
        """
        schedule = self._schedules.get_by_id(schedule_id)
        if not schedule:
            return
        running = self._executions.get_running(schedule_id)
        if running and running.trigger == "timer":
            self._executions.close(running.id, "FAILED", error)
        else:
            self._executions.record_failure(schedule_id, "timer", error)
        next_run = None if schedule.is_one_shot else self._next_run(schedule)
        self._schedules.record_run(schedule_id, False, next_run, deactivate=schedule.is_one_shot)

    def recover(self) -> int:
        """Close executions a previous process left RUNNING."""
        closed = self._executions.close_stale_running()
        if closed:
            logger.warning("Closed interrupted executions", count=closed)
        return closed

    # --- History ---

    def list_executions(
        self, owner: str, schedule_id: str, page: int = 1, per_page: int = 20
    ) -> tuple[list[AutomationExecution], int]:
        self.get(owner, schedule_id)
        page = max(1, page)
        per_page = max(1, per_page)
        return self._executions.list_for_schedule(schedule_id, limit=per_page, offset=(page - 1) * per_page)

    def get_execution(self, owner: str, execution_id: str) -> AutomationExecution:
        execution = self._executions.get_by_id(execution_id)
        if not execution:
            raise NotFoundError(f"Execution not found: {execution_id}")
        self.get(owner, execution.schedule_id)
        return execution

    def list_jobs(self, owner: str, execution_id: str) -> list[AutomationJob]:
        self.get_execution(owner, execution_id)
        return self._jobs.list_for_execution(execution_id)

    def get_stats(self, owner: str, site_id: str | None = None) -> ScheduleStats:
        return self._schedules.stats_for_owner(owner, site_id)

    # --- Submitted jobs ---

    def submit_job(
        self,
        owner: str,
        site_id: str,
        topic: str,
        source_url: str | None = None,
        feed_url: str | None = None,
        auto_publish: bool = False,
        publish_state: str = "draft",
    ) -> AutomationJob:
        """Queue one item for the job worker, outside any schedule."""
        if not self._collaborators.has_site(site_id):
            raise ValidationError(f"Site not found: {site_id}", {"site_id": site_id})
        if not topic or not topic.strip():
            raise ValidationError("A topic is required")
        if publish_state not in PUBLISH_STATES:
            raise ValidationError(f"Invalid publish state: {publish_state}", {"publish_state": publish_state})

        now = now_iso()
        feed_url = (feed_url or "").strip() or None
        job = AutomationJob(
            id=make_id("job"),
            owner=owner,
            site_id=site_id,
            source_type="feed" if feed_url else "topic",
            feed_url=feed_url,
            source_url=source_url,
            source_title=topic.strip(),
            auto_publish=auto_publish,
            publish_state=publish_state,
            created_at=now,
            updated_at=now,
        )
        self._jobs.create(job)
        logger.info("Automation job queued", job_id=job.id, site_id=site_id, auto_publish=auto_publish)
        return job

    def get_job(self, owner: str, job_id: str) -> AutomationJob:
        job = self._jobs.get_by_id(job_id)
        if not job or job.owner != owner:
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    def queue_stats(self, owner: str | None = None) -> JobQueueStats:
        return self._jobs.queue_stats(owner)

    # --- Internal ---

    def _validate(
        self,
        site_id: str,
        name: str,
        kind: str,
        recurrence: str | None,
        timezone: str,
        due: datetime | str | None,
        feed_url: str | None,
        topic: str | None,
        publish_state: str,
        max_items_per_run: int | None,
    ) -> dict[str, Any]:
        if not self._collaborators.has_site(site_id):
            raise ValidationError(f"Site not found: {site_id}", {"site_id": site_id})
        if not name or not name.strip():
            raise ValidationError("Schedule name is required")
        feed_url = (feed_url or "").strip() or None
        topic = (topic or "").strip() or None
        if not feed_url and not topic:
            raise ValidationError("A feed URL or a topic is required")
        if publish_state not in PUBLISH_STATES:
            raise ValidationError(f"Invalid publish state: {publish_state}", {"publish_state": publish_state})
        if max_items_per_run is not None and max_items_per_run < 0:
            raise ValidationError("max_items_per_run must not be negative")
        get_zone(timezone)

        cron = normalize(kind, recurrence)
        due_at: str | None = None
        if kind == "ONE_SHOT":
            if due is None:
                raise ValidationError("ONE_SHOT schedules require a due time")
            due_at = to_iso(localize(due, timezone))

        return {
            "name": name.strip(),
            "kind": kind,
            "recurrence": cron,
            "timezone": timezone,
            "due_at": due_at,
            "feed_url": feed_url,
            "topic": topic,
            "publish_state": publish_state,
            "max_items_per_run": max_items_per_run,
        }

    @staticmethod
    def _next_run(schedule: AutomationSchedule) -> str | None:
        if schedule.is_one_shot:
            return schedule.due_at
        return compute_next_run(schedule.kind, schedule.recurrence, schedule.timezone)
