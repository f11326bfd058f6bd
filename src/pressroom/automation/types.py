"""Automation domain types."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ScheduleKind = Literal[
    "ONE_SHOT",
    "DAILY",
    "WEEKLY",
    "CUSTOM",
    "EVERY_5_MIN",
    "EVERY_10_MIN",
    "EVERY_30_MIN",
    "HOURLY",
    "EVERY_2_HOURS",
    "EVERY_6_HOURS",
    "EVERY_12_HOURS",
]
ExecutionStatus = Literal["RUNNING", "COMPLETED", "FAILED"]
ExecutionTrigger = Literal["timer", "manual"]
JobStatus = Literal["PENDING", "GENERATING", "GENERATED", "PUBLISHING", "PUBLISHED", "FAILED"]
SourceType = Literal["feed", "topic"]


class AutomationSchedule(BaseModel):
    id: str
    owner: str
    site_id: str
    feed_url: str | None = None
    topic: str | None = None
    name: str
    description: str | None = None
    kind: ScheduleKind
    recurrence: str | None = None  # normalized cron; None for ONE_SHOT
    timezone: str = "UTC"
    due_at: str | None = None  # ONE_SHOT only, UTC
    auto_publish: bool = False
    publish_state: str = "draft"
    max_items_per_run: int | None = None
    is_active: bool = True
    last_run: str | None = None
    next_run: str | None = None
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    created_at: str = ""

    @property
    def is_one_shot(self) -> bool:
        return self.kind == "ONE_SHOT"


class AutomationExecution(BaseModel):
    id: str
    schedule_id: str
    status: ExecutionStatus = "RUNNING"
    trigger: ExecutionTrigger = "timer"
    started_at: str
    completed_at: str | None = None
    generated_count: int = 0
    published_count: int = 0
    failed_count: int = 0
    job_ids: list[str] = Field(default_factory=list)
    error: str | None = None


class AutomationJob(BaseModel):
    """One generated item. Jobs submitted on their own carry no schedule or execution."""

    id: str
    schedule_id: str | None = None
    execution_id: str | None = None
    owner: str
    site_id: str
    source_type: SourceType
    feed_url: str | None = None
    source_url: str | None = None
    source_title: str
    auto_publish: bool = False
    publish_state: str = "draft"
    status: JobStatus = "PENDING"
    generated_title: str | None = None
    remote_id: int | None = None
    error: str | None = None
    created_at: str = ""
    updated_at: str = ""


class JobQueueStats(BaseModel):
    pending: int = 0
    generating: int = 0
    generated: int = 0
    publishing: int = 0
    published: int = 0
    failed: int = 0
    total: int = 0


class ScheduleStats(BaseModel):
    total_schedules: int = 0
    active_schedules: int = 0
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    success_rate: int = 0  # percent
