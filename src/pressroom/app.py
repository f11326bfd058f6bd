"""Orchestrator class: composes services and wires subsystems."""

from __future__ import annotations

from pathlib import Path

from pressroom.automation.pipeline import ExecutionPipeline
from pressroom.automation.registry import ScheduleRegistry
from pressroom.automation.service import AutomationService
from pressroom.automation.worker import AutomationJobWorker
from pressroom.bulk.processor import BulkOperationProcessor
from pressroom.bulk.queue import BulkQueue
from pressroom.bulk.service import BulkOperationService
from pressroom.collaborators.registry import Collaborators
from pressroom.infrastructure.config import (
    BULK_ITEM_CONCURRENCY,
    BULK_ITEM_DELAY,
    BULK_MAX_WORKERS,
    DB_PATH,
    DUE_POST_POLL_INTERVAL,
    JOB_POLL_INTERVAL,
    SCHEDULED_POST_MAX_ATTEMPTS,
)
from pressroom.infrastructure.database import AppDatabase
from pressroom.infrastructure.logger import logger
from pressroom.infrastructure.poll_loop import PollLoop
from pressroom.posts.publisher import DuePostPublisher
from pressroom.posts.service import ScheduledPostService


class Orchestrator:
    """Composes all services and manages the application lifecycle.

    Services are available as ``bulk``, ``posts`` and ``automation`` once
    ``start()`` has returned.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        database: AppDatabase | None = None,
        db_path: Path = DB_PATH,
        poll_interval_s: float = DUE_POST_POLL_INTERVAL,
        bulk_item_delay_s: float = BULK_ITEM_DELAY,
        job_interval_s: float = JOB_POLL_INTERVAL,
    ) -> None:
        self._collaborators = collaborators
        self._db = database
        self._owns_db = database is None
        self._db_path = db_path
        self._poll_interval = poll_interval_s
        self._bulk_item_delay = bulk_item_delay_s
        self._job_interval = job_interval_s
        self._queue = BulkQueue(max_workers=BULK_MAX_WORKERS)
        self._registry: ScheduleRegistry | None = None
        self._poll_handle: PollLoop | None = None
        self._job_handle: PollLoop | None = None
        self._running = False

        self.bulk: BulkOperationService | None = None
        self.posts: ScheduledPostService | None = None
        self.automation: AutomationService | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def registry(self) -> ScheduleRegistry:
        assert self._registry is not None, "Orchestrator not started"
        return self._registry

    async def start(self) -> None:
        """Open the job store, recover interrupted work, and start timers and loops."""
        logger.info("Starting pressroom...")

        if self._db is None:
            self._db = AppDatabase()
            self._db.init(self._db_path)
        db = self._db

        # Bulk operations
        processor = BulkOperationProcessor(
            db.bulk_repo,
            self._collaborators,
            item_delay_s=self._bulk_item_delay,
            item_concurrency=BULK_ITEM_CONCURRENCY,
        )
        self._queue.set_process_fn(processor.process)
        self.bulk = BulkOperationService(db.bulk_repo, self._queue, self._collaborators)

        # Scheduled posts
        publisher = DuePostPublisher(db.post_repo, self._collaborators, max_attempts=SCHEDULED_POST_MAX_ATTEMPTS)
        self.posts = ScheduledPostService(db.post_repo, publisher, self._collaborators)

        # Automation
        pipeline = ExecutionPipeline(db.schedule_repo, db.execution_repo, db.job_repo, self._collaborators)
        self._registry = ScheduleRegistry(db.schedule_repo)
        self.automation = AutomationService(
            db.schedule_repo,
            db.execution_repo,
            db.job_repo,
            pipeline,
            self._registry,
            self._collaborators,
        )
        worker = AutomationJobWorker(db.job_repo, pipeline.runner)

        # Recover state left behind by a previous process
        publisher.recover()
        self.automation.recover()
        worker.recover()
        await self._registry.reconcile_all()
        self._poll_handle = publisher.start(self._poll_interval)
        self._job_handle = worker.start(self._job_interval)
        self.bulk.recover()

        self._running = True
        logger.info("pressroom started successfully", sites=self._collaborators.site_ids())

    async def shutdown(self, grace_period_s: float = 5.0) -> None:
        """Gracefully shut down all services."""
        logger.info("Shutting down pressroom...")
        self._running = False

        if self._poll_handle:
            await self._poll_handle.stop()
            self._poll_handle = None
        if self._job_handle:
            await self._job_handle.stop()
            self._job_handle = None
        if self._registry:
            await self._registry.shutdown(grace_period_s)
        await self._queue.shutdown(grace_period_s)

        if self._owns_db and self._db is not None:
            self._db.close()
            self._db = None

        logger.info("pressroom shut down complete")
