"""Background worker for automation jobs submitted one at a time.

Jobs created by a schedule firing are run inline by the execution pipeline;
this worker only drains jobs queued through ``AutomationService.submit_job``.
"""

from __future__ import annotations

from pressroom.automation.pipeline import ItemContext, ItemRunner, ItemSource, PublishTarget
from pressroom.automation.repository import JobRepository
from pressroom.automation.types import AutomationJob
from pressroom.infrastructure.config import JOB_POLL_INTERVAL
from pressroom.infrastructure.logger import logger
from pressroom.infrastructure.poll_loop import PollLoop, start_poll_loop


class AutomationJobWorker:
    def __init__(self, jobs: JobRepository, runner: ItemRunner) -> None:
        self._jobs = jobs
        self._runner = runner

    async def process_next(self) -> AutomationJob | None:
        """Claim the oldest PENDING job and run it. Returns the job as stored afterwards."""
        job = self._jobs.claim_next_pending()
        if job is None:
            return None

        logger.info("Processing automation job", job_id=job.id, site_id=job.site_id, title=job.source_title)
        ctx = ItemContext(
            target=PublishTarget(job.site_id, job.auto_publish, job.publish_state),
            source=ItemSource(title=job.source_title, url=job.source_url),
            job_id=job.id,
        )
        await self._runner.run(ctx)
        return self._jobs.get_by_id(job.id)

    def recover(self) -> int:
        failed = self._jobs.fail_interrupted()
        if failed:
            logger.warning("Failed automation jobs interrupted by a restart", count=failed)
        return failed

    def start(self, interval_s: float = JOB_POLL_INTERVAL) -> PollLoop:
        async def tick() -> None:
            await self.process_next()

        return start_poll_loop("Automation job worker", interval_s, tick)
